import httpx
import pytest
import pytest_asyncio
from websockets.asyncio.server import serve

from coachess.core.config import Settings
from coachess.db.local_storage import LocalStorage
from coachess.main import Coachess
from coachess.schemas.auth import SignUpRequest
from coachess.schemas.user import UserRole
from tests.fake_backend import ANON_KEY, FakeBackend
from tests.realtime_server import FakeRealtimeServer

PASSWORD = "supersecure"


def build_settings(supabase_url: str = "http://testserver", **overrides) -> Settings:
    values = {
        "supabase_url": supabase_url,
        "supabase_anon_key": ANON_KEY,
        "site_url": "http://localhost:3000",
        "storage_url": "sqlite://",
        "realtime_heartbeat_seconds": 0.05,
        "realtime_reconnect_initial_seconds": 0.05,
        "realtime_reconnect_max_seconds": 0.2,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return build_settings()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def storage():
    store = LocalStorage("sqlite://")
    yield store
    store.close()


@pytest_asyncio.fixture
async def make_client(settings, backend):
    """Factory for clients wired to the fake backend, each with its own storage."""
    clients: list[Coachess] = []

    def factory(storage: LocalStorage | None = None, client_settings: Settings | None = None) -> Coachess:
        http = httpx.AsyncClient(transport=httpx.ASGITransport(app=backend.app))
        client = Coachess(
            client_settings or settings,
            http_client=http,
            storage=storage or LocalStorage("sqlite://"),
        )
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.http.aclose()
        client.storage.close()


@pytest_asyncio.fixture
async def realtime_server():
    fake = FakeRealtimeServer()
    async with serve(fake.handler, "127.0.0.1", 0) as server:
        fake.port = next(iter(server.sockets)).getsockname()[1]
        yield fake


async def register(client: Coachess, email: str, role: UserRole, name: str | None = None):
    return await client.accounts.sign_up(
        SignUpRequest(
            email=email,
            password=PASSWORD,
            display_name=name or email.split("@")[0].title(),
            role=role,
        )
    )


async def connect_pair(coach: Coachess, player: Coachess, player_email: str = "player@example.com"):
    """Register a coach and a player and connect them through an invite."""
    await register(coach, "coach@example.com", UserRole.COACH)
    await register(player, player_email, UserRole.PLAYER)
    invite = await coach.connections.create_invite(player_email)
    return await player.connections.accept_invite(invite.invite_token)
