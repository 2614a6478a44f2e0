from __future__ import annotations

import logging

import httpx

from coachess.api.client import ResourceClient
from coachess.api.identity import IdentityClient
from coachess.core.config import Settings, get_settings
from coachess.db.local_storage import LocalStorage
from coachess.services.accounts import AccountService
from coachess.services.assignments import AssignmentService
from coachess.services.connections import ConnectionService
from coachess.services.content import ContentService
from coachess.services.messages import MessageService
from coachess.services.session import SessionManager

logger = logging.getLogger(__name__)


class Coachess:
    """One signed-in client: a session store shared by every service."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        storage: LocalStorage | None = None,
    ):
        self.settings = settings or get_settings()
        self._owns_http = http_client is None
        self._owns_storage = storage is None
        self.http = http_client or httpx.AsyncClient(timeout=self.settings.request_timeout_seconds)
        self.storage = storage or LocalStorage(self.settings.storage_url)

        self.identity = IdentityClient(self.settings, self.http)
        self.sessions = SessionManager(self.settings, self.identity, self.storage)
        self.resources = ResourceClient(self.settings, self.http, self.sessions)

        self.accounts = AccountService(self.sessions, self.resources)
        self.connections = ConnectionService(self.settings, self.sessions, self.resources)
        self.content = ContentService(self.sessions, self.resources)
        self.assignments = AssignmentService(self.sessions, self.resources)
        self.messages = MessageService(self.settings, self.sessions, self.resources)
        logger.debug(f"Client ready for {self.settings.supabase_url} ({self.settings.environment})")

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()
        if self._owns_storage:
            self.storage.close()

    async def __aenter__(self) -> "Coachess":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def create_client(settings: Settings | None = None, **kwargs) -> Coachess:
    return Coachess(settings, **kwargs)
