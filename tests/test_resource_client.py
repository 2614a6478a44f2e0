import json

import httpx
import pytest

from coachess.api.client import ResourceClient, eq, ilike
from coachess.api.identity import IdentityClient
from coachess.core.errors import NotAuthenticated, RateLimited, RequestFailed
from coachess.core.security import now_timestamp
from coachess.schemas.auth import AuthSession, AuthUser
from coachess.services.session import SessionManager


def _store_session(settings, storage) -> None:
    session = AuthSession(
        access_token="token-1",
        refresh_token="refresh-1",
        expires_at=now_timestamp() + 3600,
        user=AuthUser(id="user-1", email="coach@example.com"),
    )
    storage.set_item(settings.session_storage_key, session.model_dump_json())


def _client(settings, storage, http) -> ResourceClient:
    sessions = SessionManager(settings, IdentityClient(settings, http), storage)
    return ResourceClient(settings, http, sessions)


def _rejecting_refresh(request: httpx.Request) -> httpx.Response:
    return httpx.Response(400, json={"error_code": "refresh_token_not_found", "msg": "Invalid Refresh Token"})


@pytest.mark.asyncio
async def test_no_session_fails_without_network(settings, storage):
    calls: list[httpx.Request] = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=[])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        resources = _client(settings, storage, http)
        with pytest.raises(NotAuthenticated):
            await resources.select("content")
        with pytest.raises(NotAuthenticated):
            await resources.insert("messages", {"body": "hi"})

    assert calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [200, 400, 401, 404, 500])
@pytest.mark.parametrize("has_body", [True, False])
async def test_error_message_extraction(settings, storage, status, has_body):
    _store_session(settings, storage)

    def handler(request):
        if request.url.path.startswith("/auth/"):
            return _rejecting_refresh(request)
        if status == 200:
            return httpx.Response(200, json=[{"id": "c1"}]) if has_body else httpx.Response(200)
        if has_body:
            return httpx.Response(status, json={"message": "boom", "code": "XX000", "hint": "try again"})
        return httpx.Response(status)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        resources = _client(settings, storage, http)
        if status == 200:
            rows = await resources.select("content")
            assert rows == ([{"id": "c1"}] if has_body else [])
            return

        with pytest.raises(RequestFailed) as excinfo:
            await resources.select("content")

    error = excinfo.value
    assert error.status_code == status
    if has_body:
        assert error.message == "boom"
        assert error.code == "XX000"
        assert error.hint == "try again"
    else:
        assert error.message == f"Request failed with status {status}"


@pytest.mark.asyncio
async def test_error_message_fallback_uses_operation_message(settings, storage):
    _store_session(settings, storage)
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="<html>oops</html>"))

    async with httpx.AsyncClient(transport=transport) as http:
        resources = _client(settings, storage, http)
        with pytest.raises(RequestFailed, match="Failed to fetch content"):
            await resources.select("content", error_message="Failed to fetch content")


@pytest.mark.asyncio
async def test_unauthorized_request_is_retried_after_refresh(settings, storage):
    _store_session(settings, storage)
    rest_calls: list[httpx.Request] = []

    def handler(request):
        if request.url.path == "/auth/v1/token":
            return httpx.Response(200, json={
                "access_token": "token-2",
                "refresh_token": "refresh-2",
                "expires_in": 3600,
                "user": {"id": "user-1", "email": "coach@example.com"},
            })
        rest_calls.append(request)
        if len(rest_calls) == 1:
            return httpx.Response(401, json={"code": "PGRST301", "message": "JWT expired"})
        return httpx.Response(200, json=[{"id": "c1"}])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        resources = _client(settings, storage, http)
        rows = await resources.select("content")

    assert rows == [{"id": "c1"}]
    assert [r.headers["Authorization"] for r in rest_calls] == ["Bearer token-1", "Bearer token-2"]


@pytest.mark.asyncio
async def test_unauthorized_with_failed_refresh_raises_original_error(settings, storage):
    _store_session(settings, storage)
    rest_calls: list[httpx.Request] = []

    def handler(request):
        if request.url.path.startswith("/auth/"):
            return _rejecting_refresh(request)
        rest_calls.append(request)
        return httpx.Response(401, json={"code": "PGRST301", "message": "JWT expired"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        resources = _client(settings, storage, http)
        with pytest.raises(RequestFailed, match="JWT expired"):
            await resources.select("content")
        assert resources.sessions.get_session() is None

    assert len(rest_calls) == 1


@pytest.mark.asyncio
async def test_request_shape(settings, storage):
    _store_session(settings, storage)
    calls: list[httpx.Request] = []

    def handler(request):
        calls.append(request)
        if request.method == "POST":
            return httpx.Response(201, json=[json.loads(request.content)])
        return httpx.Response(200, json=[])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        resources = _client(settings, storage, http)
        await resources.select(
            "content",
            filters={"creator_id": eq("user-1"), "title": ilike("*ruy*")},
            order="created_at.desc",
            limit=5,
        )
        rows = await resources.insert("messages", {"body": "hi"})

    select, insert = calls
    assert select.url.path == "/rest/v1/content"
    assert select.url.params["creator_id"] == "eq.user-1"
    assert select.url.params["title"] == "ilike.*ruy*"
    assert select.url.params["order"] == "created_at.desc"
    assert select.url.params["limit"] == "5"
    assert select.headers["apikey"] == settings.supabase_anon_key
    assert select.headers["Authorization"] == "Bearer token-1"
    assert insert.headers["Prefer"] == "return=representation"
    assert rows == [{"body": "hi"}]


@pytest.mark.asyncio
async def test_count_reads_content_range(settings, storage):
    _store_session(settings, storage)

    def handler(request):
        assert request.headers["Range"] == "0-0"
        assert request.headers["Prefer"] == "count=exact"
        return httpx.Response(200, json=[{"id": "m1"}], headers={"Content-Range": "0-0/7"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        resources = _client(settings, storage, http)
        assert await resources.count("messages") == 7


@pytest.mark.asyncio
async def test_unknown_collection_is_rejected(settings, storage):
    _store_session(settings, storage)
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))) as http:
        resources = _client(settings, storage, http)
        with pytest.raises(ValueError):
            await resources.select("profiles")


@pytest.mark.asyncio
async def test_throttled_refresh_after_unauthorized_keeps_session(settings, storage):
    _store_session(settings, storage)

    def handler(request):
        if request.url.path == "/auth/v1/token":
            return httpx.Response(429, json={
                "code": 429,
                "error_code": "over_request_rate_limit",
                "msg": "Request rate limit reached",
            })
        return httpx.Response(401, json={"code": "PGRST301", "message": "JWT expired"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        resources = _client(settings, storage, http)
        with pytest.raises(RateLimited):
            await resources.select("content")

        assert resources.sessions.get_session().access_token == "token-1"
    assert storage.get_item(settings.session_storage_key) is not None


@pytest.mark.asyncio
async def test_identity_outage_after_unauthorized_keeps_session(settings, storage):
    _store_session(settings, storage)

    def handler(request):
        if request.url.path == "/auth/v1/token":
            return httpx.Response(503, json={"msg": "Service unavailable"})
        return httpx.Response(401, json={"code": "PGRST301", "message": "JWT expired"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        resources = _client(settings, storage, http)
        with pytest.raises(RequestFailed, match="JWT expired"):
            await resources.select("content")

        assert resources.sessions.get_session() is not None
    assert storage.get_item(settings.session_storage_key) is not None


@pytest.mark.asyncio
async def test_late_unauthorized_for_replaced_token_does_not_refresh_again(settings, storage):
    _store_session(settings, storage)
    auth_calls: list[httpx.Request] = []
    rest_calls: list[httpx.Request] = []
    replacement = AuthSession(
        access_token="token-2",
        refresh_token="refresh-2",
        expires_at=now_timestamp() + 3600,
        user=AuthUser(id="user-1", email="coach@example.com"),
    )

    def handler(request):
        if request.url.path.startswith("/auth/"):
            auth_calls.append(request)
            return _rejecting_refresh(request)
        rest_calls.append(request)
        if len(rest_calls) == 1:
            # Another caller refreshed while this request was in flight
            storage.set_item(settings.session_storage_key, replacement.model_dump_json())
            resources.sessions.reload()
            return httpx.Response(401, json={"code": "PGRST301", "message": "JWT expired"})
        return httpx.Response(200, json=[{"id": "c1"}])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        resources = _client(settings, storage, http)
        rows = await resources.select("content")

    assert rows == [{"id": "c1"}]
    assert auth_calls == []
    assert [r.headers["Authorization"] for r in rest_calls] == ["Bearer token-1", "Bearer token-2"]
