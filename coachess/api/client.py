"""Authenticated CRUD against the hosted table API (``/rest/v1``).

Filters, ``select`` expressions and ordering are forwarded as query
parameters without inspection; authorization is decided server-side.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from coachess.api.responses import error_fields, extract_error_message, parse_json_body
from coachess.core.config import Settings
from coachess.core.errors import AuthError, NotAuthenticated, RateLimited, RequestFailed
from coachess.services.session import SessionManager

logger = logging.getLogger(__name__)

COLLECTIONS = ("users", "content", "connections", "assignments", "messages")
RESOURCE_ERROR_KEYS = ("message", "hint", "details")


def eq(value: Any) -> str:
    return f"eq.{value}"


def neq(value: Any) -> str:
    return f"neq.{value}"


def gte(value: Any) -> str:
    return f"gte.{value}"


def ilike(pattern: str) -> str:
    return f"ilike.{pattern}"


def is_null() -> str:
    return "is.null"


def _bearer_token(request: httpx.Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    return token if scheme == "Bearer" and token else None


class ResourceClient:
    def __init__(self, settings: Settings, http: httpx.AsyncClient, sessions: SessionManager):
        self.settings = settings
        self.http = http
        self.sessions = sessions

    def _url(self, table: str) -> str:
        if table not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {table}")
        return f"{self.settings.rest_url}/{table}"

    async def _headers(self, authenticated: bool, extra: Mapping[str, str] | None) -> dict[str, str]:
        headers = {"apikey": self.settings.supabase_anon_key}
        if authenticated:
            session = await self.sessions.require_session()
            headers["Authorization"] = f"Bearer {session.access_token}"
        else:
            session = self.sessions.get_session()
            if session is not None:
                headers["Authorization"] = f"Bearer {session.access_token}"
        if extra:
            headers.update(extra)
        return headers

    async def _send(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, Any] | None,
        json: Any,
        headers: Mapping[str, str] | None,
        authenticated: bool,
    ) -> httpx.Response:
        url = self._url(table)
        request_headers = await self._headers(authenticated, headers)
        logger.debug(f"{method} {table} params={dict(params or {})}")
        response = await self.http.request(
            method,
            url,
            params=params,
            json=json,
            headers=request_headers,
            timeout=self.settings.request_timeout_seconds,
        )
        return response

    def _failure(self, method: str, table: str, response: httpx.Response, fallback: str | None) -> RequestFailed:
        fields = error_fields(response)
        message = extract_error_message(
            fields,
            RESOURCE_ERROR_KEYS,
            fallback or f"Request failed with status {response.status_code}",
        )
        code = fields.get("code")
        logger.error(
            f"Resource API error: {method} {table} -> {response.status_code} ({code}): {message}"
        )
        return RequestFailed(
            message,
            status_code=response.status_code,
            code=str(code) if code is not None else None,
            hint=fields.get("hint"),
            body=fields or None,
        )

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
        authenticated: bool = True,
        error_message: str | None = None,
    ) -> httpx.Response:
        """Send one request; on 401 refresh the session once and retry."""
        response = await self._send(
            method, table, params=params, json=json, headers=headers, authenticated=authenticated
        )
        if response.status_code == 401 and self.sessions.get_session() is not None:
            failure = self._failure(method, table, response, error_message)
            sent_token = _bearer_token(response.request)
            try:
                await self.sessions.refresh(sent_token)
            except RateLimited:
                raise
            except (AuthError, NotAuthenticated) as exc:
                raise failure from exc
            logger.info(f"Retrying {method} {table} with refreshed session")
            response = await self._send(
                method, table, params=params, json=json, headers=headers, authenticated=authenticated
            )
        if not response.is_success:
            raise self._failure(method, table, response, error_message)
        return response

    def _rows(self, response: httpx.Response) -> list[dict[str, Any]]:
        try:
            body = parse_json_body(response)
        except ValueError as exc:
            raise RequestFailed(
                "Malformed response body", status_code=response.status_code
            ) from exc
        if body is None:
            return []
        if isinstance(body, dict):
            return [body]
        return list(body)

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, str] | None = None,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
        authenticated: bool = True,
        error_message: str | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = dict(filters or {})
        params["select"] = columns
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        response = await self.request(
            "GET",
            table,
            params=params,
            authenticated=authenticated,
            error_message=error_message,
        )
        return self._rows(response)

    async def select_one(
        self,
        table: str,
        *,
        filters: Mapping[str, str],
        columns: str = "*",
        authenticated: bool = True,
        error_message: str | None = None,
    ) -> dict[str, Any] | None:
        rows = await self.select(
            table,
            filters=filters,
            columns=columns,
            limit=1,
            authenticated=authenticated,
            error_message=error_message,
        )
        return rows[0] if rows else None

    async def insert(
        self,
        table: str,
        values: Mapping[str, Any] | list[Mapping[str, Any]],
        *,
        returning: bool = True,
        error_message: str | None = None,
    ) -> list[dict[str, Any]]:
        response = await self.request(
            "POST",
            table,
            json=values,
            headers={"Prefer": "return=representation" if returning else "return=minimal"},
            error_message=error_message,
        )
        return self._rows(response) if returning else []

    async def update(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        filters: Mapping[str, str],
        returning: bool = True,
        error_message: str | None = None,
    ) -> list[dict[str, Any]]:
        response = await self.request(
            "PATCH",
            table,
            params=filters,
            json=values,
            headers={"Prefer": "return=representation" if returning else "return=minimal"},
            error_message=error_message,
        )
        return self._rows(response) if returning else []

    async def delete(
        self,
        table: str,
        *,
        filters: Mapping[str, str],
        error_message: str | None = None,
    ) -> None:
        await self.request("DELETE", table, params=filters, error_message=error_message)

    async def count(
        self,
        table: str,
        *,
        filters: Mapping[str, str] | None = None,
        error_message: str | None = None,
    ) -> int:
        params: dict[str, Any] = dict(filters or {})
        params["select"] = "id"
        response = await self.request(
            "GET",
            table,
            params=params,
            headers={"Range": "0-0", "Prefer": "count=exact"},
            error_message=error_message,
        )
        content_range = response.headers.get("Content-Range", "")
        _, _, total = content_range.partition("/")
        if total and total != "*":
            return int(total)
        return 0
