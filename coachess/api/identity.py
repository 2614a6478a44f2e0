"""Calls against the hosted identity endpoint (``/auth/v1``)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from coachess.api.responses import error_fields, extract_error_message, parse_json_body
from coachess.core.config import Settings
from coachess.core.errors import AuthError, RateLimited
from coachess.core.security import now_timestamp, token_expires_at
from coachess.schemas.auth import AuthSession, AuthUser

logger = logging.getLogger(__name__)

AUTH_ERROR_KEYS = ("error_description", "msg", "error", "message")
# error_code values the identity service uses for throttling
RATE_LIMIT_CODES = {
    "over_request_rate_limit",
    "over_email_send_rate_limit",
    "over_sms_send_rate_limit",
}


def session_from_payload(data: dict[str, Any]) -> AuthSession | None:
    """Build a session from a token response, ``None`` when no token was issued."""
    access_token = data.get("access_token")
    if not access_token:
        return None
    expires_at = data.get("expires_at")
    if expires_at is None and data.get("expires_in") is not None:
        expires_at = now_timestamp() + int(data["expires_in"])
    if expires_at is None:
        expires_at = token_expires_at(access_token)
    return AuthSession(
        access_token=access_token,
        refresh_token=data.get("refresh_token"),
        expires_at=expires_at,
        user=AuthUser.model_validate(data["user"]),
    )


class IdentityClient:
    def __init__(self, settings: Settings, http: httpx.AsyncClient):
        self.settings = settings
        self.http = http
        self.base_url = f"{settings.supabase_url.rstrip('/')}/auth/v1"

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.settings.supabase_anon_key,
            "Content-Type": "application/json",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        response = await self.http.request(
            method,
            f"{self.base_url}{path}",
            json=json,
            params=params,
            headers=self._headers(access_token),
            timeout=self.settings.request_timeout_seconds,
        )
        if response.is_success:
            try:
                body = parse_json_body(response)
            except ValueError as exc:
                raise AuthError(
                    "Identity service returned a malformed response",
                    status_code=response.status_code,
                ) from exc
            return body if isinstance(body, dict) else {}

        fields = error_fields(response)
        code = fields.get("error_code") or fields.get("error")
        message = extract_error_message(
            fields, AUTH_ERROR_KEYS, f"Request failed with status {response.status_code}"
        )
        logger.error(
            f"Identity API error: {method} {path} -> {response.status_code} ({code}): {message}"
        )
        if response.status_code == 429 or code in RATE_LIMIT_CODES:
            raise RateLimited(message, status_code=response.status_code, code=code)
        raise AuthError(message, status_code=response.status_code, code=code)

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any]
    ) -> tuple[AuthUser, AuthSession | None]:
        data = await self._request(
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": metadata},
        )
        session = session_from_payload(data)
        if session is not None:
            return session.user, session
        # With email confirmation enabled the user object is returned bare
        user_data = data.get("user") or data
        if not user_data.get("id"):
            raise AuthError("Failed to create user")
        return AuthUser.model_validate(user_data), None

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        data = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = session_from_payload(data)
        if session is None:
            raise AuthError("Identity service did not return a session")
        return session

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        data = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        session = session_from_payload(data)
        if session is None:
            raise AuthError("Identity service did not return a session")
        return session

    async def update_user(self, access_token: str, attributes: dict[str, Any]) -> AuthUser:
        data = await self._request(
            "PUT", "/user", json=attributes, access_token=access_token
        )
        return AuthUser.model_validate(data)

    async def recover(self, email: str, redirect_to: str | None = None) -> None:
        payload: dict[str, Any] = {"email": email}
        if redirect_to:
            payload["redirect_to"] = redirect_to
        await self._request("POST", "/recover", json=payload)

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/logout", access_token=access_token)
