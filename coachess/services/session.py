"""The session store: who is signed in, persisted under one local storage key.

One ``SessionManager`` is built at startup and handed to every component that
signs requests. It keeps an in-memory copy in step with storage; ``reload``
picks up a session written by another process sharing the same storage.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from pydantic import ValidationError

from coachess.api.identity import IdentityClient
from coachess.core.config import Settings
from coachess.core.errors import AuthError, CoachessError, NotAuthenticated, RateLimited
from coachess.db.local_storage import LocalStorage
from coachess.schemas.auth import AuthSession, SignInRequest

logger = logging.getLogger(__name__)

# Identity answers that mean the refresh token itself is no good
REFRESH_REJECTED_STATUSES = {400, 401, 403}


class SessionManager:
    def __init__(self, settings: Settings, identity: IdentityClient, storage: LocalStorage):
        self.settings = settings
        self.identity = identity
        self.storage = storage
        self.storage_key = settings.session_storage_key
        self._session: AuthSession | None = None
        self._refresh_lock = asyncio.Lock()
        self.reload()

    def reload(self) -> AuthSession | None:
        raw = self.storage.get_item(self.storage_key)
        if raw is None:
            self._session = None
            return None
        try:
            self._session = AuthSession.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            logger.warning("Discarding unreadable stored session")
            self._clear()
        return self._session

    def _persist(self, session: AuthSession) -> AuthSession:
        self.storage.set_item(self.storage_key, session.model_dump_json())
        self._session = session
        return session

    def _clear(self) -> None:
        self.storage.remove_item(self.storage_key)
        self._session = None

    def get_session(self) -> AuthSession | None:
        session = self._session
        if session is None:
            return None
        if session.is_expired():
            logger.info(f"Session for user {session.user.id} expired; clearing it")
            self._clear()
            return None
        return session

    @property
    def user_id(self) -> str | None:
        session = self.get_session()
        return session.user.id if session else None

    async def sign_in(self, credentials: SignInRequest) -> AuthSession:
        logger.debug(f"Signing in {credentials.email}")
        session = await self.identity.sign_in_with_password(
            credentials.email, credentials.password
        )
        logger.info(f"Signed in user {session.user.id}")
        return self._persist(session)

    async def register(
        self, email: str, password: str, metadata: dict[str, Any]
    ) -> AuthSession | None:
        user, session = await self.identity.sign_up(email, password, metadata)
        logger.info(f"Registered user {user.id}")
        if session is None:
            logger.info(f"No session issued for {user.id}; email confirmation pending")
            return None
        return self._persist(session)

    async def sign_out(self) -> None:
        session = self._session
        if session is not None:
            try:
                await self.identity.sign_out(session.access_token)
            except CoachessError as exc:
                logger.warning(f"Server sign-out failed, clearing local session anyway: {exc}")
        self._clear()

    async def refresh(self, failed_access_token: str | None = None) -> AuthSession:
        """Exchange the refresh token for a new session.

        ``failed_access_token`` is the token a caller saw rejected; when the
        current session already carries a different one, it was replaced
        after that request went out and is returned as is.

        Only a 400/401/403 answer signs the user out locally. Throttling,
        server errors and malformed answers leave the stored session alone.
        """
        async with self._refresh_lock:
            current = self._session
            if (
                failed_access_token is not None
                and current is not None
                and current.access_token != failed_access_token
            ):
                return current
            if current is None or not current.refresh_token:
                self._clear()
                raise NotAuthenticated()
            try:
                session = await self.identity.refresh_session(current.refresh_token)
            except RateLimited:
                logger.warning(f"Refresh throttled for user {current.user.id}; keeping session")
                raise
            except AuthError as exc:
                if exc.status_code not in REFRESH_REJECTED_STATUSES:
                    logger.warning(
                        f"Refresh failed for user {current.user.id} ({exc.status_code}); keeping session"
                    )
                    raise
                logger.warning(f"Refresh rejected for user {current.user.id}; signing out locally")
                self._clear()
                raise
            logger.info(f"Refreshed session for user {session.user.id}")
            return self._persist(session)

    async def require_session(self) -> AuthSession:
        session = self._session
        if (
            session is not None
            and session.refresh_token
            and session.expires_within(self.settings.session_refresh_margin_seconds)
        ):
            try:
                return await self.refresh(session.access_token)
            except RateLimited:
                raise
            except AuthError as exc:
                if self._session is None:
                    raise NotAuthenticated("Session expired; please sign in again") from exc
                # Transient failure: the current token serves until it expires
        session = self.get_session()
        if session is None:
            raise NotAuthenticated()
        return session

    async def update_password(self, new_password: str) -> None:
        session = await self.require_session()
        await self.identity.update_user(session.access_token, {"password": new_password})
        logger.info(f"Password updated for user {session.user.id}")

    async def request_password_reset(self, email: str, redirect_to: str | None = None) -> None:
        if redirect_to is None:
            redirect_to = f"{self.settings.site_url.rstrip('/')}/auth/reset-password"
        await self.identity.recover(email, redirect_to)
