from __future__ import annotations

import logging

from coachess.api.client import ResourceClient, eq
from coachess.core.errors import NotAuthenticated, RequestFailed
from coachess.schemas.auth import AuthSession, SignInRequest, SignUpRequest
from coachess.schemas.user import UserProfile, UserUpdate
from coachess.services.session import SessionManager

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, sessions: SessionManager, resources: ResourceClient):
        self.sessions = sessions
        self.resources = resources

    async def sign_up(self, payload: SignUpRequest) -> AuthSession | None:
        """Create the identity and the matching ``users`` profile row."""
        session = await self.sessions.register(
            payload.email, payload.password, payload.metadata()
        )
        if session is None:
            return None
        await self.resources.insert(
            "users",
            {
                "id": session.user.id,
                "email": payload.email,
                "display_name": payload.display_name,
                "role": payload.role.value,
                "timezone": payload.timezone,
            },
            returning=False,
            error_message="Failed to create profile",
        )
        logger.info(f"Profile created for user {session.user.id}")
        return session

    async def sign_in(self, payload: SignInRequest) -> AuthSession:
        return await self.sessions.sign_in(payload)

    async def sign_out(self) -> None:
        await self.sessions.sign_out()

    async def get_user(self, user_id: str) -> UserProfile | None:
        row = await self.resources.select_one("users", filters={"id": eq(user_id)})
        return UserProfile.model_validate(row) if row else None

    async def get_current_user(self) -> UserProfile | None:
        try:
            session = await self.sessions.require_session()
        except NotAuthenticated:
            return None
        return await self.get_user(session.user.id)

    async def update_profile(self, user_id: str, updates: UserUpdate) -> UserProfile:
        data = updates.model_dump(exclude_unset=True, mode="json")
        rows = await self.resources.update(
            "users",
            data,
            filters={"id": eq(user_id)},
            error_message="Failed to update profile",
        )
        if not rows:
            raise RequestFailed("Profile not found or update not permitted", status_code=404)
        return UserProfile.model_validate(rows[0])
