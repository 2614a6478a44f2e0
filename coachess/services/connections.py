from __future__ import annotations

import logging

from coachess.api.client import ResourceClient, eq
from coachess.core.config import Settings
from coachess.core.errors import InviteError, RequestFailed
from coachess.core.security import generate_invite_token
from coachess.schemas.connection import Connection, ConnectionStatus, ConnectionWithUsers
from coachess.services.session import SessionManager

logger = logging.getLogger(__name__)

WITH_USERS = "*,coach:users!coach_id(*),player:users!player_id(*)"
UNIQUE_VIOLATION = "23505"


def normalize_email(email: str) -> str:
    return email.strip().lower()


class ConnectionService:
    def __init__(self, settings: Settings, sessions: SessionManager, resources: ResourceClient):
        self.settings = settings
        self.sessions = sessions
        self.resources = resources

    def invite_url(self, connection: Connection) -> str:
        if not connection.invite_token:
            raise InviteError("Connection has no invite token")
        return f"{self.settings.site_url.rstrip('/')}/invite/{connection.invite_token}"

    async def create_invite(self, player_email: str) -> Connection:
        session = await self.sessions.require_session()
        email = normalize_email(player_email)
        if not email:
            raise InviteError("An email address is required")

        existing = await self.resources.select(
            "connections",
            filters={"coach_id": eq(session.user.id), "invited_email": eq(email)},
        )
        for row in existing:
            if row.get("status") == ConnectionStatus.ACCEPTED.value:
                raise InviteError("You are already connected to this player")
            if row.get("status") == ConnectionStatus.PENDING.value:
                raise InviteError(
                    "You already have a pending invite for this player. "
                    "Please share the existing invite link."
                )

        rows = await self.resources.insert(
            "connections",
            {
                "coach_id": session.user.id,
                "status": ConnectionStatus.PENDING.value,
                "invite_token": generate_invite_token(),
                "invited_email": email,
            },
            error_message="Failed to create invite",
        )
        connection = Connection.model_validate(rows[0])
        logger.info(f"Coach {session.user.id} invited {email} (connection {connection.id})")
        return connection

    async def get_connection_by_token(self, invite_token: str) -> ConnectionWithUsers | None:
        """Look up an invite; works before the invitee has signed in.

        Any failed lookup reads as "no such invite".
        """
        try:
            row = await self.resources.select_one(
                "connections",
                filters={"invite_token": eq(invite_token)},
                columns=WITH_USERS,
                authenticated=False,
            )
        except RequestFailed as exc:
            logger.warning(f"Invite lookup failed ({exc.status_code}); treating it as not found")
            return None
        return ConnectionWithUsers.model_validate(row) if row else None

    async def accept_invite(self, invite_token: str) -> Connection:
        session = await self.sessions.require_session()
        user_email = session.user.email
        if not user_email:
            raise InviteError("User email not found in session")

        row = await self.resources.select_one(
            "connections",
            filters={"invite_token": eq(invite_token)},
            error_message="Failed to fetch invite details",
        )
        if row is None:
            raise InviteError("Invite not found")
        connection = Connection.model_validate(row)

        if connection.invited_email and normalize_email(connection.invited_email) != normalize_email(user_email):
            raise InviteError(
                f"This invite was sent to {connection.invited_email}. "
                "Please login with that email address."
            )
        if connection.status != ConnectionStatus.PENDING:
            raise InviteError(f"This invite is no longer valid ({connection.status.value})")

        already = await self.resources.select(
            "connections",
            filters={
                "coach_id": eq(connection.coach_id),
                "player_id": eq(session.user.id),
                "status": eq(ConnectionStatus.ACCEPTED.value),
            },
            columns="id",
        )
        if already:
            raise InviteError("You are already connected to this coach")

        try:
            rows = await self.resources.update(
                "connections",
                {"player_id": session.user.id, "status": ConnectionStatus.ACCEPTED.value},
                filters={"invite_token": eq(invite_token)},
                error_message="Failed to accept invite",
            )
        except RequestFailed as exc:
            if exc.code == UNIQUE_VIOLATION or "unique_coach_player" in exc.message:
                raise InviteError("You are already connected to this coach") from exc
            raise
        if not rows:
            logger.error(f"Accepting invite {connection.id} updated no rows")
            raise InviteError("Failed to update connection; the server did not allow the change")
        logger.info(f"Player {session.user.id} accepted connection {connection.id}")
        return Connection.model_validate(rows[0])

    async def get_my_connections(self) -> list[ConnectionWithUsers]:
        rows = await self.resources.select(
            "connections",
            columns=WITH_USERS,
            order="created_at.desc",
            error_message="Failed to fetch connections",
        )
        return [ConnectionWithUsers.model_validate(row) for row in rows]

    async def _connections_for(self, column: str) -> list[ConnectionWithUsers]:
        session = await self.sessions.require_session()
        rows = await self.resources.select(
            "connections",
            filters={column: eq(session.user.id)},
            columns=WITH_USERS,
            order="created_at.desc",
            error_message="Failed to fetch connections",
        )
        return [ConnectionWithUsers.model_validate(row) for row in rows]

    async def get_coach_connections(self) -> list[ConnectionWithUsers]:
        return await self._connections_for("coach_id")

    async def get_player_connections(self) -> list[ConnectionWithUsers]:
        return await self._connections_for("player_id")

    async def get_connection(self, connection_id: str) -> Connection | None:
        row = await self.resources.select_one(
            "connections",
            filters={"id": eq(connection_id)},
            error_message="Failed to fetch connection",
        )
        return Connection.model_validate(row) if row else None

    async def revoke_connection(self, connection_id: str) -> None:
        await self.resources.update(
            "connections",
            {"status": ConnectionStatus.REVOKED.value},
            filters={"id": eq(connection_id)},
            returning=False,
            error_message="Failed to revoke connection",
        )
        logger.info(f"Revoked connection {connection_id}")

    async def delete_connection(self, connection_id: str) -> None:
        await self.resources.delete(
            "connections",
            filters={"id": eq(connection_id)},
            error_message="Failed to delete connection",
        )
        logger.info(f"Deleted connection {connection_id}")
