"""Seed a demo coach and player against a running backend.

Safe to re-run: existing accounts are signed in, and the connection,
content, assignments and greeting are only created when missing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from coachess.core.errors import AuthError, CoachessError
from coachess.db.local_storage import LocalStorage
from coachess.main import Coachess
from coachess.schemas.assignment import AssignmentCreate
from coachess.schemas.auth import AuthSession, SignInRequest, SignUpRequest
from coachess.schemas.connection import ConnectionStatus
from coachess.schemas.content import ContentCreate, ContentType
from coachess.schemas.user import UserRole

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "demo-password"
DEMO_COACH = ("coach@coachess.demo", "Demo Coach", UserRole.COACH)
DEMO_PLAYER = ("player@coachess.demo", "Demo Player", UserRole.PLAYER)
DEMO_CONTENT = [
    ContentCreate(
        title="Ruy Lopez: Morphy Defence",
        type=ContentType.LESSON,
        pgn="1. e4 e5 2. Nf3 Nc6 3. Bb5 a6",
    ),
    ContentCreate(
        title="Mate in one",
        type=ContentType.PUZZLE,
        fen="r1bqkb1r/pppp1ppp/2n2n2/4p2Q/2B1P3/8/PPPP1PPP/RNB1K1NR w KQkq - 4 4",
    ),
]
# Sign-in answers meaning "unknown email or wrong password"
INVALID_CREDENTIAL_CODES = {"invalid_credentials", "invalid_grant"}
GREETING = "Welcome aboard! Your first lesson and puzzle are waiting."


@dataclass
class SeedResult:
    coach_id: str
    player_id: str
    connection_id: str
    content_ids: list[str] = field(default_factory=list)
    assignment_ids: list[str] = field(default_factory=list)


async def ensure_account(
    client: Coachess, email: str, display_name: str, role: UserRole, password: str = DEMO_PASSWORD
) -> AuthSession:
    try:
        return await client.accounts.sign_in(SignInRequest(email=email, password=password))
    except AuthError as exc:
        if exc.status_code != 400 or exc.code not in INVALID_CREDENTIAL_CODES:
            raise
        logger.info(f"No demo account for {email} yet; signing up")
    session = await client.accounts.sign_up(
        SignUpRequest(email=email, password=password, display_name=display_name, role=role)
    )
    if session is None:
        raise CoachessError(f"Sign-up for {email} needs email confirmation; confirm it and re-run")
    return session


async def seed_demo_data(coach: Coachess, player: Coachess, password: str = DEMO_PASSWORD) -> SeedResult:
    coach_email, coach_name, coach_role = DEMO_COACH
    player_email, player_name, player_role = DEMO_PLAYER
    coach_session = await ensure_account(coach, coach_email, coach_name, coach_role, password)
    player_session = await ensure_account(player, player_email, player_name, player_role, password)
    coach_id = coach_session.user.id
    player_id = player_session.user.id

    connections = await coach.connections.get_coach_connections()
    connection = next(
        (c for c in connections if c.player_id == player_id and c.status == ConnectionStatus.ACCEPTED),
        None,
    )
    if connection is None:
        pending = next(
            (
                c
                for c in connections
                if c.status == ConnectionStatus.PENDING and c.invited_email == player_email
            ),
            None,
        )
        invite = pending or await coach.connections.create_invite(player_email)
        connection = await player.connections.accept_invite(invite.invite_token)
    result = SeedResult(coach_id=coach_id, player_id=player_id, connection_id=connection.id)

    existing_content = {c.title: c for c in await coach.content.get_my_content()}
    for item in DEMO_CONTENT:
        content = existing_content.get(item.title) or await coach.content.create_content(item)
        result.content_ids.append(content.id)

    assigned = {
        a.content_id: a
        for a in await coach.assignments.get_coach_assignments()
        if a.player_id == player_id
    }
    due = datetime.now(timezone.utc) + timedelta(days=7)
    for content_id in result.content_ids:
        assignment = assigned.get(content_id) or await coach.assignments.create_assignment(
            AssignmentCreate(content_id=content_id, player_id=player_id, due_date=due)
        )
        result.assignment_ids.append(assignment.id)

    if not await coach.messages.get_messages(connection.id):
        await coach.messages.send_message(connection.id, GREETING)

    logger.info(
        f"Seeded coach {coach_id} and player {player_id}: "
        f"{len(result.content_ids)} content items, {len(result.assignment_ids)} assignments"
    )
    return result


async def _run() -> SeedResult:
    async with Coachess(storage=LocalStorage("sqlite://")) as coach, Coachess(
        storage=LocalStorage("sqlite://")
    ) as player:
        return await seed_demo_data(coach, player)


def main():
    logging.basicConfig(level=logging.INFO)
    result = asyncio.run(_run())
    print(f"Demo data ready (connection {result.connection_id}).")


if __name__ == "__main__":
    main()
