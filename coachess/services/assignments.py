from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Iterable, TypeVar

from coachess.api.client import ResourceClient, eq
from coachess.core.errors import AssignmentError
from coachess.schemas.assignment import (
    Assignment,
    AssignmentCreate,
    AssignmentStats,
    AssignmentStatus,
    AssignmentWithDetails,
)
from coachess.schemas.connection import ConnectionStatus
from coachess.services.session import SessionManager

logger = logging.getLogger(__name__)

WITH_DETAILS = "*,content(*),coach:users!coach_id(*),player:users!player_id(*)"
SECONDS_PER_DAY = 24 * 60 * 60

A = TypeVar("A", bound=Assignment)


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now(now: datetime | None) -> datetime:
    return _utc(now) if now is not None else datetime.now(timezone.utc)


def is_overdue(assignment: Assignment, now: datetime | None = None) -> bool:
    """Past its due date and still open. Classification only; status is untouched."""
    if assignment.status != AssignmentStatus.ASSIGNED or assignment.due_date is None:
        return False
    return _utc(assignment.due_date) < _now(now)


def days_until_due(assignment: Assignment, now: datetime | None = None) -> int | None:
    if assignment.due_date is None:
        return None
    remaining = (_utc(assignment.due_date) - _now(now)).total_seconds()
    return math.ceil(remaining / SECONDS_PER_DAY)


def sort_for_player(assignments: Iterable[A], now: datetime | None = None) -> list[A]:
    """Overdue first, then soonest due, undated last; newest assigned breaks ties."""
    current = _now(now)
    newest_first = sorted(
        assignments,
        key=lambda a: _utc(a.assigned_at).timestamp() if a.assigned_at else 0.0,
        reverse=True,
    )
    return sorted(
        newest_first,
        key=lambda a: (
            0 if is_overdue(a, current) else 1,
            0 if a.due_date else 1,
            _utc(a.due_date).timestamp() if a.due_date else 0.0,
        ),
    )


def assignment_stats(assignments: Iterable[Assignment], now: datetime | None = None) -> AssignmentStats:
    current = _now(now)
    stats = AssignmentStats()
    for assignment in assignments:
        stats.total += 1
        if assignment.status == AssignmentStatus.ASSIGNED:
            stats.assigned += 1
        elif assignment.status == AssignmentStatus.COMPLETED:
            stats.completed += 1
        elif assignment.status == AssignmentStatus.SKIPPED:
            stats.skipped += 1
        if is_overdue(assignment, current):
            stats.overdue += 1
    return stats


class AssignmentService:
    def __init__(self, sessions: SessionManager, resources: ResourceClient):
        self.sessions = sessions
        self.resources = resources

    async def create_assignment(self, payload: AssignmentCreate) -> Assignment:
        session = await self.sessions.require_session()
        coach_id = session.user.id

        content = await self.resources.select_one(
            "content", filters={"id": eq(payload.content_id)}, columns="id,creator_id"
        )
        if content is None:
            raise AssignmentError("Content not found")
        if content["creator_id"] != coach_id:
            raise AssignmentError("Only the coach who created this content can assign it")

        connected = await self.resources.select(
            "connections",
            filters={
                "coach_id": eq(coach_id),
                "player_id": eq(payload.player_id),
                "status": eq(ConnectionStatus.ACCEPTED.value),
            },
            columns="id",
        )
        if not connected:
            raise AssignmentError("You can only assign content to connected players")

        rows = await self.resources.insert(
            "assignments",
            {
                "content_id": payload.content_id,
                "coach_id": coach_id,
                "player_id": payload.player_id,
                "due_date": payload.due_date.isoformat() if payload.due_date else None,
                "status": AssignmentStatus.ASSIGNED.value,
            },
            error_message="Failed to create assignment",
        )
        assignment = Assignment.model_validate(rows[0])
        logger.info(f"Assigned content {payload.content_id} to {payload.player_id} ({assignment.id})")
        return assignment

    async def _list(self, filters: dict[str, str] | None = None) -> list[AssignmentWithDetails]:
        rows = await self.resources.select(
            "assignments",
            filters=filters,
            columns=WITH_DETAILS,
            order="assigned_at.desc",
            error_message="Failed to fetch assignments",
        )
        return [AssignmentWithDetails.model_validate(row) for row in rows]

    async def get_my_assignments(self) -> list[AssignmentWithDetails]:
        return await self._list()

    async def get_coach_assignments(self) -> list[AssignmentWithDetails]:
        session = await self.sessions.require_session()
        return await self._list({"coach_id": eq(session.user.id)})

    async def get_player_assignments(self) -> list[AssignmentWithDetails]:
        session = await self.sessions.require_session()
        return await self._list({"player_id": eq(session.user.id)})

    async def get_assignments_by_status(self, status: AssignmentStatus) -> list[AssignmentWithDetails]:
        return await self._list({"status": eq(status.value)})

    async def get_assignment_by_id(self, assignment_id: str) -> AssignmentWithDetails | None:
        row = await self.resources.select_one(
            "assignments",
            filters={"id": eq(assignment_id)},
            columns=WITH_DETAILS,
            error_message="Failed to fetch assignment",
        )
        return AssignmentWithDetails.model_validate(row) if row else None

    async def update_status(self, assignment_id: str, status: AssignmentStatus) -> Assignment:
        values: dict[str, str | None] = {"status": status.value}
        if status == AssignmentStatus.COMPLETED:
            values["completed_at"] = datetime.now(timezone.utc).isoformat()
        rows = await self.resources.update(
            "assignments",
            values,
            filters={"id": eq(assignment_id)},
            error_message="Failed to update assignment",
        )
        if not rows:
            raise AssignmentError("Assignment not found")
        return Assignment.model_validate(rows[0])

    async def mark_completed(self, assignment_id: str) -> Assignment:
        return await self.update_status(assignment_id, AssignmentStatus.COMPLETED)

    async def delete_assignment(self, assignment_id: str) -> None:
        await self.resources.delete(
            "assignments",
            filters={"id": eq(assignment_id)},
            error_message="Failed to delete assignment",
        )
        logger.info(f"Deleted assignment {assignment_id}")
