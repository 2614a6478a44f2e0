from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from coachess.schemas.content import ContentSummary
from coachess.schemas.user import UserSummary


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    SKIPPED = "skipped"


def _coerce_due_date(value: Any) -> Any:
    """Accept a bare date (the form input) as midnight UTC of that day."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str) and len(value) == 10:
        return datetime.combine(date.fromisoformat(value), time.min, tzinfo=timezone.utc)
    return value


class AssignmentCreate(BaseModel):
    content_id: str
    player_id: str
    due_date: datetime | None = None

    @field_validator("due_date", mode="before")
    @classmethod
    def normalize_due_date(cls, v: Any) -> Any:
        return _coerce_due_date(v)


class Assignment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    content_id: str
    coach_id: str
    player_id: str
    status: AssignmentStatus
    assigned_at: datetime | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None

    @field_validator("due_date", mode="before")
    @classmethod
    def normalize_due_date(cls, v: Any) -> Any:
        return _coerce_due_date(v)


class AssignmentWithDetails(Assignment):
    content: ContentSummary | None = None
    coach: UserSummary | None = None
    player: UserSummary | None = None


class AssignmentStats(BaseModel):
    total: int = 0
    assigned: int = 0
    completed: int = 0
    skipped: int = 0
    overdue: int = 0
