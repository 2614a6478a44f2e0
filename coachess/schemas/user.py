from datetime import datetime
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, field_validator


class UserRole(str, Enum):
    COACH = "coach"
    PLAYER = "player"
    ADMIN = "admin"


def validate_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {value}") from exc
    return value


class UserSummary(BaseModel):
    """Embedded user shape returned alongside connections and assignments."""

    model_config = ConfigDict(extra="ignore")

    id: str
    email: str
    display_name: str | None = None


class UserProfile(UserSummary):
    role: UserRole
    timezone: str = "UTC"
    created_at: datetime | None = None


class UserUpdate(BaseModel):
    display_name: str | None = None
    timezone: str | None = None
    role: UserRole | None = None

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return validate_timezone(v)
