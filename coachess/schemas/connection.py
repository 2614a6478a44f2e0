from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

from coachess.schemas.user import UserSummary


class ConnectionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"


class Connection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    coach_id: str
    # Null until the invite is accepted
    player_id: str | None = None
    status: ConnectionStatus
    invite_token: str | None = None
    invited_email: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ConnectionWithUsers(Connection):
    coach: UserSummary | None = None
    player: UserSummary | None = None
