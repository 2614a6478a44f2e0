from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator

from coachess.core.security import now_timestamp
from coachess.schemas.user import UserRole, validate_timezone


class AuthUser(BaseModel):
    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)


class AuthSession(BaseModel):
    """The persisted session record: one per signed-in client."""

    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = None
    user: AuthUser

    def is_expired(self, now: int | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now if now is not None else now_timestamp())

    def expires_within(self, seconds: int, now: int | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = now if now is not None else now_timestamp()
        return self.expires_at - current <= seconds


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    display_name: str
    role: UserRole
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        return validate_timezone(v)

    def metadata(self) -> dict[str, Any]:
        return {
            "display_name": self.display_name,
            "role": self.role.value,
            "timezone": self.timezone,
        }
