from typing import Any

from pydantic import BaseModel, Field


class Frame(BaseModel):
    """Application-level realtime message (Phoenix channel envelope)."""

    topic: str
    event: str
    payload: dict[str, Any] = Field(default_factory=dict)
    ref: str | None = None
