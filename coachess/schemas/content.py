from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ContentType(str, Enum):
    LESSON = "lesson"
    PUZZLE = "puzzle"


class ContentBase(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    type: ContentType
    pgn: str | None = None
    fen: str | None = None
    metadata: dict[str, Any] | None = None


class ContentCreate(ContentBase):
    pass


class ContentUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    type: ContentType | None = None
    pgn: str | None = None
    fen: str | None = None
    metadata: dict[str, Any] | None = None


class Content(ContentBase):
    model_config = ConfigDict(extra="ignore")

    id: str
    creator_id: str
    created_at: datetime | None = None


class ContentSummary(BaseModel):
    """Content shape embedded in assignment listings."""

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    type: ContentType
    pgn: str | None = None
    fen: str | None = None
