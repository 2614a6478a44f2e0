from __future__ import annotations

import logging

from coachess.api.client import ResourceClient, eq, ilike
from coachess.board.validation import prepare_content
from coachess.schemas.content import Content, ContentCreate, ContentType, ContentUpdate
from coachess.services.session import SessionManager

logger = logging.getLogger(__name__)


class ContentService:
    def __init__(self, sessions: SessionManager, resources: ResourceClient):
        self.sessions = sessions
        self.resources = resources

    async def create_content(self, payload: ContentCreate) -> Content:
        session = await self.sessions.require_session()
        data = payload.model_dump(mode="json", exclude_none=True)
        data.update(prepare_content(payload.type, payload.pgn, payload.fen))
        data["creator_id"] = session.user.id
        rows = await self.resources.insert(
            "content", data, error_message="Failed to create content"
        )
        content = Content.model_validate(rows[0])
        logger.info(f"Created {content.type.value} {content.id} for coach {session.user.id}")
        return content

    async def get_my_content(self) -> list[Content]:
        session = await self.sessions.require_session()
        rows = await self.resources.select(
            "content",
            filters={"creator_id": eq(session.user.id)},
            order="created_at.desc",
            error_message="Failed to fetch content",
        )
        logger.debug(f"Fetched {len(rows)} content items for {session.user.id}")
        return [Content.model_validate(row) for row in rows]

    async def get_content_by_id(self, content_id: str) -> Content | None:
        row = await self.resources.select_one(
            "content",
            filters={"id": eq(content_id)},
            error_message="Failed to fetch content",
        )
        return Content.model_validate(row) if row else None

    async def update_content(self, content_id: str, payload: ContentUpdate) -> Content:
        data = payload.model_dump(mode="json", exclude_unset=True)
        if {"type", "pgn", "fen"} & data.keys():
            # Revalidate the chess payload against the resulting type
            current = await self.get_content_by_id(content_id)
            if current is None:
                raise ValueError(f"Content {content_id} not found")
            content_type = payload.type or current.type
            pgn = data["pgn"] if "pgn" in data else current.pgn
            fen = data["fen"] if "fen" in data else current.fen
            data.update(prepare_content(content_type, pgn, fen))
        rows = await self.resources.update(
            "content",
            data,
            filters={"id": eq(content_id)},
            error_message="Failed to update content",
        )
        if not rows:
            raise ValueError(f"Content {content_id} not found")
        return Content.model_validate(rows[0])

    async def delete_content(self, content_id: str) -> None:
        await self.resources.delete(
            "content",
            filters={"id": eq(content_id)},
            error_message="Failed to delete content",
        )
        logger.info(f"Deleted content {content_id}")

    async def search_content(self, query: str) -> list[Content]:
        rows = await self.resources.select(
            "content",
            filters={"title": ilike(f"*{query.strip()}*")},
            order="created_at.desc",
            error_message="Failed to search content",
        )
        return [Content.model_validate(row) for row in rows]

    async def get_content_by_type(self, content_type: ContentType) -> list[Content]:
        rows = await self.resources.select(
            "content",
            filters={"type": eq(content_type.value)},
            order="created_at.desc",
            error_message="Failed to fetch content",
        )
        return [Content.model_validate(row) for row in rows]
