from __future__ import annotations

import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from coachess.api.client import ResourceClient, eq, gte, neq
from coachess.core.config import Settings
from coachess.core.errors import RequestFailed
from coachess.realtime import RealtimeChannel, table_topic
from coachess.schemas.message import Message
from coachess.services.session import SessionManager

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Message], Awaitable[None] | None]


class MessageThread:
    """Messages of one connection, one entry per id, oldest first.

    Both the sender's own append and the realtime echo of the same row go
    through ``add``; the second arrival replaces the first.
    """

    def __init__(self, connection_id: str, messages: list[Message] | None = None):
        self.connection_id = connection_id
        self._by_id: dict[str, Message] = {}
        self.channel: RealtimeChannel | None = None
        for message in messages or []:
            self.add(message)

    def add(self, record: Message | dict[str, Any]) -> bool:
        """Store a message; returns False when its id was already present."""
        message = record if isinstance(record, Message) else Message.model_validate(record)
        if message.connection_id != self.connection_id:
            logger.debug(f"Ignoring message {message.id} for another connection")
            return False
        is_new = message.id not in self._by_id
        self._by_id[message.id] = message
        return is_new

    @property
    def messages(self) -> list[Message]:
        return sorted(self._by_id.values(), key=lambda m: (m.created_at, m.id))

    @property
    def latest(self) -> Message | None:
        messages = self.messages
        return messages[-1] if messages else None

    def __len__(self) -> int:
        return len(self._by_id)

    async def close(self) -> None:
        if self.channel is not None:
            await self.channel.unsubscribe()
            self.channel = None


class MessageService:
    def __init__(self, settings: Settings, sessions: SessionManager, resources: ResourceClient):
        self.settings = settings
        self.sessions = sessions
        self.resources = resources

    async def send_message(self, connection_id: str, body: str) -> Message:
        text = body.strip()
        if not text:
            raise ValueError("Message body cannot be empty")
        session = await self.sessions.require_session()
        rows = await self.resources.insert(
            "messages",
            {"connection_id": connection_id, "sender_id": session.user.id, "body": text},
            error_message="Failed to send message",
        )
        return Message.model_validate(rows[0])

    async def get_messages(self, connection_id: str) -> list[Message]:
        rows = await self.resources.select(
            "messages",
            filters={"connection_id": eq(connection_id)},
            order="created_at.asc",
            error_message="Failed to fetch messages",
        )
        return [Message.model_validate(row) for row in rows]

    async def get_messages_since(self, connection_id: str, since: datetime) -> list[Message]:
        """Messages created at or after ``since``; rows sharing that instant are included."""
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        # "Z" rather than "+00:00": a literal plus in a query string reads as a space
        stamp = since.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        rows = await self.resources.select(
            "messages",
            filters={"connection_id": eq(connection_id), "created_at": gte(stamp)},
            order="created_at.asc",
            error_message="Failed to fetch messages",
        )
        return [Message.model_validate(row) for row in rows]

    async def get_unread_count(self, connection_id: str) -> int:
        """Messages in the thread written by the other party."""
        session = await self.sessions.require_session()
        return await self.resources.count(
            "messages",
            filters={"connection_id": eq(connection_id), "sender_id": neq(session.user.id)},
            error_message="Failed to count messages",
        )

    async def delete_message(self, message_id: str) -> None:
        session = await self.sessions.require_session()
        row = await self.resources.select_one(
            "messages", filters={"id": eq(message_id)}, columns="id,sender_id"
        )
        if row is None:
            raise RequestFailed("Message not found", status_code=404)
        if row["sender_id"] != session.user.id:
            raise RequestFailed("You can only delete your own messages", status_code=403)
        await self.resources.delete(
            "messages",
            filters={"id": eq(message_id)},
            error_message="Failed to delete message",
        )

    async def subscribe(
        self,
        connection_id: str,
        on_message: MessageCallback,
        *,
        on_rejoin: Callable[[RealtimeChannel], Awaitable[None] | None] | None = None,
    ) -> RealtimeChannel:
        async def deliver(record: dict[str, Any]) -> None:
            try:
                message = Message.model_validate(record)
            except ValidationError:
                logger.warning(f"Dropping malformed message record on connection {connection_id}")
                return
            await _call(on_message, message)

        channel = RealtimeChannel.from_settings(
            self.settings,
            table_topic("messages", "connection_id", connection_id),
            deliver,
            on_rejoin=on_rejoin,
        )
        return await channel.subscribe()

    async def open_thread(self, connection_id: str) -> MessageThread:
        thread = MessageThread(connection_id, await self.get_messages(connection_id))

        async def backfill(channel: RealtimeChannel) -> None:
            latest = thread.latest
            if latest is None:
                missed = await self.get_messages(connection_id)
            else:
                missed = await self.get_messages_since(connection_id, latest.created_at)
            added = sum(thread.add(message) for message in missed)
            logger.info(f"Backfilled {added} messages on connection {connection_id}")

        thread.channel = await self.subscribe(connection_id, thread.add, on_rejoin=backfill)
        return thread


async def _call(callback: MessageCallback, message: Message) -> None:
    result = callback(message)
    if inspect.isawaitable(result):
        await result
