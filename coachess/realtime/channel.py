"""Realtime delivery of inserted rows over a Phoenix-protocol websocket.

A channel joins one topic, keeps the socket alive with heartbeats and hands
every ``INSERT`` record for that topic to a callback. A supervising task
reconnects with exponential backoff and re-joins after transport failures;
events broadcast while disconnected are not replayed by the server, so an
``on_rejoin`` hook lets the consumer backfill them.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from coachess.core.config import Settings
from coachess.core.errors import RealtimeTransportError
from coachess.schemas.realtime import Frame

logger = logging.getLogger(__name__)

InsertCallback = Callable[[dict[str, Any]], Awaitable[None] | None]
RejoinCallback = Callable[["RealtimeChannel"], Awaitable[None] | None]

HEARTBEAT_TOPIC = "phoenix"
TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class ChannelState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    JOINING = "joining"
    JOINED = "joined"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


def table_topic(table: str, column: str, value: Any) -> str:
    return f"realtime:public:{table}:{column}=eq.{value}"


async def _maybe_await(result: Awaitable[None] | None) -> None:
    if inspect.isawaitable(result):
        await result


class RealtimeChannel:
    def __init__(
        self,
        url: str,
        topic: str,
        on_insert: InsertCallback,
        *,
        heartbeat_interval: float = 30.0,
        reconnect: bool = True,
        reconnect_initial: float = 1.0,
        reconnect_max: float = 30.0,
        on_rejoin: RejoinCallback | None = None,
    ):
        self.url = url
        self.topic = topic
        self.on_insert = on_insert
        self.on_rejoin = on_rejoin
        self.heartbeat_interval = heartbeat_interval
        self.reconnect = reconnect
        self.reconnect_initial = reconnect_initial
        self.reconnect_max = reconnect_max

        self.state = ChannelState.IDLE
        self.joined = asyncio.Event()
        self.join_count = 0
        self.last_record: dict[str, Any] | None = None

        self._ref = 0
        self._join_ref: str | None = None
        self._socket: ClientConnection | None = None
        self._supervisor: asyncio.Task | None = None
        self._heartbeat: asyncio.Task | None = None
        self._closing = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        topic: str,
        on_insert: InsertCallback,
        *,
        on_rejoin: RejoinCallback | None = None,
    ) -> "RealtimeChannel":
        return cls(
            settings.realtime_url,
            topic,
            on_insert,
            heartbeat_interval=settings.realtime_heartbeat_seconds,
            reconnect_initial=settings.realtime_reconnect_initial_seconds,
            reconnect_max=settings.realtime_reconnect_max_seconds,
            on_rejoin=on_rejoin,
        )

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    async def _push(self, socket: ClientConnection, topic: str, event: str) -> str:
        ref = self._next_ref()
        frame = Frame(topic=topic, event=event, payload={}, ref=ref)
        await socket.send(frame.model_dump_json())
        return ref

    async def subscribe(self) -> "RealtimeChannel":
        if self._supervisor is not None and not self._supervisor.done():
            return self
        self._closing = False
        self._supervisor = asyncio.create_task(self._supervise())
        return self

    async def wait_joined(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self.joined.wait(), timeout)

    async def unsubscribe(self) -> None:
        self._closing = True
        await self._stop_heartbeat()
        socket = self._socket
        if socket is not None:
            with contextlib.suppress(*TRANSPORT_ERRORS):
                await self._push(socket, self.topic, "phx_leave")
                await socket.close()
        if self._supervisor is not None:
            self._supervisor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._supervisor
            self._supervisor = None
        self.joined.clear()
        self.state = ChannelState.CLOSED
        logger.debug(f"Unsubscribed from {self.topic}")

    async def _supervise(self) -> None:
        delay = self.reconnect_initial
        while not self._closing:
            joins_before = self.join_count
            try:
                await self._run_once()
                logger.info(f"Realtime socket closed by server on {self.topic}")
            except TRANSPORT_ERRORS as exc:
                error = RealtimeTransportError(f"Realtime transport failure on {self.topic}: {exc!r}")
                logger.warning(error.message)
            self.joined.clear()
            if self._closing:
                break
            if not self.reconnect:
                self.state = ChannelState.CLOSED
                break
            if self.join_count > joins_before:
                delay = self.reconnect_initial
            self.state = ChannelState.RECONNECTING
            logger.info(f"Reconnecting to {self.topic} in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.reconnect_max)

    async def _run_once(self) -> None:
        self.state = ChannelState.CONNECTING
        async with connect(self.url) as socket:
            self._socket = socket
            try:
                self.state = ChannelState.JOINING
                self._join_ref = await self._push(socket, self.topic, "phx_join")
                self._heartbeat = asyncio.create_task(self._heartbeat_loop(socket))
                async for raw in socket:
                    await self._handle(raw)
            finally:
                await self._stop_heartbeat()
                self._socket = None

    async def _heartbeat_loop(self, socket: ClientConnection) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self._push(socket, HEARTBEAT_TOPIC, "heartbeat")
            except ConnectionClosed:
                return

    async def _stop_heartbeat(self) -> None:
        if self._heartbeat is None:
            return
        self._heartbeat.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._heartbeat
        self._heartbeat = None

    async def _handle(self, raw: str | bytes) -> None:
        try:
            frame = Frame.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            logger.warning(f"Ignoring malformed realtime frame on {self.topic}")
            return

        if frame.event == "phx_reply" and self._join_ref is not None and frame.ref == self._join_ref:
            if frame.payload.get("status") != "ok":
                logger.error(f"Join rejected for {self.topic}: {frame.payload.get('response')}")
                return
            await self._mark_joined()
        elif frame.event == "phx_error" and frame.topic == self.topic:
            logger.error(f"Realtime channel error on {self.topic}: {frame.payload}")
        elif frame.event == "INSERT" and frame.topic == self.topic:
            record = frame.payload.get("record")
            if not isinstance(record, dict):
                return
            # Events only flow once the server has accepted the join
            if self.state == ChannelState.JOINING:
                await self._mark_joined()
            self.last_record = record
            try:
                await _maybe_await(self.on_insert(record))
            except Exception:
                logger.exception(f"Insert callback failed on {self.topic}")

    async def _mark_joined(self) -> None:
        if self.state == ChannelState.JOINED:
            return
        self.join_count += 1
        self.state = ChannelState.JOINED
        self.joined.set()
        logger.info(f"Joined {self.topic} (join #{self.join_count})")
        if self.join_count > 1 and self.on_rejoin is not None:
            try:
                await _maybe_await(self.on_rejoin(self))
            except Exception:
                logger.exception(f"Rejoin hook failed on {self.topic}")
