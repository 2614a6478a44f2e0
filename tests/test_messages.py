import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from coachess.core.errors import RequestFailed
from coachess.schemas.message import Message
from coachess.services.messages import MessageThread
from tests.conftest import build_settings, connect_pair
from tests.realtime_server import wait_until

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _record(ident: str, minutes: int, connection_id: str = "conn-1") -> dict:
    return {
        "id": ident,
        "connection_id": connection_id,
        "sender_id": "user-1",
        "body": f"message {ident}",
        "created_at": (T0 + timedelta(minutes=minutes)).isoformat(),
    }


def test_thread_keeps_one_entry_per_id():
    thread = MessageThread("conn-1")

    assert thread.add(_record("a", 1)) is True
    assert thread.add(Message.model_validate(_record("a", 1))) is False
    assert thread.add(_record("b", 0)) is True
    assert thread.add(_record("b", 0)) is False
    assert thread.add(_record("c", 5, connection_id="conn-2")) is False

    assert [m.id for m in thread.messages] == ["b", "a"]
    assert len(thread) == 2
    assert thread.latest.id == "a"


@pytest.mark.asyncio
async def test_send_and_read_history(make_client):
    coach, player = make_client(), make_client()
    connection = await connect_pair(coach, player)

    first = await coach.messages.send_message(connection.id, "  Welcome!  ")
    second = await player.messages.send_message(connection.id, "Thanks coach")

    assert first.body == "Welcome!"
    assert first.sender_id == coach.sessions.user_id
    history = await player.messages.get_messages(connection.id)
    assert [m.id for m in history] == [first.id, second.id]

    since = await coach.messages.get_messages_since(connection.id, second.created_at)
    assert [m.id for m in since] == [second.id]

    assert await coach.messages.get_unread_count(connection.id) == 1
    assert await player.messages.get_unread_count(connection.id) == 1


@pytest.mark.asyncio
async def test_backfill_recovers_message_with_same_timestamp(make_client, backend):
    coach, player = make_client(), make_client()
    connection = await connect_pair(coach, player)
    first = await coach.messages.send_message(connection.id, "Opening drill")
    twin = dict(backend.rows("messages")[0], id="same-instant", body="Endgame drill")
    backend.rows("messages").append(twin)
    thread = MessageThread(connection.id, [first])

    missed = await player.messages.get_messages_since(connection.id, thread.latest.created_at)
    added = sum(thread.add(message) for message in missed)

    assert added == 1
    assert {m.id for m in thread.messages} == {first.id, "same-instant"}


@pytest.mark.asyncio
async def test_empty_message_is_rejected(make_client, backend):
    coach, player = make_client(), make_client()
    connection = await connect_pair(coach, player)

    with pytest.raises(ValueError, match="cannot be empty"):
        await coach.messages.send_message(connection.id, "   ")
    assert backend.rows("messages") == []


@pytest.mark.asyncio
async def test_only_the_sender_can_delete(make_client):
    coach, player = make_client(), make_client()
    connection = await connect_pair(coach, player)
    sent = await coach.messages.send_message(connection.id, "Oops")

    with pytest.raises(RequestFailed) as excinfo:
        await player.messages.delete_message(sent.id)
    assert excinfo.value.status_code == 403

    await coach.messages.delete_message(sent.id)
    assert await coach.messages.get_messages(connection.id) == []


@pytest.mark.asyncio
async def test_thread_merges_own_sends_with_realtime_echo(make_client, realtime_server):
    client_settings = build_settings(f"http://127.0.0.1:{realtime_server.port}")
    coach = make_client(client_settings=client_settings)
    player = make_client(client_settings=client_settings)
    connection = await connect_pair(coach, player)
    earlier = await player.messages.send_message(connection.id, "Ready when you are")

    thread = await coach.messages.open_thread(connection.id)
    await thread.channel.wait_joined(timeout=3)
    assert [m.id for m in thread.messages] == [earlier.id]
    assert realtime_server.paths[0].startswith("/realtime/v1/websocket?apikey=")

    sent = await coach.messages.send_message(connection.id, "Let's start")
    thread.add(sent)
    await realtime_server.broadcast(thread.channel.topic, sent.model_dump(mode="json"))
    await realtime_server.broadcast(thread.channel.topic, sent.model_dump(mode="json"))
    await wait_until(lambda: thread.channel.last_record is not None)

    assert [m.id for m in thread.messages] == [earlier.id, sent.id]
    await thread.close()


@pytest.mark.asyncio
async def test_thread_backfills_messages_missed_while_disconnected(make_client, realtime_server):
    client_settings = build_settings(f"http://127.0.0.1:{realtime_server.port}")
    coach = make_client(client_settings=client_settings)
    player = make_client(client_settings=client_settings)
    connection = await connect_pair(coach, player)

    thread = await coach.messages.open_thread(connection.id)
    await thread.channel.wait_joined(timeout=3)
    assert len(thread) == 0

    missed = await player.messages.send_message(connection.id, "Did you see my game?")
    await realtime_server.drop_connections()
    await wait_until(lambda: thread.channel.join_count == 2)
    await wait_until(lambda: len(thread) == 1)

    assert thread.latest.id == missed.id
    await thread.close()
    assert thread.channel is None


@pytest.mark.asyncio
async def test_subscribe_delivers_typed_messages(make_client, realtime_server):
    client_settings = build_settings(f"http://127.0.0.1:{realtime_server.port}")
    coach = make_client(client_settings=client_settings)
    received: list[Message] = []
    delivered = asyncio.Event()

    async def on_message(message: Message):
        received.append(message)
        delivered.set()

    channel = await coach.messages.subscribe("conn-1", on_message)
    await channel.wait_joined(timeout=3)
    await realtime_server.broadcast(channel.topic, {"id": "broken"})
    await realtime_server.broadcast(channel.topic, _record("m1", 0))
    await asyncio.wait_for(delivered.wait(), timeout=3)

    assert [m.id for m in received] == ["m1"]
    assert isinstance(received[0].created_at, datetime)
    await channel.unsubscribe()
