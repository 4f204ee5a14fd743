import asyncio

import pytest

from classtrack.realtime.channel import RealtimeChannel
from classtrack.realtime.events import Event, EventType
from tests.helpers import FakeWebSocket, eventually, text_frame


@pytest.fixture()
def channel():
    return RealtimeChannel(sweep_interval=60, send_timeout=0.05)


@pytest.mark.anyio
async def test_accept_sends_welcome(channel):
    ws = FakeWebSocket()
    conn = await channel.accept(ws)
    await conn.flush()

    assert ws.accepted
    assert conn.is_open
    assert channel.connection_count == 1
    assert ws.sent_types() == ["welcome"]


@pytest.mark.anyio
async def test_accept_without_greeting():
    channel = RealtimeChannel(greeting=False)
    ws = FakeWebSocket()
    conn = await channel.accept(ws)
    await conn.flush()
    assert ws.sent == []


@pytest.mark.anyio
async def test_ping_gets_pong(channel):
    ws = FakeWebSocket()
    conn = await channel.accept(ws)

    await channel.handle_message(conn, '{"type": "ping"}')
    await conn.flush()
    assert ws.sent[-1] == {"type": "pong"}


@pytest.mark.anyio
async def test_join_registers_every_tab(channel):
    first, second = FakeWebSocket(), FakeWebSocket()
    conn1 = await channel.accept(first)
    conn2 = await channel.accept(second)

    await channel.handle_message(conn1, '{"type": "join", "payload": {"userId": 7}}')
    await channel.handle_message(conn2, '{"type": "join", "payload": {"user_id": 7}}')
    await channel.flush()

    assert channel.connections_for(7) == {conn1, conn2}
    assert first.sent[-1] == {
        "type": "joinConfirmed",
        "payload": {"userId": 7, "message": "Successfully joined realtime channel"},
    }


@pytest.mark.anyio
async def test_rejoin_as_another_user_moves_the_connection(channel):
    conn = await channel.accept(FakeWebSocket())
    await channel.handle_message(conn, '{"type": "join", "payload": {"userId": 1}}')
    await channel.handle_message(conn, '{"type": "join", "payload": {"userId": 2}}')

    assert channel.registered_users() == {2}


@pytest.mark.anyio
@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"type": "join"}',
        '{"type": "join", "payload": {"userId": "7"}}',
        '{"type": "join", "payload": {"userId": true}}',
        '{"type": "dance"}',
    ],
)
async def test_bad_frames_are_ignored(channel, raw):
    ws = FakeWebSocket()
    conn = await channel.accept(ws)

    await channel.handle_message(conn, raw)
    await conn.flush()

    assert ws.sent_types() == ["welcome"]
    assert channel.registered_users() == set()
    assert conn.is_open


@pytest.mark.anyio
async def test_broadcast_reaches_every_open_connection(channel):
    sockets = [FakeWebSocket() for _ in range(3)]
    for ws in sockets:
        await channel.accept(ws)

    queued = channel.broadcast(Event(EventType.REQUEST_CLOSED, {"id": 5}))
    await channel.flush()

    assert queued == 3
    for ws in sockets:
        assert ws.sent[-1] == {"type": "participationRequestDeactivated", "payload": {"id": 5}}


@pytest.mark.anyio
async def test_failing_connection_is_dropped_without_affecting_others(channel):
    healthy = FakeWebSocket()
    broken = FakeWebSocket()
    broken_conn = await channel.accept(broken)
    await channel.accept(healthy)
    await channel.flush()
    broken.fail_sends = True

    channel.broadcast(Event(EventType.RECORDS_DELETED, {"count": 0}))
    await channel.flush()

    assert healthy.sent_types()[-1] == "participationRecordsDeleted"
    assert not broken_conn.is_open
    assert channel.broadcast(Event(EventType.RECORDS_DELETED, {"count": 0})) == 1

    assert await channel.sweep() == 1
    assert channel.connection_count == 1


@pytest.mark.anyio
async def test_publish_does_not_wait_for_a_stuck_socket(channel):
    stuck, healthy = FakeWebSocket(hang_sends=True), FakeWebSocket()
    stuck_conn = await channel.accept(stuck)
    healthy_conn = await channel.accept(healthy)

    # returns at once even though the stuck writer is still blocked on the welcome
    await asyncio.wait_for(
        channel.publish(Event(EventType.REQUEST_OPENED, {"id": 1})), timeout=0.01
    )
    await asyncio.wait_for(healthy_conn.flush(), timeout=0.01)
    assert healthy.sent_types() == ["welcome", "participationRequest"]

    # the stuck connection is given up on after the send timeout
    await eventually(lambda: not stuck_conn.is_open)
    assert stuck.sent == []
    assert await channel.sweep() == 1
    assert channel.connection_count == 1


@pytest.mark.anyio
async def test_overflowing_outbox_drops_the_connection():
    channel = RealtimeChannel(send_timeout=60, outbox_limit=2, greeting=False)
    slow = FakeWebSocket(hang_sends=True)
    conn = await channel.accept(slow)

    event = Event(EventType.RECORD_UPDATED, {"id": 1})
    # the first frame is taken by the writer, two more fill the outbox
    for _ in range(3):
        assert channel.broadcast(event) == 1
        await asyncio.sleep(0)
    assert channel.broadcast(event) == 0

    assert not conn.is_open
    assert conn.pending == 0
    await channel.stop()


@pytest.mark.anyio
async def test_publish_never_raises(channel, monkeypatch):
    def explode(event):
        raise RuntimeError("boom")

    monkeypatch.setattr(channel, "broadcast", explode)
    await channel.publish(Event(EventType.REQUEST_OPENED, {"id": 1}))


@pytest.mark.anyio
async def test_sweep_terminates_dead_connections(channel):
    alive, dead = FakeWebSocket(), FakeWebSocket()
    conn_alive = await channel.accept(alive)
    conn_dead = await channel.accept(dead)
    await channel.handle_message(conn_alive, '{"type": "join", "payload": {"userId": 1}}')
    await channel.handle_message(conn_dead, '{"type": "join", "payload": {"userId": 2}}')

    dead.drop()
    assert await channel.sweep() == 1

    assert channel.connection_count == 1
    assert dead.close_code == 1001
    assert channel.registered_users() == {1}
    assert channel.broadcast(Event(EventType.REQUEST_CLOSED, {"id": 1})) == 1


@pytest.mark.anyio
async def test_sweeper_runs_on_its_interval():
    channel = RealtimeChannel(sweep_interval=0.01)
    ws = FakeWebSocket()
    await channel.accept(ws)
    channel.start()
    try:
        ws.drop()
        await eventually(lambda: channel.connection_count == 0)
    finally:
        await channel.stop()


@pytest.mark.anyio
async def test_disconnect_cleans_registry(channel):
    conn1 = await channel.accept(FakeWebSocket())
    conn2 = await channel.accept(FakeWebSocket())
    for conn in (conn1, conn2):
        await channel.handle_message(conn, '{"type": "join", "payload": {"userId": 3}}')

    channel.disconnect(conn1)
    assert channel.connections_for(3) == {conn2}

    channel.disconnect(conn2)
    assert 3 not in channel.registered_users()
    assert channel.connection_count == 0


@pytest.mark.anyio
async def test_serve_runs_until_disconnect(channel):
    ws = FakeWebSocket(
        script=[
            text_frame({"type": "ping"}),
            text_frame({"type": "join", "payload": {"userId": 9}}),
            {"type": "websocket.receive", "bytes": b'{"type": "ping"}'},
        ]
    )

    await channel.serve(ws)

    assert ws.sent_types() == ["welcome", "pong", "joinConfirmed", "pong"]
    assert channel.connection_count == 0
    assert channel.registered_users() == set()


@pytest.mark.anyio
async def test_stop_closes_everything(channel):
    sockets = [FakeWebSocket() for _ in range(2)]
    for ws in sockets:
        await channel.accept(ws)
    channel.start()

    await channel.stop()

    assert channel.connection_count == 0
    assert all(ws.close_code == 1001 for ws in sockets)


@pytest.mark.anyio
async def test_frames_keep_their_order_per_connection(channel):
    ws = FakeWebSocket()
    conn = await channel.accept(ws)

    await channel.handle_message(conn, '{"type": "ping"}')
    channel.broadcast(Event(EventType.REQUEST_OPENED, {"id": 1}))
    channel.broadcast(Event(EventType.REQUEST_CLOSED, {"id": 1}))
    await conn.flush()

    assert ws.sent_types() == [
        "welcome",
        "pong",
        "participationRequest",
        "participationRequestDeactivated",
    ]
