"""Realtime fan-out channel.

An in-memory, single-process notification bus. It tracks every websocket
accepted on the upgrade path, maps user ids to their live connections once
a client sends ``join``, answers heartbeats and broadcasts lifecycle events
to every open connection.

Every connection owns an outbox and a writer task. Broadcasting only queues
frames, so a slow or stuck client delays nobody but itself; a frame that is
not written within ``send_timeout``, or an outbox that overflows, drops the
connection and the next liveness sweep closes it.

The channel never reads or writes the ledger. Everything it sends is a hint
to refetch; clients poll as well, so a lost frame only delays an update.
"""

import asyncio
import itertools
import json
import logging
from enum import Enum
from typing import Optional

from starlette.websockets import WebSocket, WebSocketState

from classtrack.core.config import LIVENESS_SWEEP_SECONDS, OUTBOX_LIMIT, SEND_TIMEOUT_SECONDS
from classtrack.realtime.events import ClientMessageType, Event, EventType

logger = logging.getLogger(__name__)

# close codes that are not worth a log line
NORMAL_CLOSE_CODES = frozenset({1000, 1001, 1005})
GOING_AWAY = 1001


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ClientConnection:
    _ids = itertools.count(1)

    def __init__(
        self,
        websocket: WebSocket,
        send_timeout: float = SEND_TIMEOUT_SECONDS,
        outbox_limit: int = OUTBOX_LIMIT,
    ):
        self.id = next(self._ids)
        self.websocket = websocket
        self.user_id: Optional[int] = None
        self.state = ConnectionState.CONNECTING
        self.send_timeout = send_timeout

        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_limit)
        self._writer: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<ClientConnection {self.id} user={self.user_id} {self.state.value}>"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    @property
    def transport_open(self) -> bool:
        """Whether both sides of the underlying websocket are still connected."""
        return (
            self.is_open
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    @property
    def pending(self) -> int:
        return self._outbox.qsize()

    def start_writer(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())

    def enqueue(self, data: str) -> bool:
        """Queue a frame for this connection without waiting on the socket."""
        if not self.is_open:
            return False
        try:
            self._outbox.put_nowait(data)
        except asyncio.QueueFull:
            logger.warning("%r is not keeping up (%d frames queued), dropping it", self, self.pending)
            self._fail()
            return False
        return True

    async def flush(self) -> None:
        """Wait until every queued frame has been written or discarded."""
        if self._writer is not None and not self._writer.done():
            await self._outbox.join()

    async def _write_loop(self) -> None:
        while True:
            data = await self._outbox.get()
            try:
                await asyncio.wait_for(self.websocket.send_text(data), timeout=self.send_timeout)
            except asyncio.TimeoutError:
                logger.warning("send to %r timed out after %ss", self, self.send_timeout)
                self._outbox.task_done()
                self._fail()
                return
            except Exception as exc:
                logger.debug("send to %r failed: %s", self, exc)
                self._outbox.task_done()
                self._fail()
                return
            self._outbox.task_done()

    def _fail(self) -> None:
        # the liveness sweep closes and forgets connections that are not open
        if self.state is ConnectionState.OPEN:
            self.state = ConnectionState.CLOSING
        self._discard_pending()

    def _discard_pending(self) -> None:
        while True:
            try:
                self._outbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._outbox.task_done()

    def stop_writer(self) -> None:
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
        self._discard_pending()

    async def terminate(self, code: int = GOING_AWAY) -> None:
        self.stop_writer()
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING
        try:
            await asyncio.wait_for(self.websocket.close(code=code), timeout=self.send_timeout)
        except Exception as exc:  # socket already half-closed
            logger.debug("close on %r failed: %s", self, exc)
        self.state = ConnectionState.CLOSED


class RealtimeChannel:
    def __init__(
        self,
        sweep_interval: float = LIVENESS_SWEEP_SECONDS,
        greeting: bool = True,
        send_timeout: float = SEND_TIMEOUT_SECONDS,
        outbox_limit: int = OUTBOX_LIMIT,
    ):
        self.sweep_interval = sweep_interval
        self.greeting = greeting
        self.send_timeout = send_timeout
        self.outbox_limit = outbox_limit

        self._connections: dict[int, ClientConnection] = {}
        self._registry: dict[int, set[ClientConnection]] = {}
        self._sweeper: Optional[asyncio.Task] = None

    # --- lifecycle ---

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())
            logger.info("realtime channel started (sweep every %ss)", self.sweep_interval)

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        for conn in list(self._connections.values()):
            await conn.terminate(GOING_AWAY)
            self._forget(conn)
        logger.info("realtime channel drained")

    # --- introspection ---

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def connections_for(self, user_id: int) -> frozenset[ClientConnection]:
        return frozenset(self._registry.get(user_id, ()))

    def registered_users(self) -> set[int]:
        return set(self._registry)

    # --- connection handling ---

    async def accept(self, websocket: WebSocket) -> ClientConnection:
        conn = ClientConnection(websocket, self.send_timeout, self.outbox_limit)
        await websocket.accept()
        conn.state = ConnectionState.OPEN
        conn.start_writer()
        self._connections[conn.id] = conn

        client = websocket.client
        logger.info("websocket client connected from %s", client.host if client else "unknown")

        if self.greeting:
            self._send(
                conn,
                Event(EventType.WELCOME, {"message": "Connected to ClassTrack realtime channel"}),
            )
        return conn

    async def serve(self, websocket: WebSocket) -> None:
        """Run one connection until the client goes away."""
        conn = await self.accept(websocket)
        code = None
        try:
            while conn.is_open:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    code = message.get("code")
                    break
                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                if raw is not None:
                    await self.handle_message(conn, raw)
        except Exception:
            if conn.is_open:
                logger.exception("websocket connection error on %r", conn)
        finally:
            self.disconnect(conn, code)

    async def handle_message(self, conn: ClientConnection, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("dropping malformed frame from %r", conn)
            return
        if not isinstance(message, dict):
            logger.warning("dropping non-object frame from %r", conn)
            return

        msg_type = message.get("type")
        if msg_type == ClientMessageType.PING.value:
            self._send(conn, Event(EventType.PONG))
        elif msg_type == ClientMessageType.JOIN.value:
            self._join(conn, message.get("payload"))
        else:
            logger.debug("ignoring message type %r from %r", msg_type, conn)

    def _join(self, conn: ClientConnection, payload) -> None:
        user_id = None
        if isinstance(payload, dict):
            user_id = payload.get("userId", payload.get("user_id"))
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            logger.warning("join without a usable userId from %r", conn)
            return

        self.register(conn, user_id)
        logger.info("user %s joined realtime channel (%d tabs)", user_id, len(self._registry[user_id]))
        self._send(
            conn,
            Event(
                EventType.JOIN_CONFIRMED,
                {"userId": user_id, "message": "Successfully joined realtime channel"},
            ),
        )

    def register(self, conn: ClientConnection, user_id: int) -> None:
        # a connection re-joining as someone else leaves its old entry
        if conn.user_id is not None and conn.user_id != user_id:
            self._unregister(conn)
        conn.user_id = user_id
        self._registry.setdefault(user_id, set()).add(conn)

    def disconnect(self, conn: ClientConnection, code: Optional[int] = None) -> None:
        conn.state = ConnectionState.CLOSED
        conn.stop_writer()
        self._forget(conn)
        if code is not None and code not in NORMAL_CLOSE_CODES:
            logger.info("websocket client (user %s) disconnected with code %s", conn.user_id, code)

    def _unregister(self, conn: ClientConnection) -> None:
        if conn.user_id is None:
            return
        user_conns = self._registry.get(conn.user_id)
        if user_conns is not None:
            user_conns.discard(conn)
            if not user_conns:
                del self._registry[conn.user_id]

    def _forget(self, conn: ClientConnection) -> None:
        self._connections.pop(conn.id, None)
        self._unregister(conn)

    # --- fan-out ---

    def _send(self, conn: ClientConnection, event: Event) -> bool:
        return conn.enqueue(event.encode())

    def broadcast(self, event: Event) -> int:
        """Queue ``event`` once on every open connection; returns how many took it.

        Never waits on a socket. A connection that is closing or has a full
        outbox is skipped, never holding up the rest.
        """
        data = event.encode()
        return sum(1 for conn in list(self._connections.values()) if conn.enqueue(data))

    async def publish(self, event: Event) -> None:
        """Fire-and-forget broadcast used by the services."""
        try:
            queued = self.broadcast(event)
        except Exception:
            logger.exception("broadcast of %s failed", event.type.value)
            return
        logger.debug("broadcast %s to %d connections", event.type.value, queued)

    async def flush(self) -> None:
        """Wait until every open connection has written what was queued for it."""
        await asyncio.gather(*(conn.flush() for conn in list(self._connections.values())))

    # --- liveness ---

    async def sweep(self) -> int:
        """Terminate every tracked connection whose transport is no longer open."""
        terminated = 0
        for conn in list(self._connections.values()):
            if conn.transport_open:
                continue
            await conn.terminate()
            self._forget(conn)
            terminated += 1
        if terminated:
            logger.info("liveness sweep terminated %d stale connections", terminated)
        return terminated

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("liveness sweep failed")
            if self._connections:
                logger.info("active websocket connections: %d", len(self._connections))
