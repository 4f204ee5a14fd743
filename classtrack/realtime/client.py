"""Realtime channel client.

Keeps one connection to the fan-out channel alive for a signed-in user:
``join`` on open, ``ping`` every ``CLIENT_PING_SECONDS``, exponential
backoff between reconnects, and dispatch of incoming frames to subscribers.

Every connection attempt is tagged with a generation number. When an
attempt finishes its handshake, or closes, after a newer attempt has
started, its result is discarded so a late event from a superseded socket
can never clobber the live one.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from websockets.asyncio.client import connect as websockets_connect
from websockets.exceptions import WebSocketException

from classtrack.core.config import (
    CLIENT_PING_SECONDS,
    RECONNECT_FACTOR,
    RECONNECT_INITIAL_SECONDS,
    RECONNECT_MAX_SECONDS,
)
from classtrack.core.errors import TransportError
from classtrack.realtime.events import ClientMessageType, EventType

logger = logging.getLogger(__name__)

Callback = Callable[[Any], Any]
Connector = Callable[[str], Awaitable[Any]]

TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class ReconnectBackoff:
    def __init__(
        self,
        initial: float = RECONNECT_INITIAL_SECONDS,
        factor: float = RECONNECT_FACTOR,
        maximum: float = RECONNECT_MAX_SECONDS,
    ):
        if initial <= 0 or factor < 1 or maximum < initial:
            raise ValueError("backoff needs initial > 0, factor >= 1 and maximum >= initial")
        self.initial = initial
        self.factor = factor
        self.maximum = maximum
        self.attempt = 0

    def next_delay(self) -> float:
        delay = min(self.initial * self.factor**self.attempt, self.maximum)
        self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0


class _Subscription:
    __slots__ = ("event_type", "callback")

    def __init__(self, event_type: str, callback: Callback):
        self.event_type = event_type
        self.callback = callback


class SubscriptionRegistry:
    """Callbacks keyed by message type; each subscription is independent."""

    def __init__(self):
        self._subscriptions: dict[str, list[_Subscription]] = {}

    def subscribe(self, event_type, callback: Callback) -> Callable[[], None]:
        key = event_type.value if isinstance(event_type, EventType) else str(event_type)
        subscription = _Subscription(key, callback)
        self._subscriptions.setdefault(key, []).append(subscription)

        def unsubscribe() -> None:
            subs = self._subscriptions.get(key)
            if subs and subscription in subs:
                subs.remove(subscription)
                if not subs:
                    del self._subscriptions[key]

        return unsubscribe

    def count(self, event_type=None) -> int:
        if event_type is None:
            return sum(len(subs) for subs in self._subscriptions.values())
        key = event_type.value if isinstance(event_type, EventType) else str(event_type)
        return len(self._subscriptions.get(key, ()))

    async def dispatch(self, message: dict) -> int:
        """Call every subscriber of ``message['type']``; returns how many ran.

        A failing callback is logged and does not stop the others.
        """
        called = 0
        for subscription in list(self._subscriptions.get(message.get("type"), ())):
            try:
                result = subscription.callback(message.get("payload"))
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("subscriber for %s failed", subscription.event_type)
            called += 1
        return called


class RealtimeClient:
    def __init__(
        self,
        url: str,
        user_id: int,
        *,
        connect: Optional[Connector] = None,
        ping_interval: float = CLIENT_PING_SECONDS,
        backoff: Optional[ReconnectBackoff] = None,
        subscriptions: Optional[SubscriptionRegistry] = None,
    ):
        self.url = url
        self.user_id = user_id
        self.ping_interval = ping_interval
        self.backoff = backoff or ReconnectBackoff()
        self.subscriptions = subscriptions or SubscriptionRegistry()
        self._connect = connect or websockets_connect

        self.generation = 0
        self.connected = False
        self.last_pong_at: Optional[float] = None
        self._socket = None
        self._stop = asyncio.Event()

    def subscribe(self, event_type, callback: Callback) -> Callable[[], None]:
        return self.subscriptions.subscribe(event_type, callback)

    async def send(self, msg_type: str, payload: Any = None) -> None:
        socket = self._socket
        if socket is None or not self.connected:
            raise TransportError("Realtime channel not connected")
        message = {"type": msg_type}
        if payload is not None:
            message["payload"] = payload
        try:
            await socket.send(json.dumps(message))
        except TRANSPORT_ERRORS as exc:
            raise TransportError(str(exc)) from exc

    async def run(self) -> None:
        """Connect and keep reconnecting until ``stop`` is called."""
        self._stop.clear()
        while not self._stop.is_set():
            self.generation += 1
            try:
                await self._run_once(self.generation)
            except TransportError as exc:
                logger.info("realtime connection lost: %s", exc.detail)
            if self._stop.is_set():
                break

            delay = self.backoff.next_delay()
            logger.info("reconnecting in %.1fs (attempt %d)", delay, self.backoff.attempt)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def reconnect(self) -> None:
        """Drop the current connection; ``run`` opens a fresh one."""
        self.generation += 1
        await self._close_current()

    async def stop(self) -> None:
        self._stop.set()
        self.generation += 1
        await self._close_current()

    async def _close_current(self) -> None:
        socket, self._socket = self._socket, None
        self.connected = False
        if socket is not None:
            await self._close_quietly(socket)

    @staticmethod
    async def _close_quietly(socket) -> None:
        try:
            await socket.close()
        except TRANSPORT_ERRORS as exc:
            logger.debug("close failed: %s", exc)

    def _is_current(self, generation: int) -> bool:
        return generation == self.generation and not self._stop.is_set()

    async def _run_once(self, generation: int) -> None:
        try:
            socket = await self._connect(self.url)
        except TRANSPORT_ERRORS as exc:
            raise TransportError(f"connect to {self.url} failed: {exc}") from exc

        if not self._is_current(generation):
            logger.debug("discarding stale connection (generation %d)", generation)
            await self._close_quietly(socket)
            return

        self._socket = socket
        self.connected = True
        self.backoff.reset()
        logger.info("realtime channel connected (generation %d)", generation)

        pinger = asyncio.create_task(self._ping_loop(socket, generation))
        try:
            await socket.send(
                json.dumps({"type": ClientMessageType.JOIN.value, "payload": {"userId": self.user_id}})
            )
            async for raw in socket:
                if not self._is_current(generation):
                    break
                await self._handle_frame(raw)
        except TRANSPORT_ERRORS as exc:
            raise TransportError(str(exc)) from exc
        finally:
            pinger.cancel()
            try:
                await pinger
            except asyncio.CancelledError:
                pass
            self._on_closed(generation)

    def _on_closed(self, generation: int) -> None:
        if generation != self.generation:
            # close of a superseded socket; the live one is untouched
            return
        self.connected = False
        self._socket = None
        logger.info("realtime channel disconnected (generation %d)", generation)

    async def _ping_loop(self, socket, generation: int) -> None:
        ping = json.dumps({"type": ClientMessageType.PING.value})
        while self._is_current(generation):
            await asyncio.sleep(self.ping_interval)
            if not self._is_current(generation):
                return
            try:
                await socket.send(ping)
            except TRANSPORT_ERRORS:
                # the receive loop notices the close
                return

    async def _handle_frame(self, raw) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("ignoring malformed frame from server")
            return
        if not isinstance(message, dict):
            return
        if message.get("type") == EventType.PONG.value:
            self.last_pong_at = asyncio.get_running_loop().time()
        await self.subscriptions.dispatch(message)
