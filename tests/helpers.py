import asyncio
import json
from datetime import datetime, timedelta, timezone

from starlette.websockets import WebSocketState


class RecordingPublisher:
    """Collects published events instead of sending them anywhere."""

    def __init__(self):
        self.events = []

    async def publish(self, event):
        self.events.append(event)

    @property
    def types(self):
        return [e.type for e in self.events]


class FakeClock:
    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        current = self.now
        self.now = self.now + self.step
        return current


class FakeWebSocket:
    """Stands in for a Starlette WebSocket on the server side."""

    def __init__(self, script=(), fail_sends=False, hang_sends=False):
        self.script = list(script)
        self.fail_sends = fail_sends
        self.hang_sends = hang_sends
        self.sent = []
        self.accepted = False
        self.close_code = None
        self.client = None
        self.client_state = WebSocketState.CONNECTING
        self.application_state = WebSocketState.CONNECTING

    async def accept(self):
        self.accepted = True
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, data):
        if self.fail_sends:
            raise RuntimeError("connection reset by peer")
        if self.hang_sends:
            # a peer that stopped reading: the write never completes
            await asyncio.Event().wait()
        self.sent.append(json.loads(data))

    async def receive(self):
        if not self.script:
            # give the writer time to drain before the peer goes away
            await asyncio.sleep(0.02)
            return {"type": "websocket.disconnect", "code": 1000}
        await asyncio.sleep(0)
        return self.script.pop(0)

    async def close(self, code=1000):
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED

    def drop(self):
        """Simulate the peer vanishing without a close frame."""
        self.client_state = WebSocketState.DISCONNECTED

    def sent_types(self):
        return [m["type"] for m in self.sent]


def text_frame(message):
    return {"type": "websocket.receive", "text": json.dumps(message)}


class FakeClientSocket:
    """Stands in for a websockets client connection."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._frames = asyncio.Queue()

    async def send(self, data):
        if self.closed:
            raise OSError("socket is closed")
        self.sent.append(json.loads(data))

    async def close(self):
        if not self.closed:
            self.closed = True
            self._frames.put_nowait(None)

    def feed(self, message):
        self._frames.put_nowait(json.dumps(message))

    def server_close(self):
        self._frames.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._frames.get()
        if frame is None:
            self.closed = True
            raise StopAsyncIteration
        return frame

    def sent_types(self):
        return [m["type"] for m in self.sent]


async def eventually(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
