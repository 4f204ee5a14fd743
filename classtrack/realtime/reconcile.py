"""Client-side reconciliation of the live queue.

Realtime events are treated as cache-invalidation hints. The list a client
shows is always re-derived from a read of ``GET /participation-requests``;
an event only makes that read happen sooner, and may patch the local copy
optimistically until the read lands. A fallback poll covers lost frames.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from classtrack.core.config import POLL_INTERVAL_SECONDS
from classtrack.realtime.client import RealtimeClient
from classtrack.realtime.events import EventType

logger = logging.getLogger(__name__)

QueueFetcher = Callable[[], Awaitable[list[dict]]]

QUEUE_EVENTS = (EventType.REQUEST_OPENED, EventType.REQUEST_CLOSED)


class HttpQueueReader:
    """Reads the open-request queue over HTTP with a bearer token."""

    def __init__(self, base_url: str, token: str, client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=10.0)
        self._owns_client = client is None
        self._headers = {"Authorization": f"Bearer {token}"}

    async def __call__(self) -> list[dict]:
        response = await self._client.get("/participation-requests", headers=self._headers)
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class LiveQueueView:
    def __init__(self, fetch: QueueFetcher, poll_interval: float = POLL_INTERVAL_SECONDS):
        self.fetch = fetch
        self.poll_interval = poll_interval
        self.requests: list[dict] = []
        self.refreshed_at: Optional[float] = None

        self._dirty = asyncio.Event()
        self._stop = asyncio.Event()
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def request_ids(self) -> list[int]:
        return [r["id"] for r in self.requests]

    def attach(self, client: RealtimeClient) -> None:
        self._unsubscribers.append(client.subscribe(EventType.REQUEST_OPENED, self._on_opened))
        self._unsubscribers.append(client.subscribe(EventType.REQUEST_CLOSED, self._on_closed))

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def invalidate(self) -> None:
        self._dirty.set()

    def _on_opened(self, payload: Any) -> None:
        if isinstance(payload, dict) and payload.get("id") not in self.request_ids:
            self.requests.append(payload)
        self.invalidate()

    def _on_closed(self, payload: Any) -> None:
        if isinstance(payload, dict):
            self.requests = [r for r in self.requests if r.get("id") != payload.get("id")]
        self.invalidate()

    async def refresh(self) -> bool:
        """Replace the local list with an authoritative read.

        On failure the last known list is kept and False is returned.
        """
        self._dirty.clear()
        try:
            self.requests = list(await self.fetch())
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("queue refresh failed, keeping last state: %s", exc)
            return False
        self.refreshed_at = asyncio.get_running_loop().time()
        return True

    async def run(self) -> None:
        """Refresh now, then on every invalidation or poll tick until stopped."""
        self._stop.clear()
        while not self._stop.is_set():
            await self.refresh()
            waiters = [
                asyncio.create_task(self._dirty.wait()),
                asyncio.create_task(self._stop.wait()),
            ]
            try:
                await asyncio.wait(waiters, timeout=self.poll_interval, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    waiter.cancel()

    def stop(self) -> None:
        self._stop.set()
