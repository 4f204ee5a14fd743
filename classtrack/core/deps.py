from fastapi import Depends
from starlette.requests import HTTPConnection

from classtrack.ledger.store import LedgerStore
from classtrack.realtime.channel import RealtimeChannel
from classtrack.services.point_awards import PointAwardCoordinator
from classtrack.services.request_lifecycle import RequestLifecycleManager


# the store, channel and lock table are built once at startup (see main.py)
# and live on app.state; services are cheap per-request wrappers around them
def get_ledger_store(conn: HTTPConnection) -> LedgerStore:
    return conn.app.state.ledger_store


def get_channel(conn: HTTPConnection) -> RealtimeChannel:
    return conn.app.state.channel


def get_lifecycle_manager(
    conn: HTTPConnection,
    store: LedgerStore = Depends(get_ledger_store),
    channel: RealtimeChannel = Depends(get_channel),
) -> RequestLifecycleManager:
    return RequestLifecycleManager(store, channel, conn.app.state.request_locks)


def get_point_coordinator(
    store: LedgerStore = Depends(get_ledger_store),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle_manager),
    channel: RealtimeChannel = Depends(get_channel),
) -> PointAwardCoordinator:
    return PointAwardCoordinator(store, lifecycle, channel)
