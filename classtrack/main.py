import logging

from fastapi import FastAPI

from classtrack.core.config import LOG_LEVEL, LIVENESS_SWEEP_SECONDS
from classtrack.core.errors import register_error_handlers
from classtrack.core.logging_middleware import LoggingMiddleware
from classtrack.db.init_db import init_db
from classtrack.db.session import SessionLocal
from classtrack.ledger.sqlalchemy_store import SqlAlchemyLedgerStore
from classtrack.realtime.channel import RealtimeChannel
from classtrack.routers.auth import router as auth_router
from classtrack.routers.participation_records import router as participation_records_router
from classtrack.routers.participation_requests import router as participation_requests_router
from classtrack.routers.realtime import router as realtime_router
from classtrack.routers.students import router as students_router
from classtrack.services.locks import KeyedLock

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="ClassTrack")

# Shared, process-wide state. The channel and the per-student lock table must
# outlive any single request; the store is swapped by tests.
app.state.ledger_store = SqlAlchemyLedgerStore(SessionLocal)
app.state.channel = RealtimeChannel(sweep_interval=LIVENESS_SWEEP_SECONDS)
app.state.request_locks = KeyedLock()

# Middleware
app.add_middleware(LoggingMiddleware)

register_error_handlers(app)


# Health check
@app.get("/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
async def on_startup():
    init_db()
    app.state.channel.start()


@app.on_event("shutdown")
async def on_shutdown():
    await app.state.channel.stop()
    await app.state.ledger_store.close()


# Include routers
app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(
    participation_requests_router,
    prefix="/participation-requests",
    tags=["participation-requests"],
)
app.include_router(
    participation_records_router,
    prefix="/participation-records",
    tags=["participation-records"],
)
app.include_router(students_router, prefix="/students", tags=["students"])
app.include_router(realtime_router, tags=["realtime"])
