import os
from datetime import timedelta
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# DEV ONLY defaults. Set SECRET_KEY and PROFESSOR_VERIFICATION_CODE in the
# environment for anything shared.
SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE = timedelta(minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60")))
# registering with role "instructor" requires this code
PROFESSOR_VERIFICATION_CODE = os.getenv("PROFESSOR_VERIFICATION_CODE", "iamaprofessor")

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR}/classtrack.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Realtime channel
REALTIME_PATH = os.getenv("REALTIME_PATH", "/ws")
LIVENESS_SWEEP_SECONDS = float(os.getenv("LIVENESS_SWEEP_SECONDS", "60"))
# a frame not written within this many seconds drops the connection
SEND_TIMEOUT_SECONDS = float(os.getenv("SEND_TIMEOUT_SECONDS", "5"))
# frames queued per connection before it is considered too slow
OUTBOX_LIMIT = int(os.getenv("OUTBOX_LIMIT", "100"))

# Client-side policy (heartbeat, reconnect backoff, fallback polling)
CLIENT_PING_SECONDS = float(os.getenv("CLIENT_PING_SECONDS", "30"))
RECONNECT_INITIAL_SECONDS = float(os.getenv("RECONNECT_INITIAL_SECONDS", "1"))
RECONNECT_FACTOR = float(os.getenv("RECONNECT_FACTOR", "1.5"))
RECONNECT_MAX_SECONDS = float(os.getenv("RECONNECT_MAX_SECONDS", "30"))
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "10"))

# "today" for the bulk record delete is computed in this zone
CLASSROOM_TIMEZONE = os.getenv("CLASSROOM_TIMEZONE", "UTC")
