import asyncio
import os

TEST_DB_FILE = "test_classtrack.db"
TEST_DB_URL = f"sqlite:///./{TEST_DB_FILE}"

# must be set before the application modules read their config
os.environ["DATABASE_URL"] = TEST_DB_URL

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from classtrack.core.deps import get_ledger_store  # noqa: E402
from classtrack.core.security import hash_password  # noqa: E402
from classtrack.db.base import Base  # noqa: E402
from classtrack.db.session import make_engine, make_session_factory  # noqa: E402
from classtrack.ledger.memory import InMemoryLedgerStore  # noqa: E402
from classtrack.ledger.sqlalchemy_store import SqlAlchemyLedgerStore  # noqa: E402
from classtrack.main import app  # noqa: E402
from classtrack.models.participation_record import ParticipationRecord  # noqa: E402
from classtrack.models.participation_request import ParticipationRequest  # noqa: E402
from classtrack.models.user import User  # noqa: E402
from tests.helpers import RecordingPublisher  # noqa: E402

engine = make_engine(TEST_DB_URL)
TestingSessionLocal = make_session_factory(engine)

PASSWORD = "password123"
# seeds only; low cost keeps the suite fast
PASSWORD_HASH = hash_password(PASSWORD, rounds=4)


def override_get_ledger_store():
    return SqlAlchemyLedgerStore(TestingSessionLocal)


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create a fresh schema once for the whole test session."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    if os.path.exists(TEST_DB_FILE):
        os.remove(TEST_DB_FILE)


@pytest.fixture()
def users():
    """Seed two students and one instructor; returns their ids by username."""
    db = TestingSessionLocal()
    try:
        # Clear tables (child -> parent)
        db.query(ParticipationRecord).delete()
        db.query(ParticipationRequest).delete()
        db.query(User).delete()
        db.commit()

        seeded = [
            User(username="student1", email="student1@example.com", name="Student One",
                 role="student", hashed_password=PASSWORD_HASH),
            User(username="student2", email="student2@example.com", name="Student Two",
                 role="student", hashed_password=PASSWORD_HASH),
            User(username="instructor1", email="instructor1@example.com", name="Instructor One",
                 role="instructor", hashed_password=PASSWORD_HASH),
        ]
        db.add_all(seeded)
        db.commit()
        yield {u.username: u.id for u in seeded}
    finally:
        db.close()


@pytest.fixture()
def client(users):
    """Test client that reads and writes the test DB via dependency override."""
    app.dependency_overrides[get_ledger_store] = override_get_ledger_store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _login(client, username):
    r = client.post("/auth/login", json={"username": username, "password": PASSWORD})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture()
def student_headers(client):
    return _login(client, "student1")


@pytest.fixture()
def student2_headers(client):
    return _login(client, "student2")


@pytest.fixture()
def instructor_headers(client):
    return _login(client, "instructor1")


# --- service-level fixtures (no HTTP, no database) ---


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def memory_store():
    store = InMemoryLedgerStore()

    async def seed():
        for username, role in (
            ("student1", "student"),
            ("student2", "student"),
            ("instructor1", "instructor"),
        ):
            await store.create_user(
                username=username,
                email=f"{username}@example.com",
                name=username.title(),
                hashed_password="x",
                role=role,
            )

    asyncio.run(seed())
    return store


@pytest.fixture()
def publisher():
    return RecordingPublisher()
