import asyncio

import pytest

from classtrack.core.errors import (
    AuthorizationError,
    DuplicateStateError,
    InvalidStudentError,
    NotFoundError,
)
from classtrack.ledger.memory import InMemoryLedgerStore
from classtrack.realtime.events import EventType
from classtrack.services.locks import KeyedLock
from classtrack.services.request_lifecycle import RequestLifecycleManager
from tests.helpers import FakeClock

STUDENT, OTHER_STUDENT, INSTRUCTOR = 1, 2, 3


@pytest.fixture()
def lifecycle(memory_store, publisher):
    return RequestLifecycleManager(memory_store, publisher, KeyedLock(), clock=FakeClock())


@pytest.mark.anyio
async def test_open_request_broadcasts_with_student(lifecycle, publisher):
    request = await lifecycle.open_request(STUDENT, "  can I ask?  ")

    assert request.status == "open"
    assert request.note == "can I ask?"
    assert publisher.types == [EventType.REQUEST_OPENED]
    payload = publisher.events[0].payload
    assert payload.id == request.id
    assert payload.student.username == "student1"


@pytest.mark.anyio
async def test_blank_note_is_stored_as_none(lifecycle):
    request = await lifecycle.open_request(STUDENT, "   ")
    assert request.note is None


@pytest.mark.anyio
async def test_only_students_can_open(lifecycle, publisher):
    for student_id in (INSTRUCTOR, 999):
        with pytest.raises(InvalidStudentError):
            await lifecycle.open_request(student_id)
    assert publisher.events == []


@pytest.mark.anyio
async def test_second_open_request_is_a_duplicate(lifecycle, memory_store, publisher):
    await lifecycle.open_request(STUDENT)
    with pytest.raises(DuplicateStateError):
        await lifecycle.open_request(STUDENT)

    assert len(await memory_store.list_open_requests()) == 1
    assert publisher.types == [EventType.REQUEST_OPENED]


class SlowStore(InMemoryLedgerStore):
    """Yields to the loop inside the duplicate check, like a real database would."""

    async def find_open_request(self, student_id):
        await asyncio.sleep(0.01)
        return await super().find_open_request(student_id)


@pytest.mark.anyio
async def test_concurrent_opens_yield_exactly_one_request(publisher):
    store = SlowStore()
    await store.create_user("student1", "s1@example.com", "Student One", "x", "student")
    locks = KeyedLock()
    lifecycle = RequestLifecycleManager(store, publisher, locks)

    results = await asyncio.gather(
        *(lifecycle.open_request(1) for _ in range(5)), return_exceptions=True
    )

    opened = [r for r in results if not isinstance(r, Exception)]
    duplicates = [r for r in results if isinstance(r, DuplicateStateError)]
    assert len(opened) == 1
    assert len(duplicates) == 4
    assert len(await store.list_open_requests()) == 1
    # idle locks are dropped
    assert len(locks) == 0


@pytest.mark.anyio
async def test_owner_close_broadcasts_once(lifecycle, publisher):
    request = await lifecycle.open_request(STUDENT)

    closed = await lifecycle.close_request(request.id, actor_id=STUDENT, actor_role="student")
    assert closed.status == "closed"
    assert closed.closed_at is not None

    again = await lifecycle.close_request(request.id, actor_id=STUDENT, actor_role="student")
    assert again.status == "closed"
    assert again.closed_at == closed.closed_at

    assert publisher.types == [EventType.REQUEST_OPENED, EventType.REQUEST_CLOSED]
    assert publisher.events[1].payload == {"id": request.id}


@pytest.mark.anyio
async def test_instructor_can_close_any_request(lifecycle):
    request = await lifecycle.open_request(STUDENT)
    closed = await lifecycle.close_request(request.id, actor_id=INSTRUCTOR, actor_role="instructor")
    assert closed.status == "closed"


@pytest.mark.anyio
async def test_other_student_cannot_close(lifecycle, memory_store):
    request = await lifecycle.open_request(STUDENT)

    with pytest.raises(AuthorizationError):
        await lifecycle.close_request(request.id, actor_id=OTHER_STUDENT, actor_role="student")
    with pytest.raises(AuthorizationError):
        await lifecycle.close_request(request.id, actor_id=STUDENT, actor_role="admin")

    assert (await memory_store.get_request(request.id)).is_open


@pytest.mark.anyio
async def test_close_unknown_request(lifecycle):
    with pytest.raises(NotFoundError):
        await lifecycle.close_request(404, actor_id=INSTRUCTOR, actor_role="instructor")


@pytest.mark.anyio
async def test_close_if_open_is_silent(lifecycle, publisher):
    request = await lifecycle.open_request(STUDENT)

    assert (await lifecycle.close_if_open(request.id)).status == "closed"
    assert await lifecycle.close_if_open(request.id) is None
    assert await lifecycle.close_if_open(9999) is None
    assert publisher.types == [EventType.REQUEST_OPENED]


@pytest.mark.anyio
async def test_reopen_after_close(lifecycle):
    first = await lifecycle.open_request(STUDENT)
    await lifecycle.close_request(first.id, actor_id=STUDENT, actor_role="student")

    second = await lifecycle.open_request(STUDENT)
    assert second.id != first.id
    assert second.is_open


@pytest.mark.anyio
async def test_queue_is_oldest_first(lifecycle):
    first = await lifecycle.open_request(OTHER_STUDENT)
    second = await lifecycle.open_request(STUDENT)

    queue = await lifecycle.list_open_requests()
    assert [r.id for r in queue] == [first.id, second.id]
    assert [r.student.id for r in queue] == [OTHER_STUDENT, STUDENT]


@pytest.mark.anyio
async def test_keyed_lock_serializes_per_key():
    locks = KeyedLock()
    order = []

    async def worker(key, name):
        async with locks.hold(key):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a", "first"), worker("a", "second"))
    assert order == ["first-in", "first-out", "second-in", "second-out"]
    assert "a" not in locks
