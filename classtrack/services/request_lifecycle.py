"""Participation request lifecycle.

A request is created OPEN by a student ("raise hand") and becomes CLOSED
exactly once, either when the student withdraws it or when an instructor
awards points against it. CLOSED is terminal.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from classtrack.core.errors import (
    AuthorizationError,
    DuplicateStateError,
    InvalidStudentError,
    NotFoundError,
)
from classtrack.ledger.store import LedgerStore
from classtrack.realtime.events import Event, EventPublisher, EventType
from classtrack.schemas.participation_request import (
    ParticipationRequestRead,
    ParticipationRequestWithStudent,
)
from classtrack.schemas.user import StudentProfile
from classtrack.services.locks import KeyedLock

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestLifecycleManager:
    def __init__(
        self,
        store: LedgerStore,
        publisher: EventPublisher,
        locks: KeyedLock,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.publisher = publisher
        self.locks = locks
        self.clock = clock

    async def open_request(
        self, student_id: int, note: Optional[str] = None
    ) -> ParticipationRequestRead:
        """Raise a hand for ``student_id``.

        The duplicate check and the insert run under a per-student lock, so
        two tabs raising a hand at the same moment yield one request and one
        ``DuplicateStateError``.
        """
        student = await self.store.get_user(student_id)
        if student is None or student.role != "student":
            raise InvalidStudentError()

        note = note.strip() if note else None

        async with self.locks.hold(student_id):
            if await self.store.find_open_request(student_id) is not None:
                raise DuplicateStateError()
            request = await self.store.create_request(student_id, note or None, self.clock())

        logger.info("request %s opened by student %s", request.id, student_id)
        await self.publisher.publish(
            Event(
                EventType.REQUEST_OPENED,
                ParticipationRequestWithStudent(
                    **request.model_dump(), student=StudentProfile.model_validate(student)
                ),
            )
        )
        return request

    async def close_request(
        self, request_id: int, actor_id: int, actor_role: str
    ) -> ParticipationRequestRead:
        """Close a request on behalf of its owner or an instructor.

        Closing an already closed request is a no-op: the current state is
        returned and nothing is broadcast.
        """
        request = await self.store.get_request(request_id)
        if request is None:
            raise NotFoundError("Participation request not found")

        if actor_role == "student":
            if request.student_id != actor_id:
                raise AuthorizationError("Not authorized to deactivate this request")
        elif actor_role != "instructor":
            raise AuthorizationError("Not authorized to deactivate this request")

        closed = await self._close(request_id)
        if closed is None:
            return await self.store.get_request(request_id) or request

        await self.publisher.publish(Event(EventType.REQUEST_CLOSED, {"id": request_id}))
        return closed

    async def close_if_open(self, request_id: int) -> Optional[ParticipationRequestRead]:
        """Close without authorization checks or broadcast.

        Returns the closed request, or None if it was unknown or already
        closed. The point-award path publishes the close itself.
        """
        return await self._close(request_id)

    async def _close(self, request_id: int) -> Optional[ParticipationRequestRead]:
        closed, changed = await self.store.close_request(request_id, self.clock())
        if closed is None or not changed:
            logger.debug("request %s unknown or already closed", request_id)
            return None
        logger.info("request %s closed", request_id)
        return closed

    async def list_open_requests(self) -> list[ParticipationRequestWithStudent]:
        return await self.store.list_open_requests()
