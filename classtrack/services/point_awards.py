"""Point awards and the record ledger views built on them.

Awarding is append-only: every call creates a record, including rapid
repeats against the same request. Closing a linked request is best-effort
and never undoes the award.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from classtrack.core.config import CLASSROOM_TIMEZONE
from classtrack.core.errors import (
    ClassTrackError,
    InvalidStudentError,
    NotFoundError,
    ValidationError,
)
from classtrack.ledger.store import LedgerStore
from classtrack.realtime.events import Event, EventPublisher, EventType
from classtrack.schemas.participation_record import (
    ParticipationRecordRead,
    ParticipationRecordWithStudent,
)
from classtrack.schemas.user import StudentProfile, UserInDB
from classtrack.services.request_lifecycle import RequestLifecycleManager, utcnow

logger = logging.getLogger(__name__)


def classroom_zone(name: str = CLASSROOM_TIMEZONE) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def day_bounds(day: date, zone: tzinfo) -> tuple[datetime, datetime]:
    """First and last instant of ``day`` in ``zone``, both inclusive."""
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone) - timedelta(microseconds=1)
    return start, end


class PointAwardCoordinator:
    def __init__(
        self,
        store: LedgerStore,
        lifecycle: RequestLifecycleManager,
        publisher: EventPublisher,
        clock: Callable[[], datetime] = utcnow,
        zone: Optional[tzinfo] = None,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.publisher = publisher
        self.clock = clock
        self.zone = zone or classroom_zone()

    async def _require_student(self, student_id: int) -> UserInDB:
        student = await self.store.get_user(student_id)
        if student is None or student.role != "student":
            raise InvalidStudentError()
        return student

    async def award_points(
        self,
        student_id: int,
        points: int,
        feedback: Optional[str] = None,
        note: Optional[str] = None,
        linked_request_id: Optional[int] = None,
    ) -> ParticipationRecordRead:
        if isinstance(points, bool) or not isinstance(points, int):
            raise ValidationError("points must be an integer")
        if points < 0:
            raise ValidationError("points must be a non-negative integer")

        student = await self._require_student(student_id)

        record = await self.store.create_record(student_id, points, feedback, note, self.clock())
        logger.info("awarded %s points to student %s (record %s)", points, student_id, record.id)

        closed = None
        if linked_request_id is not None:
            try:
                closed = await self.lifecycle.close_if_open(linked_request_id)
            except ClassTrackError as exc:
                logger.warning(
                    "record %s kept; closing linked request %s failed: %s",
                    record.id,
                    linked_request_id,
                    exc.detail,
                )

        await self.publisher.publish(
            Event(
                EventType.RECORD_CREATED,
                ParticipationRecordWithStudent(
                    **record.model_dump(), student=StudentProfile.model_validate(student)
                ),
            )
        )
        if closed is not None:
            await self.publisher.publish(Event(EventType.REQUEST_CLOSED, {"id": closed.id}))
        return record

    async def total_points(self, student_id: int) -> int:
        """All points ever awarded to the student; the hidden flag is ignored."""
        return await self.store.total_points(student_id)

    async def list_records(
        self, viewer: UserInDB, show_hidden: bool = False
    ) -> list[ParticipationRecordWithStudent]:
        """Instructors see every record, students only their own."""
        student_id = None if viewer.role == "instructor" else viewer.id
        return await self.store.list_records(student_id=student_id, include_hidden=show_hidden)

    async def records_for_student(
        self, student_id: int, show_hidden: bool = False
    ) -> list[ParticipationRecordWithStudent]:
        student = await self.store.get_user(student_id)
        if student is None or student.role != "student":
            raise NotFoundError("Student not found")
        return await self.store.list_records(student_id=student_id, include_hidden=show_hidden)

    async def set_visibility(self, record_id: int, hidden: bool) -> ParticipationRecordRead:
        record = await self.store.set_record_hidden(record_id, hidden)
        if record is None:
            raise NotFoundError("Participation record not found")
        logger.info("record %s %s", record_id, "hidden" if hidden else "shown")
        await self.publisher.publish(Event(EventType.RECORD_UPDATED, record))
        return record

    async def delete_records_for_day(self, day: Optional[date] = None) -> tuple[int, datetime]:
        """Irreversibly delete every record created on ``day`` (default: today).

        Returns the number deleted and the start of the day that was cleared.
        """
        if day is None:
            day = self.clock().astimezone(self.zone).date()
        start, end = day_bounds(day, self.zone)

        count = await self.store.delete_records_between(start, end)
        logger.warning("deleted %d participation records from %s", count, day.isoformat())

        await self.publisher.publish(
            Event(EventType.RECORDS_DELETED, {"date": start.isoformat(), "count": count})
        )
        return count, start
