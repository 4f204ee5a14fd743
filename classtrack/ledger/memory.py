"""In-memory Ledger Store.

Nothing awaits between a check and the write that depends on it, so on a
single event loop every method is atomic.
"""

import itertools
from datetime import datetime, timezone
from typing import Optional

from classtrack.core.errors import DuplicateStateError
from classtrack.ledger.store import UNKNOWN_STUDENT, LedgerStore
from classtrack.schemas.participation_record import (
    ParticipationRecordRead,
    ParticipationRecordWithStudent,
)
from classtrack.schemas.participation_request import (
    ParticipationRequestRead,
    ParticipationRequestWithStudent,
)
from classtrack.schemas.user import StudentProfile, UserInDB


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class InMemoryLedgerStore(LedgerStore):
    def __init__(self):
        self._users: dict[int, UserInDB] = {}
        self._requests: dict[int, ParticipationRequestRead] = {}
        self._records: dict[int, ParticipationRecordRead] = {}

        self._user_ids = itertools.count(1)
        self._request_ids = itertools.count(1)
        self._record_ids = itertools.count(1)

    def _profile(self, student_id: int) -> StudentProfile:
        user = self._users.get(student_id)
        if user is None:
            return UNKNOWN_STUDENT
        return StudentProfile.model_validate(user)

    # --- users ---

    async def create_user(self, username, email, name, hashed_password, role="student"):
        if any(u.username == username for u in self._users.values()):
            raise DuplicateStateError("Username already taken")
        user = UserInDB(
            id=next(self._user_ids),
            username=username,
            email=email,
            name=name,
            hashed_password=hashed_password,
            role=role,
        )
        self._users[user.id] = user
        return user

    async def get_user(self, user_id):
        return self._users.get(user_id)

    async def get_user_by_username(self, username):
        return next((u for u in self._users.values() if u.username == username), None)

    async def list_students(self):
        return [
            StudentProfile.model_validate(u)
            for u in sorted(self._users.values(), key=lambda u: u.id)
            if u.role == "student"
        ]

    # --- participation requests ---

    async def create_request(self, student_id, note, created_at):
        if await self.find_open_request(student_id) is not None:
            raise DuplicateStateError()
        request = ParticipationRequestRead(
            id=next(self._request_ids),
            student_id=student_id,
            note=note,
            status="open",
            created_at=_aware(created_at),
        )
        self._requests[request.id] = request
        return request

    async def get_request(self, request_id):
        return self._requests.get(request_id)

    async def find_open_request(self, student_id):
        return next(
            (r for r in self._requests.values() if r.student_id == student_id and r.is_open),
            None,
        )

    async def list_open_requests(self):
        open_requests = sorted(
            (r for r in self._requests.values() if r.is_open),
            key=lambda r: (r.created_at, r.id),
        )
        return [
            ParticipationRequestWithStudent(
                **r.model_dump(), student=self._profile(r.student_id)
            )
            for r in open_requests
        ]

    async def close_request(self, request_id, closed_at):
        request = self._requests.get(request_id)
        if request is None:
            return None, False
        if not request.is_open:
            return request, False
        closed = request.model_copy(update={"status": "closed", "closed_at": _aware(closed_at)})
        self._requests[request_id] = closed
        return closed, True

    # --- participation records ---

    async def create_record(self, student_id, points, feedback, note, created_at):
        record = ParticipationRecordRead(
            id=next(self._record_ids),
            student_id=student_id,
            points=points,
            feedback=feedback,
            note=note,
            created_at=_aware(created_at),
        )
        self._records[record.id] = record
        return record

    async def get_record(self, record_id):
        return self._records.get(record_id)

    async def list_records(self, student_id=None, include_hidden=False):
        records = [
            r
            for r in self._records.values()
            if (student_id is None or r.student_id == student_id)
            and (include_hidden or not r.hidden)
        ]
        records.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return [
            ParticipationRecordWithStudent(**r.model_dump(), student=self._profile(r.student_id))
            for r in records
        ]

    async def set_record_hidden(self, record_id, hidden):
        record = self._records.get(record_id)
        if record is None:
            return None
        updated = record.model_copy(update={"hidden": hidden})
        self._records[record_id] = updated
        return updated

    async def total_points(self, student_id):
        return sum(r.points for r in self._records.values() if r.student_id == student_id)

    async def delete_records_between(self, start, end):
        start, end = _aware(start), _aware(end)
        doomed = [rid for rid, r in self._records.items() if start <= r.created_at <= end]
        for rid in doomed:
            del self._records[rid]
        return len(doomed)
