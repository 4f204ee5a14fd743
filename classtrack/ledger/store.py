"""Ledger Store interface.

The ledger is the only source of truth for users, participation requests and
participation records. Two implementations exist and one is picked when the
application starts:

* ``InMemoryLedgerStore`` keeps everything in dicts, for tests and demos.
* ``SqlAlchemyLedgerStore`` persists through the SQLAlchemy models.

Every method is a coroutine so callers never care which variant they hold.
Read methods return pydantic read models, never ORM rows.
"""

import abc
from datetime import datetime
from typing import Optional

from classtrack.schemas.participation_record import (
    ParticipationRecordRead,
    ParticipationRecordWithStudent,
)
from classtrack.schemas.participation_request import (
    ParticipationRequestRead,
    ParticipationRequestWithStudent,
)
from classtrack.schemas.user import StudentProfile, UserInDB

UNKNOWN_STUDENT = StudentProfile(id=-1, name="Unknown", username="unknown")


class LedgerStore(abc.ABC):
    # --- users ---

    @abc.abstractmethod
    async def create_user(
        self,
        username: str,
        email: str,
        name: str,
        hashed_password: str,
        role: str = "student",
    ) -> UserInDB:
        """Create a user. Raises ``DuplicateStateError`` if the username is taken."""

    @abc.abstractmethod
    async def get_user(self, user_id: int) -> Optional[UserInDB]:
        ...

    @abc.abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[UserInDB]:
        ...

    @abc.abstractmethod
    async def list_students(self) -> list[StudentProfile]:
        ...

    # --- participation requests ---

    @abc.abstractmethod
    async def create_request(
        self, student_id: int, note: Optional[str], created_at: datetime
    ) -> ParticipationRequestRead:
        """Insert an OPEN request.

        Raises ``DuplicateStateError`` if the student already has one open.
        Callers still serialize per student; this is the storage-level guard.
        """

    @abc.abstractmethod
    async def get_request(self, request_id: int) -> Optional[ParticipationRequestRead]:
        ...

    @abc.abstractmethod
    async def find_open_request(self, student_id: int) -> Optional[ParticipationRequestRead]:
        ...

    @abc.abstractmethod
    async def list_open_requests(self) -> list[ParticipationRequestWithStudent]:
        """Open requests, oldest first (ties broken by id)."""

    @abc.abstractmethod
    async def close_request(
        self, request_id: int, closed_at: datetime
    ) -> tuple[Optional[ParticipationRequestRead], bool]:
        """Close a request if it is open.

        Returns ``(request, changed)``. ``request`` is None for an unknown id;
        ``changed`` is False when the request was already closed.
        """

    # --- participation records ---

    @abc.abstractmethod
    async def create_record(
        self,
        student_id: int,
        points: int,
        feedback: Optional[str],
        note: Optional[str],
        created_at: datetime,
    ) -> ParticipationRecordRead:
        ...

    @abc.abstractmethod
    async def get_record(self, record_id: int) -> Optional[ParticipationRecordRead]:
        ...

    @abc.abstractmethod
    async def list_records(
        self, student_id: Optional[int] = None, include_hidden: bool = False
    ) -> list[ParticipationRecordWithStudent]:
        """Records newest first, optionally for a single student."""

    @abc.abstractmethod
    async def set_record_hidden(
        self, record_id: int, hidden: bool
    ) -> Optional[ParticipationRecordRead]:
        ...

    @abc.abstractmethod
    async def total_points(self, student_id: int) -> int:
        """Sum of points over all of the student's records, hidden ones included."""

    @abc.abstractmethod
    async def delete_records_between(self, start: datetime, end: datetime) -> int:
        """Delete records with ``start <= created_at <= end``; returns the count."""

    async def close(self) -> None:
        """Release resources held by the store."""
