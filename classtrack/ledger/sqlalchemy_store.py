"""Durable Ledger Store backed by the SQLAlchemy models.

The ORM is synchronous, so each operation runs in Starlette's threadpool
with its own short-lived session.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from classtrack.core.errors import DuplicateStateError, InternalError
from classtrack.ledger.store import UNKNOWN_STUDENT, LedgerStore
from classtrack.models.participation_record import ParticipationRecord
from classtrack.models.participation_request import (
    STATUS_CLOSED,
    STATUS_OPEN,
    ParticipationRequest,
)
from classtrack.models.user import User
from classtrack.schemas.participation_record import (
    ParticipationRecordRead,
    ParticipationRecordWithStudent,
)
from classtrack.schemas.participation_request import (
    ParticipationRequestRead,
    ParticipationRequestWithStudent,
)
from classtrack.schemas.user import StudentProfile, UserInDB

logger = logging.getLogger(__name__)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _profile(user: Optional[User]) -> StudentProfile:
    if user is None:
        return UNKNOWN_STUDENT
    return StudentProfile.model_validate(user)


class SqlAlchemyLedgerStore(LedgerStore):
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def _run(self, fn: Callable[[Session], object]):
        return await run_in_threadpool(self._run_sync, fn)

    def _run_sync(self, fn: Callable[[Session], object]):
        db = self._session_factory()
        try:
            return fn(db)
        except IntegrityError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("ledger operation failed")
            raise InternalError("Storage failure") from exc
        finally:
            db.close()

    # --- users ---

    async def create_user(self, username, email, name, hashed_password, role="student"):
        def op(db: Session):
            user = User(
                username=username,
                email=email,
                name=name,
                hashed_password=hashed_password,
                role=role,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            return UserInDB.model_validate(user)

        try:
            return await self._run(op)
        except IntegrityError:
            raise DuplicateStateError("Username already taken")

    async def get_user(self, user_id):
        def op(db: Session):
            user = db.get(User, user_id)
            return UserInDB.model_validate(user) if user else None

        return await self._run(op)

    async def get_user_by_username(self, username):
        def op(db: Session):
            user = db.query(User).filter(User.username == username).first()
            return UserInDB.model_validate(user) if user else None

        return await self._run(op)

    async def list_students(self):
        def op(db: Session):
            users = db.query(User).filter(User.role == "student").order_by(User.id.asc()).all()
            return [StudentProfile.model_validate(u) for u in users]

        return await self._run(op)

    # --- participation requests ---

    async def create_request(self, student_id, note, created_at):
        def op(db: Session):
            request = ParticipationRequest(
                student_id=student_id,
                note=note,
                status=STATUS_OPEN,
                created_at=_utc(created_at),
            )
            db.add(request)
            db.commit()
            db.refresh(request)
            return ParticipationRequestRead.model_validate(request)

        try:
            return await self._run(op)
        except IntegrityError:
            # partial unique index on open requests
            raise DuplicateStateError()

    async def get_request(self, request_id):
        def op(db: Session):
            request = db.get(ParticipationRequest, request_id)
            return ParticipationRequestRead.model_validate(request) if request else None

        return await self._run(op)

    async def find_open_request(self, student_id):
        def op(db: Session):
            request = (
                db.query(ParticipationRequest)
                .filter(
                    ParticipationRequest.student_id == student_id,
                    ParticipationRequest.status == STATUS_OPEN,
                )
                .first()
            )
            return ParticipationRequestRead.model_validate(request) if request else None

        return await self._run(op)

    async def list_open_requests(self):
        def op(db: Session):
            rows = (
                db.query(ParticipationRequest, User)
                .outerjoin(User, User.id == ParticipationRequest.student_id)
                .filter(ParticipationRequest.status == STATUS_OPEN)
                .order_by(ParticipationRequest.created_at.asc(), ParticipationRequest.id.asc())
                .all()
            )
            return [
                ParticipationRequestWithStudent(
                    **ParticipationRequestRead.model_validate(request).model_dump(),
                    student=_profile(user),
                )
                for request, user in rows
            ]

        return await self._run(op)

    async def close_request(self, request_id, closed_at):
        def op(db: Session):
            # conditional update so a concurrent close cannot flip it twice
            changed = (
                db.query(ParticipationRequest)
                .filter(
                    ParticipationRequest.id == request_id,
                    ParticipationRequest.status == STATUS_OPEN,
                )
                .update(
                    {"status": STATUS_CLOSED, "closed_at": _utc(closed_at)},
                    synchronize_session=False,
                )
            )
            db.commit()
            request = db.get(ParticipationRequest, request_id)
            if request is None:
                return None, False
            return ParticipationRequestRead.model_validate(request), bool(changed)

        return await self._run(op)

    # --- participation records ---

    async def create_record(self, student_id, points, feedback, note, created_at):
        def op(db: Session):
            record = ParticipationRecord(
                student_id=student_id,
                points=points,
                feedback=feedback,
                note=note,
                created_at=_utc(created_at),
                hidden=False,
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            return ParticipationRecordRead.model_validate(record)

        return await self._run(op)

    async def get_record(self, record_id):
        def op(db: Session):
            record = db.get(ParticipationRecord, record_id)
            return ParticipationRecordRead.model_validate(record) if record else None

        return await self._run(op)

    async def list_records(self, student_id=None, include_hidden=False):
        def op(db: Session):
            query = db.query(ParticipationRecord, User).outerjoin(
                User, User.id == ParticipationRecord.student_id
            )
            if student_id is not None:
                query = query.filter(ParticipationRecord.student_id == student_id)
            if not include_hidden:
                query = query.filter(ParticipationRecord.hidden.is_(False))
            rows = query.order_by(
                ParticipationRecord.created_at.desc(), ParticipationRecord.id.desc()
            ).all()
            return [
                ParticipationRecordWithStudent(
                    **ParticipationRecordRead.model_validate(record).model_dump(),
                    student=_profile(user),
                )
                for record, user in rows
            ]

        return await self._run(op)

    async def set_record_hidden(self, record_id, hidden):
        def op(db: Session):
            record = db.get(ParticipationRecord, record_id)
            if record is None:
                return None
            record.hidden = hidden
            db.commit()
            db.refresh(record)
            return ParticipationRecordRead.model_validate(record)

        return await self._run(op)

    async def total_points(self, student_id):
        def op(db: Session):
            total = (
                db.query(func.coalesce(func.sum(ParticipationRecord.points), 0))
                .filter(ParticipationRecord.student_id == student_id)
                .scalar()
            )
            return int(total or 0)

        return await self._run(op)

    async def delete_records_between(self, start, end):
        def op(db: Session):
            count = (
                db.query(ParticipationRecord)
                .filter(
                    ParticipationRecord.created_at >= _utc(start),
                    ParticipationRecord.created_at <= _utc(end),
                )
                .delete(synchronize_session=False)
            )
            db.commit()
            return count

        return await self._run(op)

    async def close(self) -> None:
        bind = self._session_factory.kw.get("bind")
        if bind is not None:
            await run_in_threadpool(bind.dispose)
