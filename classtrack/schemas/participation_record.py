from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from classtrack.schemas.user import StudentProfile
from classtrack.schemas.utils import CamelModel, as_utc


class ParticipationRecordCreate(CamelModel):
    student_id: int
    # strict: "5" or 2.0 are rejected rather than coerced
    points: int = Field(ge=0, strict=True)
    feedback: Optional[str] = None
    note: Optional[str] = None
    # resolves this request as a side effect; not stored on the record
    linked_request_id: Optional[int] = None


class ParticipationRecordRead(CamelModel):
    id: int
    student_id: int
    points: int
    feedback: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime
    hidden: bool = False

    class Config:
        from_attributes = True

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, value):
        return as_utc(value)


class ParticipationRecordWithStudent(ParticipationRecordRead):
    student: StudentProfile


class ParticipationRecordVisibilityUpdate(CamelModel):
    hidden: bool


class StudentPoints(CamelModel):
    student_id: int
    points: int


class RecordsDeleted(CamelModel):
    count: int
    date: str
    message: str
