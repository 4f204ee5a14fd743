from datetime import datetime
from typing import Literal, Optional

from pydantic import Field, field_validator

from classtrack.schemas.user import StudentProfile
from classtrack.schemas.utils import CamelModel, as_utc

RequestStatus = Literal["open", "closed"]


class ParticipationRequestCreate(CamelModel):
    note: Optional[str] = Field(default=None, max_length=2000)


class ParticipationRequestRead(CamelModel):
    id: int
    student_id: int
    note: Optional[str] = None
    status: RequestStatus
    created_at: datetime
    closed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("created_at", "closed_at")
    @classmethod
    def ensure_utc(cls, value):
        return as_utc(value)

    @property
    def is_open(self) -> bool:
        return self.status == "open"


class ParticipationRequestWithStudent(ParticipationRequestRead):
    student: StudentProfile
