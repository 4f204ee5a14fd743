from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from classtrack.schemas.utils import CamelModel

Role = Literal["student", "instructor"]


class UserCreate(CamelModel):
    username: str = Field(min_length=3, max_length=150)
    email: EmailStr
    name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=8, max_length=72)
    role: Role = "student"
    # required for role="instructor"; a correct code also grants it
    professor_code: Optional[str] = Field(default=None, max_length=255)


class UserRead(BaseModel):
    id: int
    username: str
    email: EmailStr
    name: str
    role: Role

    class Config:
        from_attributes = True


class UserInDB(UserRead):
    hashed_password: str


class StudentProfile(BaseModel):
    """Public view of a student: never carries credentials."""

    id: int
    name: str
    username: str

    class Config:
        from_attributes = True
