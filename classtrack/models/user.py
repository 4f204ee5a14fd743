from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from classtrack.db.base_class import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    username: Mapped[str] = mapped_column(
        String(150), unique=True, index=True, nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    # "student" | "instructor"
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="student")

    participation_requests = relationship(
        "ParticipationRequest", back_populates="student", cascade="all, delete-orphan"
    )

    participation_records = relationship(
        "ParticipationRecord", back_populates="student", cascade="all, delete-orphan"
    )
