from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import relationship

from classtrack.db.base_class import Base

STATUS_OPEN = "open"
STATUS_CLOSED = "closed"


class ParticipationRequest(Base):
    __tablename__ = "participation_requests"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    note = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=STATUS_OPEN)

    created_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    # at most one open request per student
    __table_args__ = (
        Index(
            "uq_participation_requests_one_open",
            "student_id",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )

    student = relationship("User", back_populates="participation_requests")
