from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from classtrack.db.base_class import Base


class ParticipationRecord(Base):
    __tablename__ = "participation_records"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    points = Column(Integer, nullable=False)
    feedback = Column(Text, nullable=True)
    note = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    # hidden records still count toward the student's total
    hidden = Column(Boolean, nullable=False, default=False)

    student = relationship("User", back_populates="participation_records")
