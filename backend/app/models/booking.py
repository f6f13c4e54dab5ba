"""Booking (lesson) model."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base

BOOKING_STATUSES = ("pending", "confirmed", "completed", "cancelled")


class Booking(Base):
    """A lesson between a learner and an instructor.

    Status moves ``pending -> confirmed -> completed``, or to ``cancelled``
    from ``pending`` or ``confirmed``.
    """

    __tablename__ = "bookings"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    learner_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.uuid"), nullable=False)
    instructor_id: Mapped[str] = mapped_column(String(36), ForeignKey("instructors.uuid"), nullable=False)
    start_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    price_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_booking_instructor_status_end", "instructor_id", "status", "end_at"),
        Index("idx_booking_learner_id", "learner_id"),
    )

    def __repr__(self) -> str:
        return f"<Booking(uuid={self.uuid}, instructor_id={self.instructor_id}, status={self.status})>"
