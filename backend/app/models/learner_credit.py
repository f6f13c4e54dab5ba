"""Denormalized credit balance per learner and instructor."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class LearnerCredit(Base):
    """Fast-read balance row, rebuilt in the same unit of work as every ledger append."""

    __tablename__ = "learner_credits"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    learner_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.uuid"), nullable=False)
    instructor_id: Mapped[str] = mapped_column(String(36), ForeignKey("instructors.uuid"), nullable=False)

    minutes_purchased: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    minutes_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    minutes_adjusted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # REFUND + ADJUSTMENT deltas
    hourly_rate_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    purchase_payment_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("payments.uuid"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("learner_id", "instructor_id", name="uq_learner_credit_pair"),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def remaining_minutes(self) -> int:
        return self.minutes_purchased - self.minutes_used + self.minutes_adjusted

    def __repr__(self) -> str:
        return (
            f"<LearnerCredit(learner_id={self.learner_id}, instructor_id={self.instructor_id}, "
            f"remaining_minutes={self.remaining_minutes})>"
        )
