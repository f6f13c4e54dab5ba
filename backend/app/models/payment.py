"""Payment model: one row per learner charge or credit-funded lesson."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, Float, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Payment(Base):
    """A learner payment.

    Every column except ``status`` is written once at checkout. ``status`` is
    only moved by the webhook reconciler: ``pending -> succeeded | failed`` and
    ``succeeded -> refunded``. A stale concurrent status write is rejected by
    the version counter. All amounts are in pence.
    """

    __tablename__ = "payments"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    learner_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.uuid"), nullable=False)
    instructor_id: Mapped[str] = mapped_column(String(36), ForeignKey("instructors.uuid"), nullable=False)
    booking_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("bookings.uuid"), nullable=True)

    total_amount_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    instructor_amount_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_amount_pence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="gbp")
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="card")  # "card" | "credit"
    purpose: Mapped[str] = mapped_column(String(20), nullable=False, default="lesson")  # "lesson" | "credit_purchase"
    hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    stripe_payment_intent_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    # Set when the charge itself routed the instructor share (destination charge);
    # such payments are never included in a payout.
    destination_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_payment_booking_id", "booking_id"),
        Index("idx_payment_instructor_status", "instructor_id", "status"),
        Index("idx_payment_learner_id", "learner_id"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Payment(uuid={self.uuid}, intent={self.stripe_payment_intent_id}, status={self.status})>"
