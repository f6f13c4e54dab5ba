"""Weekly payout instructions and their payment links."""
from datetime import date, datetime
from uuid import uuid4
from sqlalchemy import String, Integer, Date, DateTime, Text, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base


class Payout(Base):
    """One transfer instruction per instructor per Friday.

    Status moves ``pending -> processing -> paid``, or to ``failed``. A failed
    payout is re-driven by the retry job, which moves it back to
    ``processing``.
    """

    __tablename__ = "payouts"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    instructor_id: Mapped[str] = mapped_column(String(36), ForeignKey("instructors.uuid"), nullable=False)

    total_amount_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    net_amount_pence: Mapped[int] = mapped_column(Integer, nullable=False)

    payout_date: Mapped[date] = mapped_column(Date, nullable=False)
    lesson_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    lesson_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    lesson_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    stripe_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_transfer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_after: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    payments = relationship("PayoutPayment", back_populates="payout")

    __table_args__ = (
        UniqueConstraint("instructor_id", "payout_date", name="uq_payout_instructor_date"),
        Index("idx_payout_status", "status"),
        Index("idx_payout_stripe_transfer_id", "stripe_transfer_id"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Payout(uuid={self.uuid}, instructor_id={self.instructor_id}, payout_date={self.payout_date}, status={self.status})>"


class PayoutPayment(Base):
    """Links a payout to each payment it settles."""

    __tablename__ = "payout_payments"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    payout_id: Mapped[str] = mapped_column(String(36), ForeignKey("payouts.uuid"), nullable=False)
    payment_id: Mapped[str] = mapped_column(String(36), ForeignKey("payments.uuid"), nullable=False)

    payout = relationship("Payout", back_populates="payments")
    payment = relationship("Payment")

    __table_args__ = (
        UniqueConstraint("payout_id", "payment_id", name="uq_payout_payment"),
    )
