"""Refund model recorded from charge.refunded webhooks."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Refund(Base):
    """A single Stripe refund against a stored payment. Amounts in pence."""

    __tablename__ = "refunds"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    payment_id: Mapped[str] = mapped_column(String(36), ForeignKey("payments.uuid"), nullable=False)
    stripe_refund_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    amount_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee_refund_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    instructor_refund_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="succeeded")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_refund_payment_id", "payment_id"),
    )

    def __repr__(self) -> str:
        return f"<Refund(uuid={self.uuid}, payment_id={self.payment_id}, amount_pence={self.amount_pence})>"
