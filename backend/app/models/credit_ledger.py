"""Append-only ledger of lesson-credit movements."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Integer, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base

LEDGER_SOURCES = ("PURCHASE", "CONSUMPTION", "REFUND", "ADJUSTMENT")


class CreditLedgerEntry(Base):
    """One signed movement of credit minutes for a (learner, instructor) pair.

    Rows are never updated or deleted; the balance for a pair is the sum of
    ``delta_minutes``.
    """

    __tablename__ = "credit_ledger"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    learner_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.uuid"), nullable=False)
    instructor_id: Mapped[str] = mapped_column(String(36), ForeignKey("instructors.uuid"), nullable=False)
    delta_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("payments.uuid"), nullable=True)
    lesson_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("bookings.uuid"), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_credit_ledger_pair", "learner_id", "instructor_id"),
        Index("idx_credit_ledger_order_id", "order_id"),
    )

    def __repr__(self) -> str:
        return f"<CreditLedgerEntry(uuid={self.uuid}, source={self.source}, delta_minutes={self.delta_minutes})>"
