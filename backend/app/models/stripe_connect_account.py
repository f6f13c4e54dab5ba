"""Stripe Connect account model for instructor payouts."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, Boolean, DateTime, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class StripeConnectAccount(Base):
    """Capability flags mirrored from Stripe by account.* webhooks."""

    __tablename__ = "stripe_connect_accounts"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    instructor_id: Mapped[str] = mapped_column(String(36), ForeignKey("instructors.uuid"), unique=True, nullable=False)
    stripe_account_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    account_type: Mapped[str] = mapped_column(String(20), nullable=False, default="express")

    charges_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    details_submitted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requirements: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<StripeConnectAccount(instructor_id={self.instructor_id}, stripe_account_id={self.stripe_account_id})>"
