"""Instructor model holding the listed hourly rate."""
from datetime import datetime
from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Instructor(Base):
    """Instructor profile extension. Shares its primary key with ``profiles``."""

    __tablename__ = "instructors"

    uuid: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.uuid"), primary_key=True)
    hourly_rate_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    postcode: Mapped[str | None] = mapped_column(String(10), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Instructor(uuid={self.uuid}, hourly_rate_pence={self.hourly_rate_pence})>"
