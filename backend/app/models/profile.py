"""Profile model shared by learners and instructors."""
from datetime import datetime
from uuid import uuid4
from sqlalchemy import String, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Profile(Base):
    """A marketplace user. Authentication lives with the hosted auth provider."""

    __tablename__ = "profiles"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="learner")  # "learner" | "instructor"

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_profile_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<Profile(uuid={self.uuid}, email={self.email}, role={self.role})>"
