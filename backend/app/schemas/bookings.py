"""Schemas for booking endpoints."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator


class BookingCreateRequest(BaseModel):
    learner_id: str
    instructor_id: str
    start_at: datetime
    end_at: datetime
    price_pence: Optional[int] = Field(None, description="Defaults to the lesson length at the instructor's rate")

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class BookingStatusUpdate(BaseModel):
    status: str = Field(..., description="confirmed | completed | cancelled")


class BookingResponse(BaseModel):
    uuid: str
    learner_id: str
    instructor_id: str
    start_at: datetime
    end_at: datetime
    price_pence: int
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class BookingListResponse(BaseModel):
    """Paginated booking list."""

    bookings: List[BookingResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
