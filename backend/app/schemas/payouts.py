"""Schemas for payout endpoints."""
from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class PayoutRunRequest(BaseModel):
    payout_date: Optional[date] = Field(None, description="Friday to pay out for (ISO date); defaults to today")


class InstructorPayoutResultResponse(BaseModel):
    instructor_id: str
    success: bool
    message: str = ""
    payout_id: Optional[str] = None
    stripe_transfer_id: Optional[str] = None
    amount_pence: int = 0
    lesson_count: int = 0
    error: Optional[str] = None

    class Config:
        from_attributes = True


class PayoutBatchResponse(BaseModel):
    """Summary of one Friday payout run."""

    payout_date: date
    lesson_period_start: date
    lesson_period_end: date
    total_instructors: int
    successful_payouts: int
    failed_payouts: int
    results: List[InstructorPayoutResultResponse]

    class Config:
        from_attributes = True


class PayoutPaymentResponse(BaseModel):
    payment_id: str
    booking_id: Optional[str] = None
    instructor_amount_pence: int
    platform_fee_pence: int


class PayoutResponse(BaseModel):
    uuid: str
    instructor_id: str
    total_amount_pence: int
    platform_fee_pence: int
    net_amount_pence: int
    payout_date: date
    lesson_period_start: date
    lesson_period_end: date
    lesson_count: int
    status: str
    stripe_transfer_id: Optional[str] = None
    retry_count: int
    last_error: Optional[str] = None
    created_at: datetime
    payments: List[PayoutPaymentResponse] = Field(default_factory=list)


class PayoutListResponse(BaseModel):
    """Paginated payout history."""

    payouts: List[PayoutResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
