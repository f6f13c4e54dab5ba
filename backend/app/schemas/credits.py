"""Schemas for lesson credit endpoints."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class CreditBalanceResponse(BaseModel):
    """Cached credit balance for one learner/instructor pair."""

    uuid: str
    learner_id: str
    instructor_id: str
    minutes_purchased: int
    minutes_used: int
    minutes_adjusted: int
    remaining_minutes: int
    hourly_rate_pence: int
    is_active: bool
    updated_at: datetime

    class Config:
        from_attributes = True


class CreditListResponse(BaseModel):
    credits: List[CreditBalanceResponse]


class CreditUseRequest(BaseModel):
    """Spend credit hours on a lesson."""

    learner_id: str = Field(..., description="Learner profile UUID")
    instructor_id: str = Field(..., description="Instructor UUID")
    hours: float = Field(..., description="Hours to consume")
    booking_id: Optional[str] = Field(None, description="Booking the credit pays for")


class CreditUseResponse(BaseModel):
    payment_id: str
    minutes_consumed: int
    remaining_minutes: int
    total_amount_pence: int
    platform_fee_pence: int
    instructor_amount_pence: int


class CreditPurchaseRequest(BaseModel):
    """Buy prepaid hours with an instructor."""

    learner_id: str = Field(..., description="Learner profile UUID")
    instructor_id: str = Field(..., description="Instructor UUID")
    hours: float = Field(..., description="Hours to buy")
    payment_method_id: Optional[str] = Field(None, description="Stripe PaymentMethod to confirm with")


class CreditPurchaseResponse(BaseModel):
    payment_id: str
    payment_intent_id: str
    client_secret: Optional[str] = None
    status: str = Field(..., description="Stored payment status")
    hours: float
    minutes: int
    total_amount_pence: int
    platform_fee_pence: int
    instructor_amount_pence: int
    credits_granted: bool = Field(..., description="True when the intent succeeded and credit was added")


class LedgerEntryResponse(BaseModel):
    uuid: str
    delta_minutes: int
    source: str
    order_id: Optional[str] = None
    lesson_id: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerResponse(BaseModel):
    """Ledger history for a pair and the balance it replays to."""

    learner_id: str
    instructor_id: str
    entries: List[LedgerEntryResponse]
    balance_minutes: int
