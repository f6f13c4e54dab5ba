"""Schemas for payment endpoints."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class PaymentQuoteRequest(BaseModel):
    """Request a fee and discount breakdown without charging anything."""

    amount_pence: int = Field(..., description="Lesson price before discount and platform fee, in pence")
    discount_code: Optional[str] = Field(None, description="Discount code to try")


class PaymentQuoteResponse(BaseModel):
    """Fee and discount breakdown for a base amount."""

    original_amount_pence: int
    discount_amount_pence: int
    discounted_amount_pence: int
    platform_fee_pence: int
    total_amount_pence: int
    instructor_amount_pence: int
    fee_percentage: int
    discount_code: Optional[str] = None
    discount_applied: bool = False
    currency: str = "gbp"


class PaymentCreateRequest(BaseModel):
    """Request to charge a learner for a lesson.

    The base amount is ``amount_pence`` when given, else ``hours`` at the
    instructor's rate, else the linked booking's price.
    """

    learner_id: str = Field(..., description="Learner profile UUID")
    instructor_id: str = Field(..., description="Instructor UUID")
    booking_id: Optional[str] = Field(None, description="Booking the payment is for")
    amount_pence: Optional[int] = Field(None, description="Base amount in pence")
    hours: Optional[float] = Field(None, description="Lesson length in hours")
    payment_method_id: Optional[str] = Field(None, description="Stripe PaymentMethod to confirm with")
    discount_code: Optional[str] = Field(None, description="Discount code to apply")
    description: Optional[str] = Field(None, description="Charge description shown to the learner")
    idempotency_key: Optional[str] = Field(None, description="Idempotency key for deduplication")


class PaymentResponse(BaseModel):
    """A stored payment with its fee breakdown."""

    uuid: str
    learner_id: str
    instructor_id: str
    booking_id: Optional[str] = None
    total_amount_pence: int
    platform_fee_pence: int
    instructor_amount_pence: int
    discount_amount_pence: int
    discount_code: Optional[str] = None
    currency: str
    payment_method: str
    purpose: str
    hours: Optional[float] = None
    stripe_payment_intent_id: str
    destination_account_id: Optional[str] = None
    description: Optional[str] = None
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentCreateResponse(BaseModel):
    """Response after creating a payment intent."""

    payment: PaymentResponse
    client_secret: Optional[str] = Field(None, description="Stripe PaymentIntent client secret")
    publishable_key: str = Field(..., description="Stripe publishable key")
    discount_applied: bool = False


class PaymentDetailResponse(BaseModel):
    """Stored payment plus the live PaymentIntent status from Stripe."""

    payment: PaymentResponse
    intent_status: Optional[str] = Field(None, description="Current PaymentIntent status, if Stripe answered")
