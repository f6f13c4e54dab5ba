"""Lesson payment router: quotes, payment intents and payment lookup."""
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.errors import NotFoundError, ValidationError, handle_stripe_error
from app.models.booking import Booking
from app.models.instructor import Instructor
from app.models.payment import Payment
from app.models.stripe_connect_account import StripeConnectAccount
from app.rate_limit import limiter
from app.schemas.payments import (
    PaymentQuoteRequest, PaymentQuoteResponse, PaymentCreateRequest,
    PaymentCreateResponse, PaymentDetailResponse, PaymentResponse,
)
from app.services.commission import payment_from_hours
from app.services.discounts import discounted_amounts, record_discount_usage, resolve_discount
from app.services.stripe_gateway import PaymentGateway, get_payment_gateway
from app.services.webhooks import confirm_payment

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_active_instructor(db: AsyncSession, instructor_id: str) -> Instructor:
    instructor = await db.get(Instructor, instructor_id)
    if instructor is None or not instructor.is_active:
        raise NotFoundError("Instructor not found")
    return instructor


async def get_learner_booking(db: AsyncSession, booking_id: str, learner_id: str, instructor_id: str) -> Booking:
    booking = await db.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    if booking.learner_id != learner_id or booking.instructor_id != instructor_id:
        raise ValidationError("Booking does not belong to this learner and instructor")
    return booking


def _base_amount(body: PaymentCreateRequest, instructor: Instructor, booking: Optional[Booking]) -> int:
    if body.amount_pence is not None:
        return body.amount_pence
    if body.hours is not None:
        return payment_from_hours(body.hours, instructor.hourly_rate_pence)
    if booking is not None:
        return booking.price_pence
    raise ValidationError("One of amount_pence, hours or booking_id is required")


async def _destination_account(db: AsyncSession, instructor_id: str) -> Optional[str]:
    """Connected account to route the charge to, when destination charges are on."""
    if not settings.STRIPE_DESTINATION_CHARGES:
        return None
    result = await db.execute(
        select(StripeConnectAccount).where(StripeConnectAccount.instructor_id == instructor_id)
    )
    account = result.scalar_one_or_none()
    if account is None or not account.charges_enabled:
        return None
    return account.stripe_account_id


@router.post("/api/payments/quote", response_model=PaymentQuoteResponse)
async def quote_payment(
    body: PaymentQuoteRequest,
    db: AsyncSession = Depends(get_db),
):
    """Discount and platform fee breakdown for an amount, without charging."""
    resolved = await resolve_discount(db, body.discount_code, body.amount_pence)
    amounts = discounted_amounts(body.amount_pence, resolved.discount_amount_pence)
    return PaymentQuoteResponse(
        original_amount_pence=amounts.original_amount_pence,
        discount_amount_pence=amounts.discount_amount_pence,
        discounted_amount_pence=amounts.discounted_amount_pence,
        platform_fee_pence=amounts.platform_fee_pence,
        total_amount_pence=amounts.total_amount_pence,
        instructor_amount_pence=amounts.instructor_amount_pence,
        fee_percentage=settings.PLATFORM_FEE_PERCENTAGE,
        discount_code=resolved.code,
        discount_applied=resolved.applied,
        currency=settings.CURRENCY,
    )


@router.post("/api/payments", response_model=PaymentCreateResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.PAYMENTS_RATE_LIMIT)
async def create_payment(
    request: Request,
    body: PaymentCreateRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Charge a learner for a lesson.

    - Applies the discount code (if usable) to the base amount
    - Adds the platform fee on the discounted amount
    - Creates a PaymentIntent, confirming it when a payment method is given
    - Stores the payment; its status is settled by the payments webhook
    """
    instructor = await get_active_instructor(db, body.instructor_id)
    booking = None
    if body.booking_id:
        booking = await get_learner_booking(db, body.booking_id, body.learner_id, body.instructor_id)

    base = _base_amount(body, instructor, booking)
    resolved = await resolve_discount(db, body.discount_code, base)
    amounts = discounted_amounts(base, resolved.discount_amount_pence)
    destination = await _destination_account(db, body.instructor_id)

    metadata = {
        "type": "lesson",
        "learner_id": body.learner_id,
        "instructor_id": body.instructor_id,
        "booking_id": body.booking_id or "",
        "discount_code": resolved.code if resolved.applied else "",
        "platform_fee_pence": str(amounts.platform_fee_pence),
        "instructor_amount_pence": str(amounts.instructor_amount_pence),
    }
    description = body.description or "Driving lesson"

    try:
        intent = gateway.create_payment_intent(
            amount=amounts.total_amount_pence,
            metadata=metadata,
            description=description,
            payment_method=body.payment_method_id,
            application_fee_amount=amounts.platform_fee_pence if destination else None,
            destination=destination,
            idempotency_key=body.idempotency_key,
        )
    except stripe.StripeError as e:
        logger.error(f"PaymentIntent creation failed for learner {body.learner_id}: {e}")
        raise handle_stripe_error(e)

    # A replayed idempotency key hands back the intent we already stored
    existing = await db.execute(select(Payment).where(Payment.stripe_payment_intent_id == intent.id))
    payment = existing.scalar_one_or_none()
    if payment is not None:
        return PaymentCreateResponse(
            payment=PaymentResponse.model_validate(payment),
            client_secret=intent.client_secret,
            publishable_key=settings.STRIPE_PUBLISHABLE_KEY,
            discount_applied=resolved.applied,
        )

    payment = Payment(
        learner_id=body.learner_id,
        instructor_id=body.instructor_id,
        booking_id=body.booking_id,
        total_amount_pence=amounts.total_amount_pence,
        platform_fee_pence=amounts.platform_fee_pence,
        instructor_amount_pence=amounts.instructor_amount_pence,
        discount_amount_pence=amounts.discount_amount_pence,
        discount_code=resolved.code if resolved.applied else None,
        currency=settings.CURRENCY,
        payment_method="card",
        purpose="lesson",
        stripe_payment_intent_id=intent.id,
        destination_account_id=destination,
        description=description,
        status="pending",
    )
    try:
        db.add(payment)
        await db.flush()
        if intent.status == "succeeded":
            await confirm_payment(db, payment, metadata)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    response = PaymentCreateResponse(
        payment=PaymentResponse.model_validate(payment),
        client_secret=intent.client_secret,
        publishable_key=settings.STRIPE_PUBLISHABLE_KEY,
        discount_applied=resolved.applied,
    )
    logger.info(
        f"Payment {payment.uuid} created: total {amounts.total_amount_pence}, "
        f"fee {amounts.platform_fee_pence}, instructor {amounts.instructor_amount_pence}"
    )
    await record_discount_usage(db, payment.discount_code, payment.discount_amount_pence)
    return response


@router.get("/api/payments/{payment_id}", response_model=PaymentDetailResponse)
async def get_payment(
    payment_id: str,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Stored payment breakdown plus the live PaymentIntent status."""
    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found")

    intent_status = None
    if payment.payment_method == "card":
        try:
            intent_status = gateway.retrieve_payment_intent(payment.stripe_payment_intent_id).status
        except stripe.StripeError as e:
            logger.warning(f"Could not retrieve PaymentIntent {payment.stripe_payment_intent_id}: {e}")

    return PaymentDetailResponse(
        payment=PaymentResponse.model_validate(payment),
        intent_status=intent_status,
    )
