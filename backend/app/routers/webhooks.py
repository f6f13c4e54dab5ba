"""Stripe webhook endpoints.

Two endpoints with separate signing secrets: one for platform payment events
and one for Connect account and transfer events.
"""
import logging

import stripe
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.errors import ValidationError
from app.schemas.webhooks import WebhookReceivedResponse
from app.services.stripe_gateway import PaymentGateway, get_payment_gateway
from app.services.webhooks import reconcile_connect_event, reconcile_payment_event

logger = logging.getLogger(__name__)

router = APIRouter()


async def _verified_event(request: Request, secret: str, gateway: PaymentGateway):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise ValidationError("Missing stripe-signature header", code="missing_signature")

    try:
        return gateway.construct_event(payload, sig_header, secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Webhook signature verification failed on {request.url.path}: {e}")
        raise ValidationError("Webhook signature verification failed", code="invalid_signature")


@router.post("/api/webhooks/stripe-payments", response_model=WebhookReceivedResponse)
async def stripe_payments_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Payment intent, refund and dispute events for platform charges."""
    event = await _verified_event(request, settings.STRIPE_PAYMENTS_WEBHOOK_SECRET, gateway)
    outcome = await reconcile_payment_event(db, event)
    logger.info(f"Payments webhook {event['type']} ({event.get('id')}): {outcome}")
    return WebhookReceivedResponse(received=True)


@router.post("/api/webhooks/stripe-connect", response_model=WebhookReceivedResponse)
async def stripe_connect_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Connected account and transfer events."""
    event = await _verified_event(request, settings.STRIPE_CONNECT_WEBHOOK_SECRET, gateway)
    outcome = await reconcile_connect_event(db, event)
    logger.info(f"Connect webhook {event['type']} ({event.get('id')}): {outcome}")
    return WebhookReceivedResponse(received=True)
