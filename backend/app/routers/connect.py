"""Stripe Connect onboarding router for instructor payouts."""
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.errors import NotFoundError, handle_stripe_error
from app.models.profile import Profile
from app.models.stripe_connect_account import StripeConnectAccount
from app.routers.payments import get_active_instructor
from app.schemas.connect import (
    ConnectAccountRequest, ConnectOnboardResponse, ConnectStatusResponse,
    ConnectLoginLinkRequest, ConnectDashboardLinkResponse,
)
from app.services.stripe_gateway import PaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)

router = APIRouter()


async def _stored_account(db: AsyncSession, instructor_id: str) -> Optional[StripeConnectAccount]:
    result = await db.execute(
        select(StripeConnectAccount).where(StripeConnectAccount.instructor_id == instructor_id)
    )
    return result.scalar_one_or_none()


@router.post("/api/stripe-connect/account", response_model=ConnectOnboardResponse)
async def create_onboard_link(
    body: ConnectAccountRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Create a Stripe Connect account (if needed) and an Account Link.

    - Creates an individual account with a weekly Friday payout schedule
      when the instructor has none yet
    - Returns an onboarding link, or an update link once onboarding is done
    """
    await get_active_instructor(db, body.instructor_id)
    profile = await db.get(Profile, body.instructor_id)
    stored = await _stored_account(db, body.instructor_id)

    try:
        if stored is None:
            account = gateway.create_account(
                email=profile.email,
                name=profile.name,
                account_type=settings.STRIPE_ACCOUNT_TYPE,
                country=settings.STRIPE_ACCOUNT_COUNTRY,
            )
            stored = StripeConnectAccount(
                instructor_id=body.instructor_id,
                stripe_account_id=account.id,
                account_type=settings.STRIPE_ACCOUNT_TYPE,
                charges_enabled=bool(account.charges_enabled),
                payouts_enabled=bool(account.payouts_enabled),
                details_submitted=bool(account.details_submitted),
            )
            db.add(stored)
            await db.commit()
            logger.info(f"Connect account {account.id} created for instructor {body.instructor_id}")

        link_type = (
            "account_update" if (stored.charges_enabled and stored.details_submitted)
            else "account_onboarding"
        )
        account_link = gateway.create_account_link(
            account_id=stored.stripe_account_id,
            return_url=body.return_url or f"{settings.SITE_URL}/instructor/settings?stripe=success",
            refresh_url=body.refresh_url or f"{settings.SITE_URL}/instructor/settings?stripe=refresh",
            link_type=link_type,
        )
    except stripe.StripeError as e:
        logger.error(f"Connect onboarding failed for instructor {body.instructor_id}: {e}")
        raise handle_stripe_error(e)

    return ConnectOnboardResponse(account_id=stored.stripe_account_id, url=account_link.url)


@router.get("/api/stripe-connect/account", response_model=ConnectStatusResponse)
async def get_connect_status(
    instructor_id: str,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Onboarding status for an instructor, refreshed from Stripe.

    - "not_started" when no account exists
    - "pending" while Stripe still needs details
    - "complete" once charges are enabled and details submitted
    """
    stored = await _stored_account(db, instructor_id)
    if stored is None:
        return ConnectStatusResponse(status="not_started", account_id=None)

    try:
        account = gateway.retrieve_account(stored.stripe_account_id)
    except stripe.StripeError as e:
        logger.error(f"Could not retrieve Connect account {stored.stripe_account_id}: {e}")
        raise handle_stripe_error(e)

    reqs = account.get("requirements") or {}
    requirements_due = sorted(set(
        (reqs.get("currently_due") or []) + (reqs.get("past_due") or [])
    ))

    stored.charges_enabled = bool(account.get("charges_enabled"))
    stored.payouts_enabled = bool(account.get("payouts_enabled"))
    stored.details_submitted = bool(account.get("details_submitted"))
    await db.commit()

    complete = stored.charges_enabled and stored.details_submitted
    return ConnectStatusResponse(
        status="complete" if complete else "pending",
        account_id=stored.stripe_account_id,
        charges_enabled=stored.charges_enabled,
        payouts_enabled=stored.payouts_enabled,
        details_submitted=stored.details_submitted,
        requirements_due=requirements_due,
        disabled_reason=reqs.get("disabled_reason") or None,
    )


@router.put("/api/stripe-connect/account", response_model=ConnectDashboardLinkResponse)
async def get_dashboard_link(
    body: ConnectLoginLinkRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Login link to the Stripe Express Dashboard."""
    stored = await _stored_account(db, body.instructor_id)
    if stored is None:
        raise NotFoundError("No Stripe Connect account found")

    try:
        login_link = gateway.create_login_link(stored.stripe_account_id)
    except stripe.StripeError as e:
        logger.error(f"Login link failed for {stored.stripe_account_id}: {e}")
        raise handle_stripe_error(e)

    return ConnectDashboardLinkResponse(url=login_link.url)
