"""Thin wrapper over the Stripe SDK.

Routes and services receive a :class:`PaymentGateway` instead of calling the
``stripe`` module with a global API key, so tests can hand in a fake and a
process can talk to more than one Stripe account.
"""
import logging
from typing import Any, Dict, Optional

import stripe

from app.config import settings

logger = logging.getLogger(__name__)


class PaymentGateway:
    """Stripe operations used by the marketplace, bound to one API key."""

    def __init__(self, api_key: str, api_version: Optional[str] = None, currency: str = "gbp"):
        self.api_key = api_key
        self.api_version = api_version
        self.currency = currency

    def _options(self, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        options: Dict[str, Any] = {"api_key": self.api_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        if idempotency_key:
            options["idempotency_key"] = idempotency_key
        return options

    # ── Payments ──────────────────────────────────────────────────────────────

    def create_payment_intent(
        self,
        *,
        amount: int,
        metadata: Dict[str, str],
        description: str,
        payment_method: Optional[str] = None,
        application_fee_amount: Optional[int] = None,
        destination: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ):
        """Create (and confirm, when a payment method is given) a PaymentIntent."""
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": self.currency,
            "metadata": metadata,
            "description": description,
        }
        if payment_method:
            params["payment_method"] = payment_method
            params["confirm"] = True
            params["automatic_payment_methods"] = {"enabled": True, "allow_redirects": "never"}
        if destination:
            params["transfer_data"] = {"destination": destination}
            if application_fee_amount is not None:
                params["application_fee_amount"] = application_fee_amount
        return stripe.PaymentIntent.create(**params, **self._options(idempotency_key))

    def retrieve_payment_intent(self, payment_intent_id: str):
        return stripe.PaymentIntent.retrieve(payment_intent_id, **self._options())

    # ── Payouts ───────────────────────────────────────────────────────────────

    def create_transfer(
        self,
        *,
        amount: int,
        destination: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
    ):
        """Move *amount* pence from the platform balance to a connected account."""
        return stripe.Transfer.create(
            amount=amount,
            currency=self.currency,
            destination=destination,
            metadata=metadata,
            **self._options(idempotency_key),
        )

    # ── Connect ───────────────────────────────────────────────────────────────

    def create_account(self, *, email: str, name: str, account_type: str, country: str):
        """Create an individual Connect account with a weekly Friday payout schedule."""
        first_name, _, last_name = name.partition(" ")
        return stripe.Account.create(
            type=account_type,
            country=country,
            email=email,
            capabilities={
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            business_type="individual",
            individual={"email": email, "first_name": first_name, "last_name": last_name},
            settings={
                "payouts": {
                    "schedule": {"interval": "weekly", "weekly_anchor": "friday"},
                },
            },
            **self._options(),
        )

    def retrieve_account(self, account_id: str):
        return stripe.Account.retrieve(account_id, **self._options())

    def create_account_link(self, *, account_id: str, return_url: str, refresh_url: str, link_type: str):
        return stripe.AccountLink.create(
            account=account_id,
            return_url=return_url,
            refresh_url=refresh_url,
            type=link_type,
            **self._options(),
        )

    def create_login_link(self, account_id: str):
        return stripe.Account.create_login_link(account_id, **self._options())

    # ── Webhooks ──────────────────────────────────────────────────────────────

    @staticmethod
    def construct_event(payload: bytes, sig_header: str, secret: str):
        """Verify a webhook signature and parse the event.

        Raises ValueError for an unparsable payload and
        stripe.SignatureVerificationError for a bad signature.
        """
        return stripe.Webhook.construct_event(payload, sig_header, secret)


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency building a gateway from settings."""
    return PaymentGateway(
        api_key=settings.STRIPE_SECRET_KEY,
        api_version=settings.STRIPE_API_VERSION,
        currency=settings.CURRENCY,
    )
