"""Schemas for Stripe webhook endpoints."""
from pydantic import BaseModel


class WebhookReceivedResponse(BaseModel):
    received: bool = True
