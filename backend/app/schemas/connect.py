"""Schemas for Stripe Connect onboarding endpoints."""
from typing import Optional
from pydantic import BaseModel, Field


class ConnectAccountRequest(BaseModel):
    """Start or resume onboarding for an instructor."""

    instructor_id: str = Field(..., description="Instructor UUID")
    return_url: Optional[str] = Field(None, description="Where Stripe sends the instructor when onboarding ends")
    refresh_url: Optional[str] = Field(None, description="Where Stripe sends the instructor when the link expires")


class ConnectOnboardResponse(BaseModel):
    """Response with Stripe Account Link URL for onboarding."""

    account_id: str = Field(..., description="Stripe Connect account ID")
    url: str = Field(..., description="Stripe Account Link URL for hosted onboarding")


class ConnectStatusResponse(BaseModel):
    """Response with Stripe Connect onboarding status."""

    status: str = Field(..., description="Onboarding status: not_started | pending | complete")
    account_id: Optional[str] = Field(None, description="Stripe Connect account ID if exists")
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    requirements_due: list[str] = Field(default_factory=list, description="Fields currently or past due in Stripe")
    disabled_reason: Optional[str] = Field(None, description="Reason account is disabled, if any")


class ConnectLoginLinkRequest(BaseModel):
    instructor_id: str = Field(..., description="Instructor UUID")


class ConnectDashboardLinkResponse(BaseModel):
    """Response with Stripe Express Dashboard login link."""

    url: str = Field(..., description="Stripe Express Dashboard login URL")
