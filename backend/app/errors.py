"""Domain errors and the FastAPI handlers that render them as JSON."""
import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class LPlateError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, code: Optional[str] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        body.update(self.extra)
        return body


class ValidationError(LPlateError):
    """Missing or malformed request fields."""

    status_code = 400
    code = "validation_error"


class InvalidAmount(ValidationError):
    """A money amount that is negative, fractional or not finite."""

    code = "invalid_amount"


class NotFoundError(LPlateError):
    status_code = 404
    code = "not_found"


class InsufficientCredit(LPlateError):
    """A credit consumption larger than the remaining balance."""

    status_code = 400
    code = "insufficient_credit"

    def __init__(self, available_minutes: int, requested_minutes: int):
        super().__init__(
            "Insufficient credit",
            available_minutes=available_minutes,
            requested_minutes=requested_minutes,
        )
        self.available_minutes = available_minutes
        self.requested_minutes = requested_minutes


class InvalidPayoutDate(LPlateError):
    status_code = 400
    code = "invalid_payout_date"


class InvalidStatusTransition(LPlateError):
    status_code = 409
    code = "invalid_status_transition"


class ExternalProviderError(LPlateError):
    """The payment provider rejected or failed a call."""

    status_code = 500
    code = "provider_error"


def handle_stripe_error(error: Exception) -> ExternalProviderError:
    """Wrap a Stripe SDK exception, passing its message and code through."""
    if isinstance(error, stripe.StripeError):
        message = error.user_message or str(error) or "Payment provider error"
        return ExternalProviderError(message, code=error.code or "provider_error")
    return ExternalProviderError(str(error) or "An unexpected error occurred")


def is_retryable_stripe_error(error: Exception) -> bool:
    """Connection failures, rate limits and provider-side 5xx errors are worth retrying."""
    return isinstance(error, (stripe.APIConnectionError, stripe.APIError, stripe.RateLimitError))


def register_error_handlers(app: FastAPI) -> None:
    """Render every error as a JSON body so no request crashes the process."""

    @app.exception_handler(LPlateError)
    async def lplate_error_handler(request: Request, exc: LPlateError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "code": "http_error"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=jsonable_encoder({
                "error": "Missing or invalid fields",
                "code": "validation_error",
                "errors": exc.errors(),
            }),
        )

    @app.exception_handler(stripe.StripeError)
    async def stripe_error_handler(request: Request, exc: stripe.StripeError) -> JSONResponse:
        wrapped = handle_stripe_error(exc)
        logger.error(f"Stripe error on {request.method} {request.url.path}: {wrapped.message}")
        return JSONResponse(status_code=wrapped.status_code, content=wrapped.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"error": "An unexpected error occurred", "code": "internal_error"},
        )
