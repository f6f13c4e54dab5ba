"""Health check router."""
from fastapi import APIRouter

from app.config import settings

router = APIRouter()


def _env_checks() -> dict:
    return {
        "database_url": bool(settings.DATABASE_URL),
        "stripe_secret_key": bool(settings.STRIPE_SECRET_KEY),
        "stripe_payments_webhook_secret": bool(settings.STRIPE_PAYMENTS_WEBHOOK_SECRET),
        "stripe_connect_webhook_secret": bool(settings.STRIPE_CONNECT_WEBHOOK_SECRET),
    }


@router.get("/health")
@router.get("/api/health")
async def health_check():
    """Health check endpoint; reports which required settings are present."""
    checks = _env_checks()
    return {
        "status": "ok" if all(checks.values()) else "degraded",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": checks,
    }
