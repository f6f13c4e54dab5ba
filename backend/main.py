"""
FastAPI application entry point for the LPlate payments backend.
"""
import logging
import multiprocessing
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from app.config import settings
from app.errors import register_error_handlers
from app.logging_config import setup_logging
from app.rate_limit import limiter
from app.routers import bookings, connect, credits, health, payments, payouts, webhooks
from app.services.scheduler import start_scheduler, stop_scheduler

# Get logger for request logging
logger = logging.getLogger(__name__)

# Configure logging
setup_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info("Starting up LPlate payments API...")

    # Only the first uvicorn worker runs the payout scheduler
    is_master = multiprocessing.current_process().name == "SpawnProcess-1"
    if is_master:
        start_scheduler()

    yield

    logger.info("Shutting down LPlate payments API...")
    if is_master:
        stop_scheduler()


app = FastAPI(
    title="LPlate Payments API",
    description="Commission, lesson credit, payout and Stripe webhook backend for the LPlate marketplace",
    version=settings.VERSION,
    lifespan=lifespan
)

# Configure rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

register_error_handlers(app)

# In development mode, allow all origins for easier local development
if settings.ENVIRONMENT == "development" or settings.DEBUG:
    cors_origins = ["*"]
else:
    cors_origins = (
        ["*"] if settings.CORS_ORIGINS == "*"
        else [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with method, path and response status."""
    logger.info(f"Request: {request.method} {request.url.path}")
    response = await call_next(request)
    logger.info(f"Response: {request.method} {request.url.path} | Status: {response.status_code}")
    return response


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# Register routers
app.include_router(health.router, tags=["health"])
app.include_router(payments.router, tags=["payments"])
app.include_router(credits.router, tags=["credits"])
app.include_router(bookings.router, tags=["bookings"])
app.include_router(payouts.router, tags=["payouts"])
app.include_router(connect.router, tags=["connect"])
app.include_router(webhooks.router, tags=["webhooks"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
