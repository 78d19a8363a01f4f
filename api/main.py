"""
FastAPI API Service Entry Point
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import stripe
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import text

from api.routes import appointments, payments, slots
from api.routes import stripe as stripe_routes
from booking.errors import BookingError
from database.connection import get_async_session
from shared.config import get_settings
from shared.logging_config import configure_logging
from shared.startup_validator import StartupValidationError, validate_startup_config

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)


# =========================================================================
# STARTUP VALIDATION
# =========================================================================
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Validate critical configuration at startup.

    This catches misconfigurations early (fail-fast) rather than at runtime
    when a webhook or a booking request reaches the broken path.

    Raises:
        StartupValidationError: If critical configuration is invalid
    """
    logger.info("Running API startup configuration validation...")
    try:
        await validate_startup_config()
        logger.info("API startup configuration validation passed")
    except StartupValidationError as e:
        logger.critical(f"API startup blocked due to configuration errors: {e}")
        raise  # FastAPI will fail to start
    yield


app = FastAPI(
    title="Booking Engine API",
    version="1.0.0",
    lifespan=lifespan,
)

# Load settings for CORS configuration
settings = get_settings()
origins = settings.CORS_ORIGINS.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Include webhook routers
app.include_router(stripe_routes.router, prefix="/webhook", tags=["webhooks"])

# Include booking routers
app.include_router(appointments.router)
app.include_router(slots.router)
app.include_router(payments.router)


@app.exception_handler(BookingError)
async def booking_exception_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Map typed booking errors to {"error_code", "error"[, "details"]}."""
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        f"{exc.error_code}: {exc.message}",
        extra={"request_path": request.url.path},
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(stripe.StripeError)
async def stripe_exception_handler(request: Request, exc: stripe.StripeError) -> JSONResponse:
    """Request rejected by Stripe (not an outage)."""
    logger.error(f"Stripe rejected request: {exc}", extra={"request_path": request.url.path})
    return JSONResponse(
        status_code=502,
        content={"error_code": "PAYMENT_GATEWAY_ERROR", "error": "Falha ao processar o pagamento."},
    )


# Exception handler for validation errors
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Return 400 with validation error details."""
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "details": exc.errors(include_url=False)},
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Checks:
    - PostgreSQL connectivity (SELECT 1 query)

    Returns:
        200 OK if all systems healthy
        503 Service Unavailable if degraded
    """
    health_status = {
        "status": "healthy",
        "postgres": "unknown",
    }
    status_code = 200

    try:
        async with get_async_session() as session:
            await session.execute(text("SELECT 1"))
            health_status["postgres"] = "connected"
    except Exception as e:
        logger.warning(f"Health check: database unreachable: {e}")
        health_status["postgres"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    return JSONResponse(status_code=status_code, content=health_status)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "Booking Engine API - Use /health for health checks"}
