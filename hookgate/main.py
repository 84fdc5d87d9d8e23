"""
Hookgate - signed webhook ingestion for Stripe, GitHub and Clerk.
Main FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from hookgate.config import get_settings
from hookgate.api.router import api_router
from hookgate.api.health import APP_VERSION
from hookgate.schemas.webhook_payloads import WebhookSource
from hookgate.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("hookgate")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)
        response.headers["X-Correlation-ID"] = cid
        return response


def log_security_warnings(settings) -> list[str]:
    """Warn about unsigned providers and verification bypasses. Returns the warnings."""
    warnings = []
    bypassed = settings.skip_verification_sources
    for source in WebhookSource:
        if source.value in bypassed:
            continue
        if not settings.webhook_secret_for(source.value):
            warnings.append(
                f"{source.value.upper()}_WEBHOOK_SECRET not set - "
                f"{source.value} webhooks will be rejected with 500 until it is configured."
            )
    if settings.test_webhook_secret == "test-secret-dev-only" and settings.app_env == "production":
        warnings.append("TEST_WEBHOOK_SECRET is the development default in production.")
    for message in warnings:
        logger.warning(message)

    for source in sorted(bypassed):
        logger.critical(
            "SECURITY: signature verification is DISABLED for %s webhooks "
            "(WEBHOOK_SKIP_VERIFICATION_SOURCES)", source,
        )
    return warnings


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("Hookgate starting up (env=%s)", settings.app_env)

    log_security_warnings(settings)
    if not settings.admin_api_key:
        logger.warning("ADMIN_API_KEY not set - the webhook retry endpoint is disabled.")

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    yield

    logger.info("Hookgate shutting down")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Hookgate",
        description="Signed webhook ingestion with idempotent, audited dispatch",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    application.add_middleware(CorrelationIdMiddleware)

    # Include all routes
    application.include_router(api_router)

    return application


app = create_app()
