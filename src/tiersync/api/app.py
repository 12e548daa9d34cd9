"""
tiersync FastAPI Application

Main application factory and configuration.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse

from tiersync import __version__
from tiersync.config import settings
from tiersync.observability import ErrorReporter, configure_logging
from tiersync.webhooks.service import WebhookService

from .routes import health, webhooks

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
# Lifespan Management
# ══════════════════════════════════════════════════════════════


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(
        "Starting tiersync API",
        version=__version__,
        environment=settings.app_env,
    )

    if not settings.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET is not set; every delivery will be rejected")

    # Initialize database connection pool
    from tiersync.db import close_db, create_schema, init_db

    await init_db()

    # Production schemas are managed by alembic
    if not settings.is_production:
        await create_schema()

    logger.info("tiersync API started successfully")

    yield

    # Shutdown
    logger.info("Shutting down tiersync API")

    await close_db()
    logger.info("tiersync API shutdown complete")


# ══════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════


def create_app(
    service: WebhookService | None = None,
    reporter: ErrorReporter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings)

    app = FastAPI(
        title="tiersync API",
        description="Stripe customer and subscription tier synchronization",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.state.webhook_service = service or WebhookService.from_settings(settings, reporter)

    # ──────────────────────────────────────────────────────────
    # Middleware
    # ──────────────────────────────────────────────────────────

    # Request logging
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing."""
        import time

        start = time.perf_counter()

        response = await call_next(request)

        duration = (time.perf_counter() - start) * 1000
        logger.info(
            "Request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration, 2),
        )

        return response

    # ──────────────────────────────────────────────────────────
    # Routes
    # ──────────────────────────────────────────────────────────

    # Health checks (no auth required)
    app.include_router(
        health.router,
        tags=["Health"],
    )

    # API v1 routes
    api_prefix = f"/api/{settings.api_version}"

    app.include_router(
        webhooks.router,
        prefix=f"{api_prefix}/webhooks",
        tags=["Webhooks"],
    )

    return app


# Create default app instance
app = create_app()
