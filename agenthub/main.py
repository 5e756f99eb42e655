"""
AgentHub API Application.

FastAPI application with structured logging, error handling,
origin admission and per-source throttling.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI

from agenthub import __version__
from agenthub.api import health_router, v1_router
from agenthub.auth.github import GitHubOAuthClient
from agenthub.config import get_settings
from agenthub.core import (
    OriginGuardMiddleware,
    RateLimitMiddleware,
    RequestContextMiddleware,
    SecurityHeadersMiddleware,
    get_logger,
    setup_exception_handlers,
    setup_logging,
)
from agenthub.core.limits.memory import FixedWindowRateLimitStore
from agenthub.core.startup_checks import run_startup_validations
from agenthub.db import dispose_engine, verify_database_connection

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Startup
    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        log_file=settings.log_file or None,
    )
    logger.info(
        "Starting AgentHub API",
        data={
            "host": settings.host,
            "port": settings.port,
            "environment": settings.environment,
            "oauth_configured": settings.oauth_configured,
            "rate_limit_rpm": settings.rate_limit_rpm,
        },
    )

    # Prod-like environments refuse to boot on invalid configuration
    run_startup_validations(settings)

    # Verify database connectivity (does NOT run migrations)
    if verify_database_connection():
        logger.info("Database connection verified")
    else:
        logger.warning(
            "Database connection failed - run 'alembic upgrade head' to initialize"
        )

    _app.state.start_time = datetime.now(UTC)

    # Provider client unless provided (tests inject fakes)
    client_created = False
    if getattr(_app.state, "oauth_client", None) is None:
        _app.state.oauth_client = GitHubOAuthClient.from_settings(settings)
        client_created = True

    yield

    # Shutdown
    logger.info("Shutting down AgentHub API")
    if client_created:
        await _app.state.oauth_client.aclose()
    dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="AgentHub",
        description="Agent platform API: GitHub sign-in, API keys and public-surface redaction",
        version=__version__,
        lifespan=lifespan,
        docs_url=settings.docs_url,
        redoc_url=settings.redoc_url,
        openapi_url=settings.openapi_url,
    )

    app.state.rate_limit_store = FixedWindowRateLimitStore(
        limit=settings.rate_limit_rpm,
        window_seconds=settings.rate_limit_window_seconds,
        max_entries=settings.rate_limit_max_sources,
    )

    # Setup exception handlers (must be before middleware)
    setup_exception_handlers(app)

    # Add middleware (order matters - last added = first executed)
    # 1. Security headers (X-Content-Type-Options, Referrer-Policy, etc.)
    app.add_middleware(SecurityHeadersMiddleware)

    # 2. Rate limiting (per direct peer address, fixed window)
    app.add_middleware(
        RateLimitMiddleware,
        exempt_substrings=settings.rate_limit_exempt_substrings_list,
    )

    # 3. Origin guard (answers preflights before they count against the limit)
    app.add_middleware(OriginGuardMiddleware)

    # 4. Request context (inject request ID, log requests)
    app.add_middleware(RequestContextMiddleware)

    # Register routers
    app.include_router(health_router)
    app.include_router(v1_router)

    return app


app = create_app()
