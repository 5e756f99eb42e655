"""
Health check endpoints.

Provides liveness and readiness checks for monitoring.
"""

from datetime import UTC, datetime
import os
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from agenthub import __version__
from agenthub.config import get_settings
from agenthub.db import verify_database_connection

router = APIRouter(tags=["health"])


def _safe_env_string(name: str) -> str:
    raw = (os.getenv(name) or "").strip()
    return raw if raw else "unknown"


@router.get("/health")
@router.get("/healthz")
async def healthcheck() -> dict[str, Any]:
    """
    Health check endpoint.

    Returns basic service health status. Used by load balancers,
    orchestrators, and monitoring systems.
    """
    settings = get_settings()
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
        "build_sha": _safe_env_string("BUILD_SHA"),
        "environment": settings.environment,
        "oauth_configured": settings.oauth_configured,
    }


@router.get("/readyz")
async def readiness() -> JSONResponse:
    """
    Readiness check endpoint.

    Ready when the database answers and API keys can be issued.
    """
    settings = get_settings()
    checks: dict[str, bool] = {
        "database": verify_database_connection(),
        "api_key_pepper": bool(settings.api_key_pepper),
    }

    all_ready = all(checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if all_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_ready else "not_ready",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": checks,
        },
    )
