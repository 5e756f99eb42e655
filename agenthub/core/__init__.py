"""Core module with logging, middleware, and exception handling."""

from agenthub.core.exceptions import setup_exception_handlers
from agenthub.core.logging import get_logger, setup_logging
from agenthub.core.middleware import (
    OriginGuardMiddleware,
    RateLimitMiddleware,
    RequestContextMiddleware,
    SecurityHeadersMiddleware,
    get_client_ip,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "OriginGuardMiddleware",
    "RateLimitMiddleware",
    "RequestContextMiddleware",
    "SecurityHeadersMiddleware",
    "get_client_ip",
    "setup_exception_handlers",
]
