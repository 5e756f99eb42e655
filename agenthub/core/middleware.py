"""Custom middleware for AgentHub backend."""

import secrets
import time
from typing import Callable, Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from agenthub.core import cors
from agenthub.core.limits import RateLimitStore
from agenthub.core.logging import get_logger, request_context
from agenthub.core.request_origin import request_host

logger = get_logger(__name__)


def get_client_ip(request: Request) -> str:
    """Return the direct transport peer address.

    X-Forwarded-For and friends are ignored on purpose: behind a reverse
    proxy every client would share the proxy's address, and trusting the
    header would let any caller pick its own throttle bucket. Supporting a
    proxy requires an explicit trusted-proxy list.
    """
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to inject request context for logging."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with context."""
        request_id = request.headers.get("X-Request-ID") or secrets.token_hex(8)
        start_time = time.perf_counter()

        ctx = {
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
        }
        token = request_context.set(ctx)

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code}",
                data={"duration_ms": round(duration_ms, 2)},
            )

            response.headers["X-Request-ID"] = request_id
            return response

        finally:
            request_context.reset(token)


class OriginGuardMiddleware(BaseHTTPMiddleware):
    """Origin-based CORS admission.

    Allowed origins get the CORS response headers. Preflights are answered
    here (204 allowed / 403 denied) and never reach the handlers. Non-preflight
    requests from a denied origin still run: without the allow headers the
    browser withholds the response from the calling page.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        origin = (request.headers.get("origin") or "").strip()
        if not origin:
            return await call_next(request)

        decision = cors.decide(origin, request_host(request))
        is_preflight = request.method == "OPTIONS"

        if not decision.allowed:
            if is_preflight:
                logger.warning(
                    "CORS preflight rejected",
                    data={"origin": origin, "path": request.url.path},
                )
                return PlainTextResponse("CORS origin not allowed", status_code=403)
            return await call_next(request)

        if is_preflight:
            response: Response = Response(status_code=204)
        else:
            response = await call_next(request)

        self._apply_headers(response, origin, request.headers.get("access-control-request-headers"))
        return response

    @staticmethod
    def _apply_headers(response: Response, origin: str, requested_headers: Optional[str]) -> None:
        for value in cors.VARY_HEADERS:
            response.headers.append("Vary", value)
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = cors.ALLOWED_METHODS
        response.headers["Access-Control-Max-Age"] = str(cors.PREFLIGHT_MAX_AGE_SECONDS)
        requested = (requested_headers or "").strip()
        response.headers["Access-Control-Allow-Headers"] = requested or cors.DEFAULT_ALLOWED_HEADERS


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-source fixed-window request throttling.

    The store is read from ``app.state.rate_limit_store`` on every request so
    it can be replaced after the app is built. Long-lived streaming paths are
    exempt: they hold one connection open instead of issuing repeated requests.
    """

    def __init__(self, app, exempt_substrings: Iterable[str] = ("/stream",)):
        super().__init__(app)
        self.exempt_substrings = tuple(s for s in exempt_substrings if s)

    def _is_exempt(self, path: str) -> bool:
        return any(marker in path for marker in self.exempt_substrings)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Apply rate limiting to incoming requests."""
        store: RateLimitStore | None = getattr(request.app.state, "rate_limit_store", None)
        if store is None or self._is_exempt(request.url.path):
            return await call_next(request)

        client_ip = get_client_ip(request)
        result = await store.hit(f"ip:{client_ip}")
        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                data={"scope": "ip", "ip": client_ip, "path": request.url.path},
            )
            return JSONResponse(
                {"error": "rate_limited"},
                status_code=429,
                headers={"Retry-After": str(max(1, result.retry_after_s))},
            )

        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses.

    - X-Content-Type-Options: nosniff
    - Referrer-Policy: no-referrer
    - Permissions-Policy: restrictive (camera, mic, etc. disabled)
    - X-Frame-Options: DENY
    """

    SECURITY_HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "no-referrer",
        "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
        "X-Frame-Options": "DENY",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Add security headers to response."""
        response = await call_next(request)

        for header, value in self.SECURITY_HEADERS.items():
            if header not in response.headers:
                response.headers[header] = value

        return response
