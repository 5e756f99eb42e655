"""Effective scheme/host of an inbound request.

Used to build absolute callback URLs and to recognise same-host CORS
origins. Client identity for throttling deliberately does NOT come from here;
see ``agenthub.core.middleware.get_client_ip``.
"""

from __future__ import annotations

from starlette.requests import Request


def _forwarded_param(request: Request, name: str) -> str:
    """Read ``name=`` from the first element of an RFC 7239 Forwarded header."""
    raw = (request.headers.get("forwarded") or "").strip()
    if not raw:
        return ""
    first = raw.split(",")[0]
    prefix = f"{name}="
    for part in first.split(";"):
        item = part.strip()
        if item.lower().startswith(prefix):
            return item[len(prefix):].strip().strip('"')
    return ""


def _first_csv(value: str | None) -> str:
    if not value:
        return ""
    return value.split(",")[0].strip()


def request_scheme(request: Request) -> str:
    """Forwarded proto, then X-Forwarded-Proto, then the connection itself."""
    proto = _forwarded_param(request, "proto")
    if proto:
        return proto.lower()
    proto = _first_csv(request.headers.get("x-forwarded-proto"))
    if proto:
        return proto.lower()
    return "https" if request.url.scheme in ("https", "wss") else "http"


def request_host(request: Request) -> str:
    """Forwarded host, then X-Forwarded-Host, then the Host header."""
    host = _forwarded_param(request, "host")
    if host:
        return host
    host = _first_csv(request.headers.get("x-forwarded-host"))
    if host:
        return host
    return (request.headers.get("host") or "").strip()


def request_base_url(request: Request) -> str:
    """``scheme://host`` for the request, or "" when no host is known."""
    host = request_host(request)
    if not host:
        return ""
    return f"{request_scheme(request)}://{host}"
