"""Cross-origin admission policy.

The decision is a pure function of the Origin header and the host the
request was addressed to. There is no configured allow-list: the API admits
its own host (under any scheme, so app shells served from a different
scheme can call back into it), loopback development servers, and native
webview shells.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

LOOPBACK_HOSTNAMES = frozenset({"localhost", "127.0.0.1", "::1"})
WEB_SCHEMES = frozenset({"http", "https"})
# Capacitor/iOS uses capacitor://localhost; some Ionic stacks use ionic://localhost.
NATIVE_SHELL_SCHEMES = frozenset({"capacitor", "ionic"})

ALLOWED_METHODS = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
DEFAULT_ALLOWED_HEADERS = "Authorization, Content-Type"
PREFLIGHT_MAX_AGE_SECONDS = 600
VARY_HEADERS = ("Origin", "Access-Control-Request-Method", "Access-Control-Request-Headers")


@dataclass(frozen=True)
class CORSDecision:
    """Per-request admission result. Never persisted."""

    allowed: bool
    origin: str


def hostname_from_host_port(hostport: str) -> str:
    """Strip the port (and IPv6 brackets) from a Host-style value."""
    value = (hostport or "").strip()
    if not value:
        return ""
    if value.startswith("["):
        end = value.find("]")
        if end != -1:
            return value[1:end]
        return value.strip("[]")
    # A bare IPv6 literal has more than one colon and no port to strip.
    if value.count(":") == 1:
        value = value.split(":", 1)[0]
    return value


def _parse_origin(origin: str) -> tuple[str, str] | None:
    """Return (scheme, hostname) for an Origin value, or None if unusable."""
    try:
        parsed = urlsplit(origin.strip())
        hostname = parsed.hostname or ""
    except ValueError:
        return None
    scheme = (parsed.scheme or "").strip().lower()
    hostname = hostname.strip().lower()
    if not scheme or not hostname:
        return None
    return scheme, hostname


def is_allowed_origin(origin: str, request_host: str) -> bool:
    """Decide whether ``origin`` may read responses for ``request_host``.

    Rules, first match wins:
      1. Origin hostname equals the request's own hostname.
      2. http(s) origin on a loopback hostname.
      3. capacitor:// or ionic:// origin on localhost.
    Everything else, including malformed and ``null`` origins, is denied.
    """
    if not origin:
        return False
    parsed = _parse_origin(origin)
    if parsed is None:
        return False
    scheme, hostname = parsed

    own_hostname = hostname_from_host_port(request_host).lower()
    if own_hostname and hostname == own_hostname:
        return True

    if scheme in WEB_SCHEMES and hostname in LOOPBACK_HOSTNAMES:
        return True

    if scheme in NATIVE_SHELL_SCHEMES and hostname == "localhost":
        return True

    return False


def decide(origin: str, request_host: str) -> CORSDecision:
    return CORSDecision(allowed=is_allowed_origin(origin, request_host), origin=origin)
