"""OAuth handshake primitives: failure taxonomy, state/PKCE values and URLs.

Nothing in here touches the database or the network; the route handlers in
``agenthub.api.v1.auth`` compose these with the provider client and the
identity store.
"""

from __future__ import annotations

import base64
import hashlib
import json
import posixpath
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode, urlsplit

from starlette.requests import Request

from agenthub.auth.api_keys import constant_time_equals, random_base64url
from agenthub.config import Settings
from agenthub.core.request_origin import request_base_url

STATE_BYTES = 32
PKCE_VERIFIER_BYTES = 32
PKCE_METHOD = "S256"

FLOW_WEB = "web"
FLOW_APP = "app"
REDIRECT_TO_ROOT = "/app"
MAX_REDIRECT_TO_LENGTH = 512


class OAuthError(Exception):
    """Handshake failure.

    ``detail`` is for the server log only. ``title`` and ``public_message``
    are fixed strings safe to render to the browser.
    """

    status_code = 400
    title = "Sign-in failed"
    public_message = "Sign-in could not be completed. Please try again."

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail


class OAuthNotConfiguredError(OAuthError):
    status_code = 503
    title = "Sign-in unavailable"
    public_message = (
        "GitHub sign-in is not configured on this server. "
        "Please contact the administrator."
    )


class OAuthDeniedError(OAuthError):
    title = "Authorization declined"
    public_message = "You cancelled the authorization, or GitHub declined it."


class OAuthInputError(OAuthError):
    public_message = "The sign-in request was incomplete. Please start again."


class UnsupportedFlowError(OAuthInputError):
    title = "Cannot start sign-in"
    public_message = "This sign-in flow is not supported."


class OAuthStateError(OAuthError):
    # Missing and mismatched state share one message.
    public_message = "The sign-in session expired or is invalid. Please start again."


class ProviderExchangeError(OAuthError):
    public_message = "GitHub did not accept the sign-in. Please start again."


class ProviderProfileError(OAuthError):
    public_message = "Could not read your GitHub profile. Please try again."


class CanonicalHostError(OAuthError):
    public_message = (
        "This address does not match the configured site address. "
        "Open the console from the configured address and sign in again."
    )


class IdentityStoreError(OAuthError):
    status_code = 500
    title = "Sign-in failed"
    public_message = "Something went wrong on our side. Please try again later."


@dataclass(frozen=True)
class CallbackTarget:
    """Where the provider should send the browser back to."""

    redirect_uri: str
    secure: bool


def new_state() -> str:
    return random_base64url(STATE_BYTES)


def new_pkce_verifier() -> str:
    return random_base64url(PKCE_VERIFIER_BYTES)


def pkce_challenge(verifier: str) -> str:
    """S256 challenge: unpadded base64url of SHA-256(verifier)."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def state_matches(cookie_value: Optional[str], query_value: Optional[str]) -> bool:
    """Constant-time state check; an absent or empty side never matches."""
    if not cookie_value or not query_value:
        return False
    return constant_time_equals(cookie_value, query_value)


def callback_path(provider: str) -> str:
    return f"/v1/auth/{provider}/callback"


def start_path(provider: str) -> str:
    return f"/v1/auth/{provider}/start"


def canonical_origin(settings: Settings) -> Optional[str]:
    """``scheme://host`` of the configured public base URL, if it is usable."""
    base = settings.public_base_url
    if not base:
        return None
    parts = urlsplit(base)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}".lower()


def is_canonical_request(settings: Settings, request: Request) -> bool:
    """True when no public base URL is set or the request arrived on it."""
    canonical = canonical_origin(settings)
    if canonical is None:
        return True
    return request_base_url(request).rstrip("/").lower() == canonical


def canonical_start_url(settings: Settings, request: Request, provider: str) -> str:
    target = settings.public_base_url + start_path(provider)
    query = request.url.query
    if query:
        target = f"{target}?{query}"
    return target


def resolve_callback_target(settings: Settings, request: Request, provider: str) -> CallbackTarget:
    """Compute the absolute callback URL and whether cookies must be Secure.

    A configured public base URL wins; otherwise the request's own effective
    scheme and host are used.

    Raises:
        OAuthInputError: If no host can be determined.
    """
    if settings.public_base_url:
        base = settings.public_base_url
        return CallbackTarget(
            redirect_uri=base + callback_path(provider),
            secure=base.lower().startswith("https://"),
        )

    base = request_base_url(request)
    if not base:
        raise OAuthInputError("cannot determine request host for redirect uri")
    return CallbackTarget(
        redirect_uri=base + callback_path(provider),
        secure=base.startswith("https://"),
    )


def build_authorize_url(
    settings: Settings,
    *,
    redirect_uri: str,
    state: str,
    code_challenge: str,
) -> str:
    params = {
        "client_id": settings.github_client_id,
        "redirect_uri": redirect_uri,
        "scope": settings.github_oauth_scope,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": PKCE_METHOD,
        "allow_signup": "true",
    }
    return f"{settings.github_authorize_url}?{urlencode(params)}"


@dataclass(frozen=True)
class FlowContext:
    """What to do once the handshake succeeds.

    ``flow`` is ``web`` (store the key in the browser) or ``app`` (hand a
    single-use exchange token to the native app). ``redirect_to`` is a
    sanitized in-app path, or None for the configured default.
    """

    flow: str = FLOW_WEB
    redirect_to: Optional[str] = None


def parse_flow(raw: Optional[str]) -> str:
    """Normalize the ``flow`` start parameter.

    Raises:
        UnsupportedFlowError: For anything but empty, ``web`` or ``app``.
    """
    value = (raw or "").strip().lower()
    if value in ("", FLOW_WEB):
        return FLOW_WEB
    if value == FLOW_APP:
        return FLOW_APP
    raise UnsupportedFlowError("unsupported flow parameter")


def sanitize_redirect_to(raw: Optional[str]) -> Optional[str]:
    """Return a safe post-login path under ``/app``, or None.

    Only relative paths are accepted; dot segments are resolved before the
    prefix check so ``/app/../admin`` does not escape.
    """
    value = (raw or "").strip()
    if not value or len(value) > MAX_REDIRECT_TO_LENGTH:
        return None
    if any(ch in value for ch in "\\\r\n\t"):
        return None
    try:
        parts = urlsplit(value)
    except ValueError:
        return None
    if parts.scheme or parts.netloc or not parts.path.startswith("/"):
        return None

    path = posixpath.normpath(parts.path)
    if path != REDIRECT_TO_ROOT and not path.startswith(REDIRECT_TO_ROOT + "/"):
        return None

    out = path
    if parts.query:
        out = f"{out}?{parts.query}"
    if parts.fragment:
        out = f"{out}#{parts.fragment}"
    if len(out) > MAX_REDIRECT_TO_LENGTH:
        return None
    return out


def encode_flow_context(context: FlowContext) -> str:
    """Cookie-safe encoding (unpadded base64url JSON)."""
    raw = json.dumps(
        {"flow": context.flow, "redirect_to": context.redirect_to or ""},
        separators=(",", ":"),
    )
    return base64.urlsafe_b64encode(raw.encode("utf-8")).rstrip(b"=").decode("ascii")


def decode_flow_context(value: Optional[str]) -> FlowContext:
    """Parse the flow cookie set by ``start``.

    An absent cookie means the default web flow. The cookie is not signed,
    so its contents are validated again here exactly as at ``start``.

    Raises:
        OAuthStateError: If the cookie is present but malformed.
    """
    if not value:
        return FlowContext()
    try:
        padded = value + "=" * (-len(value) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except ValueError as e:
        raise OAuthStateError("flow cookie is not valid encoded json") from e
    if not isinstance(data, dict):
        raise OAuthStateError("flow cookie is not an object")

    flow = data.get("flow")
    redirect_raw = data.get("redirect_to")
    if not isinstance(flow, str) or not isinstance(redirect_raw, str):
        raise OAuthStateError("flow cookie fields have the wrong type")
    try:
        flow = parse_flow(flow)
    except UnsupportedFlowError as e:
        raise OAuthStateError("flow cookie names an unsupported flow") from e

    redirect_to = None
    if redirect_raw:
        redirect_to = sanitize_redirect_to(redirect_raw)
        if redirect_to is None:
            raise OAuthStateError("flow cookie carries an invalid redirect_to")
    return FlowContext(flow=flow, redirect_to=redirect_to)
