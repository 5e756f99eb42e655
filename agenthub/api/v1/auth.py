"""GitHub OAuth sign-in endpoints.

``start`` sets short-lived state and PKCE cookies, plus a flow cookie
recording where the user goes afterwards, and redirects to GitHub.
``callback`` validates them, exchanges the code, links the GitHub account to
a user and hands a freshly issued API key to the browser, or, for the native
app flow, a single-use exchange token to the app. Every outcome is an HTML
page, never a JSON error, and the handshake cookies are cleared on every
callback.
"""

import asyncio

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session as DBSession
from starlette.responses import Response

from agenthub.auth import oauth
from agenthub.auth.app_exchange import AppExchangeStore
from agenthub.auth.github import PROVIDER_NAME, GitHubOAuthClient, GitHubUser
from agenthub.auth.identity import IdentityFederationStore, ProfileFields
from agenthub.auth.pages import oauth_app_return_page, oauth_error_page, oauth_success_page
from agenthub.config import Settings, get_settings
from agenthub.core.logging import get_logger
from agenthub.core.request_origin import request_scheme
from agenthub.db import get_db
from agenthub.services.audit_service import (
    ACTOR_USER,
    EVENT_USER_API_KEY_ISSUED,
    EVENT_USER_OAUTH_LOGIN,
    audit_log_event,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/auth/github", tags=["v1-auth"])


def get_oauth_client(request: Request) -> GitHubOAuthClient:
    """Provider client owned by the application lifespan.

    Raises:
        RuntimeError: If the app was served without running its lifespan.
    """
    client = getattr(request.app.state, "oauth_client", None)
    if client is None:
        raise RuntimeError("OAuth provider client is not initialized; app lifespan did not run")
    return client


def _require_configured(settings: Settings) -> None:
    if not settings.oauth_configured:
        raise oauth.OAuthNotConfiguredError("missing client id/secret")
    if not settings.api_key_pepper:
        raise oauth.OAuthNotConfiguredError("missing api key pepper")


def _set_handshake_cookie(response: Response, settings: Settings, name: str, value: str, secure: bool) -> None:
    response.set_cookie(
        key=name,
        value=value,
        httponly=True,
        secure=secure,
        samesite="lax",
        path="/",
        max_age=settings.oauth_cookie_ttl_seconds,
    )


def _handshake_cookie_names(settings: Settings) -> tuple[str, ...]:
    return (
        settings.oauth_state_cookie_name,
        settings.oauth_pkce_cookie_name,
        settings.oauth_flow_cookie_name,
    )


def _clear_handshake_cookies(response: Response, settings: Settings, secure: bool) -> None:
    for name in _handshake_cookie_names(settings):
        response.delete_cookie(
            name,
            path="/",
            secure=secure,
            httponly=True,
            samesite="lax",
        )


def _failure_page(exc: oauth.OAuthError, stage: str) -> Response:
    log_data = {"provider": PROVIDER_NAME, "status": exc.status_code, "reason": exc.detail}
    if exc.status_code >= 500:
        logger.error(f"OAuth {stage} failed", data=log_data)
    else:
        logger.warning(f"OAuth {stage} failed", data=log_data)
    return oauth_error_page(exc.status_code, exc.title, exc.public_message)


def _start_flow_context(request: Request) -> oauth.FlowContext:
    params = request.query_params
    flow = oauth.parse_flow(params.get("flow"))
    raw_redirect = params.get("redirect_to")
    redirect_to = oauth.sanitize_redirect_to(raw_redirect)
    if redirect_to is None and (raw_redirect or "").strip():
        logger.info("OAuth start redirect_to ignored", data={"provider": PROVIDER_NAME})
    return oauth.FlowContext(flow=flow, redirect_to=redirect_to)


@router.get("/start")
async def github_start(request: Request):
    """Begin the handshake and redirect to GitHub.

    Optional query parameters: ``flow=app`` for the native app flow and
    ``redirect_to`` for an in-app path under ``/app`` to land on afterwards.
    """
    settings = get_settings()
    try:
        _require_configured(settings)
        if not oauth.is_canonical_request(settings, request):
            logger.info("OAuth start on non-canonical host, redirecting")
            return RedirectResponse(
                oauth.canonical_start_url(settings, request, PROVIDER_NAME),
                status_code=302,
            )
        target = oauth.resolve_callback_target(settings, request, PROVIDER_NAME)
        flow_context = _start_flow_context(request)
    except oauth.OAuthError as exc:
        return _failure_page(exc, "start")

    state = oauth.new_state()
    verifier = oauth.new_pkce_verifier()
    authorize_url = oauth.build_authorize_url(
        settings,
        redirect_uri=target.redirect_uri,
        state=state,
        code_challenge=oauth.pkce_challenge(verifier),
    )

    response = RedirectResponse(authorize_url, status_code=302)
    _set_handshake_cookie(response, settings, settings.oauth_state_cookie_name, state, target.secure)
    _set_handshake_cookie(response, settings, settings.oauth_pkce_cookie_name, verifier, target.secure)
    _set_handshake_cookie(
        response,
        settings,
        settings.oauth_flow_cookie_name,
        oauth.encode_flow_context(flow_context),
        target.secure,
    )
    return response


async def _exchange_and_fetch(
    client: GitHubOAuthClient,
    code: str,
    redirect_uri: str,
    verifier: str,
) -> GitHubUser:
    access_token = await client.exchange_code(code, redirect_uri, verifier)
    return await client.fetch_user(access_token)


@router.get("/callback")
async def github_callback(
    request: Request,
    db: DBSession = Depends(get_db),
    client: GitHubOAuthClient = Depends(get_oauth_client),
):
    """Complete the handshake and issue an API key (or an app exchange token)."""
    settings = get_settings()
    secure = request_scheme(request) == "https"
    try:
        _require_configured(settings)
        if not oauth.is_canonical_request(settings, request):
            raise oauth.CanonicalHostError("callback on non-canonical host")
        target = oauth.resolve_callback_target(settings, request, PROVIDER_NAME)
        secure = target.secure

        params = request.query_params
        if (params.get("error") or "").strip():
            raise oauth.OAuthDeniedError("provider returned error parameter")

        code = (params.get("code") or "").strip()
        state = (params.get("state") or "").strip()
        if not code or not state:
            raise oauth.OAuthInputError("missing code or state")

        if not oauth.state_matches(request.cookies.get(settings.oauth_state_cookie_name), state):
            raise oauth.OAuthStateError("state cookie missing or mismatched")
        flow_context = oauth.decode_flow_context(request.cookies.get(settings.oauth_flow_cookie_name))

        verifier = (request.cookies.get(settings.oauth_pkce_cookie_name) or "").strip()
        if not verifier:
            if settings.oauth_require_pkce:
                raise oauth.OAuthStateError("pkce verifier cookie missing")
            logger.warning("PKCE verifier cookie missing, exchanging without it")

        try:
            github_user = await asyncio.wait_for(
                _exchange_and_fetch(client, code, target.redirect_uri, verifier),
                timeout=settings.oauth_callback_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise oauth.ProviderExchangeError("callback deadline exceeded") from e

        is_app_flow = flow_context.flow == oauth.FLOW_APP
        store = IdentityFederationStore(
            db,
            settings.api_key_pepper,
            bootstrap_first_admin=settings.bootstrap_first_admin,
        )
        result = store.upsert(
            PROVIDER_NAME,
            github_user.subject,
            ProfileFields(
                login=github_user.login,
                name=github_user.name,
                avatar_url=github_user.avatar_url,
                profile_url=github_user.html_url,
            ),
            request=request,
            issue_key=not is_app_flow,
        )

        exchange_token = None
        if is_app_flow:
            exchange_token = AppExchangeStore(
                db,
                settings.api_key_pepper,
                ttl_seconds=settings.app_exchange_token_ttl_seconds,
            ).issue(result.user_id, request=request)
    except oauth.OAuthError as exc:
        response = _failure_page(exc, "callback")
        _clear_handshake_cookies(response, settings, secure)
        return response

    audit_log_event(
        db,
        action=EVENT_USER_OAUTH_LOGIN,
        actor_type=ACTOR_USER,
        actor_id=result.user_id,
        request=request,
        data={"provider": PROVIDER_NAME, "flow": flow_context.flow},
    )
    logger.info(
        "OAuth login completed",
        data={
            "provider": PROVIDER_NAME,
            "user_id": result.user_id,
            "new_user": result.created_user,
            "flow": flow_context.flow,
        },
    )

    if exchange_token is not None:
        response = oauth_app_return_page(
            exchange_token=exchange_token,
            deep_link_url=settings.app_deep_link_url,
            android_package=settings.app_android_package,
        )
    else:
        audit_log_event(
            db,
            action=EVENT_USER_API_KEY_ISSUED,
            actor_type=ACTOR_USER,
            actor_id=result.user_id,
            request=request,
            data={"provider": PROVIDER_NAME},
        )
        response = oauth_success_page(
            api_key=result.api_key,
            storage_key=settings.api_key_storage_key,
            redirect_to=flow_context.redirect_to or settings.oauth_success_redirect,
        )
    _clear_handshake_cookies(response, settings, secure)
    return response
