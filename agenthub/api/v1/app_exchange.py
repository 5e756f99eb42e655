"""Native app sign-in: trade a deep-linked exchange token for an API key."""

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session as DBSession

from agenthub.auth.app_exchange import MAX_EXCHANGE_TOKEN_LENGTH, AppExchangeStore
from agenthub.auth.oauth import IdentityStoreError
from agenthub.config import get_settings
from agenthub.core.exceptions import AgentHubException, AuthenticationError, ConfigurationError
from agenthub.core.logging import get_logger
from agenthub.db import get_db

logger = get_logger(__name__)

router = APIRouter(prefix="/auth/app", tags=["v1-auth"])


class AppExchangeRequest(BaseModel):
    exchange_token: str = Field(min_length=1, max_length=MAX_EXCHANGE_TOKEN_LENGTH)


class AppExchangeUser(BaseModel):
    login: str = ""
    name: str = ""
    avatar_url: str = ""
    profile_url: str = ""


class AppExchangeResponse(BaseModel):
    api_key: str
    user: AppExchangeUser


@router.post("/exchange", response_model=AppExchangeResponse)
async def exchange_app_token(
    body: AppExchangeRequest,
    request: Request,
    response: Response,
    db: DBSession = Depends(get_db),
):
    """Redeem a single-use exchange token.

    Unknown, expired and already used tokens all get the same 401.
    """
    settings = get_settings()
    if not settings.api_key_pepper:
        raise ConfigurationError("Sign-in is not configured")

    store = AppExchangeStore(
        db,
        settings.api_key_pepper,
        ttl_seconds=settings.app_exchange_token_ttl_seconds,
    )
    try:
        result = store.redeem(body.exchange_token, request=request)
    except IdentityStoreError as exc:
        logger.error("App exchange failed", data={"reason": exc.detail})
        raise AgentHubException("Internal server error") from exc

    if result is None:
        logger.warning("App exchange rejected: invalid or expired token")
        raise AuthenticationError("Invalid or expired exchange token")

    logger.info("App exchange issued API key", data={"user_id": result.user_id})
    response.headers["Cache-Control"] = "no-store"

    user = AppExchangeUser()
    if result.profile is not None:
        user = AppExchangeUser(
            login=result.profile.login,
            name=result.profile.name,
            avatar_url=result.profile.avatar_url,
            profile_url=result.profile.profile_url,
        )
    return AppExchangeResponse(api_key=result.api_key, user=user)
