"""FastAPI dependencies for authentication."""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session as DBSession

from agenthub.auth.api_keys import verify_api_key
from agenthub.config import get_settings
from agenthub.core.exceptions import AuthenticationError
from agenthub.db import get_db
from agenthub.db.models import User


def bearer_token(request: Request) -> Optional[str]:
    """Extract the token from ``Authorization: Bearer <token>``."""
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


async def get_current_user(
    request: Request,
    db: DBSession = Depends(get_db),
) -> User:
    """Resolve the API key owner.

    Raises:
        AuthenticationError: If the key is missing, unknown or revoked.
    """
    token = bearer_token(request)
    if not token:
        raise AuthenticationError("Not authenticated")

    user = verify_api_key(db, get_settings().api_key_pepper, token)
    if user is None:
        raise AuthenticationError("Invalid API key")
    return user
