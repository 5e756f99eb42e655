"""Current-user endpoint for API key holders."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session as DBSession

from agenthub.auth.dependencies import get_current_user
from agenthub.db import get_db
from agenthub.db.models import User, UserIdentity

router = APIRouter(tags=["v1-me"])


class MeResponse(BaseModel):
    provider: str
    login: str
    name: str
    avatar_url: str
    profile_url: str
    is_admin: bool


@router.get("/me", response_model=MeResponse)
async def get_me(
    current_user: User = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    """Profile of the key's owner. Internal ids are never returned."""
    identity = (
        db.query(UserIdentity)
        .filter(UserIdentity.user_id == current_user.id)
        .order_by(UserIdentity.updated_at.desc())
        .first()
    )
    if identity is None:
        return MeResponse(
            provider="",
            login="",
            name="",
            avatar_url="",
            profile_url="",
            is_admin=bool(current_user.is_admin),
        )
    return MeResponse(
        provider=identity.provider,
        login=identity.login,
        name=identity.name,
        avatar_url=identity.avatar_url,
        profile_url=identity.profile_url,
        is_admin=bool(current_user.is_admin),
    )
