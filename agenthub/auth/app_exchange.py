"""Single-use exchange tokens for the native app sign-in flow.

The app runs the GitHub handshake in the system browser, which cannot hand
its localStorage back to the app. The callback therefore issues a
short-lived token and deep-links it into the app, and the app trades it for
an API key over ``POST /v1/auth/app/exchange``. Tokens are stored only as a
peppered hash, live for about a minute and can be redeemed once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from agenthub.auth.api_keys import build_api_key_row, hash_api_key, random_base64url
from agenthub.auth.identity import ProfileFields
from agenthub.auth.oauth import IdentityStoreError
from agenthub.core.time import utcnow
from agenthub.db.models import AppExchangeToken, UserIdentity
from agenthub.services.audit_service import (
    ACTOR_USER,
    EVENT_APP_EXCHANGE_TOKEN_ISSUED,
    EVENT_APP_EXCHANGE_TOKEN_USED,
    EVENT_USER_API_KEY_ISSUED,
    build_audit_entry,
)

EXCHANGE_TOKEN_BYTES = 32
MAX_EXCHANGE_TOKEN_LENGTH = 512
# fixed salt: the hash doubles as the primary key, so it must be recomputable
_TOKEN_HASH_SALT = "app_exchange"


def hash_exchange_token(pepper: str, token: str) -> str:
    return hash_api_key(pepper, _TOKEN_HASH_SALT, token)


@dataclass(frozen=True)
class ExchangeResult:
    api_key: str
    user_id: str
    profile: Optional[ProfileFields]


class AppExchangeStore:
    """Issue and redeem app exchange tokens."""

    def __init__(self, db: DBSession, pepper: str, *, ttl_seconds: int = 60):
        self.db = db
        self.pepper = pepper
        self.ttl_seconds = ttl_seconds

    def issue(self, user_id: str, request=None) -> str:
        """Replace any live token for ``user_id`` with a fresh one.

        Raises:
            IdentityStoreError: If the token cannot be stored.
        """
        db = self.db
        token = random_base64url(EXCHANGE_TOKEN_BYTES)
        now = utcnow()
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        try:
            db.query(AppExchangeToken).filter(AppExchangeToken.expires_at <= now).delete(
                synchronize_session=False
            )
            db.query(AppExchangeToken).filter(AppExchangeToken.user_id == user_id).delete(
                synchronize_session=False
            )
            db.add(
                AppExchangeToken(
                    token_hash=hash_exchange_token(self.pepper, token),
                    user_id=user_id,
                    expires_at=expires_at,
                )
            )
            db.add(
                build_audit_entry(
                    actor_type=ACTOR_USER,
                    actor_id=user_id,
                    action=EVENT_APP_EXCHANGE_TOKEN_ISSUED,
                    request=request,
                    data={"expires_at": expires_at.isoformat() + "Z"},
                )
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise IdentityStoreError(f"exchange token issue failed: {type(e).__name__}") from e
        return token

    def redeem(self, presented: Optional[str], request=None) -> Optional[ExchangeResult]:
        """Consume a token and issue an API key for its owner.

        Returns None for unknown, expired or already used tokens. The delete
        is conditional on the row still existing, so two concurrent
        redemptions of one token yield at most one key.

        Raises:
            IdentityStoreError: If the transaction cannot be committed.
        """
        token = (presented or "").strip()
        if not token or len(token) > MAX_EXCHANGE_TOKEN_LENGTH:
            return None

        db = self.db
        token_hash = hash_exchange_token(self.pepper, token)
        now = utcnow()
        try:
            row = (
                db.query(AppExchangeToken)
                .filter(AppExchangeToken.token_hash == token_hash, AppExchangeToken.expires_at > now)
                .first()
            )
            if row is None:
                db.rollback()
                return None
            user_id = row.user_id

            deleted = (
                db.query(AppExchangeToken)
                .filter(AppExchangeToken.token_hash == token_hash)
                .delete(synchronize_session=False)
            )
            if deleted != 1:
                db.rollback()
                return None

            api_key, key_row = build_api_key_row(self.pepper, user_id)
            db.add(key_row)

            identity = (
                db.query(UserIdentity)
                .filter(UserIdentity.user_id == user_id)
                .order_by(UserIdentity.updated_at.desc())
                .first()
            )
            profile = None
            provider = None
            if identity is not None:
                provider = identity.provider
                profile = ProfileFields(
                    login=(identity.login or "").strip(),
                    name=(identity.name or "").strip(),
                    avatar_url=(identity.avatar_url or "").strip(),
                    profile_url=(identity.profile_url or "").strip(),
                )

            db.add(
                build_audit_entry(
                    actor_type=ACTOR_USER,
                    actor_id=user_id,
                    action=EVENT_USER_API_KEY_ISSUED,
                    request=request,
                    data={"provider": provider, "flow": "app_exchange"},
                )
            )
            db.add(
                build_audit_entry(
                    actor_type=ACTOR_USER,
                    actor_id=user_id,
                    action=EVENT_APP_EXCHANGE_TOKEN_USED,
                    request=request,
                )
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise IdentityStoreError(f"exchange token redeem failed: {type(e).__name__}") from e

        return ExchangeResult(api_key=api_key, user_id=user_id, profile=profile)
