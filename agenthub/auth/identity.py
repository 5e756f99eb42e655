"""Identity federation: link provider accounts to users and issue API keys."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from agenthub.auth.api_keys import build_api_key_row
from agenthub.auth.oauth import IdentityStoreError
from agenthub.core.logging import get_logger
from agenthub.db.models import User, UserIdentity
from agenthub.services.audit_service import (
    ACTOR_SYSTEM,
    EVENT_ADMIN_BOOTSTRAP,
    build_audit_entry,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProfileFields:
    """Mutable profile data copied from the provider on every login."""

    login: str
    name: str = ""
    avatar_url: str = ""
    profile_url: str = ""


@dataclass(frozen=True)
class FederationResult:
    api_key: Optional[str]
    user_id: str
    created_user: bool
    promoted_admin: bool


class IdentityFederationStore:
    """Transactional upsert of (provider, subject) plus key issuance.

    Every successful call issues a new key unless the caller opts out (the
    native app flow issues its key later, at exchange); earlier keys stay
    valid.
    """

    def __init__(self, db: DBSession, pepper: str, *, bootstrap_first_admin: bool = True):
        self.db = db
        self.pepper = pepper
        self.bootstrap_first_admin = bootstrap_first_admin

    def upsert(
        self,
        provider: str,
        subject: str,
        profile: ProfileFields,
        request=None,
        *,
        issue_key: bool = True,
    ) -> FederationResult:
        """Link the identity and (by default) issue a fresh API key in one transaction.

        A concurrent first login for the same subject loses the unique
        constraint race with an IntegrityError; the whole transaction is then
        retried once, which finds the winner's row and takes the update path.

        Raises:
            IdentityStoreError: If the transaction cannot be committed.
        """
        if not provider or not subject:
            raise IdentityStoreError("provider and subject are required")
        if not self.pepper:
            raise IdentityStoreError("api key pepper is not configured")

        for attempt in range(2):
            try:
                return self._upsert_once(provider, subject, profile, request, issue_key)
            except IntegrityError as e:
                self.db.rollback()
                if attempt == 0:
                    logger.info(
                        "Identity upsert conflict, retrying",
                        data={"provider": provider},
                    )
                    continue
                raise IdentityStoreError(f"identity upsert conflict: {type(e).__name__}") from e
            except SQLAlchemyError as e:
                self.db.rollback()
                raise IdentityStoreError(f"identity upsert failed: {type(e).__name__}") from e
        # unreachable: the second attempt either returns or raises
        raise IdentityStoreError("identity upsert failed")

    def _upsert_once(
        self, provider: str, subject: str, profile: ProfileFields, request, issue_key: bool
    ) -> FederationResult:
        db = self.db
        identity = (
            db.query(UserIdentity)
            .filter(UserIdentity.provider == provider, UserIdentity.subject == subject)
            .first()
        )

        created = identity is None
        if created:
            user = User()
            db.add(user)
            db.flush()
            identity = UserIdentity(user_id=user.id, provider=provider, subject=subject)
            db.add(identity)
        else:
            user = db.query(User).filter(User.id == identity.user_id).one()

        identity.login = profile.login
        identity.name = profile.name
        identity.avatar_url = profile.avatar_url
        identity.profile_url = profile.profile_url

        api_key = None
        if issue_key:
            api_key, key_row = build_api_key_row(self.pepper, user.id)
            db.add(key_row)

        promoted = False
        if self.bootstrap_first_admin and not user.is_admin:
            has_admin = db.query(User.id).filter(User.is_admin.is_(True)).first() is not None
            if not has_admin:
                user.is_admin = True
                promoted = True
                db.add(
                    build_audit_entry(
                        actor_type=ACTOR_SYSTEM,
                        actor_id=None,
                        action=EVENT_ADMIN_BOOTSTRAP,
                        request=request,
                        data={"user_id": user.id, "provider": provider},
                    )
                )

        db.commit()

        if promoted:
            logger.warning("Bootstrap admin granted", data={"user_id": user.id, "provider": provider})
        return FederationResult(
            api_key=api_key,
            user_id=user.id,
            created_user=created,
            promoted_admin=promoted,
        )
