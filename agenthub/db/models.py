"""SQLAlchemy database models."""

import secrets

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from agenthub.core.time import utcnow
from agenthub.db.database import Base


def generate_id() -> str:
    """Generate a unique ID."""
    return secrets.token_urlsafe(16)


class User(Base):
    """Platform account. Carries no credentials of its own."""

    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=generate_id)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    identities = relationship(
        "UserIdentity", back_populates="user", cascade="all, delete-orphan"
    )
    api_keys = relationship(
        "UserAPIKey", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User {self.id[:8]}...>"


class UserIdentity(Base):
    """External account linked to a user.

    ``subject`` is the provider's immutable account id, never the login
    name, which users can change.
    """

    __tablename__ = "user_identities"
    __table_args__ = (
        UniqueConstraint("provider", "subject", name="uq_user_identities_provider_subject"),
        Index("ix_user_identities_user_id", "user_id"),
    )

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    provider = Column(String(32), nullable=False)
    subject = Column(String(128), nullable=False)
    login = Column(String(255), nullable=False, default="")
    name = Column(String(255), nullable=False, default="")
    avatar_url = Column(String(1024), nullable=False, default="")
    profile_url = Column(String(1024), nullable=False, default="")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="identities")

    def __repr__(self) -> str:
        return f"<UserIdentity {self.provider}:{self.login}>"


class UserAPIKey(Base):
    """Long-lived API credential. Only the salted, peppered hash is stored."""

    __tablename__ = "user_api_keys"
    __table_args__ = (
        Index("ix_user_api_keys_user_id", "user_id"),
        Index("ix_user_api_keys_key_prefix", "key_prefix"),
    )

    id = Column(String(32), primary_key=True, default=generate_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    key_prefix = Column(String(16), nullable=False)
    key_salt = Column(String(64), nullable=False)
    key_hash = Column(String(128), nullable=False, unique=True)
    created_at = Column(DateTime, default=utcnow)
    last_used_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="api_keys")

    def __repr__(self) -> str:
        return f"<UserAPIKey {self.key_prefix}...>"


class AppExchangeToken(Base):
    """Short-lived, single-use token the native app trades for an API key.

    Keyed by the peppered hash; at most one live token per user.
    """

    __tablename__ = "app_exchange_tokens"
    __table_args__ = (
        Index("ix_app_exchange_tokens_user_id", "user_id"),
        Index("ix_app_exchange_tokens_expires_at", "expires_at"),
    )

    token_hash = Column(String(128), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<AppExchangeToken user={self.user_id[:8]}...>"


class AuditLog(Base):
    """Audit log entry for security and operational events."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_created_at", "created_at"),
        Index("ix_audit_logs_actor_id", "actor_id"),
        Index("ix_audit_logs_action", "action"),
    )

    id = Column(String(32), primary_key=True, default=generate_id)
    actor_type = Column(String(32), nullable=False)
    actor_id = Column(String(32), nullable=True)
    action = Column(String(128), nullable=False)
    ip = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    path = Column(String(255), nullable=True)
    method = Column(String(16), nullable=True)
    data_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.id[:8]}...>"


__all__ = [
    "AppExchangeToken",
    "AuditLog",
    "User",
    "UserAPIKey",
    "UserIdentity",
    "generate_id",
]

