"""Database module for AgentHub backend."""

from agenthub.db.database import (
    Base,
    dispose_engine,
    get_db,
    get_engine,
    get_session_local,
    verify_database_connection,
)
from agenthub.db.models import (
    AppExchangeToken,
    AuditLog,
    User,
    UserAPIKey,
    UserIdentity,
)

__all__ = [
    # Database infrastructure
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "dispose_engine",
    "verify_database_connection",
    # Identity entities
    "User",
    "UserIdentity",
    "UserAPIKey",
    "AuditLog",
    "AppExchangeToken",
]
