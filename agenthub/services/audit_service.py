"""Audit logging service.

Provides a single helper to record an event. Recording is best-effort:
a failed write is logged and rolled back, never raised into the request.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.orm import Session as DBSession

from agenthub.core.logging import get_logger
from agenthub.core.middleware import get_client_ip
from agenthub.db.models import AuditLog

logger = get_logger(__name__)

ACTOR_SYSTEM = "system"
ACTOR_USER = "user"

EVENT_USER_OAUTH_LOGIN = "user_oauth_login"
EVENT_USER_API_KEY_ISSUED = "user_api_key_issued"
EVENT_ADMIN_BOOTSTRAP = "admin_bootstrap"
EVENT_APP_EXCHANGE_TOKEN_ISSUED = "app_exchange_token_issued"
EVENT_APP_EXCHANGE_TOKEN_USED = "app_exchange_token_used"


def build_audit_entry(
    *,
    actor_type: str,
    actor_id: Optional[str],
    action: str,
    request=None,
    data: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """Build an unsaved audit row, so callers can add it inside their own transaction."""
    ip = None
    user_agent = None
    path = None
    method = None
    if request is not None:
        client_ip = get_client_ip(request)
        ip = client_ip if client_ip != "unknown" else None
        user_agent = (request.headers.get("user-agent") or "")[:512] or None
        path = request.url.path
        method = request.method

    return AuditLog(
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        ip=ip,
        user_agent=user_agent,
        path=path,
        method=method,
        data_json=data,
    )


def audit_log_event(
    db: DBSession,
    *,
    action: str,
    actor_type: str = ACTOR_USER,
    actor_id: Optional[str] = None,
    request=None,
    data: Optional[dict[str, Any]] = None,
) -> None:
    """Persist an audit log entry in its own commit."""
    if db is None:
        return

    try:
        db.add(
            build_audit_entry(
                actor_type=actor_type,
                actor_id=actor_id,
                action=action,
                request=request,
                data=data,
            )
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning(
            "Audit log write failed",
            data={"action": action, "error": type(exc).__name__},
        )
