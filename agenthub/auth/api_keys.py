"""API key generation, hashing and verification.

Keys are shown to their owner once and stored only as
``HMAC-SHA256(pepper, salt + ":" + key)``. The per-row salt keeps identical
hashes from lining up across tables or dumps; the pepper lives only in
server configuration, so a leaked database alone cannot be used to test
guesses. The first few characters of the key are stored in clear as a
lookup handle, since a salted hash cannot be searched directly.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from typing import Optional

from sqlalchemy.orm import Session as DBSession

from agenthub.core.time import utcnow
from agenthub.db.models import User, UserAPIKey

API_KEY_PREFIX = "ak_"
API_KEY_BYTES = 32
# "ak_" plus nine characters of the random part
LOOKUP_PREFIX_LENGTH = 12
MAX_PRESENTED_KEY_LENGTH = 512


def random_base64url(n: int) -> str:
    """``n`` random bytes, unpadded base64url."""
    return base64.urlsafe_b64encode(secrets.token_bytes(n)).rstrip(b"=").decode("ascii")


def generate_api_key() -> str:
    """Generate a new plaintext API key (256 bits of entropy)."""
    return API_KEY_PREFIX + random_base64url(API_KEY_BYTES)


def new_salt() -> str:
    return secrets.token_hex(16)


def api_key_prefix(api_key: str) -> str:
    """Non-secret lookup handle stored beside the hash."""
    return api_key[:LOOKUP_PREFIX_LENGTH]


def hash_api_key(pepper: str, salt: str, api_key: str) -> str:
    """Hash an API key with the server pepper and a per-key salt."""
    if not pepper:
        raise ValueError("api key pepper is not configured")
    message = f"{salt}:{api_key}".encode("utf-8")
    return hmac.new(pepper.encode("utf-8"), message, hashlib.sha256).hexdigest()


def constant_time_equals(a: str, b: str) -> bool:
    """Compare two strings without leaking where they differ.

    Returns False for different lengths without touching the contents.
    """
    if len(a) != len(b):
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def build_api_key_row(pepper: str, user_id: str) -> tuple[str, UserAPIKey]:
    """Create a fresh key for ``user_id``.

    Returns:
        Tuple of (plaintext_key, unsaved UserAPIKey row)
    """
    api_key = generate_api_key()
    salt = new_salt()
    row = UserAPIKey(
        user_id=user_id,
        key_prefix=api_key_prefix(api_key),
        key_salt=salt,
        key_hash=hash_api_key(pepper, salt, api_key),
    )
    return api_key, row


def verify_api_key(db: DBSession, pepper: str, presented: str) -> Optional[User]:
    """Return the owner of ``presented`` if it is a live key, else None."""
    if not presented or not pepper:
        return None
    presented = presented.strip()
    if not presented.startswith(API_KEY_PREFIX) or len(presented) > MAX_PRESENTED_KEY_LENGTH:
        return None

    candidates = (
        db.query(UserAPIKey)
        .filter(
            UserAPIKey.key_prefix == api_key_prefix(presented),
            UserAPIKey.revoked_at.is_(None),
        )
        .all()
    )
    for row in candidates:
        expected = hash_api_key(pepper, row.key_salt, presented)
        if constant_time_equals(expected, row.key_hash):
            row.last_used_at = utcnow()
            db.commit()
            return db.query(User).filter(User.id == row.user_id).first()
    return None
