"""Redaction of internal identifiers from stored payloads.

Stored event payloads and run state carry agent ids, storage object keys and
similar internal references. Anything serialized into a public or
cross-tenant response goes through here first:

- ``scrub`` drops identifying keys and blanks identifying string values.
- ``extract_preview`` turns a raw payload into a short display string.
- ``thread_relation`` labels a post's position in a thread without exposing
  the referenced ids.

All three are pure and never raise on malformed input.
"""

from __future__ import annotations

import json
import re
from typing import Any, FrozenSet, Optional, Union

PREVIEW_MAX_RUNES = 200
ELLIPSIS = "…"
# deeper nesting is dropped rather than walked
MAX_DEPTH = 64

ALLOWED_ID_KEYS: FrozenSet[str] = frozenset(
    {"turn_id", "round_id", "slot_id", "role_id", "beat_id"}
)

AGENT_IDENTITY_KEYS: FrozenSet[str] = frozenset(
    {
        "agent",
        "agent_ref",
        "agent_name",
        "agent_handle",
        "actor",
        "actor_ref",
        "owner",
        "owner_ref",
        "author_agent",
    }
)

STORAGE_KEY_INDICATORS = ("object_key", "storage_key", "oss_key", "manifest_key", "key_prefix", "object_path")

INTERNAL_NAMESPACES = ("agents", "topics", "runs", "work_items", "artifacts", "personas")

PREVIEW_KEYS = ("text", "content", "message", "msg", "title", "summary", "opening_question", "opening")
PREVIEW_CONTAINERS = ("payload", "data", "event")

THREAD_UNKNOWN = "unknown"
THREAD_ROOT_POST = "root_post"
THREAD_REPLY_TO_ROOT = "reply_to_root"
THREAD_NESTED_REPLY = "nested_reply"

_UUID_PATTERN = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
_UUID_EXACT = re.compile(rf"^{_UUID_PATTERN}$", re.IGNORECASE)
_UUID_ANYWHERE = re.compile(_UUID_PATTERN, re.IGNORECASE)
_NAMESPACE_ALT = "|".join(INTERNAL_NAMESPACES)
_STORAGE_PATH_PREFIX = re.compile(rf"(?<![A-Za-z0-9_])(?:{_NAMESPACE_ALT})/")
_STORAGE_PATH_TOKEN = re.compile(rf"(?<![A-Za-z0-9_])(?:{_NAMESPACE_ALT})/\S*")
_WHITESPACE = re.compile(r"\s+")


def is_uuid_like(value: str) -> bool:
    return bool(_UUID_EXACT.match(value.strip()))


def contains_storage_path(value: str) -> bool:
    return bool(_STORAGE_PATH_PREFIX.search(value))


def is_redacted_key(key: str) -> bool:
    """True if a mapping key names an internal identifier."""
    k = key.strip().lower()
    if k in ALLOWED_ID_KEYS:
        return False
    if k in AGENT_IDENTITY_KEYS:
        return True
    if any(indicator in k for indicator in STORAGE_KEY_INDICATORS):
        return True
    return k.endswith("_id") or k.endswith("_ids")


def scrub(value: Any, _depth: int = 0) -> Any:
    """Recursively remove internal identifiers from a decoded JSON value.

    Idempotent: ``scrub(scrub(x)) == scrub(x)``.
    """
    if _depth > MAX_DEPTH:
        return None
    if isinstance(value, dict):
        return {
            key: scrub(item, _depth + 1)
            for key, item in value.items()
            if not is_redacted_key(str(key))
        }
    if isinstance(value, list):
        return [scrub(item, _depth + 1) for item in value]
    if isinstance(value, str):
        if is_uuid_like(value) or contains_storage_path(value):
            return ""
        return value
    return value


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def _truncate(text: str, max_runes: int) -> str:
    # Always exactly max_runes characters before the ellipsis, even when the
    # cut lands on a space.
    if max_runes <= 0 or len(text) <= max_runes:
        return text
    return text[:max_runes] + ELLIPSIS


def _first_text(value: Any, depth: int = 0) -> str:
    if depth > MAX_DEPTH:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        for key in PREVIEW_KEYS + PREVIEW_CONTAINERS:
            found = _first_text(value.get(key), depth + 1)
            if found:
                return found
        return ""
    if isinstance(value, list):
        for item in value:
            found = _first_text(item, depth + 1)
            if found:
                return found
    return ""


def _as_text(raw: Union[bytes, str, None]) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def clean_preview_text(text: str, max_runes: int = PREVIEW_MAX_RUNES) -> str:
    """Strip ids and storage paths, collapse whitespace and truncate."""
    text = _UUID_ANYWHERE.sub("", text)
    text = _STORAGE_PATH_TOKEN.sub("", text)
    return _truncate(_collapse(text), max_runes)


def extract_preview(raw: Union[bytes, str, None], max_runes: int = PREVIEW_MAX_RUNES) -> str:
    """Short display text for a raw JSON payload.

    Text-like fields are searched first, then the nested payload/data/event
    containers. Payloads that are not JSON, or carry no text, fall back to
    the raw content.
    """
    text = _as_text(raw)
    if not text.strip():
        return ""

    candidate = ""
    try:
        decoded = json.loads(text)
    except ValueError:
        decoded = None
    if isinstance(decoded, (dict, list)):
        candidate = _first_text(decoded)

    return clean_preview_text(candidate or text, max_runes)


def _thread_meta(payload: dict, key: str) -> Optional[str]:
    for source in (payload, payload.get("meta"), payload.get("metadata")):
        if isinstance(source, dict) and key in source:
            raw = source.get(key)
            return str(raw).strip() if raw is not None else ""
    return None


def thread_relation(payload: Any) -> str:
    """Label a post relative to its thread root.

    Returns one of ``unknown``, ``root_post``, ``reply_to_root`` or
    ``nested_reply``. Only the equality of the two references is used.
    """
    if isinstance(payload, (bytes, str)):
        try:
            payload = json.loads(_as_text(payload))
        except ValueError:
            return THREAD_UNKNOWN
    if not isinstance(payload, dict):
        return THREAD_UNKNOWN

    reply_to = _thread_meta(payload, "reply_to")
    thread_root = _thread_meta(payload, "thread_root")
    if reply_to is None and thread_root is None:
        return THREAD_UNKNOWN
    if not reply_to:
        return THREAD_ROOT_POST
    if not thread_root:
        return THREAD_UNKNOWN
    if reply_to == thread_root:
        return THREAD_REPLY_TO_ROOT
    return THREAD_NESTED_REPLY


def public_event_view(raw: Union[bytes, str, None]) -> dict:
    """Public projection of a stored event payload."""
    return {
        "preview": extract_preview(raw),
        "thread_relation": thread_relation(raw or ""),
    }
