"""
Decay classification and TTLs for facts.

Every fact gets a decay class when stored. The class decides how long the
fact lives before it expires unless something confirms it again.
"""

import hashlib
import re
import time
from typing import Optional

DECAY_CLASSES = ("permanent", "stable", "active", "session", "checkpoint")

# Seconds per decay class. None = never expires.
TTL_DEFAULTS: dict[str, Optional[int]] = {
    "permanent": None,
    "stable": 90 * 24 * 3600,
    "active": 14 * 24 * 3600,
    "session": 24 * 3600,
    "checkpoint": 4 * 3600,
}

PERMANENT_KEYS = (
    "name", "email", "api_key", "api_endpoint", "architecture",
    "decision", "birthday", "born", "phone", "language", "location",
)
SESSION_KEYS = ("current_file", "temp", "debug", "working_on_right_now")
ACTIVE_KEYS = ("task", "todo", "wip", "branch", "sprint", "blocker")

_PERMANENT_TEXT = re.compile(r"\b(decided|architecture|always use|never use)\b", re.IGNORECASE)
_SESSION_TEXT = re.compile(r"\b(currently debugging|right now|this session)\b", re.IGNORECASE)
_ACTIVE_TEXT = re.compile(r"\b(working on|need to|todo|blocker|sprint)\b", re.IGNORECASE)


def now_seconds() -> int:
    """Current time as whole epoch seconds."""
    return int(time.time())


def calculate_expiry(decay_class: str, from_timestamp: Optional[int] = None) -> Optional[int]:
    """Return the expiry timestamp for a decay class, or None if it never expires."""
    if from_timestamp is None:
        from_timestamp = now_seconds()
    ttl = TTL_DEFAULTS.get(decay_class)
    return from_timestamp + ttl if ttl else None


def classify_decay(
    entity: Optional[str],
    key: Optional[str],
    value: Optional[str],
    text: str,
) -> str:
    """
    Pick a decay class from the structured key and the fact text.

    Order matters: permanent markers win over session markers, which win
    over active ones. Anything unrecognized is "stable".
    """
    key_lower = (key or "").lower()

    if any(k in key_lower for k in PERMANENT_KEYS):
        return "permanent"
    if _PERMANENT_TEXT.search(text):
        return "permanent"
    if entity in ("decision", "convention"):
        return "permanent"

    if any(k in key_lower for k in SESSION_KEYS):
        return "session"
    if _SESSION_TEXT.search(text):
        return "session"

    if any(k in key_lower for k in ACTIVE_KEYS):
        return "active"
    if _ACTIVE_TEXT.search(text):
        return "active"

    if "checkpoint" in key_lower or "preflight" in key_lower:
        return "checkpoint"

    return "stable"


def normalize_text_for_dedupe(text: str) -> str:
    """Trim, collapse whitespace, lowercase."""
    return re.sub(r"\s+", " ", text.strip()).lower()


def normalized_hash(text: str) -> str:
    """SHA-256 of the normalized text, used for fuzzy duplicate detection."""
    return hashlib.sha256(normalize_text_for_dedupe(text).encode("utf-8")).hexdigest()
