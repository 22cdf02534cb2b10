"""Event fingerprints — deterministic keys for "same event, same day, same topic".

Two members collapse into one event when they share topic id, UTC calendar
day and normalized title. The day-key uses the UTC date with no local
timezone adjustment: 23:59:59Z and 00:00:01Z the next day are different
days even when they fall on the same local day for the user.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from datetime import datetime, timezone

# Title characters that take part in the key
TITLE_KEY_MAX_CHARS = 48

_URL_RE = re.compile(r"https?://\S+")
_WS_RE = re.compile(r"\s+")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime.

    Naive values are read as UTC. Returns None when the value is missing
    or cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except OverflowError:
        # Offset pushes the instant outside year 1..9999
        return None


def to_iso(value: str | datetime | None) -> str | None:
    """Canonical UTC ISO string (``2024-03-01T08:00:00Z``) or None."""
    dt = parse_timestamp(value)
    if dt is None:
        return None
    return dt.isoformat().replace("+00:00", "Z")


def day_key(value: str | datetime | None) -> str | None:
    """UTC calendar day ``YYYY-MM-DD`` of a timestamp, or None if unparseable."""
    dt = parse_timestamp(value)
    if dt is None:
        return None
    return dt.strftime("%Y-%m-%d")


def normalize_title(title: str | None) -> str:
    """Lowercase, drop URLs and punctuation/symbols, collapse whitespace, truncate."""
    text = _URL_RE.sub("", str(title or "").lower())
    text = "".join(" " if unicodedata.category(ch)[0] in "PS" else ch for ch in text)
    text = _WS_RE.sub(" ", text).strip()
    return text[:TITLE_KEY_MAX_CHARS]


def fingerprint(topic_id: str, day: str, title: str | None) -> str:
    """SHA-256 over (topic id, day-key, normalized title)."""
    payload = f"{topic_id or ''}|{day}|{normalize_title(title)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def event_fingerprint(topic_id: str, event_time: str | datetime | None, title: str | None) -> str | None:
    """Fingerprint for a member, or None when no day-key can be derived."""
    day = day_key(event_time)
    if not day:
        return None
    return fingerprint(topic_id, day, title)
