"""Event time resolution for a note's contribution to a topic.

Priority: explicit event annotation > publish time > a date written in the
title/excerpt > ingestion (creation) time. Candidates that do not parse are
skipped.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from app.engines.topics.fingerprint import to_iso

# 2025-01-03 / 2025/1/3
_ISO_DATE_RE = re.compile(r"(20\d{2})[-/](\d{1,2})[-/](\d{1,2})")
# 2025年1月3日
_CJK_DATE_RE = re.compile(r"(20\d{2})\s*年\s*(\d{1,2})\s*月\s*(\d{1,2})\s*日")


def date_from_text(text: str) -> str | None:
    """Find the first calendar date written in free text, as UTC midnight ISO."""
    for pattern in (_ISO_DATE_RE, _CJK_DATE_RE):
        match = pattern.search(text)
        if not match:
            continue
        year, month, day = (int(g) for g in match.groups())
        try:
            return to_iso(datetime(year, month, day, tzinfo=timezone.utc))
        except ValueError:
            continue
    return None


def resolve_event_time(note: Any) -> str | None:
    """Best-known event time of a note, or None when it has no usable timestamp."""
    explicit = to_iso(getattr(note, "event_time", None))
    if explicit:
        return explicit

    published = to_iso(getattr(note, "published_at", None))
    if published:
        return published

    text = f"{getattr(note, 'title', None) or ''}\n{getattr(note, 'excerpt', None) or ''}".strip()
    if text:
        written = date_from_text(text)
        if written:
            return written

    return to_iso(getattr(note, "created_at", None))


def best_title(note: Any) -> str:
    """Title used for fingerprinting: title, else excerpt, else empty."""
    if note is None:
        return ""
    return str(getattr(note, "title", None) or getattr(note, "excerpt", None) or "")
