"""Topic models — persistent topics, their members, and derived events.

Includes:
- KnowledgeTopic: user-owned cluster of notes (SQL table)
- TopicMember: topic ↔ note join with curation/clustering metadata (SQL table)
- TopicEvent: derived same-day event cluster, rebuilt not patched (SQL table)

v2 schema added the curation columns (pinned/archived, member source/state,
event_time/fingerprint/evidence_rank) and the event table. Older databases
are served through SchemaCapabilities (app.db.database).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField

MemberSource = Literal["auto", "manual"]
ManualState = Literal["none", "manual", "confirmed", "excluded"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KnowledgeTopic(SQLModel, table=True):
    """A persistent, user-owned cluster of notes."""

    __tablename__ = "knowledge_topic"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    title: str | None = None
    keywords: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    summary_markdown: str | None = None
    member_count: int = 0
    config: dict = SQLField(default_factory=dict, sa_column=Column(JSON))
    # v2: curation
    pinned: bool = False
    pinned_at: datetime | None = None     # non-null iff pinned
    archived: bool = False
    archived_at: datetime | None = None   # non-null iff archived
    last_ingested_at: datetime | None = None
    created_at: datetime = SQLField(default_factory=utcnow)
    updated_at: datetime = SQLField(default_factory=utcnow)


class TopicMember(SQLModel, table=True):
    """Membership of a note in a topic. Unique on (topic_id, note_id)."""

    __tablename__ = "knowledge_topic_member"

    topic_id: str = SQLField(primary_key=True)
    note_id: str = SQLField(primary_key=True)
    user_id: str = SQLField(index=True)
    score: float | None = None       # producer-assigned relevance
    # v2: curation/clustering
    source: str = "auto"             # "auto" | "manual"
    manual_state: str = "none"       # "none" | "manual" | "confirmed" | "excluded"
    event_time: str | None = None    # ISO-8601 UTC
    event_fingerprint: str | None = None  # non-null iff event_time has a day-key
    evidence_rank: int | None = None      # lower = more representative
    created_at: datetime = SQLField(default_factory=utcnow)
    updated_at: datetime = SQLField(default_factory=utcnow)


class TopicEvent(SQLModel, table=True):
    """One cluster of members sharing a fingerprint."""

    __tablename__ = "knowledge_topic_event"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    topic_id: str = SQLField(index=True)
    event_time: str                  # earliest member event_time in the cluster
    title: str | None = None
    summary: str | None = None
    fingerprint: str
    importance: float = 0.0          # ln(1 + count)
    source: dict = SQLField(default_factory=dict, sa_column=Column(JSON))  # {"note_ids": [...], "count": n}
    created_at: datetime = SQLField(default_factory=utcnow)
