"""Read views — topic list and topic detail (members, timeline, events)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from app.config import settings
from app.engines.topics.errors import NotFound
from app.engines.topics.fingerprint import parse_timestamp, to_iso
from app.engines.topics.notes import NoteStore
from app.engines.topics.repository import TopicRepository
from app.models.topic import KnowledgeTopic

logger = logging.getLogger(__name__)

# Sort position of members that were never ranked
_UNRANKED = 9999


class MemberView(BaseModel):
    note_id: str
    score: float | None = None
    source: str = "auto"
    manual_state: str = "none"
    event_time: str | None = None
    event_fingerprint: str | None = None
    evidence_rank: int | None = None
    time: str | None = None  # event_time, else published_at, else created_at
    title: str | None = None
    excerpt: str | None = None
    site_name: str | None = None
    source_url: str | None = None
    content_type: str | None = None
    cover_image_url: str | None = None


class EventView(BaseModel):
    id: str
    event_time: str
    title: str | None = None
    summary: str | None = None
    fingerprint: str
    importance: float
    count: int = 0
    evidence: list[MemberView] = Field(default_factory=list)


class TopicDetail(BaseModel):
    topic: KnowledgeTopic
    members: list[MemberView] = Field(default_factory=list)
    timeline: list[MemberView] = Field(default_factory=list)
    events: list[EventView] = Field(default_factory=list)


def _time_key(view: MemberView) -> datetime:
    return parse_timestamp(view.time) or datetime.max.replace(tzinfo=timezone.utc)


def _evidence_key(view: MemberView) -> tuple[int, float]:
    rank = view.evidence_rank if view.evidence_rank is not None else _UNRANKED
    score = view.score if view.score is not None else float("-inf")
    return rank, -score


class TopicViews:
    def __init__(self, repo: TopicRepository, notes: NoteStore) -> None:
        self.repo = repo
        self.notes = notes

    def list_topics(self, owner_id: str) -> list[KnowledgeTopic]:
        return self.repo.list_topics(owner_id, limit=settings.topic_list_limit)

    def get_detail(self, topic_id: str, owner_id: str) -> TopicDetail:
        topic = self.repo.get_topic(topic_id, owner_id)
        if topic is None:
            raise NotFound(f"Topic not found: {topic_id}")

        members = self.repo.list_members(
            topic_id, owner_id, by_score=True, limit=settings.member_list_limit
        )
        notes = self.notes.get_many([m.note_id for m in members], owner_id)

        views: list[MemberView] = []
        for m in members:
            note = notes.get(m.note_id)
            if note is None:
                # Note deleted from the document store; membership is stale
                continue
            views.append(
                MemberView(
                    note_id=m.note_id,
                    score=m.score,
                    source=m.source,
                    manual_state=m.manual_state,
                    event_time=m.event_time,
                    event_fingerprint=m.event_fingerprint,
                    evidence_rank=m.evidence_rank,
                    time=to_iso(m.event_time) or to_iso(note.published_at) or to_iso(note.created_at),
                    title=note.title,
                    excerpt=note.excerpt,
                    site_name=note.site_name,
                    source_url=note.source_url,
                    content_type=note.content_type,
                    cover_image_url=note.cover_image_url,
                )
            )

        timeline = sorted(views, key=_time_key)

        by_note = {v.note_id: v for v in views}
        by_fingerprint: dict[str, list[MemberView]] = {}
        for v in views:
            if v.event_fingerprint:
                by_fingerprint.setdefault(v.event_fingerprint, []).append(v)

        events = []
        for ev in self.repo.list_events(topic_id, owner_id, limit=settings.event_list_limit):
            note_ids = (ev.source or {}).get("note_ids") or []
            if note_ids:
                evidence = [by_note[nid] for nid in note_ids if nid in by_note]
            else:
                evidence = list(by_fingerprint.get(ev.fingerprint, []))
            events.append(
                EventView(
                    id=ev.id,
                    event_time=ev.event_time,
                    title=ev.title,
                    summary=ev.summary,
                    fingerprint=ev.fingerprint,
                    importance=ev.importance,
                    count=int((ev.source or {}).get("count") or len(evidence)),
                    evidence=sorted(evidence, key=_evidence_key),
                )
            )

        return TopicDetail(topic=topic, members=views, timeline=timeline, events=events)
