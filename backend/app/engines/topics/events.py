"""Event aggregation — collapse same-fingerprint members into topic events.

Events are derived data: a rebuild discards the topic's events and writes
exactly one event per distinct fingerprint among the current members.
"""

from __future__ import annotations

import logging
import math
from collections import OrderedDict
from typing import Mapping, Sequence

from app.engines.topics.fingerprint import parse_timestamp, to_iso
from app.engines.topics.notes import NoteStore
from app.engines.topics.repository import TopicRepository
from app.models.topic import TopicEvent, TopicMember

logger = logging.getLogger(__name__)


def build_events(
    topic_id: str,
    owner_id: str,
    members: Sequence[TopicMember],
    titles: Mapping[str, str | None] | None = None,
) -> list[TopicEvent]:
    """Group members by fingerprint into events.

    Members without a fingerprint or a parseable event_time do not take
    part. Groups keep first-seen member order; the event time is the
    earliest member time (ties go to the earlier member) and the title is
    the first non-empty note title in the group.
    """
    titles = titles or {}
    groups: OrderedDict[str, list[TopicMember]] = OrderedDict()
    for member in members:
        if not member.event_fingerprint or parse_timestamp(member.event_time) is None:
            continue
        groups.setdefault(member.event_fingerprint, []).append(member)

    events = []
    for fp, group in groups.items():
        earliest = min(group, key=lambda m: parse_timestamp(m.event_time))
        title = next((titles[m.note_id] for m in group if titles.get(m.note_id)), None)
        note_ids = [m.note_id for m in group]
        events.append(
            TopicEvent(
                user_id=owner_id,
                topic_id=topic_id,
                event_time=to_iso(earliest.event_time),
                title=title,
                summary=None,
                fingerprint=fp,
                importance=math.log1p(len(group)),
                source={"note_ids": note_ids, "count": len(group)},
            )
        )
    return events


class EventAggregator:
    """Rebuilds a topic's events from a snapshot of its members."""

    def __init__(self, repo: TopicRepository, notes: NoteStore | None = None) -> None:
        self.repo = repo
        self.notes = notes

    def rebuild(self, topic_id: str, owner_id: str) -> list[TopicEvent]:
        members = self.repo.list_members(topic_id, owner_id)
        titles: dict[str, str | None] = {}
        if self.notes is not None and members:
            notes = self.notes.get_many([m.note_id for m in members], owner_id)
            titles = {nid: (n.title or "").strip() or None for nid, n in notes.items()}

        events = build_events(topic_id, owner_id, members, titles)
        self.repo.replace_events(topic_id, owner_id, events)
        logger.info("Rebuilt %d events for topic %s from %d members", len(events), topic_id, len(members))
        return events
