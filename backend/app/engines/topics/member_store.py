"""Member store — topic membership mutations, manual and automatic.

Manual curation (add / remove / exclude / confirm / set_time) and the
ingestion path (add_auto) write through the same (topic_id, note_id) upsert.
Writes are last-write-wins; there is no optimistic concurrency.
"""

from __future__ import annotations

import logging
from collections import OrderedDict

from app.engines.topics.errors import InvalidInput, NotFound, TopicEngineError, Unauthorized
from app.engines.topics.event_time import best_title, resolve_event_time
from app.engines.topics.fingerprint import event_fingerprint, to_iso
from app.engines.topics.notes import NoteStore
from app.engines.topics.repository import TopicRepository
from app.models.note import Note
from app.models.topic import TopicMember

logger = logging.getLogger(__name__)

# Fields the ingestion path may overwrite on an existing member
_AUTO_UPDATE_FIELDS = ("score", "event_time", "event_fingerprint")


class MemberStore:
    """Owner-scoped membership operations on a single topic."""

    def __init__(self, repo: TopicRepository, notes: NoteStore) -> None:
        self.repo = repo
        self.notes = notes

    def _require_topic(self, topic_id: str, owner_id: str) -> None:
        if not owner_id:
            raise Unauthorized("No authenticated owner")
        if not topic_id:
            raise InvalidInput("topic_id is required")
        if self.repo.get_topic(topic_id, owner_id) is None:
            raise NotFound(f"Topic not found: {topic_id}")

    def _require_note(self, note_id: str, owner_id: str) -> Note:
        if not note_id:
            raise InvalidInput("note_id is required")
        note = self.notes.get(note_id, owner_id)
        if note is None:
            raise NotFound(f"Note not found: {note_id}")
        return note

    def _refresh_topic(self, topic_id: str, owner_id: str, mark_ingested: bool = False) -> None:
        """Best-effort member_count / last_ingested_at refresh."""
        try:
            self.repo.refresh_member_count(topic_id, owner_id, mark_ingested=mark_ingested)
        except TopicEngineError as e:
            logger.warning("Topic %s count refresh failed: %s", topic_id, e)

    # ── manual curation ─────────────────────────────────────────────────────

    def add(self, topic_id: str, owner_id: str, note_id: str) -> TopicMember:
        """Manually add a note; idempotent, re-adding refreshes event time."""
        self._require_topic(topic_id, owner_id)
        note = self._require_note(note_id, owner_id)

        event_time = resolve_event_time(note)
        self.repo.upsert_members([
            {
                "topic_id": topic_id,
                "note_id": note_id,
                "user_id": owner_id,
                "score": None,
                "source": "manual",
                "manual_state": "manual",
                "event_time": event_time,
                "event_fingerprint": event_fingerprint(topic_id, event_time, best_title(note)),
                "evidence_rank": None,
            }
        ])
        self._refresh_topic(topic_id, owner_id, mark_ingested=True)
        return self.repo.get_member(topic_id, note_id, owner_id)

    def remove(self, topic_id: str, owner_id: str, note_id: str) -> None:
        """Delete the membership row. Deleting an absent row is not an error."""
        self._require_topic(topic_id, owner_id)
        if not note_id:
            raise InvalidInput("note_id is required")
        self.repo.delete_member(topic_id, note_id, owner_id)
        self._refresh_topic(topic_id, owner_id)

    def exclude(self, topic_id: str, owner_id: str, note_id: str) -> None:
        # Exclusion deletes the row like remove; no tombstone is kept
        self.remove(topic_id, owner_id, note_id)

    def confirm(self, topic_id: str, owner_id: str, note_id: str) -> TopicMember:
        """Mark a member confirmed; clustering fields and score are untouched."""
        self._require_topic(topic_id, owner_id)
        member = self.repo.update_member(
            topic_id, note_id, owner_id, manual_state="confirmed", source="manual"
        )
        if member is None:
            raise NotFound(f"Member not found: {note_id}")
        return member

    def set_time(self, topic_id: str, owner_id: str, note_id: str, event_time: str | None) -> TopicMember:
        """Override a member's event time and recompute its fingerprint."""
        self._require_topic(topic_id, owner_id)
        iso = to_iso(event_time)
        if iso is None:
            raise InvalidInput(f"Unparseable event_time: {event_time!r}")
        if self.repo.get_member(topic_id, note_id, owner_id) is None:
            raise NotFound(f"Member not found: {note_id}")

        note = self.notes.get(note_id, owner_id)
        member = self.repo.update_member(
            topic_id,
            note_id,
            owner_id,
            event_time=iso,
            event_fingerprint=event_fingerprint(topic_id, iso, best_title(note)),
            source="manual",
        )
        if member is None:
            raise NotFound(f"Member not found: {note_id}")
        return member

    # ── ingestion path ──────────────────────────────────────────────────────

    def add_auto(self, topic_id: str, owner_id: str, note: Note, score: float | None) -> None:
        """Record an automatic membership without clobbering manual curation."""
        event_time = resolve_event_time(note)
        self.repo.upsert_members(
            [
                {
                    "topic_id": topic_id,
                    "note_id": note.id,
                    "user_id": owner_id,
                    "score": score,
                    "source": "auto",
                    "manual_state": "none",
                    "event_time": event_time,
                    "event_fingerprint": event_fingerprint(topic_id, event_time, best_title(note)),
                }
            ],
            update_fields=_AUTO_UPDATE_FIELDS,
        )

    def rerank_evidence(self, topic_id: str, owner_id: str) -> None:
        """Rank members 1..n by score inside each fingerprint group."""
        groups: OrderedDict[str, list[TopicMember]] = OrderedDict()
        ranks: dict[str, int | None] = {}
        for member in self.repo.list_members(topic_id, owner_id):
            if member.event_fingerprint:
                groups.setdefault(member.event_fingerprint, []).append(member)
            else:
                ranks[member.note_id] = None

        for group in groups.values():
            # Stable sort keeps insertion order among equal scores
            ordered = sorted(group, key=lambda m: -(m.score if m.score is not None else float("-inf")))
            for rank, member in enumerate(ordered, start=1):
                ranks[member.note_id] = rank

        if ranks:
            self.repo.set_evidence_ranks(topic_id, owner_id, ranks)
