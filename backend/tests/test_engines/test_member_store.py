"""Tests for MemberStore — manual curation and the ingestion upsert path."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import pytest

from app.engines.topics.errors import InvalidInput, NotFound, Unauthorized
from app.engines.topics.fingerprint import event_fingerprint
from conftest import OTHER_OWNER, OWNER, add_note, utc


# === add ===


def test_add_creates_manual_member(engine, topics, topic):
    note = add_note(engine, title="Starship flight 5", published_at=utc(2024, 10, 13, 12))
    member = topics.members.add(topic.id, OWNER, note.id)

    assert member.source == "manual"
    assert member.manual_state == "manual"
    assert member.score is None
    assert member.evidence_rank is None
    assert member.event_time == "2024-10-13T12:00:00Z"
    assert member.event_fingerprint == event_fingerprint(topic.id, "2024-10-13T12:00:00Z", "Starship flight 5")


def test_add_twice_is_idempotent(engine, topics, topic):
    note = add_note(engine, title="Starship flight 5", published_at=utc(2024, 10, 13))
    topics.members.add(topic.id, OWNER, note.id)
    topics.members.add(topic.id, OWNER, note.id)

    assert topics.repo.count_members(topic.id, OWNER) == 1
    assert topics.repo.get_topic(topic.id, OWNER).member_count == 1


def test_add_refreshes_last_ingested(engine, topics, topic):
    before = topics.repo.get_topic(topic.id, OWNER).last_ingested_at
    note = add_note(engine, title="x", created_at=utc(2024, 1, 1))
    topics.members.add(topic.id, OWNER, note.id)
    after = topics.repo.get_topic(topic.id, OWNER).last_ingested_at
    assert after is not None
    assert before is None or after >= before


def test_add_unknown_note(topics, topic):
    with pytest.raises(NotFound):
        topics.members.add(topic.id, OWNER, "missing-note")


def test_add_note_of_other_owner(engine, topics, topic):
    note = add_note(engine, owner_id=OTHER_OWNER, title="not yours")
    with pytest.raises(NotFound):
        topics.members.add(topic.id, OWNER, note.id)


def test_add_topic_of_other_owner(engine, topics, topic):
    note = add_note(engine, owner_id=OTHER_OWNER, title="x")
    with pytest.raises(NotFound):
        topics.members.add(topic.id, OTHER_OWNER, note.id)


def test_add_requires_note_id(topics, topic):
    with pytest.raises(InvalidInput):
        topics.members.add(topic.id, OWNER, "")


def test_add_requires_owner(engine, topics, topic):
    note = add_note(engine, title="x")
    with pytest.raises(Unauthorized):
        topics.members.add(topic.id, "", note.id)


# === remove / exclude ===


def test_remove_deletes_row_and_is_idempotent(engine, topics, topic):
    note = add_note(engine, title="x", created_at=utc(2024, 1, 1))
    topics.members.add(topic.id, OWNER, note.id)

    topics.members.remove(topic.id, OWNER, note.id)
    topics.members.remove(topic.id, OWNER, note.id)

    assert topics.repo.get_member(topic.id, note.id, OWNER) is None
    assert topics.repo.get_topic(topic.id, OWNER).member_count == 0


def test_exclude_deletes_row(engine, topics, topic):
    note = add_note(engine, title="x", created_at=utc(2024, 1, 1))
    topics.members.add(topic.id, OWNER, note.id)
    topics.members.exclude(topic.id, OWNER, note.id)
    assert topics.repo.get_member(topic.id, note.id, OWNER) is None


# === confirm ===


def test_confirm_leaves_clustering_fields_untouched(engine, topics, topic):
    note = add_note(engine, title="Starship", published_at=utc(2024, 6, 6, 12))
    topics.members.add_auto(topic.id, OWNER, note, 0.73)
    before = topics.repo.get_member(topic.id, note.id, OWNER)

    after = topics.members.confirm(topic.id, OWNER, note.id)

    assert after.manual_state == "confirmed"
    assert after.source == "manual"
    assert after.event_time == before.event_time
    assert after.event_fingerprint == before.event_fingerprint
    assert after.score == before.score


def test_confirm_missing_member(topics, topic):
    with pytest.raises(NotFound):
        topics.members.confirm(topic.id, OWNER, "nope")


# === set_time ===


def test_set_time_recomputes_fingerprint(engine, topics, topic):
    note = add_note(engine, title="Starship", published_at=utc(2024, 6, 6, 12))
    topics.members.add(topic.id, OWNER, note.id)

    member = topics.members.set_time(topic.id, OWNER, note.id, "2024-06-08T09:30:00+02:00")

    assert member.event_time == "2024-06-08T07:30:00Z"
    assert member.event_fingerprint == event_fingerprint(topic.id, "2024-06-08", "Starship")
    assert member.source == "manual"


def test_set_time_uses_excerpt_when_no_title(engine, topics, topic):
    note = add_note(engine, excerpt="Booster catch", created_at=utc(2024, 1, 1))
    topics.members.add(topic.id, OWNER, note.id)
    member = topics.members.set_time(topic.id, OWNER, note.id, "2024-10-13T00:00:00Z")
    assert member.event_fingerprint == event_fingerprint(topic.id, "2024-10-13", "Booster catch")


def test_set_time_rejects_unparseable(engine, topics, topic):
    note = add_note(engine, title="x", created_at=utc(2024, 1, 1))
    topics.members.add(topic.id, OWNER, note.id)
    with pytest.raises(InvalidInput):
        topics.members.set_time(topic.id, OWNER, note.id, "next tuesday")
    with pytest.raises(InvalidInput):
        topics.members.set_time(topic.id, OWNER, note.id, None)
    with pytest.raises(InvalidInput):
        topics.members.set_time(topic.id, OWNER, note.id, "0001-01-01T00:00:00+01:00")


def test_set_time_missing_member(topics, topic):
    with pytest.raises(NotFound):
        topics.members.set_time(topic.id, OWNER, "nope", "2024-01-01T00:00:00Z")


# === ingestion path ===


def test_add_auto_preserves_manual_curation(engine, topics, topic):
    note = add_note(engine, title="Starship", published_at=utc(2024, 6, 6))
    topics.members.add(topic.id, OWNER, note.id)
    topics.members.confirm(topic.id, OWNER, note.id)

    topics.members.add_auto(topic.id, OWNER, note, 0.9)

    member = topics.repo.get_member(topic.id, note.id, OWNER)
    assert member.score == 0.9
    assert member.source == "manual"
    assert member.manual_state == "confirmed"


def test_add_auto_inserts_auto_member(engine, topics, topic):
    note = add_note(engine, title="Starship", published_at=utc(2024, 6, 6))
    topics.members.add_auto(topic.id, OWNER, note, 0.5)
    member = topics.repo.get_member(topic.id, note.id, OWNER)
    assert member.source == "auto"
    assert member.manual_state == "none"
    assert member.score == 0.5


def test_rerank_evidence_orders_by_score_within_group(engine, topics, topic):
    day = utc(2024, 6, 6, 10)
    low = add_note(engine, title="Starship", published_at=day)
    high = add_note(engine, title="Starship", published_at=day)
    alone = add_note(engine, title="Other story", published_at=day)
    undated = add_note(engine, title="Undated")
    topics.members.add_auto(topic.id, OWNER, low, 0.2)
    topics.members.add_auto(topic.id, OWNER, high, 0.8)
    topics.members.add_auto(topic.id, OWNER, alone, 0.1)
    topics.members.add_auto(topic.id, OWNER, undated, 0.9)
    # created_at always exists on stored notes, so drop the fingerprint by hand
    topics.repo.update_member(topic.id, undated.id, OWNER, event_time=None, event_fingerprint=None)

    topics.members.rerank_evidence(topic.id, OWNER)

    ranks = {m.note_id: m.evidence_rank for m in topics.repo.list_members(topic.id, OWNER)}
    assert ranks[high.id] == 1
    assert ranks[low.id] == 2
    assert ranks[alone.id] == 1
    assert ranks[undated.id] is None
