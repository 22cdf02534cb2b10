"""Tests for EventAggregator — fingerprint clustering and atomic rebuild."""

import math
import os
import sys
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import pytest

from app.engines.topics.errors import StoreFailure
from app.engines.topics.events import build_events
from app.engines.topics.fingerprint import fingerprint
from app.models.topic import TopicEvent, TopicMember
from conftest import OWNER, add_note, utc


def _member(note_id, fp, event_time, score=None):
    return TopicMember(
        topic_id="t1", note_id=note_id, user_id=OWNER, score=score,
        event_time=event_time, event_fingerprint=fp,
    )


# === build_events (pure) ===


def test_build_events_two_clusters():
    members = [
        _member("A", "FP1", "2024-01-01T10:00:00Z"),
        _member("B", "FP1", "2024-01-01T08:00:00Z"),
        _member("C", "FP2", "2024-01-02T09:00:00Z"),
    ]
    events = build_events("t1", OWNER, members, {"A": "Launch", "B": None, "C": "Other"})

    assert len(events) == 2
    first, second = events
    assert first.fingerprint == "FP1"
    assert first.source == {"note_ids": ["A", "B"], "count": 2}
    assert first.importance == pytest.approx(math.log(3))
    assert first.event_time == "2024-01-01T08:00:00Z"
    assert first.title == "Launch"
    assert second.source == {"note_ids": ["C"], "count": 1}
    assert second.importance == pytest.approx(math.log(2))


def test_build_events_ignores_members_without_fingerprint():
    members = [
        _member("A", None, "2024-01-01T10:00:00Z"),
        _member("B", "FP1", None),
        _member("C", "FP1", "not a time"),
    ]
    assert build_events("t1", OWNER, members) == []


def test_build_events_earliest_compared_as_datetimes():
    # Lexical order would pick B; A is earlier once converted to UTC
    members = [
        _member("A", "FP1", "2024-01-01T03:00:00+05:00"),
        _member("B", "FP1", "2024-01-01T00:30:00Z"),
    ]
    events = build_events("t1", OWNER, members)
    assert events[0].event_time == "2023-12-31T22:00:00Z"


def test_build_events_title_first_non_empty():
    members = [_member("A", "FP1", "2024-01-01T00:00:00Z"), _member("B", "FP1", "2024-01-01T01:00:00Z")]
    events = build_events("t1", OWNER, members, {"A": "", "B": "Second"})
    assert events[0].title == "Second"
    assert build_events("t1", OWNER, members)[0].title is None


# === rebuild ===


def test_rebuild_replaces_previous_events(engine, topics, topic):
    day = utc(2024, 3, 1, 9)
    a = add_note(engine, title="Launch", published_at=day)
    b = add_note(engine, title="Launch", published_at=day)
    c = add_note(engine, title="Landing", published_at=day)
    for note in (a, b, c):
        topics.members.add(topic.id, OWNER, note.id)

    first = topics.events.rebuild(topic.id, OWNER)
    second = topics.events.rebuild(topic.id, OWNER)

    stored = topics.repo.list_events(topic.id, OWNER)
    assert len(first) == len(second) == len(stored) == 2
    assert {e.id for e in stored} == {e.id for e in second}
    counts = sorted(e.source["count"] for e in stored)
    assert counts == [1, 2]
    launch = next(e for e in stored if e.source["count"] == 2)
    assert launch.title == "Launch"
    assert set(launch.source["note_ids"]) == {a.id, b.id}


def test_same_day_notes_collapse_to_earliest_event(engine, topics, topic):
    """Same title at 08:00Z and 20:00Z on one UTC day is one event at 08:00Z."""
    evening = add_note(engine, title="Orbital test", published_at=utc(2024, 3, 1, 20))
    morning = add_note(engine, title="Orbital test", published_at=utc(2024, 3, 1, 8))
    topics.members.add(topic.id, OWNER, evening.id)
    topics.members.add(topic.id, OWNER, morning.id)

    expected = fingerprint(topic.id, "2024-03-01", "Orbital test")
    members = topics.repo.list_members(topic.id, OWNER)
    assert [m.event_fingerprint for m in members] == [expected, expected]

    topics.events.rebuild(topic.id, OWNER)

    stored = topics.repo.list_events(topic.id, OWNER)
    assert len(stored) == 1
    assert stored[0].fingerprint == expected
    assert stored[0].event_time == "2024-03-01T08:00:00Z"
    assert stored[0].source["count"] == 2
    assert set(stored[0].source["note_ids"]) == {evening.id, morning.id}


def test_rebuild_empty_topic_clears_events(engine, topics, topic):
    note = add_note(engine, title="Launch", published_at=utc(2024, 3, 1))
    topics.members.add(topic.id, OWNER, note.id)
    topics.events.rebuild(topic.id, OWNER)
    topics.members.remove(topic.id, OWNER, note.id)

    assert topics.events.rebuild(topic.id, OWNER) == []
    assert topics.repo.list_events(topic.id, OWNER) == []


def test_rebuild_failure_keeps_old_events(engine, topics, topic):
    """Delete and insert commit together: a failed insert leaves the old set."""
    note = add_note(engine, title="Launch", published_at=utc(2024, 3, 1))
    topics.members.add(topic.id, OWNER, note.id)
    topics.events.rebuild(topic.id, OWNER)

    broken = TopicEvent(user_id=OWNER, topic_id=topic.id, event_time=None, fingerprint=None)
    with patch("app.engines.topics.events.build_events", return_value=[broken]):
        with pytest.raises(StoreFailure):
            topics.events.rebuild(topic.id, OWNER)

    assert len(topics.repo.list_events(topic.id, OWNER)) == 1
