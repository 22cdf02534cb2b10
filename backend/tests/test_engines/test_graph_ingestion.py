"""Tests for GraphIngestionAdapter — extraction, graph writes, topic routing."""

import asyncio
import json
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import pytest
from sqlmodel import Session, select

from app.config import settings
from app.db.database import detect_schema
from app.engines.topics.extraction import ExtractionResult, parse_structured
from app.engines.topics.graph_store import GraphStore
from app.engines.topics.ingestion import TopicProposal
from app.engines.topics.service import build_topic_engine
from app.models.graph import KnowledgeEntity, KnowledgeRelationship, NoteEntity
from conftest import OTHER_OWNER, OWNER, add_note, utc


def _reply(entities, relationships=()):
    return json.dumps({"entities": list(entities), "relationships": list(relationships)})


SPACEX_REPLY = _reply(
    [
        {"name": "SpaceX", "type": "ORG", "aliases": ["Space Exploration Technologies"]},
        {"name": "Starship", "type": "TECH"},
    ],
    [{"source_name": "SpaceX", "target_name": "Starship", "relation": "builds", "evidence": "SpaceX builds Starship"}],
)

MUSK_REPLY = _reply(
    [
        {"name": "Space Exploration Technologies", "type": "ORG"},
        {"name": "Elon Musk", "type": "PERSON"},
    ],
    [
        {"source_name": "Elon Musk", "target_name": "Space Exploration Technologies", "relation": "founded"},
        {"source_name": "Elon Musk", "target_name": "Mars", "relation": "wants to reach"},
    ],
)


def _entities(engine):
    with Session(engine) as session:
        return session.exec(select(KnowledgeEntity).where(KnowledgeEntity.user_id == OWNER)).all()


# === graph writes ===


@pytest.mark.asyncio
async def test_rebuild_counts_and_alias_merge(engine, topics, mock_llm):
    first = add_note(engine, title="Starship stacked", updated_at=utc(2024, 1, 3))
    second = add_note(engine, title="Founding story", updated_at=utc(2024, 1, 2))
    mock_llm.responses["haiku:raw"] = [SPACEX_REPLY, MUSK_REPLY]

    results = await topics.ingestion.rebuild(OWNER)

    assert [r.note_id for r in results] == [first.id, second.id]
    assert (results[0].entity_count, results[0].relationship_count) == (2, 1)
    # "Mars" was never extracted, so that relationship is skipped
    assert (results[1].entity_count, results[1].relationship_count) == (2, 1)
    assert all(r.error is None for r in results)

    entities = _entities(engine)
    assert sorted(e.name for e in entities) == ["Elon Musk", "SpaceX", "Starship"]
    spacex = next(e for e in entities if e.name == "SpaceX")
    assert spacex.aliases == ["Space Exploration Technologies"]

    with Session(engine) as session:
        links = session.exec(select(NoteEntity).where(NoteEntity.note_id == second.id)).all()
        assert spacex.id in {link.entity_id for link in links}
        rels = session.exec(select(KnowledgeRelationship)).all()
        assert sorted(r.relation for r in rels) == ["builds", "founded"]


def test_alias_lookup_matches_non_ascii_and_underscore(engine):
    store = GraphStore(engine)
    store.store(OWNER, "n1", ExtractionResult.model_validate({
        "entities": [{"name": "SpaceX", "type": "ORG", "aliases": ["太空探索技术公司", "space_x"]}],
    }))
    store.store(OWNER, "n2", ExtractionResult.model_validate({
        "entities": [
            {"name": "太空探索技术公司", "type": "ORG"},
            {"name": "space_x", "type": "ORG"},
        ],
    }))

    assert [e.name for e in _entities(engine)] == ["SpaceX"]


@pytest.mark.asyncio
async def test_rebuild_only_reads_owners_recent_notes(engine, topics, mock_llm):
    for day in range(1, 4):
        add_note(engine, title=f"Mine {day}", updated_at=utc(2024, 2, day))
    add_note(engine, owner_id=OTHER_OWNER, title="Theirs", updated_at=utc(2024, 3, 1))
    mock_llm.responses["haiku:raw"] = _reply([])

    results = await topics.ingestion.rebuild(OWNER, limit=2)

    assert len(results) == 2
    assert len(mock_llm.call_log) == 2
    prompts = [c["messages"][0]["content"] for c in mock_llm.call_log]
    assert "Mine 3" in prompts[0] and "Mine 2" in prompts[1]
    assert not any("Theirs" in p for p in prompts)


# === per-note failure isolation ===


@pytest.mark.asyncio
async def test_malformed_reply_does_not_stop_batch(engine, topics, mock_llm):
    bad = add_note(engine, title="Bad", updated_at=utc(2024, 1, 3))
    good = add_note(engine, title="Good", updated_at=utc(2024, 1, 2))
    mock_llm.responses["haiku:raw"] = ["no json here", SPACEX_REPLY]

    results = await topics.ingestion.rebuild(OWNER)

    by_id = {r.note_id: r for r in results}
    assert by_id[bad.id].error is not None
    assert by_id[bad.id].entity_count == 0
    assert by_id[good.id].error is None
    assert by_id[good.id].entity_count == 2


@pytest.mark.asyncio
async def test_timeout_does_not_stop_batch(engine, topics, monkeypatch):
    slow = add_note(engine, title="Slow", updated_at=utc(2024, 1, 3))
    fast = add_note(engine, title="Fast", updated_at=utc(2024, 1, 2))

    async def fake_extract(text):
        if "Slow" in text:
            await asyncio.sleep(5)
        return parse_structured(SPACEX_REPLY, ExtractionResult)

    monkeypatch.setattr(settings, "extraction_timeout_seconds", 0.05)
    monkeypatch.setattr(topics.ingestion.generator, "extract_graph", fake_extract)

    results = await topics.ingestion.rebuild(OWNER)

    by_id = {r.note_id: r for r in results}
    assert by_id[slow.id].error == "extraction timed out"
    assert by_id[fast.id].error is None
    assert by_id[fast.id].relationship_count == 1


@pytest.mark.asyncio
async def test_empty_note_is_reported_without_llm_call(engine, topics, mock_llm):
    empty = add_note(engine)

    results = await topics.ingestion.rebuild(OWNER)

    assert results[0].note_id == empty.id
    assert results[0].error is not None
    assert mock_llm.call_log == []


# === topic routing ===


@pytest.mark.asyncio
async def test_keyword_routing_adds_auto_member_and_rebuilds(engine, topics, topic, mock_llm):
    archived = topics.repo.create_topic(OWNER, title="Old launches", keywords=["spacex"])
    topics.curation.set_archived(archived.id, OWNER, True)
    unrelated = topics.repo.create_topic(OWNER, title="Cooking", keywords=["pasta"])
    note = add_note(engine, title="Starship flight 5", published_at=utc(2024, 10, 13, 12))
    mock_llm.responses["haiku:raw"] = SPACEX_REPLY

    results = await topics.ingestion.rebuild(OWNER)

    assert results[0].topic_ids == [topic.id]
    member = topics.repo.get_member(topic.id, note.id, OWNER)
    assert member.source == "auto"
    assert member.score == 1.0
    assert member.evidence_rank == 1
    assert member.event_time == "2024-10-13T12:00:00Z"

    refreshed = topics.repo.get_topic(topic.id, OWNER)
    assert refreshed.member_count == 1
    assert refreshed.last_ingested_at is not None
    assert len(topics.repo.list_events(topic.id, OWNER)) == 1

    assert topics.repo.count_members(archived.id, OWNER) == 0
    assert topics.repo.count_members(unrelated.id, OWNER) == 0


@pytest.mark.asyncio
async def test_reingest_keeps_manual_curation(engine, topics, topic, mock_llm):
    note = add_note(engine, title="Starship flight 5", published_at=utc(2024, 10, 13))
    topics.members.add(topic.id, OWNER, note.id)
    topics.members.confirm(topic.id, OWNER, note.id)
    mock_llm.responses["haiku:raw"] = SPACEX_REPLY

    await topics.ingestion.rebuild(OWNER)

    member = topics.repo.get_member(topic.id, note.id, OWNER)
    assert member.manual_state == "confirmed"
    assert member.source == "manual"
    assert member.score == 1.0


class _NewTopicSelector:
    def propose(self, owner_id, note, extraction):
        return [TopicProposal(title=note.title, keywords=[e.name for e in extraction.entities], score=0.5)]


@pytest.mark.asyncio
async def test_selector_can_create_topics(engine, mock_llm):
    topics = build_topic_engine(engine, mock_llm, detect_schema(engine), selector=_NewTopicSelector())
    note = add_note(engine, title="Starship flight 5", published_at=utc(2024, 10, 13))
    mock_llm.responses["haiku:raw"] = SPACEX_REPLY

    results = await topics.ingestion.rebuild(OWNER)

    [topic_id] = results[0].topic_ids
    created = topics.repo.get_topic(topic_id, OWNER)
    assert created.title == "Starship flight 5"
    assert created.keywords == ["SpaceX", "Starship"]
    assert created.member_count == 1
    assert topics.repo.get_member(topic_id, note.id, OWNER).score == 0.5
