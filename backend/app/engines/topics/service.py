"""Topic engine wiring — one instance per process, built at startup."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from app.db.database import SchemaCapabilities
from app.engines.topics.curation import TopicCuration
from app.engines.topics.events import EventAggregator
from app.engines.topics.extraction import StructuredGenerator
from app.engines.topics.graph_store import GraphStore
from app.engines.topics.ingestion import GraphIngestionAdapter, TopicSelector
from app.engines.topics.member_store import MemberStore
from app.engines.topics.merger import TopicMerger
from app.engines.topics.notes import NoteStore
from app.engines.topics.reporter import TopicReporter
from app.engines.topics.repository import TopicRepository
from app.engines.topics.views import TopicViews


@dataclass
class TopicEngine:
    repo: TopicRepository
    notes: NoteStore
    members: MemberStore
    events: EventAggregator
    merger: TopicMerger
    curation: TopicCuration
    views: TopicViews
    reporter: TopicReporter
    ingestion: GraphIngestionAdapter


def build_topic_engine(
    engine: Engine,
    llm_layer,
    capabilities: SchemaCapabilities | None = None,
    selector: TopicSelector | None = None,
) -> TopicEngine:
    """Construct every topic engine component over one database engine."""
    repo = TopicRepository(engine, capabilities)
    notes = NoteStore(engine)
    members = MemberStore(repo, notes)
    events = EventAggregator(repo, notes)
    generator = StructuredGenerator(llm_layer)
    return TopicEngine(
        repo=repo,
        notes=notes,
        members=members,
        events=events,
        merger=TopicMerger(repo, events),
        curation=TopicCuration(repo),
        views=TopicViews(repo, notes),
        reporter=TopicReporter(repo, notes, generator),
        ingestion=GraphIngestionAdapter(
            notes=notes,
            generator=generator,
            graph=GraphStore(engine),
            members=members,
            aggregator=events,
            repo=repo,
            selector=selector,
        ),
    )
