"""Graph ingestion — documents → extraction → graph + topic memberships.

Each note is processed independently: a timeout, collaborator error,
malformed reply or store error on one note is logged and reported in that
note's result while the rest of the batch continues.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from pydantic import BaseModel, Field

from app.config import settings
from app.engines.topics.errors import TopicEngineError, UpstreamFailure
from app.engines.topics.events import EventAggregator
from app.engines.topics.extraction import ExtractionResult, StructuredGenerator
from app.engines.topics.graph_store import GraphStore
from app.engines.topics.member_store import MemberStore
from app.engines.topics.notes import NoteStore
from app.engines.topics.repository import TopicRepository
from app.models.note import Note

logger = logging.getLogger(__name__)


class TopicProposal(BaseModel):
    """A proposed membership. topic_id None means: create a new topic."""

    topic_id: str | None = None
    score: float | None = None
    title: str | None = None
    keywords: list[str] = Field(default_factory=list)


class NoteIngestionResult(BaseModel):
    note_id: str
    entity_count: int = 0
    relationship_count: int = 0
    topic_ids: list[str] = Field(default_factory=list)
    error: str | None = None


class TopicSelector(Protocol):
    def propose(self, owner_id: str, note: Note, extraction: ExtractionResult) -> list[TopicProposal]:
        ...


class KeywordTopicSelector:
    """Routes a note to the non-archived topics whose keywords it mentions.

    A keyword matches when it equals an extracted entity name or alias, or
    occurs in the note title (case-insensitive). Score is matched/total.
    """

    def __init__(self, repo: TopicRepository) -> None:
        self.repo = repo

    def propose(self, owner_id: str, note: Note, extraction: ExtractionResult) -> list[TopicProposal]:
        names = set()
        for ent in extraction.entities:
            names.add(ent.name.lower())
            names.update(a.lower() for a in ent.aliases)
        title = (note.title or "").lower()

        proposals = []
        for topic in self.repo.list_topics(owner_id, limit=settings.topic_list_limit):
            if topic.archived or not topic.keywords:
                continue
            keywords = [k.lower() for k in topic.keywords if k and k.strip()]
            if not keywords:
                continue
            matched = sum(1 for k in keywords if k in names or (title and k in title))
            if matched:
                proposals.append(TopicProposal(topic_id=topic.id, score=matched / len(keywords)))
        return proposals


def note_text(note: Note) -> str:
    text = "\n".join([note.title or "", note.excerpt or "", note.content_text or ""])
    return text[: settings.extraction_max_chars]


class GraphIngestionAdapter:
    def __init__(
        self,
        notes: NoteStore,
        generator: StructuredGenerator,
        graph: GraphStore,
        members: MemberStore,
        aggregator: EventAggregator,
        repo: TopicRepository,
        selector: TopicSelector | None = None,
    ) -> None:
        self.notes = notes
        self.generator = generator
        self.graph = graph
        self.members = members
        self.aggregator = aggregator
        self.repo = repo
        self.selector = selector or KeywordTopicSelector(repo)

    async def rebuild(self, owner_id: str, limit: int | None = None) -> list[NoteIngestionResult]:
        """Extract and route the owner's most recently updated notes."""
        batch = self.notes.list_recent(owner_id, limit or settings.graph_rebuild_note_limit)
        results: list[NoteIngestionResult] = []
        touched: dict[str, None] = {}

        for note in batch:
            try:
                result = await self._ingest_note(owner_id, note)
            except asyncio.TimeoutError:
                logger.warning("Extraction timed out for note %s", note.id)
                result = NoteIngestionResult(note_id=note.id, error="extraction timed out")
            except TopicEngineError as e:
                logger.warning("Ingestion failed for note %s: %s", note.id, e.message)
                result = NoteIngestionResult(note_id=note.id, error=e.message)
            results.append(result)
            touched.update(dict.fromkeys(result.topic_ids))

        for topic_id in touched:
            self._refresh_topic(topic_id, owner_id)

        failed = sum(1 for r in results if r.error)
        logger.info(
            "Graph rebuild for %s: %d notes, %d failed, %d topics touched",
            owner_id, len(results), failed, len(touched),
        )
        return results

    async def _ingest_note(self, owner_id: str, note: Note) -> NoteIngestionResult:
        text = note_text(note)
        if not text.strip():
            raise UpstreamFailure("Note has no text to extract from")

        extraction = await asyncio.wait_for(
            self.generator.extract_graph(text),
            timeout=settings.extraction_timeout_seconds,
        )
        entity_count, rel_count = self.graph.store(owner_id, note.id, extraction)

        topic_ids = []
        for proposal in self.selector.propose(owner_id, note, extraction):
            topic_id = proposal.topic_id
            if topic_id is None:
                topic = self.repo.create_topic(
                    owner_id, title=proposal.title, keywords=proposal.keywords
                )
                topic_id = topic.id
            self.members.add_auto(topic_id, owner_id, note, proposal.score)
            topic_ids.append(topic_id)

        return NoteIngestionResult(
            note_id=note.id,
            entity_count=entity_count,
            relationship_count=rel_count,
            topic_ids=topic_ids,
        )

    def _refresh_topic(self, topic_id: str, owner_id: str) -> None:
        """Best-effort evidence ranking, count refresh and event rebuild."""
        try:
            if self.repo.capabilities.member_curation:
                self.members.rerank_evidence(topic_id, owner_id)
            self.repo.refresh_member_count(topic_id, owner_id, mark_ingested=True)
            if self.repo.capabilities.has_events:
                self.aggregator.rebuild(topic_id, owner_id)
        except TopicEngineError as e:
            logger.warning("Post-ingestion refresh of topic %s failed: %s", topic_id, e.message)
