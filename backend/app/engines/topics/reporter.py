"""Topic naming and report generation from representative member notes."""

from __future__ import annotations

import logging
from typing import Literal

from app.config import settings
from app.engines.topics.errors import NotFound
from app.engines.topics.extraction import StructuredGenerator
from app.engines.topics.notes import NoteStore
from app.engines.topics.repository import TopicRepository
from app.models.topic import KnowledgeTopic

logger = logging.getLogger(__name__)

ReportMode = Literal["full", "report_only"]


class TopicReporter:
    def __init__(self, repo: TopicRepository, notes: NoteStore, generator: StructuredGenerator) -> None:
        self.repo = repo
        self.notes = notes
        self.generator = generator

    async def name_and_report(
        self, topic_id: str, owner_id: str, mode: ReportMode = "report_only"
    ) -> KnowledgeTopic:
        """Generate a report (and, in full mode, title and keywords) for a topic.

        Representatives are the highest-scoring members whose notes still
        exist, in score order.
        """
        if self.repo.get_topic(topic_id, owner_id) is None:
            raise NotFound(f"Topic not found: {topic_id}")

        members = self.repo.list_members(
            topic_id, owner_id, by_score=True, limit=settings.report_member_limit
        )
        notes = self.notes.get_many([m.note_id for m in members], owner_id)
        reps = [notes[m.note_id] for m in members if m.note_id in notes][: settings.report_representatives]

        report = await self.generator.name_topic(reps)

        if mode == "full":
            values = {
                "title": report.title,
                "keywords": report.keywords,
                "summary_markdown": report.report_markdown,
            }
        else:
            values = {"summary_markdown": report.report_markdown}

        topic = self.repo.update_topic(topic_id, owner_id, **values)
        if topic is None:
            raise NotFound(f"Topic not found: {topic_id}")
        logger.info("Topic %s report written (mode=%s, %d representatives)", topic_id, mode, len(reps))
        return topic
