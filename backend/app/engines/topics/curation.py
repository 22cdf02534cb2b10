"""Pin / archive curation flags on topics."""

from __future__ import annotations

import logging

from app.engines.topics.errors import NotFound
from app.engines.topics.repository import TopicRepository
from app.models.topic import KnowledgeTopic, utcnow

logger = logging.getLogger(__name__)


class TopicCuration:
    """Writes each flag together with its timestamp (now when set, null when cleared)."""

    def __init__(self, repo: TopicRepository) -> None:
        self.repo = repo

    def set_pinned(self, topic_id: str, owner_id: str, pinned: bool = True) -> KnowledgeTopic:
        topic = self.repo.update_topic(
            topic_id, owner_id, pinned=pinned, pinned_at=utcnow() if pinned else None
        )
        if topic is None:
            raise NotFound(f"Topic not found: {topic_id}")
        logger.info("Topic %s pinned=%s", topic_id, pinned)
        return topic

    def set_archived(self, topic_id: str, owner_id: str, archived: bool = True) -> KnowledgeTopic:
        topic = self.repo.update_topic(
            topic_id, owner_id, archived=archived, archived_at=utcnow() if archived else None
        )
        if topic is None:
            raise NotFound(f"Topic not found: {topic_id}")
        logger.info("Topic %s archived=%s", topic_id, archived)
        return topic
