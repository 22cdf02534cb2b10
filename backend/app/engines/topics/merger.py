"""Topic merge — fold a source topic into a target topic.

Conflicting members take the source row's fields ("source wins"), and the
source topic with its members and events is deleted in the same transaction
that moves the members. The follow-up count refresh and event rebuild on
the target are best-effort and reported as warnings when they fail.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from app.engines.topics.errors import InvalidInput, NotFound, TopicEngineError
from app.engines.topics.events import EventAggregator
from app.engines.topics.repository import TopicRepository

logger = logging.getLogger(__name__)


class MergeResult(BaseModel):
    merged: int = 0
    warnings: list[str] = Field(default_factory=list)


class TopicMerger:
    def __init__(self, repo: TopicRepository, aggregator: EventAggregator) -> None:
        self.repo = repo
        self.aggregator = aggregator

    def merge(self, target_id: str, source_id: str, owner_id: str) -> MergeResult:
        if not target_id or not source_id:
            raise InvalidInput("target and source topic ids are required")
        if target_id == source_id:
            raise InvalidInput("Cannot merge a topic into itself")
        if self.repo.get_topic(target_id, owner_id) is None:
            raise NotFound(f"Topic not found: {target_id}")
        if self.repo.get_topic(source_id, owner_id) is None:
            raise NotFound(f"Topic not found: {source_id}")

        members = self.repo.list_members(source_id, owner_id)
        if not members:
            self.repo.delete_topic(source_id, owner_id)
            logger.info("Merged empty topic %s into %s", source_id, target_id)
            return MergeResult(merged=0)

        self.repo.transfer_members(target_id, source_id, owner_id, members)

        # The transfer is committed; later steps only add warnings
        result = MergeResult(merged=len(members))
        try:
            self.repo.refresh_member_count(target_id, owner_id, mark_ingested=True)
        except TopicEngineError as e:
            logger.warning("Count refresh after merge into %s failed: %s", target_id, e)
            result.warnings.append(f"member count refresh failed: {e.message}")
        try:
            self.aggregator.rebuild(target_id, owner_id)
        except TopicEngineError as e:
            logger.warning("Event rebuild after merge into %s failed: %s", target_id, e)
            result.warnings.append(f"event rebuild failed: {e.message}")

        logger.info("Merged %d members from topic %s into %s", result.merged, source_id, target_id)
        return result
