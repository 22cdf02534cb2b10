"""Knowledge topic API endpoints — list, detail, curation, merge, report.

GET  /api/v1/knowledge/topics — list topics (pinned first)
GET  /api/v1/knowledge/topics/{id} — topic detail with members, timeline, events
POST /api/v1/knowledge/topics/{id}/members — add/remove/confirm/exclude/set_time
POST /api/v1/knowledge/topics/{id}/merge — merge another topic into this one
POST /api/v1/knowledge/topics/{id}/pin — pin or unpin
POST /api/v1/knowledge/topics/{id}/archive — archive or unarchive
POST /api/v1/knowledge/topics/{id}/report — generate report (and title/keywords)
POST /api/v1/knowledge/topics/{id}/events/rebuild — rebuild derived events
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.engines.topics.errors import NotFound, TopicEngineError
from app.engines.topics.service import TopicEngine
from app.engines.topics.views import TopicDetail
from app.middleware.auth import get_owner_id
from app.models.topic import KnowledgeTopic, TopicEvent, TopicMember

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/knowledge", tags=["knowledge-topics"])

# Module-level reference, set during app startup
_engine: TopicEngine | None = None


def set_dependencies(engine: TopicEngine) -> None:
    """Wire up the topic engine (called from main.py lifespan)."""
    global _engine
    _engine = engine


def _get_engine() -> TopicEngine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="Topic engine not initialized")
    return _engine


@contextmanager
def engine_errors() -> Iterator[None]:
    """Translate topic engine errors into HTTP errors with their status code."""
    try:
        yield
    except TopicEngineError as e:
        if e.status_code >= 500:
            logger.error("Topic engine failure: %s (%s)", e.message, e.details)
        raise HTTPException(status_code=e.status_code, detail=e.message) from e


# === Request / Response Models ===


class MemberActionRequest(BaseModel):
    action: Literal["add", "remove", "confirm", "exclude", "set_time"]
    note_id: str = Field(min_length=1, max_length=200)
    event_time: str | None = None  # required for set_time


class MemberActionResponse(BaseModel):
    ok: bool = True
    member: TopicMember | None = None


class MergeRequest(BaseModel):
    source_topic_id: str = Field(min_length=1, max_length=200)


class MergeResponse(BaseModel):
    ok: bool = True
    merged: int
    warnings: list[str] = Field(default_factory=list)


class PinRequest(BaseModel):
    pinned: bool = True


class ArchiveRequest(BaseModel):
    archived: bool = True


class ReportRequest(BaseModel):
    mode: Literal["full", "report_only"] = "report_only"


class TopicListResponse(BaseModel):
    topics: list[KnowledgeTopic]


class EventListResponse(BaseModel):
    events: list[TopicEvent]


# === Endpoints ===


@router.get("/topics", response_model=TopicListResponse)
async def list_topics(owner_id: str = Depends(get_owner_id)) -> TopicListResponse:
    engine = _get_engine()
    with engine_errors():
        return TopicListResponse(topics=engine.views.list_topics(owner_id))


@router.get("/topics/{topic_id}", response_model=TopicDetail)
async def get_topic(topic_id: str, owner_id: str = Depends(get_owner_id)) -> TopicDetail:
    engine = _get_engine()
    with engine_errors():
        return engine.views.get_detail(topic_id, owner_id)


@router.post("/topics/{topic_id}/members", response_model=MemberActionResponse)
async def mutate_member(
    topic_id: str,
    request: MemberActionRequest,
    owner_id: str = Depends(get_owner_id),
) -> MemberActionResponse:
    engine = _get_engine()
    members = engine.members
    with engine_errors():
        if request.action == "add":
            member = members.add(topic_id, owner_id, request.note_id)
        elif request.action == "remove":
            members.remove(topic_id, owner_id, request.note_id)
            member = None
        elif request.action == "exclude":
            members.exclude(topic_id, owner_id, request.note_id)
            member = None
        elif request.action == "confirm":
            member = members.confirm(topic_id, owner_id, request.note_id)
        else:
            member = members.set_time(topic_id, owner_id, request.note_id, request.event_time)
    logger.info("Member %s %s on topic %s", request.note_id, request.action, topic_id)
    return MemberActionResponse(ok=True, member=member)


@router.post("/topics/{topic_id}/merge", response_model=MergeResponse)
async def merge_topic(
    topic_id: str,
    request: MergeRequest,
    owner_id: str = Depends(get_owner_id),
) -> MergeResponse:
    engine = _get_engine()
    with engine_errors():
        result = engine.merger.merge(topic_id, request.source_topic_id, owner_id)
    return MergeResponse(ok=True, merged=result.merged, warnings=result.warnings)


@router.post("/topics/{topic_id}/pin", response_model=KnowledgeTopic)
async def pin_topic(
    topic_id: str,
    request: PinRequest | None = None,
    owner_id: str = Depends(get_owner_id),
) -> KnowledgeTopic:
    engine = _get_engine()
    pinned = request.pinned if request is not None else True
    with engine_errors():
        return engine.curation.set_pinned(topic_id, owner_id, pinned)


@router.post("/topics/{topic_id}/archive", response_model=KnowledgeTopic)
async def archive_topic(
    topic_id: str,
    request: ArchiveRequest | None = None,
    owner_id: str = Depends(get_owner_id),
) -> KnowledgeTopic:
    engine = _get_engine()
    archived = request.archived if request is not None else True
    with engine_errors():
        return engine.curation.set_archived(topic_id, owner_id, archived)


@router.post("/topics/{topic_id}/report", response_model=KnowledgeTopic)
async def report_topic(
    topic_id: str,
    request: ReportRequest | None = None,
    owner_id: str = Depends(get_owner_id),
) -> KnowledgeTopic:
    engine = _get_engine()
    mode = request.mode if request is not None else "report_only"
    with engine_errors():
        return await engine.reporter.name_and_report(topic_id, owner_id, mode)


@router.post("/topics/{topic_id}/events/rebuild", response_model=EventListResponse)
async def rebuild_events(topic_id: str, owner_id: str = Depends(get_owner_id)) -> EventListResponse:
    engine = _get_engine()
    with engine_errors():
        if engine.repo.get_topic(topic_id, owner_id) is None:
            raise NotFound(f"Topic not found: {topic_id}")
        events = engine.events.rebuild(topic_id, owner_id)
    return EventListResponse(events=events)
