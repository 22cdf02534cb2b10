"""Knowledge graph API — rebuild entities and topic memberships from recent notes.

POST /api/v1/knowledge/graph/rebuild — per-note extraction results
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.api.v1.topics import engine_errors
from app.engines.topics.ingestion import GraphIngestionAdapter, NoteIngestionResult
from app.middleware.auth import get_owner_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/knowledge", tags=["knowledge-graph"])

_adapter: GraphIngestionAdapter | None = None


def set_dependencies(adapter: GraphIngestionAdapter) -> None:
    """Wire up the ingestion adapter (called from main.py lifespan)."""
    global _adapter
    _adapter = adapter


def _get_adapter() -> GraphIngestionAdapter:
    if _adapter is None:
        raise HTTPException(status_code=503, detail="Graph ingestion not initialized")
    return _adapter


class GraphRebuildRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=100)


class GraphRebuildResponse(BaseModel):
    processed: int
    failed: int
    results: list[NoteIngestionResult]


@router.post("/graph/rebuild", response_model=GraphRebuildResponse)
async def rebuild_graph(
    request: GraphRebuildRequest | None = None,
    owner_id: str = Depends(get_owner_id),
) -> GraphRebuildResponse:
    adapter = _get_adapter()
    with engine_errors():
        results = await adapter.rebuild(owner_id, limit=request.limit if request else None)
    failed = sum(1 for r in results if r.error)
    return GraphRebuildResponse(processed=len(results), failed=failed, results=results)
