"""Smart Topics FastAPI Application.

Entry point for the backend server. The topic engine is built once in the
lifespan, against the schema generation detected at startup, and injected
into the routers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.health import router as health_router
from app.api.v1.graph import router as graph_router
from app.api.v1.topics import router as topics_router
from app.config import settings
from app.db.database import create_db_and_tables, detect_schema, engine as db_engine
from app.middleware.auth import OwnerAuthMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    # Startup: create tables, then detect what the live schema supports
    create_db_and_tables()
    capabilities = detect_schema(db_engine)

    from app.api.v1.graph import set_dependencies as set_graph_deps
    from app.api.v1.topics import set_dependencies as set_topic_deps
    from app.engines.topics.service import build_topic_engine
    from app.llm.layer import LLMLayer

    topic_engine = build_topic_engine(db_engine, LLMLayer(), capabilities)
    set_topic_deps(topic_engine)
    set_graph_deps(topic_engine.ingestion)
    logger.info("Topic engine ready (schema v%d)", capabilities.version)
    yield


app = FastAPI(
    title="Smart Topics",
    description="Knowledge topic aggregation for a personal note library",
    version="0.3.0",
    lifespan=lifespan,
)

# Middleware (order matters: first added = outermost)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Owner-Id"],
)
app.add_middleware(OwnerAuthMiddleware)


# Unhandled errors answer a generic 500 without internals
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    # Let FastAPI handle HTTPExceptions normally (preserves status codes like 404, 503)
    if isinstance(exc, HTTPException):
        raise exc
    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error."},
    )


# Routes
app.include_router(health_router)
app.include_router(topics_router)
app.include_router(graph_router)


@app.get("/")
async def root():
    return {"name": "Smart Topics", "version": "0.3.0", "status": "running"}
