"""Shared test fixtures for Smart Topics backend tests."""

import os
import sys
from datetime import datetime, timezone

import pytest

# Ensure backend is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import sqlalchemy as sa
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.db.database import create_db_and_tables, detect_schema
from app.engines.topics.service import build_topic_engine
from app.llm.mock_layer import MockLLMLayer
from app.models.note import Note
from app.models.topic import KnowledgeTopic

OWNER = "user-1"
OTHER_OWNER = "user-2"


def make_engine():
    """In-memory SQLite engine with the current (v2) schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    return engine


def make_legacy_engine():
    """In-memory SQLite engine with the v1 schema: no curation columns, no events."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata = sa.MetaData()
    sa.Table(
        "knowledge_topic", metadata,
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("user_id", sa.String, nullable=False),
        sa.Column("title", sa.String),
        sa.Column("keywords", sa.JSON),
        sa.Column("summary_markdown", sa.String),
        sa.Column("member_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("config", sa.JSON),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    sa.Table(
        "knowledge_topic_member", metadata,
        sa.Column("topic_id", sa.String, primary_key=True),
        sa.Column("note_id", sa.String, primary_key=True),
        sa.Column("user_id", sa.String, nullable=False),
        sa.Column("score", sa.Float),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    metadata.create_all(engine)
    # The note table is owned by the document store and unchanged across versions
    SQLModel.metadata.tables["note"].create(engine)
    return engine


def add_note(engine, owner_id=OWNER, **fields) -> Note:
    """Insert a note and return a detached copy."""
    note = Note(user_id=owner_id, **fields)
    with Session(engine) as session:
        session.add(note)
        session.commit()
        session.refresh(note)
        session.expunge(note)
    return note


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    return make_engine()


@pytest.fixture
def mock_llm():
    """MockLLMLayer with no canned replies; tests set mock_llm.responses."""
    return MockLLMLayer()


@pytest.fixture
def topics(engine, mock_llm):
    """Fully wired topic engine over an in-memory v2 database."""
    return build_topic_engine(engine, mock_llm, detect_schema(engine))


@pytest.fixture
def topic(topics) -> KnowledgeTopic:
    return topics.repo.create_topic(OWNER, title="Space launches", keywords=["spacex", "starship"])
