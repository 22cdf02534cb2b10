"""Database setup — SQLite with WAL mode via SQLModel/SQLAlchemy.

Design decisions:
- SQLModel: combines Pydantic v2 + SQLAlchemy in one model class
- SQLite WAL mode: concurrent reads while a merge or rebuild commits
- Alembic for migrations: schema v1 (base topic/member tables) → v2
  (curation columns, derived events, entity graph)
- Schema version is detected once at startup (see detect_schema) and the
  topic repository restricts its column sets to what the database has.

What goes where:
- knowledge_topic, knowledge_topic_member, knowledge_topic_event: topic engine
- note: document store (read-only for the engine)
- knowledge_entity, knowledge_note_entity, knowledge_relationship: graph ingestion
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from sqlalchemy import event, inspect
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from app.config import settings

logger = logging.getLogger(__name__)

TOPIC_TABLE = "knowledge_topic"
MEMBER_TABLE = "knowledge_topic_member"
EVENT_TABLE = "knowledge_topic_event"

# Columns that schema v1 did not have
_CURATION_TOPIC_COLUMNS = frozenset({"pinned", "pinned_at", "archived", "archived_at", "last_ingested_at"})
_CURATION_MEMBER_COLUMNS = frozenset({"source", "manual_state", "event_time", "event_fingerprint", "evidence_rank"})


def get_database_url() -> str:
    """Get database URL, ensuring the data directory exists."""
    url = settings.database_url
    if url.startswith("sqlite:///"):
        db_path = url.replace("sqlite:///", "")
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
    return url


# Enable WAL mode for all SQLite connections
@event.listens_for(Engine, "connect")
def set_sqlite_wal(dbapi_connection, connection_record):
    """Enable WAL mode for concurrent reads; no-op for other backends."""
    if not type(dbapi_connection).__module__.startswith("sqlite3"):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
    cursor.execute("PRAGMA busy_timeout=5000")    # 5s wait on lock
    cursor.close()


engine = create_engine(
    get_database_url(),
    echo=False,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
)


def create_db_and_tables(bind: Engine | None = None):
    """Create all tables defined by SQLModel metadata."""
    # Register table classes on the metadata
    from app.models import graph, note, topic  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


@dataclass(frozen=True)
class SchemaCapabilities:
    """What the connected database supports, detected once at startup."""

    topic_columns: frozenset[str]
    member_columns: frozenset[str]
    has_events: bool

    @property
    def version(self) -> int:
        if self.topic_curation and self.member_curation and self.has_events:
            return 2
        return 1

    @property
    def topic_curation(self) -> bool:
        return _CURATION_TOPIC_COLUMNS <= self.topic_columns

    @property
    def member_curation(self) -> bool:
        return _CURATION_MEMBER_COLUMNS <= self.member_columns


def detect_schema(bind: Engine | None = None) -> SchemaCapabilities:
    """Inspect the topic tables and report which schema generation is live."""
    inspector = inspect(bind or engine)
    tables = set(inspector.get_table_names())
    if TOPIC_TABLE not in tables or MEMBER_TABLE not in tables:
        raise RuntimeError(
            f"Topic tables missing ({TOPIC_TABLE}, {MEMBER_TABLE}); run migrations first"
        )
    caps = SchemaCapabilities(
        topic_columns=frozenset(c["name"] for c in inspector.get_columns(TOPIC_TABLE)),
        member_columns=frozenset(c["name"] for c in inspector.get_columns(MEMBER_TABLE)),
        has_events=EVENT_TABLE in tables,
    )
    if caps.version < 2:
        logger.warning(
            "Topic schema v%d detected (curation=%s/%s, events=%s); running with reduced capabilities",
            caps.version, caps.topic_curation, caps.member_curation, caps.has_events,
        )
    return caps
