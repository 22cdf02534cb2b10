"""Knowledge graph models — entities, note links, relationships.

Written by GraphIngestionAdapter from structured-generation output.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField


class KnowledgeEntity(SQLModel, table=True):
    """A named entity, deduplicated per owner by name or alias."""

    __tablename__ = "knowledge_entity"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    name: str = SQLField(index=True)
    type: str  # "PERSON" | "ORG" | "GPE" | "EVENT" | "TECH" | "WORK_OF_ART"
    description: str = ""
    aliases: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))


class NoteEntity(SQLModel, table=True):
    """Note mentions entity. Unique on (note_id, entity_id)."""

    __tablename__ = "knowledge_note_entity"

    note_id: str = SQLField(primary_key=True)
    entity_id: str = SQLField(primary_key=True)
    user_id: str = SQLField(index=True)


class KnowledgeRelationship(SQLModel, table=True):
    """Directed relation between two entities, with its evidence snippet."""

    __tablename__ = "knowledge_relationship"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    source_entity_id: str
    target_entity_id: str
    relation: str
    source_note_id: str | None = None
    evidence_snippet: str = ""
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
