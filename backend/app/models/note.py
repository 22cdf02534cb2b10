"""Note model — the document store's saved documents.

The topic engine only reads notes (through NoteStore); capture, editing
and deletion belong to the document store.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlmodel import SQLModel
from sqlmodel import Field as SQLField


class Note(SQLModel, table=True):
    """A saved document owned by one user."""

    __tablename__ = "note"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = SQLField(index=True)
    title: str | None = None
    excerpt: str | None = None
    content_text: str | None = None
    site_name: str | None = None
    source_url: str | None = None
    content_type: str = "article"    # "article" | "video" | "audio"
    cover_image_url: str | None = None
    event_time: datetime | None = None  # explicit event annotation
    published_at: datetime | None = None
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
