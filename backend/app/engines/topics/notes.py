"""Document store adapter — owner-scoped, read-only access to notes."""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.engines.topics.errors import StoreFailure
from app.models.note import Note

logger = logging.getLogger(__name__)


class NoteStore:
    """Reads notes by id, always scoped to the owning user."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def get(self, note_id: str, owner_id: str) -> Note | None:
        """Return the note if it exists and belongs to owner_id."""
        try:
            with Session(self._engine) as session:
                note = session.exec(
                    select(Note).where(Note.id == note_id, Note.user_id == owner_id)
                ).first()
                if note is not None:
                    session.expunge(note)
                return note
        except SQLAlchemyError as e:
            raise StoreFailure("Failed to load note", details=str(e)) from e

    def get_many(self, note_ids: Sequence[str], owner_id: str) -> dict[str, Note]:
        """Map note id → note for the ids that exist and are owned."""
        if not note_ids:
            return {}
        try:
            with Session(self._engine) as session:
                notes = session.exec(
                    select(Note).where(Note.id.in_(list(note_ids)), Note.user_id == owner_id)
                ).all()
                for n in notes:
                    session.expunge(n)
        except SQLAlchemyError as e:
            raise StoreFailure("Failed to load notes", details=str(e)) from e
        return {n.id: n for n in notes}

    def list_recent(self, owner_id: str, limit: int) -> list[Note]:
        """Most recently updated notes of the owner."""
        try:
            with Session(self._engine) as session:
                notes = session.exec(
                    select(Note)
                    .where(Note.user_id == owner_id)
                    .order_by(Note.updated_at.desc())
                    .limit(limit)
                ).all()
                for n in notes:
                    session.expunge(n)
        except SQLAlchemyError as e:
            raise StoreFailure("Failed to load notes", details=str(e)) from e
        return list(notes)
