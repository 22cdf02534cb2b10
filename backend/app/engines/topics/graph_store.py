"""Graph store — persists extracted entities, note links and relationships."""

from __future__ import annotations

import json
import logging

from sqlalchemy import String, cast
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, or_, select

from app.engines.topics.errors import StoreFailure
from app.engines.topics.extraction import ExtractionResult
from app.models.graph import KnowledgeEntity, KnowledgeRelationship, NoteEntity
from app.models.topic import utcnow

logger = logging.getLogger(__name__)

_LIKE_ESCAPE = "\\"


def _like_literal(text: str) -> str:
    """Escape LIKE wildcards and the escape character itself."""
    for ch in (_LIKE_ESCAPE, "%", "_"):
        text = text.replace(ch, _LIKE_ESCAPE + ch)
    return text


class GraphStore:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def _find_entity(self, session: Session, owner_id: str, name: str) -> KnowledgeEntity | None:
        """First entity of the owner whose name or one alias equals `name` exactly.

        Single lookup, no fuzzy matching: two spellings of one entity become
        two entities unless the model listed one as an alias of the other.
        """
        # aliases is stored as a JSON array with \uXXXX escapes; narrow in SQL, confirm in Python
        alias_pattern = f"%{_like_literal(json.dumps(name))}%"
        candidates = session.exec(
            select(KnowledgeEntity)
            .where(
                KnowledgeEntity.user_id == owner_id,
                or_(
                    KnowledgeEntity.name == name,
                    cast(KnowledgeEntity.aliases, String).like(alias_pattern, escape=_LIKE_ESCAPE),
                ),
            )
            .order_by(KnowledgeEntity.created_at)
        ).all()
        for entity in candidates:
            if entity.name == name or name in (entity.aliases or []):
                return entity
        return None

    def store(self, owner_id: str, note_id: str, extraction: ExtractionResult) -> tuple[int, int]:
        """Write one note's extraction; returns (entity_count, relationship_count)."""
        try:
            with Session(self._engine) as session:
                ids_by_name: dict[str, str] = {}
                for ent in extraction.entities:
                    existing = self._find_entity(session, owner_id, ent.name)
                    if existing is not None:
                        merged = [
                            a for a in dict.fromkeys([*(existing.aliases or []), *ent.aliases, ent.name])
                            if a != existing.name
                        ]
                        existing.aliases = merged
                        existing.updated_at = utcnow()
                        session.add(existing)
                        entity_id = existing.id
                    else:
                        entity = KnowledgeEntity(
                            user_id=owner_id,
                            name=ent.name,
                            type=ent.type,
                            description=ent.description or "",
                            aliases=list(ent.aliases),
                        )
                        session.add(entity)
                        entity_id = entity.id
                    # Flush so later entities in the same batch can match this one
                    session.flush()

                    ids_by_name[ent.name.lower()] = entity_id
                    for alias in ent.aliases:
                        ids_by_name[alias.lower()] = entity_id

                entity_ids = list(dict.fromkeys(ids_by_name.values()))
                for entity_id in entity_ids:
                    session.merge(NoteEntity(note_id=note_id, entity_id=entity_id, user_id=owner_id))

                rel_count = 0
                for rel in extraction.relationships:
                    source_id = ids_by_name.get(rel.source_name.lower())
                    target_id = ids_by_name.get(rel.target_name.lower())
                    if not source_id or not target_id:
                        logger.debug(
                            "Skipping relationship %s -[%s]-> %s: endpoint not extracted",
                            rel.source_name, rel.relation, rel.target_name,
                        )
                        continue
                    session.add(
                        KnowledgeRelationship(
                            user_id=owner_id,
                            source_entity_id=source_id,
                            target_entity_id=target_id,
                            relation=rel.relation,
                            source_note_id=note_id,
                            evidence_snippet=rel.evidence or "",
                        )
                    )
                    rel_count += 1

                session.commit()
        except SQLAlchemyError as e:
            logger.error("Graph store failed for note %s: %s", note_id, e)
            raise StoreFailure("Failed to store extracted graph", details=str(e)) from e

        return len(entity_ids), rel_count
