"""Topic repository — the single store dependency of the topic engine.

Constructed once at process start with the SchemaCapabilities detected for
the live database. Every statement is restricted to the columns that schema
has, so a v1 database (no curation columns, no event table) keeps serving
lists and membership without branching on error text per request.

Uses SQLAlchemy Core over the SQLModel tables: member writes are native
upserts keyed on (topic_id, note_id), which is the engine's only
concurrency-control primitive. Multi-row changes that must be atomic
(event replace, merge transfer) run in one transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Table, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from app.db.database import SchemaCapabilities, detect_schema
from app.engines.topics.errors import StoreFailure
from app.models.topic import KnowledgeTopic, TopicEvent, TopicMember, utcnow

logger = logging.getLogger(__name__)

_MEMBER_KEY = ("topic_id", "note_id")


class TopicRepository:
    """Owner-scoped persistence for topics, members and derived events."""

    def __init__(self, engine: Engine, capabilities: SchemaCapabilities | None = None) -> None:
        self._engine = engine
        self.capabilities = capabilities or detect_schema(engine)
        self._topics: Table = KnowledgeTopic.__table__
        self._members: Table = TopicMember.__table__
        self._events: Table = TopicEvent.__table__
        self._topic_cols = [c for c in self._topics.c if c.name in self.capabilities.topic_columns]
        self._member_cols = [c for c in self._members.c if c.name in self.capabilities.member_columns]

    # ── plumbing ────────────────────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """One database transaction; commits on exit, rolls back on error."""
        try:
            with self._engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error("Topic store transaction failed: %s", e)
            raise StoreFailure("Topic store operation failed", details=str(e)) from e

    @contextmanager
    def _use(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
        else:
            with self.transaction() as own:
                yield own

    def _insert(self, table: Table):
        if self._engine.dialect.name == "postgresql":
            return pg_insert(table)
        return sqlite_insert(table)

    def _filter(self, values: dict[str, Any], available: frozenset[str], what: str) -> dict[str, Any]:
        missing = sorted(k for k in values if k not in available)
        if missing:
            raise StoreFailure(
                f"{what} columns not supported by schema v{self.capabilities.version}: {', '.join(missing)}"
            )
        return values

    def _require_events(self) -> None:
        if not self.capabilities.has_events:
            raise StoreFailure(f"Event table not available in schema v{self.capabilities.version}")

    # ── topics ──────────────────────────────────────────────────────────────

    def get_topic(self, topic_id: str, owner_id: str, conn: Connection | None = None) -> KnowledgeTopic | None:
        with self._use(conn) as c:
            row = c.execute(
                select(*self._topic_cols).where(
                    self._topics.c.id == topic_id, self._topics.c.user_id == owner_id
                )
            ).first()
        return KnowledgeTopic(**row._mapping) if row is not None else None

    def list_topics(self, owner_id: str, limit: int) -> list[KnowledgeTopic]:
        t = self._topics.c
        stmt = select(*self._topic_cols).where(t.user_id == owner_id)
        if self.capabilities.topic_curation:
            stmt = stmt.order_by(
                t.pinned.desc(),
                t.pinned_at.desc().nulls_last(),
                t.archived.asc(),
                t.updated_at.desc(),
            )
        else:
            stmt = stmt.order_by(t.updated_at.desc())
        with self.transaction() as c:
            rows = c.execute(stmt.limit(limit)).all()
        return [KnowledgeTopic(**r._mapping) for r in rows]

    def create_topic(
        self,
        owner_id: str,
        title: str | None,
        keywords: Sequence[str] = (),
        summary_markdown: str | None = None,
        config: dict | None = None,
    ) -> KnowledgeTopic:
        topic = KnowledgeTopic(
            user_id=owner_id,
            title=title,
            keywords=list(keywords),
            summary_markdown=summary_markdown,
            config=config or {},
            last_ingested_at=utcnow(),
        )
        values = {k: v for k, v in topic.model_dump().items() if k in self.capabilities.topic_columns}
        with self.transaction() as c:
            c.execute(self._topics.insert().values(**values))
        return topic

    def update_topic(self, topic_id: str, owner_id: str, **values: Any) -> KnowledgeTopic | None:
        """Write the given topic columns and bump updated_at; None if not found."""
        values = self._filter(values, self.capabilities.topic_columns, "Topic")
        values["updated_at"] = utcnow()
        with self.transaction() as c:
            result = c.execute(
                update(self._topics)
                .where(self._topics.c.id == topic_id, self._topics.c.user_id == owner_id)
                .values(**values)
            )
            if result.rowcount == 0:
                return None
            return self.get_topic(topic_id, owner_id, conn=c)

    def delete_topic(self, topic_id: str, owner_id: str, conn: Connection | None = None) -> None:
        with self._use(conn) as c:
            c.execute(
                delete(self._topics).where(
                    self._topics.c.id == topic_id, self._topics.c.user_id == owner_id
                )
            )

    def refresh_member_count(self, topic_id: str, owner_id: str, mark_ingested: bool = False) -> int:
        """Recompute the cached member_count (and optionally last_ingested_at)."""
        with self.transaction() as c:
            count = self.count_members(topic_id, owner_id, conn=c)
            values: dict[str, Any] = {"member_count": count, "updated_at": utcnow()}
            if mark_ingested and "last_ingested_at" in self.capabilities.topic_columns:
                values["last_ingested_at"] = utcnow()
            c.execute(
                update(self._topics)
                .where(self._topics.c.id == topic_id, self._topics.c.user_id == owner_id)
                .values(**values)
            )
        return count

    # ── members ─────────────────────────────────────────────────────────────

    def list_members(
        self,
        topic_id: str,
        owner_id: str,
        by_score: bool = False,
        limit: int | None = None,
        conn: Connection | None = None,
    ) -> list[TopicMember]:
        """Members of a topic; insertion order by default, or score desc."""
        m = self._members.c
        stmt = select(*self._member_cols).where(m.topic_id == topic_id, m.user_id == owner_id)
        if by_score:
            stmt = stmt.order_by(m.score.desc().nulls_last(), m.note_id)
        elif "created_at" in self.capabilities.member_columns:
            stmt = stmt.order_by(m.created_at, m.note_id)
        else:
            stmt = stmt.order_by(m.note_id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._use(conn) as c:
            rows = c.execute(stmt).all()
        return [TopicMember(**r._mapping) for r in rows]

    def get_member(self, topic_id: str, note_id: str, owner_id: str, conn: Connection | None = None) -> TopicMember | None:
        m = self._members.c
        with self._use(conn) as c:
            row = c.execute(
                select(*self._member_cols).where(
                    m.topic_id == topic_id, m.note_id == note_id, m.user_id == owner_id
                )
            ).first()
        return TopicMember(**row._mapping) if row is not None else None

    def count_members(self, topic_id: str, owner_id: str, conn: Connection | None = None) -> int:
        m = self._members.c
        with self._use(conn) as c:
            return c.execute(
                select(func.count()).select_from(self._members).where(
                    m.topic_id == topic_id, m.user_id == owner_id
                )
            ).scalar_one()

    def upsert_members(
        self,
        rows: Iterable[dict[str, Any]],
        update_fields: Sequence[str] | None = None,
        conn: Connection | None = None,
    ) -> int:
        """Insert member rows; on (topic_id, note_id) conflict overwrite update_fields.

        update_fields defaults to every non-key column supplied in the rows.
        Columns the live schema lacks are dropped from the rows.
        """
        available = self.capabilities.member_columns
        rows = list(rows)
        if not rows:
            return 0
        supplied = set().union(*(r.keys() for r in rows)) & available

        # Multi-row VALUES needs identical keys on every row: fill from model defaults
        prepared = [
            {k: v for k, v in TopicMember(**row).model_dump().items() if k in available}
            for row in rows
        ]

        if update_fields is None:
            update_fields = [k for k in supplied if k not in _MEMBER_KEY and k != "created_at"]
        else:
            update_fields = [f for f in update_fields if f in available]
        if "updated_at" in available and "updated_at" not in update_fields:
            update_fields.append("updated_at")

        stmt = self._insert(self._members).values(prepared)
        if update_fields:
            stmt = stmt.on_conflict_do_update(
                index_elements=list(_MEMBER_KEY),
                set_={f: stmt.excluded[f] for f in update_fields},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(_MEMBER_KEY))
        with self._use(conn) as c:
            c.execute(stmt)
        return len(prepared)

    def update_member(self, topic_id: str, note_id: str, owner_id: str, **values: Any) -> TopicMember | None:
        """Write the given member columns; None if the member does not exist."""
        values = self._filter(values, self.capabilities.member_columns, "Member")
        if "updated_at" in self.capabilities.member_columns:
            values["updated_at"] = utcnow()
        m = self._members.c
        with self.transaction() as c:
            result = c.execute(
                update(self._members)
                .where(m.topic_id == topic_id, m.note_id == note_id, m.user_id == owner_id)
                .values(**values)
            )
            if result.rowcount == 0:
                return None
            return self.get_member(topic_id, note_id, owner_id, conn=c)

    def set_evidence_ranks(self, topic_id: str, owner_id: str, ranks: dict[str, int | None]) -> None:
        self._filter({"evidence_rank": None}, self.capabilities.member_columns, "Member")
        m = self._members.c
        with self.transaction() as c:
            for note_id, rank in ranks.items():
                c.execute(
                    update(self._members)
                    .where(m.topic_id == topic_id, m.note_id == note_id, m.user_id == owner_id)
                    .values(evidence_rank=rank)
                )

    def delete_member(self, topic_id: str, note_id: str, owner_id: str) -> int:
        m = self._members.c
        with self.transaction() as c:
            result = c.execute(
                delete(self._members).where(
                    m.topic_id == topic_id, m.note_id == note_id, m.user_id == owner_id
                )
            )
        return result.rowcount

    def delete_members(self, topic_id: str, owner_id: str, conn: Connection | None = None) -> None:
        m = self._members.c
        with self._use(conn) as c:
            c.execute(delete(self._members).where(m.topic_id == topic_id, m.user_id == owner_id))

    # ── events ──────────────────────────────────────────────────────────────

    def list_events(self, topic_id: str, owner_id: str, limit: int | None = None) -> list[TopicEvent]:
        if not self.capabilities.has_events:
            return []
        e = self._events.c
        stmt = (
            select(self._events)
            .where(e.topic_id == topic_id, e.user_id == owner_id)
            .order_by(e.event_time.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.transaction() as c:
            rows = c.execute(stmt).all()
        return [TopicEvent(**r._mapping) for r in rows]

    def delete_events(self, topic_id: str, owner_id: str, conn: Connection | None = None) -> None:
        if not self.capabilities.has_events:
            return
        e = self._events.c
        with self._use(conn) as c:
            c.execute(delete(self._events).where(e.topic_id == topic_id, e.user_id == owner_id))

    def replace_events(self, topic_id: str, owner_id: str, events: Sequence[TopicEvent]) -> None:
        """Discard a topic's events and insert the new set in one transaction."""
        self._require_events()
        with self.transaction() as c:
            self.delete_events(topic_id, owner_id, conn=c)
            if events:
                c.execute(self._events.insert().values([ev.model_dump() for ev in events]))

    # ── merge ───────────────────────────────────────────────────────────────

    def transfer_members(
        self,
        target_id: str,
        source_id: str,
        owner_id: str,
        members: Sequence[TopicMember],
    ) -> None:
        """Move members into target and drop the source topic, atomically.

        Upserts run before any delete, so even without the transaction an
        interruption leaves duplicated rather than lost membership.
        """
        rows = []
        for member in members:
            values = member.model_dump()
            values["topic_id"] = target_id
            values["user_id"] = owner_id
            values["updated_at"] = utcnow()
            rows.append(values)
        with self.transaction() as c:
            self.upsert_members(rows, conn=c)
            self.delete_members(source_id, owner_id, conn=c)
            self.delete_events(source_id, owner_id, conn=c)
            self.delete_topic(source_id, owner_id, conn=c)
