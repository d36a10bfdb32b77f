"""
Generic SQL Search Backend

SQLAlchemy-based search index that works on any relational database.
Text matching falls back to case-insensitive LIKE, ordered by id, so this
backend is the portable baseline the engine-specific adapters build on.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import Table, and_, delete, func, inspect, or_, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ..core.errors import InvalidRecord
from ..db.session import create_engine
from ..db.tables import metadata, search_tables
from ..db.upsert import build_upsert, coalesce_merge, supports_upsert
from ..models import SearchQuery
from .base import SearchBackend, is_fully_quoted

logger = logging.getLogger("dbsearch.backends.sql")

MERGE_COLUMNS = ("content", "owner_id", "container_id", "timestamp")


def split_terms(content: str) -> List[str]:
    """Split free text into bare words, or a single phrase if fully quoted."""
    content = content.strip()
    if is_fully_quoted(content):
        phrase = content[1:-1].strip()
        return [phrase] if phrase else []
    return [word.strip('"') for word in content.split() if word.strip('"')]


class SqlBackend(SearchBackend):
    """
    Portable relational search backend.

    One table per kind: ``searchtopic``, ``searchpost``, ``searchchat``.
    """

    name = "sql"

    def __init__(self, engine: AsyncEngine, **kwargs: Any) -> None:
        """
        Parameters
        ----------
        engine : AsyncEngine
            Engine bound to the database holding the search tables.
        """
        super().__init__(**kwargs)
        self._engine = engine
        self._dialect = engine.dialect.name

    @classmethod
    def from_settings(cls, settings: Any) -> "SqlBackend":
        return cls(
            create_engine(settings.database_url),
            is_primary=settings.is_primary,
            jobs_disabled=settings.jobs_disabled,
        )

    async def close(self) -> None:
        await self._engine.dispose()

    def table(self, kind: str) -> Table:
        try:
            return search_tables[kind]
        except KeyError:
            raise ValueError(f"Unknown search kind: {kind!r}") from None

    def _coerce_id(self, value: Any) -> Any:
        return str(value)

    def _coerce_optional(self, value: Any) -> Any:
        return None if value is None else self._coerce_id(value)

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def _create_schema(self) -> None:
        tables = list(search_tables.values())
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all, tables=tables, checkfirst=True)
            await conn.run_sync(self._ensure_indexes, tables)
            await self._create_text_indexes(conn)

    @staticmethod
    def _ensure_indexes(sync_conn: Any, tables: List[Table]) -> None:
        """Recreate secondary indexes dropped from an existing table."""
        inspector = inspect(sync_conn)
        for table in tables:
            existing = {ix["name"] for ix in inspector.get_indexes(table.name)}
            for index in table.indexes:
                if index.name not in existing:
                    logger.warning("Recreating missing index %s", index.name)
                    index.create(sync_conn)

    async def _create_text_indexes(self, conn: AsyncConnection) -> None:
        """Engine-specific full-text structures; none for plain SQL."""

    def is_missing_schema(self, exc: BaseException) -> bool:
        if not isinstance(exc, DBAPIError):
            return False
        orig = exc.orig
        if getattr(orig, "sqlstate", None) == "42P01" or getattr(orig, "pgcode", None) == "42P01":
            return True
        args = getattr(orig, "args", ())
        if args and args[0] == 1146:
            return True
        message = str(orig).lower()
        return "no such table" in message or "does not exist" in message

    # ------------------------------------------------------------------
    # Index / remove
    # ------------------------------------------------------------------

    def _row(self, doc_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        timestamp = fields.get("timestamp")
        return {
            "id": self._coerce_id(doc_id),
            "content": fields.get("content"),
            "owner_id": self._coerce_optional(fields.get("owner_id")),
            "container_id": self._coerce_optional(fields.get("container_id")),
            "timestamp": int(timestamp) if timestamp is not None else None,
        }

    async def _index(self, kind: str, ids: List[str], rows: List[Dict[str, Any]]) -> None:
        table = self.table(kind)
        values = [self._row(doc_id, fields) for doc_id, fields in zip(ids, rows)]

        async with self._engine.begin() as conn:
            if supports_upsert(self._dialect):
                stmt = build_upsert(
                    self._dialect,
                    table,
                    values,
                    ("id",),
                    coalesce_merge(table, MERGE_COLUMNS),
                )
                await conn.execute(stmt)
            else:
                await self._merge_rows(conn, table, values)

    async def _merge_rows(self, conn: AsyncConnection, table: Table, values: List[Dict[str, Any]]) -> None:
        """Upsert for dialects without a native statement: update, else insert."""
        result = await conn.execute(
            select(table.c.id).where(table.c.id.in_([v["id"] for v in values]))
        )
        existing = {row.id for row in result}

        for value in values:
            if value["id"] in existing:
                changes = {k: v for k, v in value.items() if k != "id" and v is not None}
                if changes:
                    await conn.execute(
                        update(table).where(table.c.id == value["id"]).values(**changes)
                    )
            else:
                await conn.execute(table.insert().values(**value))

    async def _remove(self, kind: str, ids: List[str]) -> int:
        table = self.table(kind)
        stmt = delete(table).where(table.c.id.in_([self._coerce_id(i) for i in ids]))
        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
            return max(result.rowcount or 0, 0)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _filters(self, table: Table, query: SearchQuery) -> List[Any]:
        conditions = []
        if query.owner_ids:
            conditions.append(table.c.owner_id.in_([self._coerce_id(i) for i in query.owner_ids]))
        if query.container_ids:
            conditions.append(
                table.c.container_id.in_([self._coerce_id(i) for i in query.container_ids])
            )
        if query.timestamp_from is not None:
            conditions.append(table.c.timestamp >= query.timestamp_from)
        if query.timestamp_to is not None:
            conditions.append(table.c.timestamp <= query.timestamp_to)
        return conditions

    def _apply_text(self, stmt: Any, table: Table, query: SearchQuery) -> Optional[Any]:
        """
        Add the text condition and relevance ordering to ``stmt``.

        Returns None when the text reduces to nothing searchable.
        """
        terms = split_terms(query.content)
        if not terms:
            return None
        lowered = func.lower(table.c.content)
        likes = [lowered.contains(term.lower(), autoescape=True) for term in terms]
        combine = or_ if query.match_words == "any" else and_
        return stmt.where(combine(*likes)).order_by(table.c.id.asc())

    async def _search(self, kind: str, query: SearchQuery, limit: int) -> List[Any]:
        table = self.table(kind)
        try:
            stmt = select(table.c.id).where(*self._filters(table, query))
        except (TypeError, ValueError) as exc:
            raise InvalidRecord(f"invalid id in search filter: {exc}") from exc

        if query.content:
            stmt = self._apply_text(stmt, table, query)
            if stmt is None:
                return []
        else:
            stmt = stmt.order_by(table.c.id.asc())

        async with self._engine.connect() as conn:
            result = await conn.execute(stmt.limit(limit))
            return [row.id for row in result]
