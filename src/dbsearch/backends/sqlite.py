"""
SQLite Search Backend

Each search table gets an FTS5 companion ``search{kind}_fts`` whose rowid is
the numeric document id. Triggers keep it in sync with inserts, upserts and
deletes on the base table. Results are ordered by FTS5 rank (bm25).
"""

from __future__ import annotations

import logging
from typing import Any, List

from sqlalchemy import Table, cast, column, literal_column, select, String, table as table_clause, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncConnection

from ..core.errors import InvalidRecord
from ..db.tables import search_tables
from ..models import SearchQuery
from .sql import SqlBackend, split_terms

logger = logging.getLogger("dbsearch.backends.sqlite")


def fts_query(content: str, match_words: str) -> str:
    """Build an FTS5 MATCH expression where every term is a string literal."""
    terms = split_terms(content)
    quoted = ['"' + term.replace('"', '""') + '"' for term in terms]
    return (" OR " if match_words == "any" else " ").join(quoted)


def _fts_ddl(name: str) -> List[str]:
    fts = f"{name}_fts"
    return [
        f'CREATE VIRTUAL TABLE IF NOT EXISTS "{fts}" USING fts5(content)',
        f'CREATE TRIGGER IF NOT EXISTS "{name}_ai" AFTER INSERT ON "{name}" BEGIN '
        f'INSERT INTO "{fts}"(rowid, content) VALUES (CAST(new.id AS INTEGER), new.content); '
        f"END",
        f'CREATE TRIGGER IF NOT EXISTS "{name}_ad" AFTER DELETE ON "{name}" BEGIN '
        f'DELETE FROM "{fts}" WHERE rowid = CAST(old.id AS INTEGER); '
        f"END",
        f'CREATE TRIGGER IF NOT EXISTS "{name}_au" AFTER UPDATE ON "{name}" BEGIN '
        f'DELETE FROM "{fts}" WHERE rowid = CAST(old.id AS INTEGER); '
        f'INSERT INTO "{fts}"(rowid, content) VALUES (CAST(new.id AS INTEGER), new.content); '
        f"END",
    ]


class SqliteBackend(SqlBackend):
    name = "sqlite"

    def _coerce_id(self, value: Any) -> Any:
        try:
            return str(int(value))
        except (TypeError, ValueError):
            raise InvalidRecord(f"SQLite search ids must be numeric, got {value!r}") from None

    def is_missing_schema(self, exc: BaseException) -> bool:
        return isinstance(exc, OperationalError) and "no such table" in str(exc.orig).lower()

    async def _create_text_indexes(self, conn: AsyncConnection) -> None:
        for table in search_tables.values():
            fts = f"{table.name}_fts"
            result = await conn.execute(
                text("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = :name"),
                {"name": fts},
            )
            existed = result.first() is not None

            for statement in _fts_ddl(table.name):
                await conn.execute(text(statement))

            if not existed:
                # Backfill rows written before the FTS table existed.
                await conn.execute(text(
                    f'INSERT INTO "{fts}"(rowid, content) '
                    f'SELECT CAST(id AS INTEGER), content FROM "{table.name}"'
                ))
                logger.info("Created FTS5 index %s", fts)

    def _apply_text(self, stmt: Any, table: Table, query: SearchQuery) -> Any:
        expression = fts_query(query.content, query.match_words)
        if not expression:
            return None

        fts_name = f"{table.name}_fts"
        fts = table_clause(fts_name, column("rowid"), column("rank"))
        matched = (
            select(fts.c.rowid, fts.c.rank)
            .where(literal_column(fts_name).op("MATCH")(expression))
            .subquery("m")
        )
        return (
            stmt.join_from(table, matched, table.c.id == cast(matched.c.rowid, String))
            .order_by(matched.c.rank.asc(), table.c.id.asc())
        )
