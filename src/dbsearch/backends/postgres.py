"""
PostgreSQL Search Backend

Full-text search with ``to_tsvector`` expression indexes (GIN) in the
configured dictionary, queried with ``websearch_to_tsquery`` and ranked by
``ts_rank_cd``.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Table, func, literal_column, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection

from ..core.errors import InvalidRecord
from ..db.tables import search_tables
from ..models import LANGUAGE_LOOKUP, SearchQuery
from .base import is_fully_quoted, quote_terms
from .sql import SqlBackend

logger = logging.getLogger("dbsearch.backends.postgres")

UNDEFINED_TABLE = "42P01"


def websearch_text(content: str, match_words: str) -> str:
    """Rewrite free text into ``websearch_to_tsquery`` syntax."""
    content = content.strip()
    if match_words == "any" and not is_fully_quoted(content):
        return " or ".join(content.split())
    return quote_terms(content, match_words)


class PostgresBackend(SqlBackend):
    name = "postgres"

    def language_name(self, code: str) -> str:
        if code in LANGUAGE_LOOKUP:
            return LANGUAGE_LOOKUP[code]
        if code in LANGUAGE_LOOKUP.values():
            return code
        logger.warning("Unknown index language %r, using english", code)
        return "english"

    def _coerce_id(self, value: Any) -> Any:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise InvalidRecord(f"PostgreSQL search ids must be numeric, got {value!r}") from None

    def is_missing_schema(self, exc: BaseException) -> bool:
        if not isinstance(exc, DBAPIError):
            return False
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        return code == UNDEFINED_TABLE

    # ------------------------------------------------------------------
    # Text indexes
    # ------------------------------------------------------------------

    def _regconfig(self) -> Any:
        # Inlined so the predicate matches the GIN index expression.
        # language_name() only ever returns a LANGUAGE_LOOKUP value.
        return literal_column(f"'{self.language}'")

    def _vector(self, table: Table) -> Any:
        return func.to_tsvector(self._regconfig(), table.c.content)

    async def _create_text_indexes(self, conn: AsyncConnection) -> None:
        for table in search_tables.values():
            await conn.execute(text(
                f'CREATE INDEX IF NOT EXISTS "idx__{table.name}__content" '
                f'ON "{table.name}" USING GIN '
                f"(to_tsvector('{self.language}', \"content\"))"
            ))

    async def _apply_language(self, language: str) -> None:
        async with self._engine.begin() as conn:
            for table in search_tables.values():
                await conn.execute(text(f'DROP INDEX IF EXISTS "idx__{table.name}__content"'))
                await conn.execute(text(
                    f'CREATE INDEX "idx__{table.name}__content" '
                    f'ON "{table.name}" USING GIN '
                    f"(to_tsvector('{language}', \"content\"))"
                ))
        logger.info("Rebuilt PostgreSQL text indexes for language %s", language)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _apply_text(self, stmt: Any, table: Table, query: SearchQuery) -> Any:
        terms = websearch_text(query.content, query.match_words)
        if not terms:
            return None
        vector = self._vector(table)
        tsquery = func.websearch_to_tsquery(self._regconfig(), terms)
        return (
            stmt.where(vector.op("@@")(tsquery))
            .order_by(func.ts_rank_cd(vector, tsquery).desc(), table.c.id.asc())
        )
