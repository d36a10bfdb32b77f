"""
MySQL / MariaDB Search Backend

Uses InnoDB FULLTEXT indexes queried in boolean mode. In "all" mode every
word is prefixed with ``+`` so that it is mandatory.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Table, inspect, text
from sqlalchemy.dialects.mysql import match
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection

from ..db.tables import search_tables
from ..models import SearchQuery
from .base import is_fully_quoted, quote_terms
from .sql import SqlBackend

logger = logging.getLogger("dbsearch.backends.mysql")

ER_NO_SUCH_TABLE = 1146


def boolean_query(content: str, match_words: str) -> str:
    """Rewrite free text into MySQL boolean-mode syntax."""
    content = content.strip()
    if match_words == "any":
        return " ".join(content.split())
    if is_fully_quoted(content):
        return f"+{content}"
    return " ".join(f"+{word}" for word in quote_terms(content, "all").split())


class MysqlBackend(SqlBackend):
    name = "mysql"

    def is_missing_schema(self, exc: BaseException) -> bool:
        if not isinstance(exc, DBAPIError):
            return False
        args = getattr(exc.orig, "args", ())
        return bool(args) and args[0] == ER_NO_SUCH_TABLE

    async def _create_text_indexes(self, conn: AsyncConnection) -> None:
        def _existing(sync_conn: Any) -> dict:
            inspector = inspect(sync_conn)
            return {
                table.name: {ix["name"] for ix in inspector.get_indexes(table.name)}
                for table in search_tables.values()
            }

        existing = await conn.run_sync(_existing)
        for table in search_tables.values():
            index_name = f"idx__{table.name}__content"
            if index_name in existing[table.name]:
                continue
            await conn.execute(text(
                f"CREATE FULLTEXT INDEX `{index_name}` ON `{table.name}` (`content`)"
            ))

    def _apply_text(self, stmt: Any, table: Table, query: SearchQuery) -> Any:
        terms = boolean_query(query.content, query.match_words)
        if not terms:
            return None
        relevance = match(table.c.content, against=terms).in_boolean_mode()
        return stmt.where(relevance).order_by(relevance.desc(), table.c.id.asc())
