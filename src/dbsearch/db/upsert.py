"""
Dialect-aware upsert statements.

PostgreSQL and SQLite use ``INSERT ... ON CONFLICT DO UPDATE``; MySQL and
MariaDB use ``INSERT ... ON DUPLICATE KEY UPDATE``. The caller describes the
update in terms of the incoming row, so one definition covers all three.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Sequence

from sqlalchemy import Table, func
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

# Receives the "incoming row" column collection, returns the SET clause.
SetFactory = Callable[[Any], Dict[str, Any]]

UPSERT_DIALECTS = ("postgresql", "sqlite", "mysql", "mariadb")


def supports_upsert(dialect_name: str) -> bool:
    return dialect_name in UPSERT_DIALECTS


def build_upsert(
    dialect_name: str,
    table: Table,
    rows: List[Dict[str, Any]],
    index_elements: Sequence[str],
    set_factory: SetFactory,
):
    """
    Build a multi-row upsert for ``table``.

    Raises
    ------
    NotImplementedError
        If the dialect has no native upsert.
    """
    if dialect_name == "postgresql":
        stmt = pg_insert(table).values(rows)
        return stmt.on_conflict_do_update(
            index_elements=list(index_elements),
            set_=set_factory(stmt.excluded),
        )

    if dialect_name == "sqlite":
        stmt = sqlite_insert(table).values(rows)
        return stmt.on_conflict_do_update(
            index_elements=list(index_elements),
            set_=set_factory(stmt.excluded),
        )

    if dialect_name in ("mysql", "mariadb"):
        stmt = mysql_insert(table).values(rows)
        return stmt.on_duplicate_key_update(**set_factory(stmt.inserted))

    raise NotImplementedError(f"No native upsert for dialect {dialect_name!r}")


def coalesce_merge(table: Table, columns: Sequence[str]) -> SetFactory:
    """
    SET clause that keeps the stored value wherever the incoming row has NULL.
    """
    def _factory(incoming: Any) -> Dict[str, Any]:
        return {
            name: func.coalesce(incoming[name], table.c[name])
            for name in columns
        }
    return _factory
