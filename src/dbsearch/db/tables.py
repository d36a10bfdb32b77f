"""
SQLAlchemy Tables

Defines the relational schema for:
- Search records, one table per content kind (searchtopic, searchpost,
  searchchat)
- The plugin record (settings, progress counters, working flag)

Full-text indexes depend on the engine and the configured language, so each
backend adds its own on top of these tables.
"""

from __future__ import annotations

from typing import Dict

from sqlalchemy import (
    BigInteger,
    Column,
    Index,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()

# PostgreSQL keeps numeric identifiers, other engines store strings.
IdType = String(255).with_variant(BigInteger(), "postgresql")


def _search_table(kind: str) -> Table:
    name = f"search{kind}"
    return Table(
        name,
        metadata,
        Column("id", IdType, primary_key=True, autoincrement=False),
        Column("content", Text, nullable=True),
        Column("owner_id", IdType, nullable=True),
        Column("container_id", IdType, nullable=True),
        Column("timestamp", BigInteger, nullable=True),
        Index(f"idx__{name}__owner_id", "owner_id"),
        Index(f"idx__{name}__container_id", "container_id"),
    )


search_tables: Dict[str, Table] = {
    kind: _search_table(kind) for kind in ("topic", "post", "chat")
}


# ---------------------------------------------------------------------
# Plugin Record
# ---------------------------------------------------------------------

object_table = Table(
    "dbsearch_object",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("field", String(255), primary_key=True),
    Column("value", Text, nullable=True),
)
