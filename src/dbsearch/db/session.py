"""
Database Engine Management

Provides the async SQLAlchemy engine used by the relational search backends
and the persisted plugin record.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool


def create_engine(url: str, **overrides: Any) -> AsyncEngine:
    """
    Create an async engine for a search database URL.

    In-memory SQLite databases share a single connection so every caller
    sees the same tables.
    """
    parsed = make_url(url)
    options: dict = {"echo": False}  # Set True for SQL debugging

    if parsed.get_backend_name() == "sqlite":
        if parsed.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
    else:
        options.update(pool_pre_ping=True, pool_size=5, max_overflow=10)

    options.update(overrides)
    return create_async_engine(url, **options)
