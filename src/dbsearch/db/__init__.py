"""
Database Package

Provides async SQLAlchemy engine creation, the relational search schema and
the persisted plugin record store.
"""

from .session import create_engine
from .tables import metadata, search_tables, object_table
from .state_store import SqlObjectStore, RedisObjectStore, MongoObjectStore, RedisContentStore

__all__ = [
    "create_engine",
    "metadata",
    "search_tables",
    "object_table",
    "SqlObjectStore",
    "RedisObjectStore",
    "MongoObjectStore",
    "RedisContentStore",
]
