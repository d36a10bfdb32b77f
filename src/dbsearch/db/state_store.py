"""
Plugin Record Stores

Persist the plugin's named record (settings, progress counters and the
working flag). Counters are changed with atomic increments so incremental
handlers and bulk pipelines can update them concurrently.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import redis.asyncio as aioredis
from pymongo import AsyncMongoClient, ReturnDocument
from sqlalchemy import BigInteger, Text, cast, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from .tables import metadata, object_table
from .upsert import build_upsert, supports_upsert


class SqlObjectStore:
    """
    Relational store for the plugin record.

    One row per (key, field). Values are stored as text, matching the
    hash-of-strings semantics of the host's key/value databases.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        """
        Parameters
        ----------
        engine : AsyncEngine
            Engine for any SQLAlchemy database. PostgreSQL, MySQL/MariaDB
            and SQLite use a native upsert; other dialects update first
            and insert when no row matched.
        """
        self._engine = engine
        self._dialect = engine.dialect.name

    async def create_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all, tables=[object_table], checkfirst=True)

    async def close(self) -> None:
        await self._engine.dispose()

    async def get_object(self, key: str) -> Dict[str, Any]:
        async with self._engine.connect() as conn:
            result = await conn.execute(
                select(object_table.c.field, object_table.c.value)
                .where(object_table.c.key == key)
            )
            return {row.field: row.value for row in result}

    async def set_object(self, key: str, data: Dict[str, Any]) -> None:
        rows = [
            {"key": key, "field": field, "value": str(value)}
            for field, value in data.items()
            if value is not None
        ]
        if not rows:
            return

        if not supports_upsert(self._dialect):
            for row in rows:
                await self._update_or_insert(row, row["value"])
            return

        stmt = build_upsert(
            self._dialect,
            object_table,
            rows,
            ("key", "field"),
            lambda incoming: {"value": incoming["value"]},
        )
        async with self._engine.begin() as conn:
            await conn.execute(stmt)

    async def incr_object_field_by(self, key: str, field: str, value: int) -> int:
        """
        Atomically add ``value`` to a counter field.

        Uses a single upsert, or an in-place ``UPDATE`` on dialects without
        one, so concurrent increments never lose updates.
        """
        row = {"key": key, "field": field, "value": str(value)}
        incremented = cast(cast(object_table.c.value, BigInteger) + value, Text)

        if supports_upsert(self._dialect):
            stmt = build_upsert(
                self._dialect,
                object_table,
                [row],
                ("key", "field"),
                lambda incoming: {"value": incremented},
            )
            async with self._engine.begin() as conn:
                await conn.execute(stmt)
                return await self._read_int(conn, key, field)

        await self._update_or_insert(row, incremented)
        async with self._engine.connect() as conn:
            return await self._read_int(conn, key, field)

    @staticmethod
    async def _read_int(conn: AsyncConnection, key: str, field: str) -> int:
        result = await conn.execute(
            select(object_table.c.value).where(
                object_table.c.key == key,
                object_table.c.field == field,
            )
        )
        return int(result.scalar_one())

    async def _update_or_insert(self, row: Dict[str, str], new_value: Any) -> None:
        """Update the stored field row, inserting ``row`` when none matched."""
        stmt = (
            update(object_table)
            .where(
                object_table.c.key == row["key"],
                object_table.c.field == row["field"],
            )
            .values(value=new_value)
        )
        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
            if result.rowcount:
                return
        try:
            async with self._engine.begin() as conn:
                await conn.execute(object_table.insert().values(**row))
        except IntegrityError:
            # Another writer created the row in between.
            async with self._engine.begin() as conn:
                await conn.execute(stmt)


class RedisObjectStore:
    """
    Redis hash store for the plugin record, for hosts running on Redis.
    """

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisObjectStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get_object(self, key: str) -> Dict[str, Any]:
        return await self._client.hgetall(key)

    async def set_object(self, key: str, data: Dict[str, Any]) -> None:
        mapping = {field: str(value) for field, value in data.items() if value is not None}
        if mapping:
            await self._client.hset(key, mapping=mapping)

    async def incr_object_field_by(self, key: str, field: str, value: int) -> int:
        return int(await self._client.hincrby(key, field, value))

    async def close(self) -> None:
        await self._client.aclose()


class MongoObjectStore:
    """
    MongoDB store for the plugin record, for hosts running on MongoDB.

    The record is one document in the host's ``objects`` collection,
    addressed by ``_key``. Numbers keep their type so counters can be
    changed with ``$inc``.
    """

    def __init__(self, client: AsyncMongoClient, database: str, collection: str = "objects") -> None:
        self._client = client
        self._collection = client[database][collection]

    @classmethod
    def from_url(cls, url: str, database: str) -> "MongoObjectStore":
        return cls(AsyncMongoClient(url), database)

    @staticmethod
    def _stored(value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return str(value)

    async def get_object(self, key: str) -> Dict[str, Any]:
        document = await self._collection.find_one({"_key": key}, {"_id": 0, "_key": 0})
        return dict(document or {})

    async def set_object(self, key: str, data: Dict[str, Any]) -> None:
        fields = {field: self._stored(value) for field, value in data.items() if value is not None}
        if fields:
            await self._collection.update_one({"_key": key}, {"$set": fields}, upsert=True)

    async def incr_object_field_by(self, key: str, field: str, value: int) -> int:
        document = await self._collection.find_one_and_update(
            {"_key": key},
            {"$inc": {field: value}},
            projection={field: 1},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(document[field])

    async def close(self) -> None:
        await self._client.close()


class RedisContentStore:
    """
    Read-only view of a forum content store kept in Redis.

    Documents are hashes (``topic:{tid}``), ordered id spaces are sorted
    sets and global counts live in the ``global`` hash. Used by the
    operator CLI when no host process is available.
    """

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisContentStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get_object_field(self, key: str, field: str) -> Any:
        return await self._client.hget(key, field)

    async def get_objects_fields(
        self,
        keys: Sequence[str],
        fields: Sequence[str],
    ) -> List[Optional[Dict[str, Any]]]:
        if not keys:
            return []
        async with self._client.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.hmget(key, list(fields))
            results = await pipe.execute()

        objects: List[Optional[Dict[str, Any]]] = []
        for values in results:
            if all(value is None for value in values):
                objects.append(None)
            else:
                objects.append(dict(zip(fields, values)))
        return objects

    async def get_sorted_set_range(self, set_name: str, start: int, stop: int) -> List[str]:
        return await self._client.zrange(set_name, start, stop)

    async def get_global_counts(self) -> Dict[str, int]:
        fields = ("topicCount", "postCount", "messageCount")
        values = await self._client.hmget("global", list(fields))
        return {field: int(value or 0) for field, value in zip(fields, values)}

    async def close(self) -> None:
        await self._client.aclose()
