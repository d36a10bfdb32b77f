"""
MongoDB Search Backend

One collection per kind (``searchtopic``, ``searchpost``, ``searchchat``)
keyed by the numeric document id. Text search uses a compound text index
and is ranked by ``textScore``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from pymongo import ASCENDING, TEXT, AsyncMongoClient, UpdateOne
from pymongo.errors import OperationFailure

from ..core.errors import InvalidRecord
from ..models import LANGUAGE_LOOKUP, SearchQuery
from .base import SearchBackend, quote_terms

logger = logging.getLogger("dbsearch.backends.mongo")

INDEX_NOT_FOUND = 27
KINDS = ("topic", "post", "chat")


def text_query(content: str, match_words: str) -> Dict[str, str]:
    return {"$search": quote_terms(content.strip(), match_words)}


def _in_or_eq(values: List[str]) -> Any:
    return values[0] if len(values) == 1 else {"$in": values}


def build_filter(query: SearchQuery) -> Dict[str, Any]:
    """Translate a SearchQuery into a ``$match`` document."""
    match: Dict[str, Any] = {}
    if query.content:
        match["$text"] = text_query(query.content, query.match_words)
    if query.owner_ids:
        match["owner_id"] = _in_or_eq([str(i) for i in query.owner_ids])
    if query.container_ids:
        match["container_id"] = _in_or_eq([str(i) for i in query.container_ids])

    timestamp: Dict[str, int] = {}
    if query.timestamp_from is not None:
        timestamp["$gte"] = query.timestamp_from
    if query.timestamp_to is not None:
        timestamp["$lte"] = query.timestamp_to
    if timestamp:
        match["timestamp"] = timestamp
    return match


def _doc_id(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRecord(f"MongoDB search ids must be numeric, got {value!r}") from None


class MongoBackend(SearchBackend):
    name = "mongo"

    def __init__(self, client: AsyncMongoClient, database: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._client = client
        self._db = client[database]

    @classmethod
    def from_settings(cls, settings: Any) -> "MongoBackend":
        return cls(
            AsyncMongoClient(settings.mongo_url),
            settings.mongo_database,
            is_primary=settings.is_primary,
            jobs_disabled=settings.jobs_disabled,
        )

    async def close(self) -> None:
        await self._client.close()

    def collection(self, kind: str) -> Any:
        if kind not in KINDS:
            raise ValueError(f"Unknown search kind: {kind!r}")
        return self._db[f"search{kind}"]

    def language_name(self, code: str) -> str:
        if code in LANGUAGE_LOOKUP.values():
            return code
        return LANGUAGE_LOOKUP.get(code, "english")

    def is_missing_schema(self, exc: BaseException) -> bool:
        return isinstance(exc, OperationFailure) and exc.code == INDEX_NOT_FOUND

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def _create_text_index(self, kind: str, language: str) -> None:
        await self.collection(kind).create_index(
            [("content", TEXT), ("owner_id", ASCENDING), ("container_id", ASCENDING)],
            name=f"idx__search{kind}__content",
            default_language=language,
        )

    async def _create_schema(self) -> None:
        for kind in KINDS:
            await self._create_text_index(kind, self.language)
            await self.collection(kind).create_index(
                [("timestamp", ASCENDING)],
                name=f"idx__search{kind}__timestamp",
            )

    async def _apply_language(self, language: str) -> None:
        for kind in KINDS:
            try:
                await self.collection(kind).drop_index(f"idx__search{kind}__content")
            except OperationFailure as exc:
                if exc.code != INDEX_NOT_FOUND:
                    raise
            await self._create_text_index(kind, language)
        logger.info("Rebuilt MongoDB text indexes for language %s", language)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def _index(self, kind: str, ids: List[str], rows: List[Dict[str, Any]]) -> None:
        operations = []
        for doc_id, fields in zip(ids, rows):
            update = {
                field: (int(value) if field == "timestamp" else str(value))
                for field, value in fields.items()
                if value not in (None, "")
            }
            if update:
                operations.append(
                    UpdateOne({"_id": _doc_id(doc_id)}, {"$set": update}, upsert=True)
                )
        if operations:
            await self.collection(kind).bulk_write(operations, ordered=False)

    async def _search(self, kind: str, query: SearchQuery, limit: int) -> List[Any]:
        match = build_filter(query)
        if "$text" in match:
            sort = {"score": {"$meta": "textScore"}, "_id": ASCENDING}
        else:
            sort = {"_id": ASCENDING}

        pipeline = [
            {"$match": match},
            {"$sort": sort},
            {"$limit": limit},
            {"$project": {"_id": 1}},
        ]
        cursor = await self.collection(kind).aggregate(pipeline)
        return [doc["_id"] async for doc in cursor]

    async def _remove(self, kind: str, ids: List[str]) -> int:
        result = await self.collection(kind).delete_many(
            {"_id": {"$in": [_doc_id(i) for i in ids]}}
        )
        return result.deleted_count
