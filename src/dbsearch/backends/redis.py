"""
Redis Search Backend

A small inverted index built from plain Redis structures, per kind:

    dbsearch:{kind}:doc:{id}            hash of the stored record
    dbsearch:{kind}:word:{word}         zset id -> term frequency
    dbsearch:{kind}:owner:{owner_id}    set of ids
    dbsearch:{kind}:container:{cid}     set of ids
    dbsearch:{kind}:ids                 zset id -> timestamp

Relevance is the summed term frequency of the matched words.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Set

import redis.asyncio as aioredis

from ..models import SearchQuery
from .base import SearchBackend, is_fully_quoted

logger = logging.getLogger("dbsearch.backends.redis")

WORD_RE = re.compile(r"\w+", re.UNICODE)
KINDS = ("topic", "post", "chat")


def tokenize(content: Optional[str]) -> Counter:
    if not content:
        return Counter()
    return Counter(word.lower() for word in WORD_RE.findall(content))


def _sort_key(doc_id: str) -> Any:
    return (0, int(doc_id), "") if doc_id.isdigit() else (1, 0, doc_id)


class RedisBackend(SearchBackend):
    name = "redis"

    def __init__(self, client: aioredis.Redis, prefix: str = "dbsearch", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_settings(cls, settings: Any) -> "RedisBackend":
        return cls(
            aioredis.from_url(settings.redis_url, decode_responses=True),
            is_primary=settings.is_primary,
            jobs_disabled=settings.jobs_disabled,
        )

    async def close(self) -> None:
        await self._client.aclose()

    def _key(self, kind: str, *parts: str) -> str:
        if kind not in KINDS:
            raise ValueError(f"Unknown search kind: {kind!r}")
        return ":".join((self._prefix, kind) + parts)

    async def _create_schema(self) -> None:
        """Redis needs no schema."""

    # ------------------------------------------------------------------
    # Postings
    # ------------------------------------------------------------------

    def _unlink(self, pipe: Any, kind: str, doc_id: str, stored: Dict[str, str]) -> None:
        for word in tokenize(stored.get("content")):
            pipe.zrem(self._key(kind, "word", word), doc_id)
        if stored.get("owner_id"):
            pipe.srem(self._key(kind, "owner", stored["owner_id"]), doc_id)
        if stored.get("container_id"):
            pipe.srem(self._key(kind, "container", stored["container_id"]), doc_id)

    def _link(self, pipe: Any, kind: str, doc_id: str, record: Dict[str, str]) -> None:
        for word, count in tokenize(record.get("content")).items():
            pipe.zadd(self._key(kind, "word", word), {doc_id: count})
        if record.get("owner_id"):
            pipe.sadd(self._key(kind, "owner", record["owner_id"]), doc_id)
        if record.get("container_id"):
            pipe.sadd(self._key(kind, "container", record["container_id"]), doc_id)
        pipe.zadd(self._key(kind, "ids"), {doc_id: int(record.get("timestamp") or 0)})

    async def _load(self, kind: str, ids: List[str]) -> List[Dict[str, str]]:
        async with self._client.pipeline(transaction=False) as pipe:
            for doc_id in ids:
                pipe.hgetall(self._key(kind, "doc", doc_id))
            return await pipe.execute()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def _index(self, kind: str, ids: List[str], rows: List[Dict[str, Any]]) -> None:
        existing = await self._load(kind, ids)

        async with self._client.pipeline(transaction=True) as pipe:
            for doc_id, stored, fields in zip(ids, existing, rows):
                incoming = {k: str(v) for k, v in fields.items() if v is not None}
                merged = {**stored, **incoming}
                self._unlink(pipe, kind, doc_id, stored)
                self._link(pipe, kind, doc_id, merged)
                if incoming:
                    pipe.hset(self._key(kind, "doc", doc_id), mapping=incoming)
            await pipe.execute()

    async def _remove(self, kind: str, ids: List[str]) -> int:
        existing = await self._load(kind, ids)
        removed = 0

        async with self._client.pipeline(transaction=True) as pipe:
            for doc_id, stored in zip(ids, existing):
                if not stored:
                    continue
                removed += 1
                self._unlink(pipe, kind, doc_id, stored)
                pipe.zrem(self._key(kind, "ids"), doc_id)
                pipe.delete(self._key(kind, "doc", doc_id))
            await pipe.execute()
        return removed

    async def _members(self, kind: str, field: str, values: Iterable[str]) -> Set[str]:
        keys = [self._key(kind, field, str(value)) for value in values]
        return set(await self._client.sunion(keys))

    async def _text_scores(self, kind: str, query: SearchQuery) -> Dict[str, float]:
        content = query.content.strip()
        phrase = is_fully_quoted(content)
        words = list(tokenize(content))
        if not words:
            return {}

        async with self._client.pipeline(transaction=False) as pipe:
            for word in words:
                pipe.zrange(self._key(kind, "word", word), 0, -1, withscores=True)
            postings = await pipe.execute()

        require_all = phrase or query.match_words != "any"
        scores: Dict[str, float] = {}
        matched: Optional[Set[str]] = None
        for entries in postings:
            ids = {doc_id for doc_id, _ in entries}
            if matched is None:
                matched = ids
            else:
                matched = matched & ids if require_all else matched | ids
            for doc_id, score in entries:
                scores[doc_id] = scores.get(doc_id, 0.0) + score
        scores = {doc_id: scores[doc_id] for doc_id in (matched or set())}

        if phrase and scores:
            needle = " ".join(WORD_RE.findall(content.lower()))
            candidates = list(scores)
            async with self._client.pipeline(transaction=False) as pipe:
                for doc_id in candidates:
                    pipe.hget(self._key(kind, "doc", doc_id), "content")
                contents = await pipe.execute()
            scores = {
                doc_id: scores[doc_id]
                for doc_id, text in zip(candidates, contents)
                if needle in " ".join(WORD_RE.findall((text or "").lower()))
            }
        return scores

    async def _search(self, kind: str, query: SearchQuery, limit: int) -> List[Any]:
        candidates: Optional[Set[str]] = None

        def narrow(ids: Set[str]) -> None:
            nonlocal candidates
            candidates = ids if candidates is None else candidates & ids

        if query.owner_ids:
            narrow(await self._members(kind, "owner", query.owner_ids))
        if query.container_ids:
            narrow(await self._members(kind, "container", query.container_ids))
        if query.timestamp_from is not None or query.timestamp_to is not None:
            low = query.timestamp_from if query.timestamp_from is not None else "-inf"
            high = query.timestamp_to if query.timestamp_to is not None else "+inf"
            narrow(set(await self._client.zrangebyscore(self._key(kind, "ids"), low, high)))

        if query.content:
            scores = await self._text_scores(kind, query)
            ids = set(scores) if candidates is None else set(scores) & candidates
            ordered = sorted(ids, key=lambda doc_id: (-scores[doc_id], _sort_key(doc_id)))
        else:
            ordered = sorted(candidates or set(), key=_sort_key)
        return ordered[:limit]
