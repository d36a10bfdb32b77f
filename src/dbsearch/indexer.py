"""
Search Indexing Orchestrator

Keeps the search backend in step with the host's content store.

Responsibilities
----------------
- Own the process-local PluginConfig and follow broadcast settings changes
- Project raw documents into IndexRecords (shared with the reindex pipeline)
- React to content-lifecycle events (save, edit, restore, delete, purge,
  move, owner change) for topics, posts and chat messages
- Answer search queries with the configured per-kind limits

Incremental handlers are best-effort: a failure is logged and never
propagates back into the host's event dispatch.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .backends.base import SearchBackend
from .core.errors import InvalidRecord, TransientStoreError
from .host import ContentStore, ObjectStore, PubSub, iter_sorted_set
from .kinds import CHAT, KINDS, POST, TOPIC, KindSpec, is_deleted, parse_id, project
from .models import IndexRecord, PluginConfig, SearchQuery
from .progress import ProgressTracker
from .pubsub import LANGUAGE_CHANNEL, SETTINGS_CHANNEL

logger = logging.getLogger("dbsearch.indexer")

Document = Dict[str, Any]

# Receives (kind, ids, records) before a batch is indexed and returns the
# ids and records to index instead.
IndexFilter = Callable[
    [str, List[str], List[IndexRecord]],
    Awaitable[Tuple[List[str], List[IndexRecord]]],
]


def best_effort(func):
    """Log and swallow failures of an incremental event handler."""
    @functools.wraps(func)
    async def wrapper(self, *args: Any, **kwargs: Any) -> None:
        try:
            await func(self, *args, **kwargs)
        except Exception:
            logger.exception("Search handler %s failed", func.__name__)
    return wrapper


class SearchIndexer:
    def __init__(
        self,
        backend: SearchBackend,
        content: ContentStore,
        objects: ObjectStore,
        pubsub: PubSub,
        *,
        object_key: str = "dbsearch",
        batch_size: int = 500,
        progress: Optional[ProgressTracker] = None,
    ) -> None:
        self.backend = backend
        self.content = content
        self.objects = objects
        self.pubsub = pubsub
        self.object_key = object_key
        self.batch_size = batch_size
        self.progress = progress or ProgressTracker(objects, content, object_key)
        self.config = PluginConfig()
        self.index_filters: List[IndexFilter] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load persisted settings, follow broadcasts and provision the schema."""
        record = await self.objects.get_object(self.object_key)
        self.config = PluginConfig.from_record(record)

        self.pubsub.subscribe(SETTINGS_CHANNEL, self._on_settings_saved)
        self.pubsub.subscribe(LANGUAGE_CHANNEL, self._on_language_changed)
        self.backend.bind_pubsub(self.pubsub)
        await self.backend.create_indices(self.config.index_language)

    async def _on_settings_saved(self, data: Any) -> None:
        self.config = PluginConfig.model_validate(data)
        logger.info("Applied broadcast search settings")

    async def _on_language_changed(self, language: Any) -> None:
        self.config = self.config.model_copy(update={"index_language": str(language)})

    def add_index_filter(self, index_filter: IndexFilter) -> None:
        """Let other code rewrite each batch right before it is indexed."""
        self.index_filters.append(index_filter)

    # ------------------------------------------------------------------
    # Loading from the content store
    # ------------------------------------------------------------------

    async def load(self, spec: KindSpec, ids: Sequence[Any]) -> List[Optional[Document]]:
        """Fetch the indexable fields of ``ids``, None for missing documents."""
        ids = [str(i) for i in ids]
        if not ids:
            return []
        try:
            docs = await self.content.get_objects_fields(spec.object_keys(ids), list(spec.fields))
        except Exception as exc:
            raise TransientStoreError(f"could not load {spec.name} documents") from exc

        loaded: List[Optional[Document]] = []
        for doc_id, doc in zip(ids, docs):
            if doc:
                doc = dict(doc)
                doc.setdefault(spec.id_field, doc_id)
            loaded.append(doc or None)
        return loaded

    async def complete(self, spec: KindSpec, payload: Optional[Mapping[str, Any]]) -> Optional[Document]:
        """Fill fields missing from an event payload with stored values."""
        if not payload:
            return None
        doc_id = parse_id(payload.get(spec.id_field))
        if doc_id is None:
            logger.warning("Ignoring %s event without a valid id: %r", spec.name, payload)
            return None

        stored = (await self.load(spec, [doc_id]))[0] or {}
        return {**stored, **{k: v for k, v in payload.items() if v is not None}}

    async def attach_topics(self, posts: Sequence[Optional[Document]]) -> List[Document]:
        """
        Give posts the category of their topic with one batched lookup.

        Posts of deleted topics are dropped; posts whose topic cannot be
        found are skipped with a warning.
        """
        posts = [post for post in posts if post]
        tids = [parse_id(post.get("tid")) for post in posts]
        unique = list(dict.fromkeys(tid for tid in tids if tid))
        if not unique:
            return []

        try:
            topics = await self.content.get_objects_fields(
                TOPIC.object_keys(unique), ["cid", "deleted"]
            )
        except Exception as exc:
            raise TransientStoreError("could not load topics of posts") from exc
        lookup = dict(zip(unique, topics))

        attached = []
        for post, tid in zip(posts, tids):
            topic = lookup.get(tid) if tid else None
            if not topic:
                logger.warning("%s", InvalidRecord(f"post {post.get('pid')} has no topic"))
                continue
            if is_deleted(topic.get("deleted")):
                continue
            attached.append({**post, "cid": topic.get("cid")})
        return attached

    # ------------------------------------------------------------------
    # Writing to the backend
    # ------------------------------------------------------------------

    async def index_records(self, kind: str, ids: List[str], records: List[IndexRecord]) -> int:
        for index_filter in self.index_filters:
            if not ids:
                break
            ids, records = await index_filter(kind, list(ids), list(records))
        if not ids:
            return 0
        count = await self.backend.index(kind, records, ids)
        await self.progress.incr(kind, count)
        return count

    async def remove_ids(self, kind: str, ids: Sequence[Any]) -> int:
        ids = [doc_id for doc_id in (parse_id(i) for i in ids) if doc_id]
        if not ids:
            return 0
        removed = await self.backend.remove(kind, ids)
        await self.progress.decr(kind, removed)
        return removed

    async def index_documents(self, spec: KindSpec, docs: Sequence[Optional[Document]]) -> int:
        """Index the projectable documents, skipping everything else."""
        ids: List[str] = []
        records: List[IndexRecord] = []
        for doc in docs:
            doc_id, record = project(spec, doc, self.config)
            if doc_id and record:
                ids.append(doc_id)
                records.append(record)
        return await self.index_records(spec.name, ids, records)

    async def sync_documents(self, spec: KindSpec, docs: Sequence[Optional[Document]]) -> None:
        """
        Bring the index in line with ``docs``: projectable documents are
        upserted, deleted, excluded or empty ones are removed.
        """
        ids: List[str] = []
        records: List[IndexRecord] = []
        stale: List[str] = []
        for doc in docs:
            doc_id, record = project(spec, doc, self.config)
            if doc_id is None:
                continue
            if record is None:
                stale.append(doc_id)
            else:
                ids.append(doc_id)
                records.append(record)

        await self.index_records(spec.name, ids, records)
        await self.remove_ids(spec.name, stale)

    async def _topic_post_ids(self, tid: str) -> List[str]:
        main_pid = parse_id(await self.content.get_object_field(TOPIC.object_key(tid), "mainPid"))
        pids = [main_pid] if main_pid else []
        async for batch in iter_sorted_set(self.content, f"tid:{tid}:posts", self.batch_size):
            pids.extend(batch)
        return list(dict.fromkeys(pids))

    async def reindex_topics(self, tids: Sequence[Any]) -> None:
        """Re-project topics and every post they contain."""
        topics = [t for t in await self.load(TOPIC, [i for i in tids if parse_id(i)]) if t]
        await self.sync_documents(TOPIC, topics)

        for topic in topics:
            tid = parse_id(topic.get("tid"))
            if tid is None or is_deleted(topic.get("deleted")):
                continue
            pids = await self._topic_post_ids(tid)
            for start in range(0, len(pids), self.batch_size):
                posts = await self.load(POST, pids[start:start + self.batch_size])
                posts = [{**post, "cid": topic.get("cid")} for post in posts if post]
                await self.sync_documents(POST, posts)

    # ------------------------------------------------------------------
    # Topic events
    # ------------------------------------------------------------------

    @best_effort
    async def on_topic_save(self, data: Mapping[str, Any]) -> None:
        topic = await self.complete(TOPIC, data.get("topic"))
        if topic:
            await self.sync_documents(TOPIC, [topic])

    on_topic_edit = on_topic_save

    @best_effort
    async def on_topic_restore(self, data: Mapping[str, Any]) -> None:
        await self.reindex_topics([(data.get("topic") or {}).get("tid")])

    @best_effort
    async def on_topic_delete(self, data: Mapping[str, Any]) -> None:
        tid = parse_id((data.get("topic") or {}).get("tid"))
        if tid is None:
            return
        await self.remove_ids(TOPIC.name, [tid])
        pids = await self._topic_post_ids(tid)
        for start in range(0, len(pids), self.batch_size):
            await self.remove_ids(POST.name, pids[start:start + self.batch_size])

    on_topic_purge = on_topic_delete

    @best_effort
    async def on_topic_move(self, data: Mapping[str, Any]) -> None:
        tid = data.get("tid") or (data.get("topic") or {}).get("tid")
        await self.reindex_topics([tid])

    @best_effort
    async def on_topic_change_owner(self, data: Mapping[str, Any]) -> None:
        topics = [t for t in await self.load(TOPIC, data.get("tids") or []) if t]
        for topic in topics:
            topic["uid"] = data.get("toUid")
        await self.sync_documents(TOPIC, topics)

    # ------------------------------------------------------------------
    # Post events
    # ------------------------------------------------------------------

    @best_effort
    async def on_post_save(self, data: Mapping[str, Any]) -> None:
        post = await self.complete(POST, data.get("post"))
        if post:
            await self.sync_documents(POST, await self.attach_topics([post]))

    on_post_edit = on_post_save
    on_post_restore = on_post_save
    on_post_move = on_post_save

    @best_effort
    async def on_post_delete(self, data: Mapping[str, Any]) -> None:
        await self.remove_ids(POST.name, [(data.get("post") or {}).get("pid")])

    on_post_purge = on_post_delete

    @best_effort
    async def on_post_change_owner(self, data: Mapping[str, Any]) -> None:
        posts = [p for p in await self.load(POST, data.get("pids") or []) if p]
        for post in posts:
            post["uid"] = data.get("toUid")
        await self.sync_documents(POST, await self.attach_topics(posts))

    # ------------------------------------------------------------------
    # Chat message events
    # ------------------------------------------------------------------

    @best_effort
    async def on_message_save(self, data: Mapping[str, Any]) -> None:
        message = await self.complete(CHAT, data.get("message"))
        if message:
            await self.sync_documents(CHAT, [message])

    on_message_edit = on_message_save
    on_message_restore = on_message_save

    @best_effort
    async def on_message_delete(self, data: Mapping[str, Any]) -> None:
        await self.remove_ids(CHAT.name, [(data.get("message") or {}).get("mid")])

    on_message_purge = on_message_delete

    @best_effort
    async def on_message_change_owner(self, data: Mapping[str, Any]) -> None:
        messages = [m for m in await self.load(CHAT, data.get("mids") or []) if m]
        for message in messages:
            message["uid"] = data.get("toUid")
        await self.sync_documents(CHAT, messages)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def search(self, query: Union[SearchQuery, Mapping[str, Any]]) -> List[str]:
        """
        Run a query with the configured limit for its kind.

        Returns an empty list for queries without filters and for any
        backend failure.
        """
        if not isinstance(query, SearchQuery):
            try:
                query = SearchQuery.model_validate(query)
            except ValueError:
                logger.warning("Rejected malformed search query: %r", query)
                return []

        if not query.has_filters or query.kind not in KINDS:
            return []

        try:
            return await self.backend.search(query.kind, query, self.config.limit_for(query.kind))
        except Exception:
            logger.exception("Search on %s failed", query.kind)
            return []

    async def search_in_topic(self, tid: Any, term: Optional[str]) -> List[str]:
        """Return pids of posts in topic ``tid`` that match ``term``."""
        tid = parse_id(tid)
        if tid is None or not term:
            return []

        cid = await self.content.get_object_field(TOPIC.object_key(tid), "cid")
        pids = await self.search(
            SearchQuery(kind="post", content=term, container_ids=[cid] if cid else None)
        )
        if not pids:
            return []

        posts = await self.content.get_objects_fields(POST.object_keys(pids), ["pid", "tid"])
        return [
            pid
            for pid, post in zip(pids, posts)
            if post and parse_id(post.get("tid")) == tid
        ]
