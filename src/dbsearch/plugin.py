"""
DbSearch Plugin

Wires the search backend, the orchestrator, the reindex pipeline and the
progress tracker together and exposes the operations used by the admin
surface (HTTP routes and the operator CLI).

Long-running operations (reindex, clear) run as background tasks; the call
returns as soon as the task is scheduled and progress is polled through
check_progress().
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Dict, List, Mapping, Optional, Set, Union

from .backends import get_backend
from .backends.base import SearchBackend
from .config import Settings, settings as default_settings
from .core.errors import ConfigurationError
from .db import MongoObjectStore, RedisObjectStore, SqlObjectStore, create_engine
from .hooks import register_hooks
from .host import ContentStore, EventSource, ObjectStore, PubSub
from .indexer import IndexFilter, SearchIndexer
from .models import LANGUAGE_LOOKUP, PluginConfig, ProgressData, SearchQuery
from .pubsub import SETTINGS_CHANNEL, LocalPubSub, RedisPubSub
from .reindex import ReindexPipeline

logger = logging.getLogger("dbsearch.plugin")


class DbSearchPlugin:
    def __init__(
        self,
        backend: SearchBackend,
        content: ContentStore,
        objects: ObjectStore,
        pubsub: Optional[PubSub] = None,
        events: Optional[EventSource] = None,
        *,
        object_key: str = "dbsearch",
        batch_size: int = 500,
    ) -> None:
        self.backend = backend
        self.objects = objects
        self.pubsub = pubsub or LocalPubSub()
        self.events = events
        self.object_key = object_key
        self.indexer = SearchIndexer(
            backend,
            content,
            objects,
            self.pubsub,
            object_key=object_key,
            batch_size=batch_size,
        )
        self.pipeline = ReindexPipeline(self.indexer)
        self._tasks: Set[asyncio.Task] = set()
        self._owns_objects = False

    @classmethod
    def from_settings(
        cls,
        content: ContentStore,
        events: Optional[EventSource] = None,
        settings: Settings = default_settings,
        objects: Optional[ObjectStore] = None,
    ) -> "DbSearchPlugin":
        """
        Build a plugin for the engine named by ``settings.database``.

        The plugin record lives in the host's own store on Redis and MongoDB
        hosts and in the SQL database at ``settings.database_url`` otherwise,
        unless an object store is passed in.
        """
        owns_objects = objects is None
        if objects is None:
            if settings.database == "redis":
                objects = RedisObjectStore.from_url(settings.redis_url)
            elif settings.database == "mongo":
                objects = MongoObjectStore.from_url(settings.mongo_url, settings.mongo_database)
            else:
                objects = SqlObjectStore(create_engine(settings.database_url))

        pubsub = RedisPubSub(settings.pubsub_url) if settings.pubsub_url else LocalPubSub()

        plugin = cls(
            get_backend(settings),
            content,
            objects,
            pubsub,
            events,
            object_key=settings.object_key,
            batch_size=settings.batch_size,
        )
        plugin._owns_objects = owns_objects
        return plugin

    @property
    def config(self) -> PluginConfig:
        return self.indexer.config

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if isinstance(self.objects, SqlObjectStore):
            await self.objects.create_schema()

        await self.indexer.start()
        if self.events is not None:
            register_hooks(self.events, self.indexer)
        if isinstance(self.pubsub, RedisPubSub):
            await self.pubsub.start()
        logger.info("dbsearch started with %s backend", self.backend.name)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if isinstance(self.pubsub, RedisPubSub):
            await self.pubsub.close()
        await self.backend.close()
        if self._owns_objects:
            await self.objects.close()

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"dbsearch-{name}")
        self._tasks.add(task)
        task.add_done_callback(self._task_finished)
        return task

    def _task_finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("%s was cancelled", task.get_name())
        elif task.exception() is not None:
            logger.error("%s failed", task.get_name(), exc_info=task.exception())

    async def wait_idle(self) -> None:
        """Wait for every scheduled background operation to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def reindex(self) -> asyncio.Task:
        """Start a full reindex in the background."""
        logger.info("Scheduling full search reindex")
        return self._spawn(self.pipeline.reindex(), "reindex")

    def clear_index(self) -> asyncio.Task:
        """Start clearing the index in the background."""
        logger.info("Scheduling search index clear")
        return self._spawn(self.pipeline.clear_index(), "clear")

    async def check_progress(self) -> ProgressData:
        return await self.indexer.progress.get_progress()

    async def reset_working(self) -> None:
        await self.indexer.progress.reset_working()

    async def search(self, query: Union[SearchQuery, Mapping[str, Any]]) -> List[str]:
        return await self.indexer.search(query)

    async def search_in_topic(self, tid: Any, term: Optional[str]) -> List[str]:
        return await self.indexer.search_in_topic(tid, term)

    def add_index_filter(self, index_filter: IndexFilter) -> None:
        self.indexer.add_index_filter(index_filter)

    async def save_settings(self, data: Union[PluginConfig, Mapping[str, Any]]) -> PluginConfig:
        """
        Persist new settings, apply them here and broadcast them to siblings.

        Fields missing from ``data`` keep their current value.
        """
        if isinstance(data, PluginConfig):
            config = data
        else:
            merged: Dict[str, Any] = {**self.config.model_dump(by_alias=True), **data}
            config = PluginConfig.model_validate(merged)

        await self.objects.set_object(self.object_key, config.to_record())
        self.indexer.config = config
        await self.pubsub.publish(SETTINGS_CHANNEL, config.model_dump(by_alias=True))
        logger.info("Saved dbsearch settings")
        return config

    async def change_language(self, language: str) -> None:
        """Switch the index language and persist the choice."""
        if language not in LANGUAGE_LOOKUP:
            raise ConfigurationError(f"unsupported index language: {language!r}")

        await self.backend.change_index_language(language)
        await self.objects.set_object(self.object_key, {"indexLanguage": language})
        self.indexer.config = self.config.model_copy(update={"index_language": language})
        logger.info("Search index language changed to %s", language)
