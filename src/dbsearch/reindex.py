"""
Bulk reindex and clear pipelines.

Both walk the ordered id space of every kind. Kinds run concurrently;
batches inside a kind run one after another. A batch whose documents cannot
be read from the content store is skipped; any other failure stops its own
kind only. The working flag is always cleared at the end.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict

from .core.errors import TransientStoreError
from .host import iter_sorted_set
from .indexer import SearchIndexer
from .kinds import KINDS, POST, KindSpec

logger = logging.getLogger("dbsearch.reindex")


class ReindexPipeline:
    def __init__(self, indexer: SearchIndexer) -> None:
        self.indexer = indexer

    @property
    def batch_size(self) -> int:
        return self.indexer.batch_size

    async def reindex(self) -> Dict[str, int]:
        """
        Rebuild the whole index from the content store.

        Returns the number of records indexed per kind.
        """
        progress = self.indexer.progress
        await progress.reset()
        await progress.set_working(True)
        try:
            counts = await asyncio.gather(*(self._reindex_kind(spec) for spec in KINDS.values()))
        finally:
            await progress.set_working(False)

        result = dict(zip(KINDS, counts))
        logger.info("Reindex finished: %s", result)
        return result

    async def _reindex_kind(self, spec: KindSpec) -> int:
        indexed = 0
        try:
            async for ids in iter_sorted_set(self.indexer.content, spec.id_set, self.batch_size):
                try:
                    docs = await self.indexer.load(spec, ids)
                    if spec is POST:
                        docs = await self.indexer.attach_topics(docs)
                except TransientStoreError:
                    logger.warning(
                        "Skipping %s batch starting at id %s", spec.name, ids[0], exc_info=True
                    )
                    continue
                indexed += await self.indexer.index_documents(spec, docs)
        except Exception:
            logger.exception("Reindex of %s halted after %d records", spec.name, indexed)
        return indexed

    async def clear_index(self) -> Dict[str, int]:
        """Remove every indexed record and zero the counters."""
        progress = self.indexer.progress
        await progress.set_working(True)
        try:
            counts = await asyncio.gather(*(self._clear_kind(spec) for spec in KINDS.values()))
            await progress.reset()
        finally:
            await progress.set_working(False)

        result = dict(zip(KINDS, counts))
        logger.info("Search index cleared: %s", result)
        return result

    async def _clear_kind(self, spec: KindSpec) -> int:
        removed = 0
        try:
            async for ids in iter_sorted_set(self.indexer.content, spec.id_set, self.batch_size):
                removed += await self.indexer.remove_ids(spec.name, ids)
        except Exception:
            logger.exception("Clearing %s halted after %d records", spec.name, removed)
        return removed
