"""
Indexing progress counters.

Counters live in the plugin record next to the settings and are only ever
changed with atomic increments, so concurrent incremental handlers and bulk
pipelines never overwrite each other. Reported values are clamped because
the counters can drift from the host's global counts.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from .host import ContentStore, ObjectStore
from .kinds import KINDS, get_kind
from .models import ProgressData

logger = logging.getLogger("dbsearch.progress")

COUNTER_FIELDS = tuple(spec.counter_field for spec in KINDS.values())


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def percent_indexed(indexed: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return max(0.0, min(100.0, round(indexed / total * 100, 2)))


def reported_count(indexed: int, total: int) -> int:
    if total > 0 and indexed / total * 100 >= 100:
        return total
    return max(0, indexed)


class ProgressTracker:
    def __init__(self, objects: ObjectStore, content: ContentStore, key: str = "dbsearch") -> None:
        self._objects = objects
        self._content = content
        self._key = key

    async def get_progress(self) -> ProgressData:
        record = await self._objects.get_object(self._key) or {}
        totals = await self._content.get_global_counts() or {}

        values: Dict[str, Any] = {"working": _as_int(record.get("working")) == 1}
        for spec, prefix in zip(KINDS.values(), ("topics", "posts", "messages")):
            indexed = _as_int(record.get(spec.counter_field))
            total = _as_int(totals.get(spec.count_field))
            values[f"{prefix}_percent"] = percent_indexed(indexed, total)
            values[f"{prefix}_indexed"] = reported_count(indexed, total)
        return ProgressData(**values)

    async def incr(self, kind: str, count: int) -> None:
        if count:
            await self._objects.incr_object_field_by(self._key, get_kind(kind).counter_field, count)

    async def decr(self, kind: str, count: int) -> None:
        if count:
            await self._objects.incr_object_field_by(self._key, get_kind(kind).counter_field, -count)

    async def reset(self) -> None:
        await self._objects.set_object(self._key, {field: 0 for field in COUNTER_FIELDS})

    async def set_working(self, working: bool) -> None:
        await self._objects.set_object(self._key, {"working": 1 if working else 0})

    async def reset_working(self) -> None:
        """Clear a working flag left behind by a crashed pipeline."""
        logger.warning("Resetting dbsearch working flag")
        await self.set_working(False)
