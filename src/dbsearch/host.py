"""
Host Collaborator Interfaces

The forum host owns the primary content store, the persisted plugin record,
the cross-process broadcast channel and the event dispatcher. This module
only describes the calls dbsearch makes against them.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence


class ContentStore(Protocol):
    """Read access to the primary content store."""

    async def get_object_field(self, key: str, field: str) -> Any:
        ...

    async def get_objects_fields(
        self,
        keys: Sequence[str],
        fields: Sequence[str],
    ) -> List[Optional[Dict[str, Any]]]:
        """Return one dict (or None for a missing object) per key, in order."""
        ...

    async def get_sorted_set_range(self, set_name: str, start: int, stop: int) -> List[str]:
        """Return members ``start..stop`` (inclusive) of an ordered id space."""
        ...

    async def get_global_counts(self) -> Dict[str, int]:
        """Return ``topicCount``, ``postCount`` and ``messageCount``."""
        ...


class ObjectStore(Protocol):
    """The backing store holding the plugin's named record."""

    async def get_object(self, key: str) -> Dict[str, Any]:
        ...

    async def set_object(self, key: str, data: Dict[str, Any]) -> None:
        ...

    async def incr_object_field_by(self, key: str, field: str, value: int) -> int:
        """Atomically add ``value`` to a numeric field and return the result."""
        ...


MessageHandler = Callable[[Any], Awaitable[None]]


class PubSub(Protocol):
    """Broadcast channel shared by cooperating processes."""

    async def publish(self, channel: str, data: Any) -> None:
        ...

    def subscribe(self, channel: str, handler: MessageHandler) -> None:
        ...


class EventSource(Protocol):
    """The host's content-lifecycle event dispatcher."""

    def on(self, event: str, handler: Callable[[Dict[str, Any]], Awaitable[None]]) -> None:
        ...


async def iter_sorted_set(
    store: ContentStore,
    set_name: str,
    batch_size: int,
) -> AsyncIterator[List[str]]:
    """
    Walk an ordered id space in fixed-size batches.

    Stops after the first short or empty batch.
    """
    start = 0
    while True:
        ids = await store.get_sorted_set_range(set_name, start, start + batch_size - 1)
        if not ids:
            return
        yield [str(i) for i in ids]
        if len(ids) < batch_size:
            return
        start += batch_size
