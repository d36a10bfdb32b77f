"""
Cross-process broadcast for settings and language changes.

LocalPubSub delivers messages inside one process (single-node deployments
and tests). RedisPubSub fans them out to every process subscribed to the
same Redis server; each process applies the message through the handlers
it registered.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, DefaultDict, List, Optional

import redis.asyncio as aioredis

from .host import MessageHandler

logger = logging.getLogger("dbsearch.pubsub")

SETTINGS_CHANNEL = "dbsearch:settings:save"
LANGUAGE_CHANNEL = "dbsearch:language-changed"


class LocalPubSub:
    """In-process broadcast; handlers run before publish() returns."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, List[MessageHandler]] = defaultdict(list)

    def subscribe(self, channel: str, handler: MessageHandler) -> None:
        self._handlers[channel].append(handler)

    async def publish(self, channel: str, data: Any) -> None:
        await _dispatch(self._handlers.get(channel, ()), channel, data)


class RedisPubSub:
    """
    Redis-backed broadcast.

    Messages are JSON encoded. The listener task must be started with
    start() and stopped with close().
    """

    def __init__(self, url: str, client: Optional[aioredis.Redis] = None) -> None:
        self._client = client or aioredis.from_url(url, decode_responses=True)
        self._handlers: DefaultDict[str, List[MessageHandler]] = defaultdict(list)
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None

    def subscribe(self, channel: str, handler: MessageHandler) -> None:
        self._handlers[channel].append(handler)

    async def publish(self, channel: str, data: Any) -> None:
        await self._client.publish(channel, json.dumps(data))

    async def start(self) -> None:
        if self._task is not None or not self._handlers:
            return
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(*self._handlers.keys())
        self._task = asyncio.create_task(self._listen())

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None

    async def _listen(self) -> None:
        logger.info("Listening on %s", ", ".join(self._handlers))
        while True:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue
                channel = message["channel"]
                data = json.loads(message["data"])
                await _dispatch(self._handlers.get(channel, ()), channel, data)
            except asyncio.CancelledError:
                logger.info("Pub/sub listener cancelled.")
                raise
            except Exception:
                logger.exception("Unexpected error in pub/sub listener")
                continue


async def _dispatch(handlers, channel: str, data: Any) -> None:
    for handler in list(handlers):
        try:
            await handler(data)
        except Exception:
            logger.exception("Handler for %s failed", channel)
