"""
Content-lifecycle event wiring.

Maps host event names (``action:{kind}.{action}``) to the SearchIndexer
handler that keeps the index in sync for that event.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from .host import EventSource
from .indexer import SearchIndexer

logger = logging.getLogger("dbsearch.hooks")

HANDLERS: Dict[str, str] = {
    "action:topic.save": "on_topic_save",
    "action:topic.edit": "on_topic_edit",
    "action:topic.restore": "on_topic_restore",
    "action:topic.delete": "on_topic_delete",
    "action:topic.purge": "on_topic_purge",
    "action:topic.move": "on_topic_move",
    "action:topic.changeOwner": "on_topic_change_owner",
    "action:post.save": "on_post_save",
    "action:post.edit": "on_post_edit",
    "action:post.restore": "on_post_restore",
    "action:post.delete": "on_post_delete",
    "action:post.purge": "on_post_purge",
    "action:post.move": "on_post_move",
    "action:post.changeOwner": "on_post_change_owner",
    "action:message.save": "on_message_save",
    "action:message.edit": "on_message_edit",
    "action:message.restore": "on_message_restore",
    "action:message.delete": "on_message_delete",
    "action:message.purge": "on_message_purge",
    "action:message.changeOwner": "on_message_change_owner",
}


def register_hooks(events: EventSource, indexer: SearchIndexer) -> List[str]:
    """Subscribe ``indexer`` to every lifecycle event. Returns the event names."""
    for event, method in HANDLERS.items():
        events.on(event, getattr(indexer, method))
    logger.info("Registered %d search hooks", len(HANDLERS))
    return list(HANDLERS)
