"""
Content Kinds and Projection

Each indexable kind (topic, post, chat message) is described by a KindSpec
row: which host fields carry its id, text, owner and container, where its
ordered id space lives and which progress counter it feeds.

The projection rule below is the single filter used by both the incremental
handlers and the reindex pipeline, so the two paths always agree on whether
a document belongs in the index.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, NamedTuple, Optional, Tuple

from .models import IndexRecord, PluginConfig


@dataclass(frozen=True)
class KindSpec:
    name: str
    id_field: str
    content_field: str
    container_field: str
    key_prefix: str
    id_set: str
    counter_field: str
    count_field: str
    fields: Tuple[str, ...]
    # Exclusion lists hold category ids, so they only apply to kinds
    # whose container is a category.
    category_scoped: bool = True

    def object_key(self, doc_id: Any) -> str:
        return f"{self.key_prefix}:{doc_id}"

    def object_keys(self, ids: Iterable[Any]) -> list:
        return [self.object_key(i) for i in ids]


TOPIC = KindSpec(
    name="topic",
    id_field="tid",
    content_field="title",
    container_field="cid",
    key_prefix="topic",
    id_set="topics:tid",
    counter_field="topicsIndexed",
    count_field="topicCount",
    fields=("tid", "title", "uid", "cid", "deleted", "timestamp"),
)

POST = KindSpec(
    name="post",
    id_field="pid",
    content_field="content",
    container_field="cid",
    key_prefix="post",
    id_set="posts:pid",
    counter_field="postsIndexed",
    count_field="postCount",
    fields=("pid", "content", "uid", "tid", "deleted", "timestamp"),
)

CHAT = KindSpec(
    name="chat",
    id_field="mid",
    content_field="content",
    container_field="roomId",
    key_prefix="message",
    id_set="messages:mid",
    counter_field="messagesIndexed",
    count_field="messageCount",
    fields=("mid", "content", "uid", "roomId", "deleted", "timestamp"),
    category_scoped=False,
)

KINDS: Dict[str, KindSpec] = {spec.name: spec for spec in (TOPIC, POST, CHAT)}


def get_kind(name: str) -> KindSpec:
    try:
        return KINDS[name]
    except KeyError:
        raise ValueError(f"Unknown search kind: {name!r}") from None


# ---------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------

def parse_id(value: Any) -> Optional[str]:
    """
    Normalise a host identifier to its canonical string form.

    Returns None for missing, non-numeric or zero ids.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        return None
    return str(number) if number > 0 else None


def is_deleted(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    try:
        return int(value) == 1
    except (TypeError, ValueError):
        return False


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value if value.strip() else None


def _timestamp(value: Any) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


# ---------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------

class Projection(NamedTuple):
    """
    Outcome of projecting one document.

    ``doc_id`` is None when the document has no usable id; ``record`` is
    None when the document must not be present in the index.
    """
    doc_id: Optional[str]
    record: Optional[IndexRecord]


def project(spec: KindSpec, doc: Optional[Mapping[str, Any]], config: PluginConfig) -> Projection:
    """
    Turn a raw host document into an index record, or into nothing.

    A document is projected only if its id is a valid non-zero identifier,
    it is not deleted, its container is not excluded and it carries text.
    """
    if not doc:
        return Projection(None, None)

    doc_id = parse_id(doc.get(spec.id_field))
    if doc_id is None:
        return Projection(None, None)

    if is_deleted(doc.get("deleted")):
        return Projection(doc_id, None)

    container_id = parse_id(doc.get(spec.container_field))
    if spec.category_scoped and config.is_excluded(container_id):
        return Projection(doc_id, None)

    content = _text(doc.get(spec.content_field))
    if content is None:
        return Projection(doc_id, None)

    record = IndexRecord(
        content=content,
        owner_id=parse_id(doc.get("uid")),
        container_id=container_id,
        timestamp=_timestamp(doc.get("timestamp")),
    )
    return Projection(doc_id, record)
