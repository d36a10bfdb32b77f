"""
Search Data Models

This module defines the pydantic models shared by the orchestrator, the
reindex pipeline and every backend adapter.

Models
------
- IndexRecord   : the stored, queryable projection of a document
- SearchQuery   : a generic query translated by each adapter
- PluginConfig  : runtime settings persisted in the plugin record
- ProgressData  : progress report returned to the admin surface
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .core.errors import ConfigurationError

logger = logging.getLogger("dbsearch.models")


Kind = Literal["topic", "post", "chat"]
MatchWords = Literal["all", "any"]

DEFAULT_POST_LIMIT = 500
DEFAULT_TOPIC_LIMIT = 500

# Language codes offered to operators, with the dictionary names used by
# engines that want full names (postgres regconfig).
LANGUAGE_LOOKUP: Dict[str, str] = {
    "da": "danish",
    "nl": "dutch",
    "en": "english",
    "fi": "finnish",
    "fr": "french",
    "de": "german",
    "hu": "hungarian",
    "it": "italian",
    "nb": "norwegian",
    "pt": "portuguese",
    "ro": "romanian",
    "ru": "russian",
    "es": "spanish",
    "sv": "swedish",
    "tr": "turkish",
}


# ---------------------------------------------------------------------
# Index Record
# ---------------------------------------------------------------------

class IndexRecord(BaseModel):
    """
    Projection of a document as stored by a search backend.

    Every field is optional: a missing field means "leave the stored value
    alone" when the record is upserted.
    """

    content: Optional[str] = None
    owner_id: Optional[str] = None
    container_id: Optional[str] = None
    timestamp: Optional[int] = Field(
        default=None,
        description="Creation time in epoch milliseconds.",
    )

    model_config = ConfigDict(extra="forbid", frozen=True)

    def fields(self) -> Dict[str, Any]:
        """Return only the fields carried by this record."""
        return self.model_dump(exclude_none=True)

    def is_empty(self) -> bool:
        return not self.fields()


# ---------------------------------------------------------------------
# Search Query
# ---------------------------------------------------------------------

class SearchQuery(BaseModel):
    """
    Engine-neutral search request.

    Only content, owner_ids and container_ids count as filter dimensions;
    a query with none of them never reaches a backend.
    """

    kind: Kind
    content: Optional[str] = None
    owner_ids: Optional[List[str]] = None
    container_ids: Optional[List[str]] = None
    match_words: MatchWords = "all"
    timestamp_from: Optional[int] = None
    timestamp_to: Optional[int] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("owner_ids", "container_ids", mode="before")
    @classmethod
    def _drop_empty_ids(cls, value: Any) -> Optional[List[str]]:
        if value is None:
            return None
        if not isinstance(value, (list, tuple, set)):
            value = [value]
        ids = [str(v) for v in value if v not in (None, "", 0, "0")]
        return ids or None

    @field_validator("content", mode="before")
    @classmethod
    def _blank_content(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @property
    def has_filters(self) -> bool:
        return bool(self.content or self.owner_ids or self.container_ids)


# ---------------------------------------------------------------------
# Plugin Configuration
# ---------------------------------------------------------------------

class PluginConfig(BaseModel):
    """
    Process-wide runtime settings.

    Persisted in the plugin record with camelCase keys and broadcast to
    sibling processes whenever an operator saves them.
    """

    post_limit: int = Field(default=DEFAULT_POST_LIMIT, ge=1)
    topic_limit: int = Field(default=DEFAULT_TOPIC_LIMIT, ge=1)
    index_language: str = "en"
    exclude_container_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("exclude_container_ids", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> List[str]:
        if value is None:
            return []
        return [str(v) for v in value]

    @classmethod
    def from_record(cls, data: Optional[Dict[str, Any]]) -> "PluginConfig":
        """
        Build a config from the raw persisted record.

        The exclusion list is stored as a JSON string; a corrupt value falls
        back to an empty list instead of failing startup.
        """
        data = dict(data or {})
        raw = data.get("excludeContainerIds") or "[]"
        try:
            excluded = _parse_id_list(raw)
        except ConfigurationError:
            logger.exception("Ignoring malformed excludeContainerIds: %r", raw)
            excluded = []

        return cls(
            post_limit=_positive_int(data.get("postLimit"), DEFAULT_POST_LIMIT),
            topic_limit=_positive_int(data.get("topicLimit"), DEFAULT_TOPIC_LIMIT),
            index_language=data.get("indexLanguage") or "en",
            exclude_container_ids=excluded,
        )

    def to_record(self) -> Dict[str, Any]:
        """Serialise to the persisted record layout."""
        return {
            "postLimit": self.post_limit,
            "topicLimit": self.topic_limit,
            "indexLanguage": self.index_language,
            "excludeContainerIds": json.dumps(self.exclude_container_ids),
        }

    def limit_for(self, kind: str) -> int:
        return self.topic_limit if kind == "topic" else self.post_limit

    def is_excluded(self, container_id: Any) -> bool:
        return container_id is not None and str(container_id) in self.exclude_container_ids


def _parse_id_list(raw: Any) -> List[str]:
    if isinstance(raw, (list, tuple)):
        return [str(v) for v in raw]
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid id list: {raw!r}") from exc
    if not isinstance(parsed, list):
        raise ConfigurationError(f"expected a list, got {type(parsed).__name__}")
    return [str(v) for v in parsed]


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


# ---------------------------------------------------------------------
# Progress Report
# ---------------------------------------------------------------------

class ProgressData(BaseModel):
    """
    Progress of the bulk pipelines as shown to operators.
    """

    topics_percent: float = Field(..., ge=0.0, le=100.0)
    posts_percent: float = Field(..., ge=0.0, le=100.0)
    messages_percent: float = Field(..., ge=0.0, le=100.0)
    topics_indexed: int = Field(..., ge=0)
    posts_indexed: int = Field(..., ge=0)
    messages_indexed: int = Field(..., ge=0)
    working: bool = False

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
