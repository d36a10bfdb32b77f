"""
Search Backend Contract

Every storage engine implements the same four operations:

- create_indices(language)       provision tables / indexes
- index(kind, records, ids)      additive bulk upsert
- search(kind, query, limit)     translate a SearchQuery into engine syntax
- remove(kind, ids)              bulk delete, returns rows actually removed

Self-Healing
------------
A call that fails because the schema does not exist yet moves the backend
through UNPROVISIONED -> PROVISIONING -> READY and is retried exactly once.
If the retry still finds no schema, SchemaNotProvisioned is raised. Any
other error propagates unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Optional, Sequence, Tuple

from ..core.errors import SchemaNotProvisioned
from ..host import PubSub
from ..models import IndexRecord, SearchQuery
from ..pubsub import LANGUAGE_CHANNEL

logger = logging.getLogger("dbsearch.backends")


class ProvisioningState(str, Enum):
    UNPROVISIONED = "unprovisioned"
    PROVISIONING = "provisioning"
    READY = "ready"


# ---------------------------------------------------------------------
# Query helpers shared by adapters
# ---------------------------------------------------------------------

def is_fully_quoted(content: str) -> bool:
    return len(content) >= 2 and content.startswith('"') and content.endswith('"')


def quote_terms(content: str, match_words: str = "all") -> str:
    """
    Rewrite free text so that, in "all" mode, every word is a mandatory
    literal. Words the user already quoted, and fully quoted input, are
    left untouched.
    """
    words = content.split()
    if match_words == "all" and not is_fully_quoted(content.strip()):
        words = [
            word if word.startswith('"') or word.endswith('"') else f'"{word}"'
            for word in words
        ]
    return " ".join(words)


def normalize_ids(ids: Sequence[Any]) -> List[str]:
    """Stringify and de-duplicate ids, keeping first-seen order."""
    seen: Dict[str, None] = {}
    for doc_id in ids:
        if doc_id is None:
            continue
        seen.setdefault(str(doc_id), None)
    return list(seen)


def merge_batch(
    records: Sequence[IndexRecord],
    ids: Sequence[Any],
) -> Tuple[List[str], List[Dict[str, Any]]]:
    """
    Collapse repeated ids inside one batch into a single row.

    Later records win field by field; fields they omit keep earlier values.
    """
    merged: Dict[str, Dict[str, Any]] = {}
    for doc_id, record in zip(ids, records):
        merged.setdefault(str(doc_id), {}).update(record.fields())
    return list(merged), list(merged.values())


# ---------------------------------------------------------------------
# Backend base class
# ---------------------------------------------------------------------

class SearchBackend(ABC):
    """
    Engine-neutral search index.

    Subclasses implement the underscored primitives; the public methods add
    argument checks, id normalisation and the bounded self-heal.
    """

    name: ClassVar[str] = "base"

    def __init__(self, *, is_primary: bool = True, jobs_disabled: bool = False) -> None:
        self.is_primary = is_primary
        self.jobs_disabled = jobs_disabled
        self.language: str = self.language_name("en")
        self.state = ProvisioningState.UNPROVISIONED
        self._pubsub: Optional[PubSub] = None
        self._provision_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Any) -> "SearchBackend":
        raise NotImplementedError(f"{cls.__name__} cannot be built from settings")

    # ------------------------------------------------------------------
    # Language
    # ------------------------------------------------------------------

    def language_name(self, code: str) -> str:
        """Map an operator language code to the engine's own name for it."""
        return code

    def bind_pubsub(self, pubsub: PubSub) -> None:
        """Follow language changes made by sibling processes."""
        self._pubsub = pubsub
        pubsub.subscribe(LANGUAGE_CHANNEL, self._on_language_changed)

    async def _on_language_changed(self, language: Any) -> None:
        self.language = self.language_name(str(language))

    async def change_index_language(self, language: str) -> None:
        """
        Reconfigure language-dependent text analysis and tell sibling
        processes to switch their session language as well.
        """
        name = self.language_name(language)
        await self._apply_language(name)
        self.language = name
        if self._pubsub is not None:
            await self._pubsub.publish(LANGUAGE_CHANNEL, language)

    async def _apply_language(self, language: str) -> None:
        """Rebuild language-dependent indexes; engines without any skip this."""

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    async def create_indices(self, language: str) -> None:
        """
        Provision schema at startup.

        Only the primary process with jobs enabled touches the schema.
        Failures are logged so a broken search schema cannot stop the host.
        """
        self.language = self.language_name(language)
        if not self.is_primary or self.jobs_disabled:
            logger.info("Skipping %s search schema setup on non-primary node", self.name)
            return

        try:
            await self.provision()
        except Exception:
            logger.exception("Error initializing %s search schema", self.name)

    async def provision(self) -> None:
        async with self._provision_lock:
            self.state = ProvisioningState.PROVISIONING
            try:
                await self._create_schema()
            except Exception:
                self.state = ProvisioningState.UNPROVISIONED
                raise
            self.state = ProvisioningState.READY

    def is_missing_schema(self, exc: BaseException) -> bool:
        """Return True when ``exc`` means the search tables/indexes are absent."""
        return False

    async def _call_with_heal(self, operation: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        try:
            return await operation(*args)
        except Exception as exc:
            if not self.is_missing_schema(exc):
                raise
            logger.warning("%s search schema was not initialized: %s", self.name, exc)

        self.state = ProvisioningState.UNPROVISIONED
        await self.provision()

        try:
            return await operation(*args)
        except Exception as exc:
            if self.is_missing_schema(exc):
                self.state = ProvisioningState.UNPROVISIONED
                raise SchemaNotProvisioned(
                    f"{self.name} search schema still missing after provisioning"
                ) from exc
            raise

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def index(self, kind: str, records: Sequence[IndexRecord], ids: Sequence[Any]) -> int:
        """
        Upsert records; fields absent from a record keep their stored value.

        Returns the number of distinct ids written.
        """
        if len(records) != len(ids):
            raise ValueError(
                f"records/ids length mismatch: {len(records)} != {len(ids)}"
            )
        if not ids:
            return 0

        doc_ids, rows = merge_batch(records, ids)
        await self._call_with_heal(self._index, kind, doc_ids, rows)
        return len(doc_ids)

    async def search(self, kind: str, query: SearchQuery, limit: int) -> List[str]:
        if not query.has_filters or limit <= 0:
            return []
        ids = await self._call_with_heal(self._search, kind, query, int(limit))
        return [str(doc_id) for doc_id in ids]

    async def remove(self, kind: str, ids: Sequence[Any]) -> int:
        doc_ids = normalize_ids(ids)
        if not doc_ids:
            return 0
        return await self._call_with_heal(self._remove, kind, doc_ids)

    async def close(self) -> None:
        """Release engine connections."""

    # ------------------------------------------------------------------
    # Engine primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def _create_schema(self) -> None:
        ...

    @abstractmethod
    async def _index(self, kind: str, ids: List[str], rows: List[Dict[str, Any]]) -> None:
        ...

    @abstractmethod
    async def _search(self, kind: str, query: SearchQuery, limit: int) -> List[Any]:
        ...

    @abstractmethod
    async def _remove(self, kind: str, ids: List[str]) -> int:
        ...
