"""
Search Backend Registry

Maps the host's database engine name to the adapter class that implements
the search contract for it. The registry is protected by an RLock so
plugins can register extra engines while the application starts.
"""

from __future__ import annotations

from threading import RLock
from typing import Any, Dict, Type

from ..core.errors import ConfigurationError
from .base import ProvisioningState, SearchBackend, quote_terms
from .mongo import MongoBackend
from .mysql import MysqlBackend
from .postgres import PostgresBackend
from .redis import RedisBackend
from .sql import SqlBackend
from .sqlite import SqliteBackend


# ---------------------------------------------------------------------
# Global Backend Registry
# ---------------------------------------------------------------------

_backend_registry: Dict[str, Type[SearchBackend]] = {
    "postgres": PostgresBackend,
    "mysql": MysqlBackend,
    "mariadb": MysqlBackend,
    "sqlite": SqliteBackend,
    "sql": SqlBackend,
    "mongo": MongoBackend,
    "redis": RedisBackend,
}
_registry_lock = RLock()


def register_backend(name: str, backend_cls: Type[SearchBackend]) -> None:
    """Register (or replace) the adapter class for an engine name."""
    with _registry_lock:
        _backend_registry[name] = backend_cls


def get_backend_class(name: str) -> Type[SearchBackend]:
    """
    Return the adapter class for ``name``.

    Raises
    ------
    ConfigurationError
        If no adapter is registered for the engine.
    """
    with _registry_lock:
        try:
            return _backend_registry[name]
        except KeyError:
            raise ConfigurationError(
                f"No search backend for database {name!r}; "
                f"available: {', '.join(sorted(_backend_registry))}"
            ) from None


def get_backend(settings: Any) -> SearchBackend:
    """Build the adapter selected by ``settings.database``."""
    return get_backend_class(settings.database).from_settings(settings)


def get_registered_backends() -> list[str]:
    with _registry_lock:
        return sorted(_backend_registry)


__all__ = [
    "SearchBackend",
    "ProvisioningState",
    "quote_terms",
    "SqlBackend",
    "PostgresBackend",
    "MysqlBackend",
    "SqliteBackend",
    "MongoBackend",
    "RedisBackend",
    "register_backend",
    "get_backend_class",
    "get_backend",
    "get_registered_backends",
]
