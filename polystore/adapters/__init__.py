"""
Adapter layer - one storage adapter per backend kind.

``open_adapter`` selects the implementation for a BackendKind from a factory
table. Callers can pass their own table to add a backend or to inject
pre-built clients without touching Section or Provider.
"""

from typing import Callable, Dict, Mapping, Optional

from ..config import Settings, settings as default_settings
from ..credentials import Credentials
from ..domain.entities import BackendKind
from .base import StorageAdapter
from .json_file_adapter import JsonFileAdapter
from .mongo_adapter import MongoAdapter
from .redis_adapter import RedisAdapter
from .rethink_adapter import RethinkAdapter
from .sql_adapter import SQLAdapter

AdapterFactory = Callable[[BackendKind, Credentials, Settings], StorageAdapter]


def _sql(kind: BackendKind, credentials: Credentials, settings: Settings) -> StorageAdapter:
    return SQLAdapter(kind, credentials, settings)


def _redis(kind: BackendKind, credentials: Credentials, settings: Settings) -> StorageAdapter:
    return RedisAdapter(credentials, settings)


def _mongo(kind: BackendKind, credentials: Credentials, settings: Settings) -> StorageAdapter:
    return MongoAdapter(credentials, settings)


def _rethink(kind: BackendKind, credentials: Credentials, settings: Settings) -> StorageAdapter:
    return RethinkAdapter(credentials, settings)


def _json(kind: BackendKind, credentials: Credentials, settings: Settings) -> StorageAdapter:
    return JsonFileAdapter(credentials, settings)


DEFAULT_FACTORIES: Dict[BackendKind, AdapterFactory] = {
    BackendKind.SQLITE: _sql,
    BackendKind.POSTGRESQL: _sql,
    BackendKind.MYSQL: _sql,
    BackendKind.MARIADB: _sql,
    BackendKind.REDIS: _redis,
    BackendKind.MONGODB: _mongo,
    BackendKind.RETHINKDB: _rethink,
    BackendKind.JSON: _json,
}


def open_adapter(
    kind: BackendKind,
    credentials: Credentials,
    settings: Optional[Settings] = None,
    factories: Optional[Mapping[BackendKind, AdapterFactory]] = None,
) -> StorageAdapter:
    """
    Open the storage adapter for a backend kind.

    Args:
        kind: Backend kind to open
        credentials: Connection credentials
        settings: Tuning settings, defaults to the global settings
        factories: Factory table, defaults to DEFAULT_FACTORIES

    Returns:
        Connected adapter

    Raises:
        ValueError: If no factory is registered for ``kind``
        ConnectionException: If the backend cannot be reached
    """
    table = factories if factories is not None else DEFAULT_FACTORIES
    factory = table.get(kind)
    if factory is None:
        raise ValueError(f"No storage adapter registered for backend kind '{kind.value}'")
    return factory(kind, credentials, settings or default_settings)


__all__ = [
    "AdapterFactory",
    "DEFAULT_FACTORIES",
    "JsonFileAdapter",
    "MongoAdapter",
    "RedisAdapter",
    "RethinkAdapter",
    "SQLAdapter",
    "StorageAdapter",
    "open_adapter",
]
