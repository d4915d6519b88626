"""
Domain entities for polystore.

Backend kinds and the keyed record type shared by every adapter.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from .document import Document


class BackendKind(str, Enum):
    """Storage engines a provider can be registered for."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    MARIADB = "mariadb"
    MONGODB = "mongodb"
    REDIS = "redis"
    RETHINKDB = "rethinkdb"
    JSON = "json"

    @property
    def is_sql(self) -> bool:
        return self in SQL_KINDS


SQL_KINDS = frozenset(
    {BackendKind.SQLITE, BackendKind.POSTGRESQL, BackendKind.MYSQL, BackendKind.MARIADB}
)


@dataclass(frozen=True)
class Entry:
    """
    A single keyed record.

    ``id`` is unique within a section. Entries are never mutated in place;
    an update is expressed as a new Entry carrying the same id.
    """

    id: str
    payload: Document

    def __post_init__(self):
        """Accept plain dicts as payloads."""
        if not isinstance(self.id, str):
            raise TypeError(f"Entry id must be a string, got {type(self.id).__name__}")
        if isinstance(self.payload, dict):
            object.__setattr__(self, "payload", Document(self.payload))
        elif not isinstance(self.payload, Document):
            raise TypeError(
                f"Entry payload must be a Document, got {type(self.payload).__name__}"
            )

    @classmethod
    def of(cls, entry_id: str, payload: Optional[Union[Document, Dict[str, Any]]] = None) -> "Entry":
        return cls(id=entry_id, payload=payload if payload is not None else Document())

    def copy(self) -> "Entry":
        return Entry(id=self.id, payload=self.payload.copy())

    @property
    def size_bytes(self) -> int:
        """Encoded payload size; values JSON cannot represent count as their str()."""
        encoded = json.dumps(self.payload.data, default=str, ensure_ascii=False)
        return len(encoded.encode("utf-8"))
