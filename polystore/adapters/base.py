"""
Storage adapter interface (Abstract Base Class).

Defines the capability set every backend must provide so that Section and
Provider can run unchanged on top of any of them. Implementations translate
their client library's errors into ConnectionException / StorageException.
"""

from abc import ABC, abstractmethod
from typing import Iterator, List, Optional, Tuple

from ..domain.document import Document
from ..domain.entities import BackendKind
from ..domain.exceptions import StorageErrorKind, StorageException


def encode_document(
    document: Document, operation: str, section: str, entry_id: str
) -> bytes:
    """
    Serialize a payload for a byte-oriented backend.

    Raises:
        StorageException: SERIALIZATION_FAILURE if the payload holds values
            JSON cannot represent
    """
    try:
        return document.to_bytes()
    except (TypeError, ValueError) as e:
        raise StorageException(
            StorageErrorKind.SERIALIZATION_FAILURE, operation, section, entry_id, str(e)
        ) from e


class StorageAdapter(ABC):
    """
    Backend capability set: open/close, collection management and
    primary-key record access.

    Instances are shared by every section of one provider and must be safe
    for concurrent use.
    """

    kind: BackendKind

    @property
    @abstractmethod
    def closed(self) -> bool:
        """True once close() has been called."""
        pass

    @abstractmethod
    def close(self) -> None:
        """
        Release all backend resources.

        Idempotent: closing an already closed adapter does nothing.
        """
        pass

    @abstractmethod
    def list_collections(self) -> List[str]:
        """
        List the names of existing collections (tables, directories, prefixes).

        Returns:
            Collection names known to the backend
        """
        pass

    @abstractmethod
    def ensure_collection(self, name: str) -> None:
        """
        Create the backing artifact for ``name`` if it does not exist.

        Args:
            name: Section name
        """
        pass

    @abstractmethod
    def scan(self, name: str) -> Iterator[Tuple[str, Document]]:
        """
        Enumerate every record of a collection.

        Args:
            name: Section name

        Yields:
            (entry id, payload) pairs
        """
        pass

    @abstractmethod
    def get(self, name: str, entry_id: str) -> Optional[Document]:
        """
        Read one record straight from the backend.

        Returns:
            The payload, or None if no record has that id
        """
        pass

    @abstractmethod
    def insert(self, name: str, entry_id: str, document: Document) -> None:
        """Write a new record."""
        pass

    @abstractmethod
    def replace(self, name: str, entry_id: str, document: Document) -> None:
        """Overwrite an existing record's payload entirely."""
        pass

    @abstractmethod
    def delete(self, name: str, entry_id: str) -> None:
        """Remove one record."""
        pass

    @abstractmethod
    def truncate(self, name: str) -> None:
        """Remove every record of a collection but keep the collection."""
        pass

    @abstractmethod
    def drop_collection(self, name: str) -> None:
        """Remove the collection and all of its records."""
        pass

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<{type(self).__name__} kind={self.kind.value} {state}>"
