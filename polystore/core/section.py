"""
Section - one named collection of entries.

A Section owns an in-memory index of its entries and routes every mutation
through the storage adapter. The backend is the source of truth: a write
reaches the backend first and only then the index, so a failed write leaves
the index untouched. Reads are served from the index alone.

Concurrency: mutations on the same entry id are serialized through a
per-id reservation while backend I/O happens outside the index lock, so
readers never wait on the network. Whole-section operations (clear, drop,
reload) wait for in-flight mutations and block new ones.
"""

import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from ..adapters.base import StorageAdapter
from ..domain.entities import Entry
from ..domain.exceptions import (
    DuplicateKeyException,
    EntryNotFoundException,
    SectionNotFoundException,
    StorageException,
)
from ..logging_config import get_logger
from ..validators import validate_entry_id
from .offload import offload

if TYPE_CHECKING:
    from .provider import Provider

logger = get_logger(__name__)


class Section:
    """
    Named collection of entries backed by one table, collection, directory
    or key prefix.

    Attributes:
        name: Section name, unique within its provider
    """

    def __init__(self, provider: "Provider", name: str, adapter: StorageAdapter):
        """
        Create the section and load every existing entry from the backend.

        Args:
            provider: Owning provider
            name: Section name
            adapter: Storage adapter shared with the provider

        Raises:
            StorageException: If the backend enumeration fails
        """
        self.name = name
        self._provider = provider
        self._adapter = adapter
        self._cond = threading.Condition()
        self._index: Dict[str, Entry] = {}
        self._pending: Set[str] = set()
        self._exclusive = False
        self._detached = False

        with self._backend():
            self._index = self._load()
        logger.debug(
            "section_loaded",
            provider_id=provider.provider_id,
            section=name,
            entries=len(self._index),
        )

    # --- Internal -----------------------------------------------------------------

    def _load(self) -> Dict[str, Entry]:
        return {
            entry_id: Entry(id=entry_id, payload=document)
            for entry_id, document in self._adapter.scan(self.name)
        }

    def _ensure_usable(self) -> None:
        self._provider.ensure_active(section=self.name)
        if self._detached:
            raise SectionNotFoundException(self.name, self._provider.provider_id)

    @contextmanager
    def _backend(self):
        """Tag backend errors with the owning provider."""
        try:
            yield
        except StorageException as e:
            e.details["provider_id"] = self._provider.provider_id
            raise

    @contextmanager
    def _reserve(self, entry_id: str):
        """Claim ``entry_id`` for one mutation."""
        with self._cond:
            while self._exclusive or entry_id in self._pending:
                self._cond.wait()
            self._ensure_usable()
            self._pending.add(entry_id)
        try:
            yield
        finally:
            with self._cond:
                self._pending.discard(entry_id)
                self._cond.notify_all()

    @contextmanager
    def _exclusive_access(self):
        """Claim the whole section once no mutation is in flight."""
        with self._cond:
            while self._exclusive or self._pending:
                self._cond.wait()
            self._ensure_usable()
            self._exclusive = True
        try:
            yield
        finally:
            with self._cond:
                self._exclusive = False
                self._cond.notify_all()

    def _drop(self) -> None:
        """Delete the backing artifact and detach; called by the provider."""
        with self._exclusive_access():
            with self._backend():
                self._adapter.drop_collection(self.name)
            with self._cond:
                self._index = {}
                self._detached = True

    def _detach(self) -> None:
        with self._cond:
            self._detached = True

    # --- Mutations ----------------------------------------------------------------

    def insert(self, entry: Entry) -> None:
        """
        Insert a new entry.

        Raises:
            DuplicateKeyException: If an entry with the same id exists
            StorageException: If the backend write fails (index unchanged)
        """
        validate_entry_id(entry.id)
        stored = entry.copy()
        with self._reserve(entry.id):
            with self._cond:
                if entry.id in self._index:
                    raise DuplicateKeyException(self.name, entry.id, self._provider.provider_id)
            with self._backend():
                self._adapter.insert(self.name, stored.id, stored.payload)
            with self._cond:
                self._index[stored.id] = stored
        logger.debug(
            "entry_inserted",
            provider_id=self._provider.provider_id,
            section=self.name,
            entry_id=stored.id,
            size_bytes=stored.size_bytes,
        )

    def update(self, entry: Entry) -> None:
        """
        Replace an existing entry's payload entirely (no field merge).

        Raises:
            EntryNotFoundException: If no entry has that id
            StorageException: If the backend write fails (index unchanged)
        """
        validate_entry_id(entry.id)
        stored = entry.copy()
        with self._reserve(entry.id):
            with self._cond:
                if entry.id not in self._index:
                    raise EntryNotFoundException(self.name, entry.id, self._provider.provider_id)
            with self._backend():
                self._adapter.replace(self.name, stored.id, stored.payload)
            with self._cond:
                self._index[stored.id] = stored
        logger.debug(
            "entry_updated",
            provider_id=self._provider.provider_id,
            section=self.name,
            entry_id=stored.id,
            size_bytes=stored.size_bytes,
        )

    def delete(self, entry_id: str) -> None:
        """
        Delete an entry by id.

        Raises:
            EntryNotFoundException: If no entry has that id
            StorageException: If the backend delete fails (index unchanged)
        """
        with self._reserve(entry_id):
            with self._cond:
                if entry_id not in self._index:
                    raise EntryNotFoundException(self.name, entry_id, self._provider.provider_id)
            with self._backend():
                self._adapter.delete(self.name, entry_id)
            with self._cond:
                del self._index[entry_id]
        logger.debug(
            "entry_deleted",
            provider_id=self._provider.provider_id,
            section=self.name,
            entry_id=entry_id,
        )

    def clear(self) -> None:
        """
        Delete every entry from the backend and empty the index.

        If the backend fails part way, the index is rebuilt from whatever
        the backend still holds before the error is raised.
        """
        with self._exclusive_access():
            try:
                with self._backend():
                    self._adapter.truncate(self.name)
            except StorageException:
                self._resync_after_failure("clear")
                raise
            with self._cond:
                self._index = {}
        logger.info(
            "section_cleared", provider_id=self._provider.provider_id, section=self.name
        )

    def drop(self) -> None:
        """
        Delete the backing artifact and detach this section from its provider.

        Raises:
            SectionNotFoundException: If the section was already dropped or detached
        """
        with self._cond:
            self._ensure_usable()
        self._provider.delete_section(self.name)

    def reload(self) -> int:
        """
        Re-enumerate the backend and rebuild the index.

        Useful when another process writes to the same store.

        Returns:
            Number of entries after the reload
        """
        with self._exclusive_access(), self._backend():
            index = self._load()
            with self._cond:
                self._index = index
        logger.info(
            "section_reloaded",
            provider_id=self._provider.provider_id,
            section=self.name,
            entries=len(index),
        )
        return len(index)

    def _resync_after_failure(self, operation: str) -> None:
        try:
            index = self._load()
        except StorageException:
            logger.exception(
                "section_resync_failed",
                provider_id=self._provider.provider_id,
                section=self.name,
                operation=operation,
            )
            return
        with self._cond:
            self._index = index

    # --- Reads (index only) -------------------------------------------------------

    def exists(self, entry_id: str) -> bool:
        with self._cond:
            self._ensure_usable()
            return entry_id in self._index

    def find_by_id(self, entry_id: str) -> Optional[Entry]:
        """
        Look up an entry by id.

        Returns:
            A copy of the entry, or None if absent
        """
        with self._cond:
            self._ensure_usable()
            entry = self._index.get(entry_id)
        return entry.copy() if entry is not None else None

    def count(self) -> int:
        with self._cond:
            self._ensure_usable()
            return len(self._index)

    def list_entries(self) -> List[Entry]:
        """Point-in-time snapshot of all entries; safe to iterate while others write."""
        with self._cond:
            self._ensure_usable()
            snapshot = list(self._index.values())
        return [entry.copy() for entry in snapshot]

    # --- Async variants -----------------------------------------------------------

    insert_async = offload(insert)
    update_async = offload(update)
    delete_async = offload(delete)
    clear_async = offload(clear)
    drop_async = offload(drop)
    reload_async = offload(reload)
    exists_async = offload(exists)
    find_by_id_async = offload(find_by_id)
    count_async = offload(count)
    list_entries_async = offload(list_entries)

    def __repr__(self) -> str:
        return f"<Section name={self.name!r} entries={len(self._index)}>"
