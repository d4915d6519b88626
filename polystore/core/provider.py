"""
Provider - one live connection to one backend.

A provider owns a storage adapter and the sections discovered on, or created
in, that backend. It moves through a fixed lifecycle::

    CONSTRUCTING -> ACTIVE -> SHUTTING_DOWN -> CLOSED

Discovery happens while CONSTRUCTING. Section and provider operations are
only accepted while ACTIVE; afterwards they raise ProviderClosedException.
"""

import threading
from enum import Enum
from typing import Dict, List, Mapping, Optional

from ..adapters import AdapterFactory, open_adapter
from ..adapters.base import StorageAdapter
from ..config import Settings
from ..credentials import Credentials
from ..domain.entities import BackendKind
from ..domain.exceptions import ProviderClosedException, SectionNotFoundException
from ..logging_config import get_logger
from ..validators import validate_section_name
from .offload import offload
from .section import Section

logger = get_logger(__name__)


class ProviderState(str, Enum):
    CONSTRUCTING = "constructing"
    ACTIVE = "active"
    SHUTTING_DOWN = "shutting-down"
    CLOSED = "closed"


class Provider:
    """
    Registry of sections over a single backend connection.

    Attributes:
        adapter: Storage adapter for the backend
        kind: Backend kind of the adapter
        provider_id: Id assigned by the repository, None when used standalone
    """

    def __init__(self, adapter: StorageAdapter, provider_id: Optional[int] = None):
        """
        Wrap a connected adapter and load every existing section.

        If discovery fails the adapter is closed and the error propagates.
        """
        self.adapter = adapter
        self.kind: BackendKind = adapter.kind
        self.provider_id = provider_id
        self._lock = threading.RLock()
        self._sections: Dict[str, Section] = {}
        self._state = ProviderState.CONSTRUCTING

        try:
            for name in adapter.list_collections():
                self._sections[name] = Section(self, name, adapter)
        except Exception:
            self._state = ProviderState.CLOSED
            adapter.close()
            raise

        self._state = ProviderState.ACTIVE
        logger.info(
            "provider_opened",
            provider_id=provider_id,
            backend=self.kind.value,
            sections=len(self._sections),
        )

    @classmethod
    def open(
        cls,
        kind: BackendKind,
        credentials: Credentials,
        provider_id: Optional[int] = None,
        settings: Optional[Settings] = None,
        factories: Optional[Mapping[BackendKind, AdapterFactory]] = None,
    ) -> "Provider":
        """
        Connect to a backend and build a provider over it.

        Raises:
            ConnectionException: If the backend cannot be reached
            StorageException: If section discovery fails
        """
        adapter = open_adapter(kind, credentials, settings, factories)
        return cls(adapter, provider_id=provider_id)

    @property
    def state(self) -> ProviderState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == ProviderState.ACTIVE

    def ensure_active(self, section: Optional[str] = None) -> None:
        """
        Raises:
            ProviderClosedException: If the provider is not ACTIVE
        """
        state = self._state
        if state != ProviderState.ACTIVE:
            raise ProviderClosedException(self.provider_id, state.value, section)

    # --- Section registry ---------------------------------------------------------

    def create_section(self, name: str) -> Section:
        """
        Return the section named ``name``, creating its backing artifact if needed.

        Idempotent: an existing section is returned unchanged.

        Raises:
            ValidationException: If the name is not acceptable
            StorageException: If the backend cannot create the artifact
        """
        validate_section_name(name)
        with self._lock:
            self.ensure_active(section=name)
            section = self._sections.get(name)
            if section is not None:
                return section
            self.adapter.ensure_collection(name)
            section = Section(self, name, self.adapter)
            self._sections[name] = section
        logger.info(
            "section_created",
            provider_id=self.provider_id,
            backend=self.kind.value,
            section=name,
        )
        return section

    def delete_section(self, name: str) -> None:
        """
        Drop a section's backing artifact and remove it from the registry.

        Raises:
            SectionNotFoundException: If no section has that name
            StorageException: If the backend drop fails (section stays registered)
        """
        with self._lock:
            self.ensure_active(section=name)
            section = self._sections.get(name)
            if section is None:
                raise SectionNotFoundException(name, self.provider_id)
            section._drop()
            del self._sections[name]
        logger.info(
            "section_dropped",
            provider_id=self.provider_id,
            backend=self.kind.value,
            section=name,
        )

    def exists_section(self, name: str) -> bool:
        self.ensure_active(section=name)
        with self._lock:
            return name in self._sections

    def get_section(self, name: str) -> Optional[Section]:
        self.ensure_active(section=name)
        with self._lock:
            return self._sections.get(name)

    def list_sections(self) -> List[Section]:
        self.ensure_active()
        with self._lock:
            return list(self._sections.values())

    def clear(self) -> None:
        """
        Delete every entry of every section, then empty the registry.

        Backing artifacts are kept: a later ``create_section`` with the same
        name returns a fresh, empty section. Section objects obtained before
        the call are detached and raise SectionNotFoundException.
        """
        with self._lock:
            self.ensure_active()
            sections = list(self._sections.values())
            for section in sections:
                section.clear()
            for section in sections:
                section._detach()
            self._sections.clear()
        logger.info(
            "provider_cleared",
            provider_id=self.provider_id,
            backend=self.kind.value,
            sections=len(sections),
        )

    # --- Lifecycle ----------------------------------------------------------------

    def shutdown(self) -> None:
        """
        Close the backend connection. Idempotent.

        Sections stay registered but every operation on them raises
        ProviderClosedException from now on.
        """
        with self._lock:
            if self._state in (ProviderState.SHUTTING_DOWN, ProviderState.CLOSED):
                return
            self._state = ProviderState.SHUTTING_DOWN
        try:
            self.adapter.close()
        finally:
            self._state = ProviderState.CLOSED
        logger.info("provider_closed", provider_id=self.provider_id, backend=self.kind.value)

    # --- Async variants -----------------------------------------------------------

    create_section_async = offload(create_section)
    delete_section_async = offload(delete_section)
    exists_section_async = offload(exists_section)
    get_section_async = offload(get_section)
    list_sections_async = offload(list_sections)
    clear_async = offload(clear)
    shutdown_async = offload(shutdown)

    def __repr__(self) -> str:
        return (
            f"<Provider id={self.provider_id} kind={self.kind.value} "
            f"state={self._state.value} sections={len(self._sections)}>"
        )
