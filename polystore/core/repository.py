"""
Repository - process-wide registry of providers keyed by integer id.

Besides registration it implements ``convert``: a best-effort copy of every
section and entry from one provider into another, whatever their backends.
"""

import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

from ..adapters import AdapterFactory
from ..config import Settings, settings as default_settings
from ..credentials import Credentials
from ..domain.entities import BackendKind
from ..domain.exceptions import (
    DuplicateIdException,
    PolystoreException,
    UnknownIdException,
)
from ..logging_config import get_logger
from .offload import offload
from .provider import Provider

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConversionFailure:
    """
    One failure reported during ``convert``.

    ``entry_id`` is None when a whole section could not be prepared on the target.
    """

    section: str
    entry_id: Optional[str]
    error: PolystoreException


class Repository:
    """
    Registry mapping provider ids to (backend kind, provider).

    Usable as a context manager; leaving the block shuts every provider down.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        factories: Optional[Mapping[BackendKind, AdapterFactory]] = None,
    ):
        """
        Args:
            settings: Tuning settings handed to every adapter
            factories: Adapter factory table, defaults to DEFAULT_FACTORIES
        """
        self.settings = settings or default_settings
        self.factories = factories
        self._lock = threading.Lock()
        self._providers: Dict[int, Tuple[BackendKind, Provider]] = {}
        self._reserved: Set[int] = set()

    def register(self, provider_id: int, kind: BackendKind, credentials: Credentials) -> Provider:
        """
        Open a provider and register it under ``provider_id``.

        The id is reserved while the connection is being opened, so two
        concurrent registrations of the same id cannot both succeed.

        Raises:
            DuplicateIdException: If the id is taken
            ConnectionException: If the backend cannot be reached
        """
        kind = BackendKind(kind)
        with self._lock:
            if provider_id in self._providers or provider_id in self._reserved:
                raise DuplicateIdException(provider_id)
            self._reserved.add(provider_id)

        try:
            provider = Provider.open(
                kind,
                credentials,
                provider_id=provider_id,
                settings=self.settings,
                factories=self.factories,
            )
            with self._lock:
                self._providers[provider_id] = (kind, provider)
        finally:
            with self._lock:
                self._reserved.discard(provider_id)

        logger.info("provider_registered", provider_id=provider_id, backend=kind.value)
        return provider

    def unregister(self, provider_id: int) -> Provider:
        """
        Remove a provider from the registry and shut it down.

        Returns:
            The provider, now CLOSED

        Raises:
            UnknownIdException: If no provider has that id
        """
        with self._lock:
            record = self._providers.pop(provider_id, None)
        if record is None:
            raise UnknownIdException(provider_id)

        kind, provider = record
        provider.shutdown()
        logger.info("provider_unregistered", provider_id=provider_id, backend=kind.value)
        return provider

    def find_by_id(self, provider_id: int) -> Optional[Provider]:
        with self._lock:
            record = self._providers.get(provider_id)
        return record[1] if record is not None else None

    def get_kind(self, provider_id: int) -> BackendKind:
        """
        Raises:
            UnknownIdException: If no provider has that id
        """
        with self._lock:
            record = self._providers.get(provider_id)
        if record is None:
            raise UnknownIdException(provider_id)
        return record[0]

    def exists(self, provider_id: int) -> bool:
        with self._lock:
            return provider_id in self._providers

    def list_providers(self, kind: Optional[BackendKind] = None) -> List[Provider]:
        """All registered providers ordered by id, optionally filtered by backend kind."""
        with self._lock:
            records = sorted(self._providers.items())
        return [
            provider for _, (provider_kind, provider) in records if kind is None or provider_kind == kind
        ]

    def list_ids(self) -> List[int]:
        with self._lock:
            return sorted(self._providers)

    def shutdown_all(self) -> None:
        """
        Unregister and shut down every provider.

        A provider that fails to close is logged and skipped; the rest are
        still closed.
        """
        with self._lock:
            records = sorted(self._providers.items())
            self._providers.clear()

        for provider_id, (kind, provider) in records:
            try:
                provider.shutdown()
            except Exception:
                logger.exception(
                    "provider_shutdown_failed", provider_id=provider_id, backend=kind.value
                )
                continue
            logger.info("provider_unregistered", provider_id=provider_id, backend=kind.value)

    def _require(self, provider_id: int) -> Provider:
        provider = self.find_by_id(provider_id)
        if provider is None:
            raise UnknownIdException(provider_id)
        return provider

    def convert(
        self,
        source_id: int,
        target_id: int,
        on_error: Optional[Callable[[ConversionFailure], None]] = None,
    ) -> Tuple[Provider, Provider]:
        """
        Copy every section and entry of one provider into another.

        For each source section the target section of the same name is
        dropped if present and recreated, then every entry is inserted.
        Failures are per item: they are logged, reported to ``on_error`` and
        skipped. Nothing is rolled back, so the target may end up partially
        populated.

        Args:
            source_id: Provider to read from
            target_id: Provider to write into
            on_error: Called once per failed section or entry

        Returns:
            (source, target)

        Raises:
            ValueError: If source and target are the same provider
            UnknownIdException: If either id is not registered
            ProviderClosedException: If the source is not active
        """
        if source_id == target_id:
            raise ValueError("Cannot convert a provider into itself")
        source = self._require(source_id)
        target = self._require(target_id)

        log = logger.bind(
            source_id=source_id,
            source_backend=source.kind.value,
            target_id=target_id,
            target_backend=target.kind.value,
        )
        log.info("conversion_started")

        failures = 0
        copied = 0

        def report(section: str, entry_id: Optional[str], error: PolystoreException) -> None:
            nonlocal failures
            failures += 1
            log.warning(
                "conversion_item_failed",
                section=section,
                entry_id=entry_id,
                error=error.message,
            )
            if on_error is not None:
                on_error(ConversionFailure(section=section, entry_id=entry_id, error=error))

        sections = source.list_sections()
        for section in sections:
            try:
                entries = section.list_entries()
                if target.exists_section(section.name):
                    target.delete_section(section.name)
                target_section = target.create_section(section.name)
            except PolystoreException as e:
                report(section.name, None, e)
                continue

            for entry in entries:
                try:
                    target_section.insert(entry)
                except PolystoreException as e:
                    report(section.name, entry.id, e)
                    continue
                copied += 1

        log.info(
            "conversion_finished",
            sections=len(sections),
            entries_copied=copied,
            failures=failures,
        )
        return source, target

    # --- Async variants -----------------------------------------------------------

    register_async = offload(register)
    unregister_async = offload(unregister)
    find_by_id_async = offload(find_by_id)
    get_kind_async = offload(get_kind)
    exists_async = offload(exists)
    list_providers_async = offload(list_providers)
    list_ids_async = offload(list_ids)
    shutdown_all_async = offload(shutdown_all)
    convert_async = offload(convert)

    def __enter__(self) -> "Repository":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown_all()

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)

    def __repr__(self) -> str:
        return f"<Repository providers={self.list_ids()}>"
