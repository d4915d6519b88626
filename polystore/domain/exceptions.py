"""
Exceptions raised by polystore.

Every exception carries a human readable message and a ``details`` dict with
the context needed to diagnose the failure (provider id, section name,
entry id, backend kind) without inspecting a stack trace.
"""

from enum import Enum
from typing import Any, Optional


class PolystoreException(Exception):
    """Base exception for all polystore errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class StorageErrorKind(str, Enum):
    """Categories of backend I/O failure."""

    CONNECTION_LOST = "connection-lost"
    CONSTRAINT_VIOLATION = "constraint-violation"
    SERIALIZATION_FAILURE = "serialization-failure"
    BACKEND_FAILURE = "backend-failure"


class ConnectionException(PolystoreException):
    """Raised when a backend connection cannot be opened."""

    def __init__(self, backend: str, reason: Optional[str] = None):
        message = f"Cannot connect to backend '{backend}'"
        if reason:
            message += f": {reason}"
        super().__init__(message=message, details={"backend": backend, "reason": reason})


class StorageException(PolystoreException):
    """Raised when a backend read or write fails."""

    def __init__(
        self,
        kind: StorageErrorKind,
        operation: str,
        section: Optional[str] = None,
        entry_id: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        self.kind = kind
        message = f"Storage {operation} failed ({kind.value})"
        if section:
            message += f" in section '{section}'"
        if entry_id is not None:
            message += f" for entry '{entry_id}'"
        if reason:
            message += f": {reason}"
        super().__init__(
            message=message,
            details={
                "kind": kind.value,
                "operation": operation,
                "section": section,
                "entry_id": entry_id,
                "reason": reason,
            },
        )


class DuplicateKeyException(PolystoreException):
    """Raised when inserting an entry whose id is already present."""

    def __init__(self, section: str, entry_id: str, provider_id: Optional[int] = None):
        super().__init__(
            message=f"Entry '{entry_id}' already exists in section '{section}'",
            details={"section": section, "entry_id": entry_id, "provider_id": provider_id},
        )


class DuplicateIdException(DuplicateKeyException):
    """Raised when registering a provider under an id that is already in use."""

    def __init__(self, provider_id: int):
        PolystoreException.__init__(
            self,
            message=f"Provider with id #{provider_id} already exists",
            details={"provider_id": provider_id},
        )


class NotFoundException(PolystoreException):
    """Raised when an entry, section or provider does not exist."""


class EntryNotFoundException(NotFoundException):
    """Raised when operating on an entry id absent from a section."""

    def __init__(self, section: str, entry_id: str, provider_id: Optional[int] = None):
        super().__init__(
            message=f"Entry '{entry_id}' not found in section '{section}'",
            details={"section": section, "entry_id": entry_id, "provider_id": provider_id},
        )


class SectionNotFoundException(NotFoundException):
    """Raised when operating on a section that is not registered."""

    def __init__(self, section: str, provider_id: Optional[int] = None):
        message = f"Section '{section}' not found"
        if provider_id is not None:
            message += f" in provider #{provider_id}"
        super().__init__(
            message=message, details={"section": section, "provider_id": provider_id}
        )


class UnknownIdException(NotFoundException):
    """Raised when no provider is registered under the given id."""

    def __init__(self, provider_id: int):
        super().__init__(
            message=f"Provider with id #{provider_id} does not exist",
            details={"provider_id": provider_id},
        )


class ProviderClosedException(PolystoreException):
    """Raised when a provider or one of its sections is used outside the active state."""

    def __init__(
        self,
        provider_id: Optional[int] = None,
        state: Optional[str] = None,
        section: Optional[str] = None,
    ):
        label = f"#{provider_id}" if provider_id is not None else "(unregistered)"
        message = f"Provider {label} is not active"
        if state:
            message += f" (state: {state})"
        if section:
            message += f"; cannot use section '{section}'"
        super().__init__(
            message=message,
            details={"provider_id": provider_id, "state": state, "section": section},
        )


class KeyNotFoundException(PolystoreException):
    """Raised when a document does not contain the requested key."""

    def __init__(self, key: str):
        super().__init__(message=f"Document has no key '{key}'", details={"key": key})


class ValidationException(PolystoreException):
    """Raised when a section name or entry id is not acceptable."""

    def __init__(self, field: str, value: Any, reason: str):
        message = f"Validation failed for {field}: {reason}"
        super().__init__(
            message=message,
            details={"field": field, "value": str(value), "reason": reason},
        )
