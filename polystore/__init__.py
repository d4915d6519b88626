"""
polystore - one section/entry storage model over many backends.

Register a provider per backend in a Repository, create sections on it and
store JSON documents keyed by id. The same code runs against SQL databases,
Redis, MongoDB, RethinkDB or plain JSON files, and ``Repository.convert``
copies everything from one backend to another.
"""

from .config import Settings, settings
from .core import ConversionFailure, Provider, ProviderState, Repository, Section
from .credentials import Credentials
from .domain.document import Document
from .domain.entities import BackendKind, Entry
from .domain.exceptions import (
    ConnectionException,
    DuplicateIdException,
    DuplicateKeyException,
    EntryNotFoundException,
    KeyNotFoundException,
    NotFoundException,
    PolystoreException,
    ProviderClosedException,
    SectionNotFoundException,
    StorageErrorKind,
    StorageException,
    UnknownIdException,
    ValidationException,
)
from .logging_config import get_logger, setup_logging

__version__ = "1.0.0"

__all__ = [
    "BackendKind",
    "ConnectionException",
    "ConversionFailure",
    "Credentials",
    "Document",
    "DuplicateIdException",
    "DuplicateKeyException",
    "Entry",
    "EntryNotFoundException",
    "KeyNotFoundException",
    "NotFoundException",
    "PolystoreException",
    "Provider",
    "ProviderClosedException",
    "ProviderState",
    "Repository",
    "Section",
    "SectionNotFoundException",
    "Settings",
    "StorageErrorKind",
    "StorageException",
    "UnknownIdException",
    "ValidationException",
    "get_logger",
    "setup_logging",
    "settings",
]
