"""
Plain-file JSON implementation of the storage adapter.

Layout under ``credentials.file_repository``::

    <root>/<section>/<entry id>.json   ->   {"id": "<entry id>", "data": {...}}

Files are written to a temporary sibling and renamed into place, so a crash
never leaves a half-written record behind.
"""

import json
import os
import shutil
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from ..config import Settings, settings as default_settings
from ..credentials import Credentials
from ..domain.document import Document
from ..domain.entities import BackendKind
from ..domain.exceptions import ConnectionException, StorageErrorKind, StorageException
from ..logging_config import get_logger
from .base import StorageAdapter

logger = get_logger(__name__)

FILE_SUFFIX = ".json"
TMP_SUFFIX = ".tmp"


class JsonFileAdapter(StorageAdapter):
    """File-system backend: one directory per section, one JSON file per entry."""

    kind = BackendKind.JSON

    def __init__(self, credentials: Credentials, settings: Optional[Settings] = None):
        """
        Create the repository directory if needed.

        Raises:
            ConnectionException: If the repository path cannot be created or
                is not a directory
        """
        self.settings = settings or default_settings
        self.root = Path(credentials.file_repository or self.settings.DEFAULT_FILE_REPOSITORY)
        self._lock = threading.RLock()
        self._closed = False

        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConnectionException(self.kind.value, f"{self.root}: {e}") from e
        if not self.root.is_dir():
            raise ConnectionException(self.kind.value, f"{self.root} is not a directory")

        logger.info("json_adapter_opened", root=str(self.root))

    @contextmanager
    def _storage_errors(
        self, operation: str, section: Optional[str] = None, entry_id: Optional[str] = None
    ):
        """Serialize file access and translate OS errors."""
        with self._lock:
            try:
                yield
            except OSError as e:
                raise StorageException(
                    StorageErrorKind.BACKEND_FAILURE, operation, section, entry_id, str(e)
                ) from e

    def _directory(self, name: str) -> Path:
        return self.root / name

    def _file(self, name: str, entry_id: str) -> Path:
        return self._directory(name) / f"{entry_id}{FILE_SUFFIX}"

    def _write(self, path: Path, entry_id: str, document: Document, operation: str) -> None:
        section = path.parent.name
        try:
            text = json.dumps(
                {"id": entry_id, "data": document.to_dict()}, indent=2, ensure_ascii=False
            )
        except (TypeError, ValueError) as e:
            raise StorageException(
                StorageErrorKind.SERIALIZATION_FAILURE, operation, section, entry_id, str(e)
            ) from e

        tmp = path.with_name(path.name + TMP_SUFFIX)
        try:
            tmp.write_text(text, encoding="utf-8")
            os.replace(tmp, path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    @staticmethod
    def _read(section: str, path: Path) -> Tuple[str, Document]:
        """Decode one record file; the file name is the authoritative id."""
        entry_id = path.name[: -len(FILE_SUFFIX)]
        try:
            with open(path, "r", encoding="utf-8") as f:
                record = json.load(f)
        except (ValueError, UnicodeDecodeError) as e:
            raise StorageException(
                StorageErrorKind.SERIALIZATION_FAILURE, "decode", section, entry_id, str(e)
            ) from e
        if not isinstance(record, dict) or not isinstance(record.get("data"), dict):
            raise StorageException(
                StorageErrorKind.SERIALIZATION_FAILURE,
                "decode",
                section,
                entry_id,
                "file has no 'data' object",
            )
        if record.get("id", entry_id) != entry_id:
            raise StorageException(
                StorageErrorKind.SERIALIZATION_FAILURE,
                "decode",
                section,
                entry_id,
                f"file names entry '{record.get('id')}'",
            )
        return entry_id, Document(record["data"])

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.info("json_adapter_closed", root=str(self.root))

    def list_collections(self) -> List[str]:
        with self._storage_errors("list_collections"):
            return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    def ensure_collection(self, name: str) -> None:
        with self._storage_errors("create_directory", name):
            self._directory(name).mkdir(parents=True, exist_ok=True)

    def scan(self, name: str) -> Iterator[Tuple[str, Document]]:
        directory = self._directory(name)
        with self._storage_errors("scan", name):
            if not directory.is_dir():
                return
            paths = sorted(directory.glob(f"*{FILE_SUFFIX}"))
            records = [self._read(name, path) for path in paths]
        yield from records

    def get(self, name: str, entry_id: str) -> Optional[Document]:
        path = self._file(name, entry_id)
        with self._storage_errors("get", name, entry_id):
            if not path.is_file():
                return None
            return self._read(name, path)[1]

    def insert(self, name: str, entry_id: str, document: Document) -> None:
        path = self._file(name, entry_id)
        with self._storage_errors("insert", name, entry_id):
            if path.exists():
                raise StorageException(
                    StorageErrorKind.CONSTRAINT_VIOLATION,
                    "insert",
                    name,
                    entry_id,
                    "file already exists",
                )
            path.parent.mkdir(parents=True, exist_ok=True)
            self._write(path, entry_id, document, "insert")

    def replace(self, name: str, entry_id: str, document: Document) -> None:
        path = self._file(name, entry_id)
        with self._storage_errors("replace", name, entry_id):
            if not path.exists():
                raise StorageException(
                    StorageErrorKind.CONSTRAINT_VIOLATION,
                    "replace",
                    name,
                    entry_id,
                    "file is missing",
                )
            self._write(path, entry_id, document, "replace")

    def delete(self, name: str, entry_id: str) -> None:
        with self._storage_errors("delete", name, entry_id):
            self._file(name, entry_id).unlink(missing_ok=True)

    def truncate(self, name: str) -> None:
        directory = self._directory(name)
        with self._storage_errors("truncate", name):
            if not directory.is_dir():
                return
            for path in directory.iterdir():
                if path.is_file():
                    path.unlink()

    def drop_collection(self, name: str) -> None:
        directory = self._directory(name)
        with self._storage_errors("drop_directory", name):
            if directory.exists():
                shutil.rmtree(directory)
