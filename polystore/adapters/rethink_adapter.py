"""
RethinkDB implementation of the storage adapter.

One table per section inside the configured database; rows are
``{"id": <entry id>, "data": <document>}``.
"""

import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from rethinkdb import RethinkDB
from rethinkdb.errors import ReqlDriverError, ReqlError, ReqlOpFailedError

from ..config import Settings, settings as default_settings
from ..credentials import Credentials
from ..domain.document import Document
from ..domain.entities import BackendKind
from ..domain.exceptions import ConnectionException, StorageErrorKind, StorageException
from ..logging_config import get_logger
from .base import StorageAdapter

logger = get_logger(__name__)

DEFAULT_PORT = 28015
DEFAULT_USER = "admin"
MISSING_ROW_ERROR = "record is missing from the table"


class RethinkAdapter(StorageAdapter):
    """
    Wide-table backend on a RethinkDB connection.

    A RethinkDB connection is not safe for concurrent queries, so every call
    is serialized through a lock.
    """

    kind = BackendKind.RETHINKDB

    def __init__(
        self,
        credentials: Credentials,
        settings: Optional[Settings] = None,
        connection: Any = None,
        r: Optional[RethinkDB] = None,
    ):
        """
        Connect and make sure the database exists.

        Args:
            credentials: Connection credentials; ``database`` names the RethinkDB database
            settings: Timeouts, defaults to the global settings
            connection: Pre-opened connection (tests)
            r: Query builder instance (tests)

        Raises:
            ConnectionException: If no database is named or the server is unreachable
        """
        self.settings = settings or default_settings
        self.r = r or RethinkDB()
        self._lock = threading.Lock()
        self._closed = False

        if not credentials.database:
            raise ConnectionException(self.kind.value, "a database name is required")
        self.db_name = credentials.database

        try:
            if connection is None:
                connection = self.r.connect(
                    host=credentials.address,
                    port=credentials.port_or(DEFAULT_PORT),
                    user=credentials.username or DEFAULT_USER,
                    password=credentials.password,
                    timeout=self.settings.RETHINK_TIMEOUT,
                )
            self.connection = connection
            if self.db_name not in self.r.db_list().run(self.connection):
                self.r.db_create(self.db_name).run(self.connection)
        except ReqlError as e:
            self._closed = True
            if connection is not None:
                connection.close(noreply_wait=False)
            raise ConnectionException(self.kind.value, str(e)) from e

        logger.info(
            "rethink_adapter_connected",
            host=credentials.address,
            port=credentials.port_or(DEFAULT_PORT),
            database=self.db_name,
        )

    @contextmanager
    def _storage_errors(
        self, operation: str, section: Optional[str] = None, entry_id: Optional[str] = None
    ):
        """Serialize access to the connection and translate driver errors."""
        with self._lock:
            try:
                yield
            except TypeError as e:
                raise StorageException(
                    StorageErrorKind.SERIALIZATION_FAILURE, operation, section, entry_id, str(e)
                ) from e
            except ReqlDriverError as e:
                raise StorageException(
                    StorageErrorKind.CONNECTION_LOST, operation, section, entry_id, str(e)
                ) from e
            except ReqlError as e:
                raise StorageException(
                    StorageErrorKind.BACKEND_FAILURE, operation, section, entry_id, str(e)
                ) from e

    def _table(self, name: str):
        return self.r.db(self.db_name).table(name)

    @staticmethod
    def _check_write(result: Dict[str, Any], operation: str, section: str, entry_id: str) -> None:
        if result.get("errors"):
            raise StorageException(
                StorageErrorKind.CONSTRAINT_VIOLATION,
                operation,
                section,
                entry_id,
                result.get("first_error", "write rejected"),
            )

    @staticmethod
    def _decode(section: str, row: Dict[str, Any]) -> Tuple[str, Document]:
        entry_id = str(row.get("id"))
        data = row.get("data")
        if not isinstance(data, dict):
            raise StorageException(
                StorageErrorKind.SERIALIZATION_FAILURE,
                "decode",
                section,
                entry_id,
                "row has no 'data' object",
            )
        return entry_id, Document(data)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._lock:
            self.connection.close(noreply_wait=False)
        logger.info("rethink_adapter_closed")

    def list_collections(self) -> List[str]:
        with self._storage_errors("list_collections"):
            return list(self.r.db(self.db_name).table_list().run(self.connection))

    def ensure_collection(self, name: str) -> None:
        with self._storage_errors("create_table", name):
            if name in self.r.db(self.db_name).table_list().run(self.connection):
                return
            try:
                self.r.db(self.db_name).table_create(name).run(self.connection)
            except ReqlOpFailedError:
                # created concurrently
                pass

    def scan(self, name: str) -> Iterator[Tuple[str, Document]]:
        with self._storage_errors("scan", name):
            rows = list(self._table(name).run(self.connection))
        for row in rows:
            yield self._decode(name, row)

    def get(self, name: str, entry_id: str) -> Optional[Document]:
        with self._storage_errors("get", name, entry_id):
            row = self._table(name).get(entry_id).run(self.connection)
        if row is None:
            return None
        return self._decode(name, row)[1]

    def insert(self, name: str, entry_id: str, document: Document) -> None:
        with self._storage_errors("insert", name, entry_id):
            result = (
                self._table(name)
                .insert({"id": entry_id, "data": document.to_dict()}, conflict="error")
                .run(self.connection)
            )
        self._check_write(result, "insert", name, entry_id)

    def replace(self, name: str, entry_id: str, document: Document) -> None:
        r = self.r
        record = {"id": entry_id, "data": document.to_dict()}
        with self._storage_errors("replace", name, entry_id):
            # A plain replace on a missing row would insert it.
            result = (
                self._table(name)
                .get(entry_id)
                .replace(
                    lambda row: r.branch(row.eq(None), r.error(MISSING_ROW_ERROR), record)
                )
                .run(self.connection)
            )
        self._check_write(result, "replace", name, entry_id)

    def delete(self, name: str, entry_id: str) -> None:
        with self._storage_errors("delete", name, entry_id):
            self._table(name).get(entry_id).delete().run(self.connection)

    def truncate(self, name: str) -> None:
        with self._storage_errors("truncate", name):
            self._table(name).delete().run(self.connection)

    def drop_collection(self, name: str) -> None:
        with self._storage_errors("drop_table", name):
            if name not in self.r.db(self.db_name).table_list().run(self.connection):
                return
            self.r.db(self.db_name).table_drop(name).run(self.connection)
