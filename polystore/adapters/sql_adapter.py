"""
SQL implementation of the storage adapter.

One table per section with an ``id`` primary key and a binary ``data`` column
holding the serialized document. Works for SQLite, PostgreSQL, MySQL and
MariaDB through SQLAlchemy Core and a pooled engine.
"""

import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy import (
    Column,
    LargeBinary,
    MetaData,
    String,
    Table,
    create_engine,
    delete,
    event,
    inspect,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.dialects.mysql import LONGBLOB
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.pool import QueuePool, StaticPool

from ..config import Settings, settings as default_settings
from ..credentials import Credentials
from ..domain.document import Document
from ..domain.entities import SQL_KINDS, BackendKind
from ..domain.exceptions import ConnectionException, StorageErrorKind, StorageException
from ..logging_config import get_logger
from .base import StorageAdapter, encode_document

logger = get_logger(__name__)

DRIVER_NAMES = {
    BackendKind.SQLITE: "sqlite",
    BackendKind.POSTGRESQL: "postgresql+psycopg2",
    BackendKind.MYSQL: "mysql+pymysql",
    BackendKind.MARIADB: "mariadb+pymysql",
}

MEMORY_DATABASE = ":memory:"
ID_LENGTH = 255

# BYTEA on PostgreSQL, BLOB on SQLite, LONGBLOB on MySQL/MariaDB
DATA_TYPE = LargeBinary().with_variant(LONGBLOB(), "mysql", "mariadb")


def build_url(kind: BackendKind, credentials: Credentials) -> URL:
    """
    Build the SQLAlchemy URL for a SQL backend.

    Args:
        kind: One of the SQL backend kinds
        credentials: Connection credentials

    Returns:
        SQLAlchemy URL (password included, never log it unmasked)
    """
    if kind not in SQL_KINDS:
        raise ValueError(f"{kind.value} is not a SQL backend")

    if kind is BackendKind.SQLITE:
        return URL.create(DRIVER_NAMES[kind], database=credentials.file_repository)

    return URL.create(
        DRIVER_NAMES[kind],
        username=credentials.username or None,
        password=credentials.password or None,
        host=credentials.address,
        port=credentials.port if credentials.port > 0 else None,
        database=credentials.database or None,
    )


class SQLAdapter(StorageAdapter):
    """
    Relational backend on a SQLAlchemy engine.

    The engine's connection pool is shared by all sections of the provider.
    """

    def __init__(
        self,
        kind: BackendKind,
        credentials: Credentials,
        settings: Optional[Settings] = None,
        engine: Optional[Engine] = None,
    ):
        """
        Open the engine and verify the database is reachable.

        Args:
            kind: SQL backend kind
            credentials: Connection credentials
            settings: Pool tuning, defaults to the global settings
            engine: Pre-built engine (tests, custom drivers)

        Raises:
            ConnectionException: If the database cannot be reached
        """
        self.kind = kind
        self.settings = settings or default_settings
        self._metadata = MetaData()
        self._tables: Dict[str, Table] = {}
        self._tables_lock = threading.Lock()
        self._closed = False

        if engine is None:
            try:
                engine = self._create_engine(kind, credentials)
            except (SQLAlchemyError, ValueError, ImportError) as e:
                raise ConnectionException(kind.value, str(e)) from e
        self.engine = engine

        event.listen(self.engine, "before_cursor_execute", self._before_cursor_execute)
        event.listen(self.engine, "after_cursor_execute", self._after_cursor_execute)

        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            self.engine.dispose()
            self._closed = True
            raise ConnectionException(kind.value, str(e)) from e

        logger.info(
            "sql_adapter_connected",
            backend=kind.value,
            url=self.engine.url.render_as_string(hide_password=True),
        )

    def _create_engine(self, kind: BackendKind, credentials: Credentials) -> Engine:
        url = build_url(kind, credentials)

        if kind is BackendKind.SQLITE:
            connect_args = {"check_same_thread": False}
            if credentials.file_repository == MEMORY_DATABASE:
                return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
            Path(credentials.file_repository).parent.mkdir(parents=True, exist_ok=True)
            return create_engine(
                url,
                connect_args=connect_args,
                poolclass=QueuePool,
                pool_size=self.settings.SQL_POOL_SIZE,
                max_overflow=self.settings.SQL_MAX_OVERFLOW,
                pool_timeout=self.settings.SQL_POOL_TIMEOUT,
            )

        return create_engine(
            url,
            poolclass=QueuePool,
            pool_size=self.settings.SQL_POOL_SIZE,
            max_overflow=self.settings.SQL_MAX_OVERFLOW,
            pool_timeout=self.settings.SQL_POOL_TIMEOUT,
            pool_recycle=self.settings.SQL_POOL_RECYCLE,
            pool_pre_ping=self.settings.SQL_POOL_PRE_PING,
        )

    # --- Slow query tracking ------------------------------------------------------

    def _before_cursor_execute(self, conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    def _after_cursor_execute(self, conn, cursor, statement, parameters, context, executemany):
        elapsed_ms = (time.perf_counter() - conn.info["query_start_time"].pop()) * 1000
        if elapsed_ms > self.settings.SQL_SLOW_QUERY_MS:
            logger.warning(
                "slow_query",
                backend=self.kind.value,
                query_time_ms=round(elapsed_ms, 2),
                statement=statement[:200],
            )

    # --- Helpers ------------------------------------------------------------------

    @contextmanager
    def _storage_errors(
        self, operation: str, section: Optional[str] = None, entry_id: Optional[str] = None
    ):
        """Translate SQLAlchemy errors into StorageException."""
        try:
            yield
        except IntegrityError as e:
            raise StorageException(
                StorageErrorKind.CONSTRAINT_VIOLATION, operation, section, entry_id, str(e.orig)
            ) from e
        except (OperationalError, InterfaceError, DisconnectionError) as e:
            raise StorageException(
                StorageErrorKind.CONNECTION_LOST, operation, section, entry_id, str(e)
            ) from e
        except SQLAlchemyError as e:
            raise StorageException(
                StorageErrorKind.BACKEND_FAILURE, operation, section, entry_id, str(e)
            ) from e

    def _table(self, name: str) -> Table:
        with self._tables_lock:
            table = self._tables.get(name)
            if table is None:
                table = Table(
                    name,
                    self._metadata,
                    Column("id", String(ID_LENGTH), primary_key=True),
                    Column("data", DATA_TYPE, nullable=False),
                )
                self._tables[name] = table
            return table

    def _forget_table(self, name: str) -> None:
        with self._tables_lock:
            table = self._tables.pop(name, None)
            if table is not None:
                self._metadata.remove(table)

    @staticmethod
    def _decode(section: str, entry_id: str, data) -> Document:
        try:
            return Document.from_bytes(bytes(data))
        except (ValueError, TypeError) as e:
            raise StorageException(
                StorageErrorKind.SERIALIZATION_FAILURE, "decode", section, entry_id, str(e)
            ) from e

    # --- StorageAdapter -----------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.engine.dispose()
        logger.info("sql_adapter_closed", backend=self.kind.value)

    def list_collections(self) -> List[str]:
        with self._storage_errors("list_collections"):
            return inspect(self.engine).get_table_names()

    def ensure_collection(self, name: str) -> None:
        with self._storage_errors("create_table", name):
            self._table(name).create(self.engine, checkfirst=True)

    def scan(self, name: str) -> Iterator[Tuple[str, Document]]:
        table = self._table(name)
        with self._storage_errors("scan", name):
            with self.engine.connect() as conn:
                rows = conn.execute(select(table.c.id, table.c.data)).all()
        for entry_id, data in rows:
            yield entry_id, self._decode(name, entry_id, data)

    def get(self, name: str, entry_id: str) -> Optional[Document]:
        table = self._table(name)
        with self._storage_errors("get", name, entry_id):
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(table.c.data).where(table.c.id == entry_id)
                ).first()
        if row is None:
            return None
        return self._decode(name, entry_id, row[0])

    def insert(self, name: str, entry_id: str, document: Document) -> None:
        data = encode_document(document, "insert", name, entry_id)
        table = self._table(name)
        with self._storage_errors("insert", name, entry_id):
            with self.engine.begin() as conn:
                conn.execute(insert(table).values(id=entry_id, data=data))

    def replace(self, name: str, entry_id: str, document: Document) -> None:
        data = encode_document(document, "replace", name, entry_id)
        table = self._table(name)
        with self._storage_errors("replace", name, entry_id):
            with self.engine.begin() as conn:
                updated = conn.execute(
                    update(table)
                    .where(table.c.id == entry_id)
                    .values(data=data)
                ).rowcount
        if updated == 0:
            raise StorageException(
                StorageErrorKind.CONSTRAINT_VIOLATION,
                "replace",
                name,
                entry_id,
                "record is missing from the table",
            )

    def delete(self, name: str, entry_id: str) -> None:
        table = self._table(name)
        with self._storage_errors("delete", name, entry_id):
            with self.engine.begin() as conn:
                deleted = conn.execute(delete(table).where(table.c.id == entry_id)).rowcount
        if deleted == 0:
            logger.warning(
                "sql_delete_missing_row", backend=self.kind.value, section=name, entry_id=entry_id
            )

    def truncate(self, name: str) -> None:
        table = self._table(name)
        with self._storage_errors("truncate", name):
            with self.engine.begin() as conn:
                conn.execute(delete(table))

    def drop_collection(self, name: str) -> None:
        table = self._table(name)
        with self._storage_errors("drop_table", name):
            table.drop(self.engine, checkfirst=True)
        self._forget_table(name)
