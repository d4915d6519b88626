"""
Redis implementation of the storage adapter.

Each record lives under the key ``{section}:{id}`` with the serialized
document as its value. Section names are additionally kept in a set so that
sections without records survive a restart.
"""

import re
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

from redis import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..config import Settings, settings as default_settings
from ..credentials import Credentials
from ..domain.document import Document
from ..domain.entities import BackendKind
from ..domain.exceptions import ConnectionException, StorageErrorKind, StorageException
from ..logging_config import get_logger
from .base import StorageAdapter, encode_document

logger = get_logger(__name__)

DEFAULT_PORT = 6379
KEY_SEPARATOR = ":"
DELETE_BATCH_SIZE = 500

_GLOB_SPECIALS = re.compile(r"([*?\[\]\\^])")


def escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so ``value`` matches literally."""
    return _GLOB_SPECIALS.sub(r"\\\1", value)


class RedisAdapter(StorageAdapter):
    """
    Key-value backend on a pooled redis-py client.

    The client's connection pool is thread-safe and shared by all sections.
    """

    kind = BackendKind.REDIS

    def __init__(
        self,
        credentials: Credentials,
        settings: Optional[Settings] = None,
        client: Optional[Redis] = None,
    ):
        """
        Build the connection pool and ping the server.

        Args:
            credentials: Connection credentials; ``database`` is the numeric db index
            settings: Pool tuning, defaults to the global settings
            client: Pre-built client (tests, sentinel/cluster setups)

        Raises:
            ConnectionException: If the server cannot be reached or rejects the login
        """
        self.settings = settings or default_settings
        self.registry_key = self.settings.REDIS_SECTION_REGISTRY_KEY
        self._closed = False

        if client is None:
            client = self._create_client(credentials)
        self.client = client

        try:
            self.client.ping()
        except RedisError as e:
            self._closed = True
            self.client.close()
            raise ConnectionException(self.kind.value, str(e)) from e

        logger.info(
            "redis_adapter_connected",
            host=credentials.address,
            port=credentials.port_or(DEFAULT_PORT),
            db=credentials.database or "0",
        )

    def _create_client(self, credentials: Credentials) -> Redis:
        try:
            db = int(credentials.database or 0)
        except ValueError as e:
            raise ConnectionException(
                self.kind.value,
                f"database must be a numeric index, got {credentials.database!r}",
            ) from e

        pool = ConnectionPool(
            host=credentials.address,
            port=credentials.port_or(DEFAULT_PORT),
            db=db,
            username=credentials.username or None,
            password=credentials.password or None,
            max_connections=self.settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=self.settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=self.settings.REDIS_CONNECT_TIMEOUT,
        )
        return Redis(connection_pool=pool)

    # --- Helpers ------------------------------------------------------------------

    @contextmanager
    def _storage_errors(
        self, operation: str, section: Optional[str] = None, entry_id: Optional[str] = None
    ):
        """Translate redis-py errors into StorageException."""
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StorageException(
                StorageErrorKind.CONNECTION_LOST, operation, section, entry_id, str(e)
            ) from e
        except RedisError as e:
            raise StorageException(
                StorageErrorKind.BACKEND_FAILURE, operation, section, entry_id, str(e)
            ) from e

    @staticmethod
    def _key(name: str, entry_id: str) -> str:
        return f"{name}{KEY_SEPARATOR}{entry_id}"

    @staticmethod
    def _text(value) -> str:
        return value.decode("utf-8") if isinstance(value, bytes) else value

    def _section_keys(self, name: str) -> Iterator[str]:
        pattern = f"{escape_glob(name)}{KEY_SEPARATOR}*"
        for key in self.client.scan_iter(match=pattern, count=self.settings.REDIS_SCAN_COUNT):
            yield self._text(key)

    @staticmethod
    def _decode(section: str, entry_id: str, raw) -> Document:
        try:
            return Document.from_bytes(raw if isinstance(raw, bytes) else raw.encode("utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
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
        self.client.close()
        self.client.connection_pool.disconnect()
        logger.info("redis_adapter_closed")

    def list_collections(self) -> List[str]:
        with self._storage_errors("list_collections"):
            names = {self._text(member) for member in self.client.smembers(self.registry_key)}
            for key in self.client.scan_iter(match="*", count=self.settings.REDIS_SCAN_COUNT):
                key = self._text(key)
                if KEY_SEPARATOR in key and key != self.registry_key:
                    names.add(key.split(KEY_SEPARATOR, 1)[0])
        return sorted(names)

    def ensure_collection(self, name: str) -> None:
        with self._storage_errors("create_section", name):
            self.client.sadd(self.registry_key, name)

    def scan(self, name: str) -> Iterator[Tuple[str, Document]]:
        prefix_length = len(name) + len(KEY_SEPARATOR)
        with self._storage_errors("scan", name):
            keys = list(self._section_keys(name))
        for key in keys:
            entry_id = key[prefix_length:]
            with self._storage_errors("scan", name, entry_id):
                raw = self.client.get(key)
            # deleted between SCAN and GET
            if raw is None:
                continue
            yield entry_id, self._decode(name, entry_id, raw)

    def get(self, name: str, entry_id: str) -> Optional[Document]:
        with self._storage_errors("get", name, entry_id):
            raw = self.client.get(self._key(name, entry_id))
        if raw is None:
            return None
        return self._decode(name, entry_id, raw)

    def insert(self, name: str, entry_id: str, document: Document) -> None:
        data = encode_document(document, "insert", name, entry_id)
        with self._storage_errors("insert", name, entry_id):
            written = self.client.set(self._key(name, entry_id), data, nx=True)
        if not written:
            raise StorageException(
                StorageErrorKind.CONSTRAINT_VIOLATION,
                "insert",
                name,
                entry_id,
                "key already exists",
            )

    def replace(self, name: str, entry_id: str, document: Document) -> None:
        data = encode_document(document, "replace", name, entry_id)
        with self._storage_errors("replace", name, entry_id):
            written = self.client.set(self._key(name, entry_id), data, xx=True)
        if not written:
            raise StorageException(
                StorageErrorKind.CONSTRAINT_VIOLATION,
                "replace",
                name,
                entry_id,
                "key is missing",
            )

    def delete(self, name: str, entry_id: str) -> None:
        with self._storage_errors("delete", name, entry_id):
            self.client.delete(self._key(name, entry_id))

    def truncate(self, name: str) -> None:
        with self._storage_errors("truncate", name):
            batch: List[str] = []
            for key in self._section_keys(name):
                batch.append(key)
                if len(batch) >= DELETE_BATCH_SIZE:
                    self.client.delete(*batch)
                    batch = []
            if batch:
                self.client.delete(*batch)

    def drop_collection(self, name: str) -> None:
        self.truncate(name)
        with self._storage_errors("drop_section", name):
            self.client.srem(self.registry_key, name)
