"""
MongoDB implementation of the storage adapter.

One collection per section; each record is stored as
``{"_id": <entry id>, "data": <document>}`` so the primary key is enforced by
MongoDB itself.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bson.errors import InvalidDocument
from pymongo import MongoClient
from pymongo.errors import (
    CollectionInvalid,
    ConnectionFailure,
    DuplicateKeyError,
    PyMongoError,
)

from ..config import Settings, settings as default_settings
from ..credentials import Credentials
from ..domain.document import Document
from ..domain.entities import BackendKind
from ..domain.exceptions import ConnectionException, StorageErrorKind, StorageException
from ..logging_config import get_logger
from .base import StorageAdapter

logger = get_logger(__name__)

DEFAULT_PORT = 27017


class MongoAdapter(StorageAdapter):
    """Document backend on a pooled pymongo client."""

    kind = BackendKind.MONGODB

    def __init__(
        self,
        credentials: Credentials,
        settings: Optional[Settings] = None,
        client: Optional[MongoClient] = None,
    ):
        """
        Create the client and ping the server.

        Args:
            credentials: Connection credentials; ``database`` names the Mongo database
            settings: Client tuning, defaults to the global settings
            client: Pre-built client (tests, replica-set URIs)

        Raises:
            ConnectionException: If no database is named, the server is
                unreachable or authentication fails
        """
        self.settings = settings or default_settings
        self._closed = False

        if not credentials.database:
            raise ConnectionException(self.kind.value, "a database name is required")

        if client is None:
            try:
                client = MongoClient(
                    host=credentials.address,
                    port=credentials.port_or(DEFAULT_PORT),
                    username=credentials.username or None,
                    password=credentials.password or None,
                    serverSelectionTimeoutMS=self.settings.MONGO_SERVER_SELECTION_TIMEOUT_MS,
                    maxPoolSize=self.settings.MONGO_MAX_POOL_SIZE,
                )
            except PyMongoError as e:
                raise ConnectionException(self.kind.value, str(e)) from e
        self.client = client
        self.database = self.client[credentials.database]

        try:
            self.client.admin.command("ping")
        except PyMongoError as e:
            self._closed = True
            self.client.close()
            raise ConnectionException(self.kind.value, str(e)) from e

        logger.info(
            "mongo_adapter_connected",
            host=credentials.address,
            port=credentials.port_or(DEFAULT_PORT),
            database=credentials.database,
        )

    @contextmanager
    def _storage_errors(
        self, operation: str, section: Optional[str] = None, entry_id: Optional[str] = None
    ):
        """Translate pymongo errors into StorageException."""
        try:
            yield
        except DuplicateKeyError as e:
            raise StorageException(
                StorageErrorKind.CONSTRAINT_VIOLATION, operation, section, entry_id, str(e)
            ) from e
        except InvalidDocument as e:
            raise StorageException(
                StorageErrorKind.SERIALIZATION_FAILURE, operation, section, entry_id, str(e)
            ) from e
        except ConnectionFailure as e:
            raise StorageException(
                StorageErrorKind.CONNECTION_LOST, operation, section, entry_id, str(e)
            ) from e
        except PyMongoError as e:
            raise StorageException(
                StorageErrorKind.BACKEND_FAILURE, operation, section, entry_id, str(e)
            ) from e

    @staticmethod
    def _record(entry_id: str, document: Document) -> Dict[str, Any]:
        return {"_id": entry_id, "data": document.to_dict()}

    @staticmethod
    def _decode(section: str, record: Dict[str, Any]) -> Tuple[str, Document]:
        entry_id = str(record.get("_id"))
        data = record.get("data")
        if not isinstance(data, dict):
            raise StorageException(
                StorageErrorKind.SERIALIZATION_FAILURE,
                "decode",
                section,
                entry_id,
                "record has no 'data' object",
            )
        return entry_id, Document(data)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.client.close()
        logger.info("mongo_adapter_closed")

    def list_collections(self) -> List[str]:
        with self._storage_errors("list_collections"):
            return list(self.database.list_collection_names())

    def ensure_collection(self, name: str) -> None:
        with self._storage_errors("create_collection", name):
            if name in self.database.list_collection_names():
                return
            try:
                self.database.create_collection(name)
            except CollectionInvalid:
                # created concurrently
                pass

    def scan(self, name: str) -> Iterator[Tuple[str, Document]]:
        with self._storage_errors("scan", name):
            records = list(self.database[name].find({}))
        for record in records:
            yield self._decode(name, record)

    def get(self, name: str, entry_id: str) -> Optional[Document]:
        with self._storage_errors("get", name, entry_id):
            record = self.database[name].find_one({"_id": entry_id})
        if record is None:
            return None
        return self._decode(name, record)[1]

    def insert(self, name: str, entry_id: str, document: Document) -> None:
        with self._storage_errors("insert", name, entry_id):
            self.database[name].insert_one(self._record(entry_id, document))

    def replace(self, name: str, entry_id: str, document: Document) -> None:
        with self._storage_errors("replace", name, entry_id):
            result = self.database[name].replace_one(
                {"_id": entry_id}, {"data": document.to_dict()}
            )
        if result.matched_count == 0:
            raise StorageException(
                StorageErrorKind.CONSTRAINT_VIOLATION,
                "replace",
                name,
                entry_id,
                "document is missing from the collection",
            )

    def delete(self, name: str, entry_id: str) -> None:
        with self._storage_errors("delete", name, entry_id):
            self.database[name].delete_one({"_id": entry_id})

    def truncate(self, name: str) -> None:
        with self._storage_errors("truncate", name):
            self.database[name].delete_many({})

    def drop_collection(self, name: str) -> None:
        with self._storage_errors("drop_collection", name):
            self.database.drop_collection(name)
