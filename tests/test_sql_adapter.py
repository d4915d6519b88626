"""
Tests for the SQL storage adapter, run against SQLite
"""

from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from sqlalchemy import insert, inspect

from polystore.adapters import sql_adapter
from polystore.adapters.sql_adapter import SQLAdapter, build_url
from polystore.config import Settings
from polystore.credentials import Credentials
from polystore.domain.document import Document
from polystore.domain.entities import BackendKind
from polystore.domain.exceptions import ConnectionException, StorageErrorKind, StorageException


@pytest.fixture
def adapter(sqlite_credentials, test_settings):
    """SQLite adapter on a temp database file"""
    adapter = SQLAdapter(BackendKind.SQLITE, sqlite_credentials, test_settings)
    yield adapter
    adapter.close()


class TestBuildUrl:
    """Test SQLAlchemy URL construction"""

    def test_sqlite_uses_file_repository(self):
        """Test SQLite points at the database file"""
        url = build_url(BackendKind.SQLITE, Credentials(file_repository="data/app.db"))
        assert url.drivername == "sqlite"
        assert url.database == "data/app.db"

    def test_postgresql(self):
        """Test network URL fields"""
        url = build_url(
            BackendKind.POSTGRESQL,
            Credentials(
                address="db.local", port=5433, username="app", password="pw", database="store"
            ),
        )
        assert url.drivername == "postgresql+psycopg2"
        assert url.host == "db.local"
        assert url.port == 5433
        assert url.username == "app"
        assert url.database == "store"

    def test_default_port_is_omitted(self):
        """Test an unset port lets the driver pick its default"""
        url = build_url(BackendKind.MARIADB, Credentials(database="store"))
        assert url.drivername == "mariadb+pymysql"
        assert url.port is None

    def test_non_sql_kind(self):
        """Test non-SQL kinds are rejected"""
        with pytest.raises(ValueError):
            build_url(BackendKind.REDIS, Credentials())


class TestSQLAdapterConnection:
    """Test opening and closing"""

    def test_creates_database_file(self, sqlite_credentials, test_settings):
        """Test the database file and its directory are created"""
        adapter = SQLAdapter(BackendKind.SQLITE, sqlite_credentials, test_settings)
        adapter.ensure_collection("users")
        adapter.close()
        assert Path(sqlite_credentials.file_repository).exists()

    def test_unreachable_database(self, tmp_path, test_settings):
        """Test a path that cannot be opened raises ConnectionException"""
        credentials = Credentials(file_repository=str(tmp_path))
        with pytest.raises(ConnectionException) as exc_info:
            SQLAdapter(BackendKind.SQLITE, credentials, test_settings)
        assert exc_info.value.details["backend"] == "sqlite"

    def test_memory_database_is_shared(self, test_settings):
        """Test an in-memory database keeps data across connections"""
        adapter = SQLAdapter(
            BackendKind.SQLITE, Credentials(file_repository=":memory:"), test_settings
        )
        adapter.ensure_collection("users")
        adapter.insert("users", "1", Document(a=1))
        assert adapter.get("users", "1") == {"a": 1}
        adapter.close()

    def test_close_is_idempotent(self, adapter):
        """Test closing twice is harmless"""
        adapter.close()
        adapter.close()
        assert adapter.closed


class TestSQLAdapterCollections:
    """Test table management"""

    def test_list_collections_empty(self, adapter):
        """Test a fresh database has no sections"""
        assert adapter.list_collections() == []

    def test_ensure_collection(self, adapter):
        """Test ensure_collection creates the table once"""
        adapter.ensure_collection("users")
        adapter.ensure_collection("users")
        assert adapter.list_collections() == ["users"]

        columns = {c["name"] for c in inspect(adapter.engine).get_columns("users")}
        assert columns == {"id", "data"}

    def test_drop_collection(self, adapter):
        """Test dropping removes the table, twice is harmless"""
        adapter.ensure_collection("users")
        adapter.drop_collection("users")
        adapter.drop_collection("users")
        assert adapter.list_collections() == []

    def test_truncate_keeps_table(self, adapter):
        """Test truncate removes rows only"""
        adapter.ensure_collection("users")
        adapter.insert("users", "1", Document(a=1))
        adapter.truncate("users")
        assert list(adapter.scan("users")) == []
        assert adapter.list_collections() == ["users"]


class TestSQLAdapterRecords:
    """Test record access"""

    def test_insert_and_get(self, adapter, sample_payload):
        """Test a stored document comes back intact"""
        adapter.ensure_collection("users")
        adapter.insert("users", "ada", Document(sample_payload))
        assert adapter.get("users", "ada") == sample_payload

    def test_get_missing(self, adapter):
        """Test a missing id returns None"""
        adapter.ensure_collection("users")
        assert adapter.get("users", "nobody") is None

    def test_insert_duplicate(self, adapter):
        """Test the primary key rejects duplicates"""
        adapter.ensure_collection("users")
        adapter.insert("users", "1", Document(a=1))
        with pytest.raises(StorageException) as exc_info:
            adapter.insert("users", "1", Document(a=2))
        assert exc_info.value.kind is StorageErrorKind.CONSTRAINT_VIOLATION

    def test_replace(self, adapter):
        """Test replace overwrites the whole document"""
        adapter.ensure_collection("users")
        adapter.insert("users", "1", Document(a=1, b=2))
        adapter.replace("users", "1", Document(a=3))
        assert adapter.get("users", "1") == {"a": 3}

    def test_replace_missing(self, adapter):
        """Test replacing a missing row is a constraint violation"""
        adapter.ensure_collection("users")
        with pytest.raises(StorageException) as exc_info:
            adapter.replace("users", "1", Document(a=1))
        assert exc_info.value.kind is StorageErrorKind.CONSTRAINT_VIOLATION

    def test_delete(self, adapter):
        """Test delete removes the row and ignores missing ids"""
        adapter.ensure_collection("users")
        adapter.insert("users", "1", Document(a=1))
        adapter.delete("users", "1")
        adapter.delete("users", "1")
        assert adapter.get("users", "1") is None

    def test_scan(self, adapter):
        """Test scan yields every record"""
        adapter.ensure_collection("users")
        adapter.insert("users", "1", Document(a=1))
        adapter.insert("users", "2", Document(a=2))
        assert dict(adapter.scan("users")) == {"1": {"a": 1}, "2": {"a": 2}}

    def test_corrupt_row(self, adapter):
        """Test undecodable data raises a serialization failure"""
        adapter.ensure_collection("users")
        table = adapter._table("users")
        with adapter.engine.begin() as conn:
            conn.execute(insert(table).values(id="bad", data=b"not json"))

        with pytest.raises(StorageException) as exc_info:
            list(adapter.scan("users"))
        assert exc_info.value.kind is StorageErrorKind.SERIALIZATION_FAILURE
        assert exc_info.value.details["entry_id"] == "bad"

    def test_missing_table(self, adapter):
        """Test reading a table that does not exist raises StorageException"""
        with pytest.raises(StorageException) as exc_info:
            list(adapter.scan("ghost"))
        assert exc_info.value.details["section"] == "ghost"

    def test_unencodable_payload(self, adapter):
        """Test values JSON cannot represent raise a serialization failure"""
        adapter.ensure_collection("users")
        with pytest.raises(StorageException) as exc_info:
            adapter.insert("users", "1", Document(when=datetime(2024, 1, 1)))
        assert exc_info.value.kind is StorageErrorKind.SERIALIZATION_FAILURE
        assert adapter.get("users", "1") is None

        adapter.insert("users", "1", Document(a=1))
        with pytest.raises(StorageException) as exc_info:
            adapter.replace("users", "1", Document(tags={"a"}))
        assert exc_info.value.kind is StorageErrorKind.SERIALIZATION_FAILURE
        assert adapter.get("users", "1") == {"a": 1}


class TestSlowQueryLogging:
    """Test slow statement logging"""

    def test_slow_query_is_logged(self, sqlite_credentials, monkeypatch):
        """Test statements above the threshold are logged"""
        mock_logger = MagicMock()
        monkeypatch.setattr(sql_adapter, "logger", mock_logger)

        adapter = SQLAdapter(
            BackendKind.SQLITE, sqlite_credentials, Settings(SQL_SLOW_QUERY_MS=0)
        )
        adapter.ensure_collection("users")
        adapter.close()

        events = [c.args[0] for c in mock_logger.warning.call_args_list]
        assert "slow_query" in events

    def test_fast_query_is_not_logged(self, sqlite_credentials, monkeypatch, test_settings):
        """Test statements under the threshold are not logged"""
        mock_logger = MagicMock()
        monkeypatch.setattr(sql_adapter, "logger", mock_logger)

        adapter = SQLAdapter(BackendKind.SQLITE, sqlite_credentials, test_settings)
        adapter.ensure_collection("users")
        adapter.close()

        mock_logger.warning.assert_not_called()
