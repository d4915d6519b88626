"""
Tests for the provider Repository and cross-backend conversion
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

from polystore.adapters.json_file_adapter import JsonFileAdapter
from polystore.core.provider import ProviderState
from polystore.core.repository import ConversionFailure, Repository
from polystore.credentials import Credentials
from polystore.domain.entities import BackendKind, Entry
from polystore.domain.exceptions import (
    ConnectionException,
    DuplicateIdException,
    ProviderClosedException,
    StorageErrorKind,
    StorageException,
    UnknownIdException,
)


class TestRepositoryRegistration:
    """Test registering and looking up providers"""

    def test_register(self, repository, sqlite_credentials):
        """Test a registered provider is active and findable"""
        provider = repository.register(1, BackendKind.SQLITE, sqlite_credentials)

        assert provider.state is ProviderState.ACTIVE
        assert provider.provider_id == 1
        assert repository.find_by_id(1) is provider
        assert repository.get_kind(1) is BackendKind.SQLITE
        assert repository.exists(1)
        assert len(repository) == 1

    def test_register_accepts_kind_value(self, repository, json_credentials):
        """Test the backend kind may be given by its string value"""
        repository.register(1, "json", json_credentials)
        assert repository.get_kind(1) is BackendKind.JSON

    def test_duplicate_id(self, repository, sqlite_credentials, json_credentials):
        """Test a taken id is rejected and the existing provider untouched"""
        original = repository.register(1, BackendKind.SQLITE, sqlite_credentials)
        original.create_section("users")

        with pytest.raises(DuplicateIdException):
            repository.register(1, BackendKind.JSON, json_credentials)

        assert repository.find_by_id(1) is original
        assert original.is_active
        assert original.exists_section("users")

    def test_failed_register_frees_id(self, test_settings, json_credentials):
        """Test an id is usable again after its registration failed"""

        def broken(kind, credentials, settings):
            raise ConnectionException(kind.value, "refused")

        repository = Repository(
            settings=test_settings,
            factories={
                BackendKind.REDIS: broken,
                BackendKind.JSON: lambda k, c, s: JsonFileAdapter(c, s),
            },
        )
        with pytest.raises(ConnectionException):
            repository.register(1, BackendKind.REDIS, Credentials())

        assert not repository.exists(1)
        repository.register(1, BackendKind.JSON, json_credentials)
        assert repository.exists(1)
        repository.shutdown_all()

    def test_concurrent_register_same_id(self, test_settings, json_credentials):
        """Test only one of two racing registrations of an id wins"""
        started = threading.Event()

        def slow(kind, credentials, settings):
            started.set()
            time.sleep(0.2)
            return JsonFileAdapter(credentials, settings)

        repository = Repository(settings=test_settings, factories={BackendKind.JSON: slow})

        def attempt(_):
            try:
                repository.register(1, BackendKind.JSON, json_credentials)
                return True
            except DuplicateIdException:
                return False

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(attempt, range(2)))

        assert started.is_set()
        assert sorted(results) == [False, True]
        assert len(repository) == 1
        repository.shutdown_all()

    def test_find_unknown(self, repository):
        """Test lookups of unknown ids"""
        assert repository.find_by_id(42) is None
        assert not repository.exists(42)
        with pytest.raises(UnknownIdException):
            repository.get_kind(42)

    def test_list_providers(self, repository, sqlite_credentials, json_credentials, tmp_path):
        """Test listing providers, optionally by kind"""
        sql = repository.register(3, BackendKind.SQLITE, sqlite_credentials)
        json_a = repository.register(1, BackendKind.JSON, json_credentials)
        json_b = repository.register(
            2, BackendKind.JSON, Credentials(file_repository=str(tmp_path / "other"))
        )

        assert repository.list_providers() == [json_a, json_b, sql]
        assert repository.list_providers(BackendKind.JSON) == [json_a, json_b]
        assert repository.list_providers(BackendKind.REDIS) == []
        assert repository.list_ids() == [1, 2, 3]


class TestRepositoryUnregister:
    """Test removing providers"""

    def test_unregister(self, repository, json_credentials):
        """Test unregister closes the provider and frees the id"""
        provider = repository.register(1, BackendKind.JSON, json_credentials)
        section = provider.create_section("users")

        returned = repository.unregister(1)

        assert returned is provider
        assert provider.state is ProviderState.CLOSED
        assert repository.find_by_id(1) is None
        with pytest.raises(ProviderClosedException):
            section.insert(Entry("1", {}))

    def test_unregister_unknown(self, repository):
        """Test unregistering an unknown id raises"""
        with pytest.raises(UnknownIdException):
            repository.unregister(7)

    def test_shutdown_all(self, repository, sqlite_credentials, json_credentials):
        """Test every provider is closed and the registry emptied"""
        first = repository.register(1, BackendKind.SQLITE, sqlite_credentials)
        second = repository.register(2, BackendKind.JSON, json_credentials)

        repository.shutdown_all()

        assert len(repository) == 0
        assert first.state is ProviderState.CLOSED
        assert second.state is ProviderState.CLOSED

    def test_shutdown_all_continues_after_failure(
        self, repository, sqlite_credentials, json_credentials, monkeypatch
    ):
        """Test one failing provider does not stop the others from closing"""
        failing = repository.register(1, BackendKind.SQLITE, sqlite_credentials)
        healthy = repository.register(2, BackendKind.JSON, json_credentials)

        def broken_close():
            raise RuntimeError("close failed")

        monkeypatch.setattr(failing.adapter, "close", broken_close)
        repository.shutdown_all()

        assert len(repository) == 0
        assert healthy.state is ProviderState.CLOSED
        assert failing.state is ProviderState.CLOSED

    def test_context_manager(self, test_settings, json_credentials):
        """Test leaving the block shuts everything down"""
        with Repository(settings=test_settings) as repository:
            provider = repository.register(1, BackendKind.JSON, json_credentials)
        assert provider.state is ProviderState.CLOSED
        assert len(repository) == 0


class TestRepositoryConvert:
    """Test copying one provider into another"""

    @pytest.fixture
    def source(self, repository, sqlite_credentials):
        """SQLite provider with two populated sections"""
        provider = repository.register(1, BackendKind.SQLITE, sqlite_credentials)
        users = provider.create_section("users")
        users.insert(Entry("ada", {"name": "Ada", "langs": ["analytical engine"]}))
        users.insert(Entry("alan", {"name": "Alan"}))
        provider.create_section("orders").insert(Entry("o-1", {"total": 12.5}))
        provider.create_section("empty")
        return provider

    @pytest.fixture
    def target(self, repository, json_credentials):
        """JSON provider holding a stale 'users' section"""
        provider = repository.register(2, BackendKind.JSON, json_credentials)
        provider.create_section("users").insert(Entry("stale", {"old": True}))
        return provider

    def test_convert(self, repository, source, target):
        """Test target sections mirror the source afterwards"""
        result = repository.convert(1, 2)

        assert result == (source, target)
        assert sorted(s.name for s in target.list_sections()) == ["empty", "orders", "users"]

        users = target.get_section("users")
        assert sorted(e.id for e in users.list_entries()) == ["ada", "alan"]
        assert users.find_by_id("ada").payload == {
            "name": "Ada",
            "langs": ["analytical engine"],
        }
        assert target.get_section("orders").find_by_id("o-1").payload == {"total": 12.5}
        assert target.get_section("empty").count() == 0

        assert sorted(e.id for e in target.adapter.scan("users")) == ["ada", "alan"]

    def test_convert_leaves_source_untouched(self, repository, source, target):
        """Test the source keeps every entry"""
        repository.convert(1, 2)
        assert source.get_section("users").count() == 2
        assert source.get_section("orders").count() == 1

    def test_convert_across_key_value_store(self, repository, source, redis_credentials):
        """Test conversion into Redis"""
        target = repository.register(3, BackendKind.REDIS, redis_credentials)
        repository.convert(1, 3)

        assert sorted(s.name for s in target.list_sections()) == ["empty", "orders", "users"]
        assert target.get_section("users").count() == 2

    def test_convert_same_provider(self, repository, source):
        """Test converting a provider into itself is rejected"""
        with pytest.raises(ValueError):
            repository.convert(1, 1)

    def test_convert_unknown_ids(self, repository, source):
        """Test unknown ids raise"""
        with pytest.raises(UnknownIdException):
            repository.convert(1, 99)
        with pytest.raises(UnknownIdException):
            repository.convert(99, 1)

    def test_convert_reports_entry_failures(self, repository, source, target, monkeypatch):
        """Test a failing entry is reported and skipped, the rest copied"""
        real_insert = target.adapter.insert

        def flaky_insert(name, entry_id, document):
            if entry_id == "alan":
                raise StorageException(
                    StorageErrorKind.CONNECTION_LOST, "insert", name, entry_id
                )
            real_insert(name, entry_id, document)

        monkeypatch.setattr(target.adapter, "insert", flaky_insert)
        failures = []

        repository.convert(1, 2, on_error=failures.append)

        assert len(failures) == 1
        failure = failures[0]
        assert isinstance(failure, ConversionFailure)
        assert failure.section == "users"
        assert failure.entry_id == "alan"
        assert failure.error.kind is StorageErrorKind.CONNECTION_LOST

        users = target.get_section("users")
        assert [e.id for e in users.list_entries()] == ["ada"]
        assert target.get_section("orders").count() == 1

    def test_convert_skips_unencodable_entries(self, repository, source, target, monkeypatch):
        """Test an entry the target cannot serialize does not stop the conversion"""
        users = source.get_section("users")
        entries = users.list_entries() + [Entry("when", {"at": datetime(2024, 1, 1)})]
        monkeypatch.setattr(users, "list_entries", lambda: entries)
        failures = []

        repository.convert(1, 2, on_error=failures.append)

        assert [(f.section, f.entry_id) for f in failures] == [("users", "when")]
        assert failures[0].error.kind is StorageErrorKind.SERIALIZATION_FAILURE
        assert target.get_section("users").count() == 2
        assert target.get_section("orders").count() == 1
        assert not (target.adapter.root / "users" / "when.json.tmp").exists()

    def test_convert_reports_section_failures(self, repository, source, target, monkeypatch):
        """Test a section that cannot be prepared is reported and skipped"""
        real_ensure = target.adapter.ensure_collection

        def flaky_ensure(name):
            if name == "orders":
                raise StorageException(StorageErrorKind.BACKEND_FAILURE, "create_directory", name)
            real_ensure(name)

        monkeypatch.setattr(target.adapter, "ensure_collection", flaky_ensure)
        failures = []

        repository.convert(1, 2, on_error=failures.append)

        assert [(f.section, f.entry_id) for f in failures] == [("orders", None)]
        assert not target.exists_section("orders")
        assert target.get_section("users").count() == 2

    def test_convert_into_closed_target(self, repository, source, target):
        """Test a closed target yields failures instead of aborting"""
        target.shutdown()
        failures = []

        repository.convert(1, 2, on_error=failures.append)

        assert len(failures) == 3
        assert all(isinstance(f.error, ProviderClosedException) for f in failures)
