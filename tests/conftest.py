"""
Test configuration and fixtures
"""

import fakeredis
import pytest

from polystore.adapters import DEFAULT_FACTORIES
from polystore.adapters.redis_adapter import RedisAdapter
from polystore.config import Settings
from polystore.core import Repository
from polystore.credentials import Credentials
from polystore.domain.entities import BackendKind


@pytest.fixture
def test_settings():
    """Settings tuned for tests (no slow-query noise, small scan batches)"""
    return Settings(SQL_SLOW_QUERY_MS=60000, REDIS_SCAN_COUNT=10)


@pytest.fixture
def sqlite_credentials(tmp_path):
    """Credentials for a SQLite database file in a temp directory"""
    return Credentials(file_repository=str(tmp_path / "sqlite" / "store.db"))


@pytest.fixture
def json_credentials(tmp_path):
    """Credentials for a JSON file store in a temp directory"""
    return Credentials(file_repository=str(tmp_path / "json-store"))


@pytest.fixture
def redis_credentials():
    """Credentials for the fake Redis server"""
    return Credentials(address="localhost", port=6379)


@pytest.fixture
def redis_server():
    """In-process Redis server shared by every client of one test"""
    return fakeredis.FakeServer()


@pytest.fixture
def fake_redis(redis_server):
    """Fake Redis client bound to the shared server"""
    return fakeredis.FakeRedis(server=redis_server)


@pytest.fixture
def factories(redis_server):
    """Default adapter factories with Redis pointed at the fake server"""

    def redis_factory(kind, credentials, settings):
        return RedisAdapter(
            credentials, settings, client=fakeredis.FakeRedis(server=redis_server)
        )

    table = dict(DEFAULT_FACTORIES)
    table[BackendKind.REDIS] = redis_factory
    return table


@pytest.fixture
def repository(test_settings, factories):
    """Repository using the test factories, shut down after the test"""
    repo = Repository(settings=test_settings, factories=factories)
    yield repo
    repo.shutdown_all()


@pytest.fixture(params=[BackendKind.SQLITE, BackendKind.REDIS, BackendKind.JSON])
def backend(request, sqlite_credentials, redis_credentials, json_credentials):
    """(kind, credentials) for every backend that runs in-process"""
    credentials = {
        BackendKind.SQLITE: sqlite_credentials,
        BackendKind.REDIS: redis_credentials,
        BackendKind.JSON: json_credentials,
    }[request.param]
    return request.param, credentials


@pytest.fixture
def provider(repository, backend):
    """Provider registered under id 1 on the parametrized backend"""
    kind, credentials = backend
    return repository.register(1, kind, credentials)


@pytest.fixture
def sample_payload():
    """Sample document payload"""
    return {
        "name": "Ada Lovelace",
        "email": "ada@example.com",
        "age": 36,
        "tags": ["math", "computing"],
        "address": {"city": "London", "country": "UK"},
    }
