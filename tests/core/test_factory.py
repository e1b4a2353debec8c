"""
Tests for the database adapter factory.
"""

import pytest

from nexusflow.config import NexusflowConfig
from nexusflow.db import factory


@pytest.fixture(autouse=True)
def no_shared_adapter():
    factory.reset_adapter()
    yield
    factory.reset_adapter()


def sqlite_config(tmp_path, db_type="sqlite"):
    config = NexusflowConfig()
    config.database.type = db_type
    config.database.sqlite_path = str(tmp_path / "factory.db")
    return config


@pytest.mark.parametrize(
    "db_type, backend",
    [("sqlite", "sqlite"), ("SQLite3", "sqlite"), (" postgres ", "postgres"), ("PostgreSQL", "postgres"), ("pg", "postgres")],
)
def test_backend_aliases(db_type, backend):
    assert factory.backend_for(db_type) == backend


@pytest.mark.parametrize("db_type", ["mysql", "", None])
def test_unknown_backend(db_type):
    with pytest.raises(ValueError, match="Unknown database type"):
        factory.backend_for(db_type)


def test_pool_size_follows_rollover_concurrency():
    config = NexusflowConfig()

    config.rollover.max_concurrency = 2
    assert factory.pool_size(config) == factory.MIN_POOL_SIZE

    config.rollover.max_concurrency = 12
    assert factory.pool_size(config) == 13


def test_create_sqlite_adapter(tmp_path):
    from nexusflow.db.sqlite import SQLiteAdapter

    adapter = factory.create_adapter(sqlite_config(tmp_path, "sqlite3"))

    assert isinstance(adapter, SQLiteAdapter)
    assert adapter.db_path == tmp_path / "factory.db"


def test_create_adapter_is_not_shared(tmp_path):
    config = sqlite_config(tmp_path)

    assert factory.create_adapter(config) is not factory.create_adapter(config)


def test_postgres_needs_url():
    config = NexusflowConfig()
    config.database.type = "postgresql"

    with pytest.raises(ValueError, match="URL not configured"):
        factory.create_adapter(config)


def test_postgres_pool_sized_for_workers():
    pytest.importorskip("asyncpg")
    from nexusflow.db.postgres import PostgresAdapter

    config = NexusflowConfig()
    config.database.type = "pg"
    config.database.postgres_url = "postgresql://localhost/nexusflow"
    config.rollover.max_concurrency = 9

    adapter = factory.create_adapter(config)

    assert isinstance(adapter, PostgresAdapter)
    assert adapter.max_pool_size == 10


def test_get_adapter_is_shared_until_reset(tmp_path):
    config = sqlite_config(tmp_path)

    first = factory.get_adapter(config)
    assert factory.get_adapter() is first

    factory.reset_adapter()
    assert factory.get_adapter(config) is not first


@pytest.mark.asyncio
async def test_init_and_close(tmp_path):
    adapter = await factory.init_adapter(sqlite_config(tmp_path))

    assert await adapter.fetchval("SELECT 1") == 1

    await factory.close_adapter()
    assert factory._adapter is None
    assert adapter._conn is None
