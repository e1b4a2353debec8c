"""
Database adapter factory.

create_adapter builds an adapter from a NexusflowConfig. Services constructed
without an adapter share one process-wide instance, managed by get_adapter,
init_adapter and close_adapter.
"""

import logging

from nexusflow.db.interface import DatabaseAdapter

logger = logging.getLogger(__name__)

# Accepted database.type values and the backend each selects
BACKENDS = {
    "sqlite": "sqlite",
    "sqlite3": "sqlite",
    "postgres": "postgres",
    "postgresql": "postgres",
    "pg": "postgres",
}

# Smallest PostgreSQL pool, whatever the rollover concurrency
MIN_POOL_SIZE = 5

_adapter: DatabaseAdapter | None = None


def backend_for(db_type: str) -> str:
    """
    Backend name for a database.type setting.

    Raises:
        ValueError: Unknown database type
    """
    backend = BACKENDS.get((db_type or "").strip().lower())
    if backend is None:
        raise ValueError(
            f"Unknown database type: {db_type!r}. Use one of: {', '.join(sorted(BACKENDS))}"
        )
    return backend


def pool_size(config) -> int:
    """PostgreSQL pool size: one connection per rollover worker plus one for the trigger."""
    return max(MIN_POOL_SIZE, config.rollover.max_concurrency + 1)


def create_adapter(config) -> DatabaseAdapter:
    """
    Build an unconnected adapter for the configured backend.

    Args:
        config: NexusflowConfig

    Raises:
        ValueError: Unknown database type, or PostgreSQL without a URL
    """
    backend = backend_for(config.database.type)

    if backend == "postgres":
        from nexusflow.db.postgres import PostgresAdapter

        if not config.database.postgres_url:
            raise ValueError(
                "PostgreSQL URL not configured. "
                "Set database.postgres.url in config or NEXUSFLOW_DATABASE_URL env var."
            )
        size = pool_size(config)
        logger.info(f"Using PostgreSQL adapter (pool of {size})")
        return PostgresAdapter(config.database.postgres_url, max_pool_size=size)

    from nexusflow.db.sqlite import SQLiteAdapter

    logger.info(f"Using SQLite adapter: {config.database.sqlite_path}")
    return SQLiteAdapter(config.database.sqlite_path)


def get_adapter(config=None) -> DatabaseAdapter:
    """
    The shared adapter, created from config on first use.

    Args:
        config: NexusflowConfig; the cached config is used when omitted
    """
    global _adapter

    if _adapter is None:
        if config is None:
            from nexusflow.config import get_config
            config = get_config()
        _adapter = create_adapter(config)
    return _adapter


async def init_adapter(config=None) -> DatabaseAdapter:
    """Get the shared adapter and connect it."""
    adapter = get_adapter(config)
    await adapter.connect()
    return adapter


async def close_adapter() -> None:
    """Close and forget the shared adapter."""
    global _adapter

    if _adapter is not None:
        adapter, _adapter = _adapter, None
        await adapter.close()


def reset_adapter() -> None:
    """Forget the shared adapter without closing it (after a config change)."""
    global _adapter
    _adapter = None
