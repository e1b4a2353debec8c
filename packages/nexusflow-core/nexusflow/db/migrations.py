"""
Schema migrations.

Plain SQL files under nexusflow/migrations/<backend>/, applied in filename order.
The version is the filename prefix before the first underscore.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

from nexusflow.db.interface import DatabaseAdapter

logger = logging.getLogger(__name__)

MIGRATIONS_ROOT = Path(__file__).parent.parent / "migrations"


def migrations_dir(adapter: DatabaseAdapter) -> Path:
    """Directory holding the migrations for this adapter's backend."""
    backend = "postgres" if adapter.placeholder_style == "dollar" else "sqlite"
    return MIGRATIONS_ROOT / backend


def split_statements(sql: str) -> list[str]:
    """Split a migration file into statements, dropping comment lines."""
    lines = [line for line in sql.splitlines() if not line.strip().startswith("--")]
    statements = []
    for statement in "\n".join(lines).split(";"):
        statement = statement.strip()
        if statement:
            statements.append(statement)
    return statements


async def applied_versions(adapter: DatabaseAdapter) -> set[str]:
    """Versions already recorded in schema_migrations (empty before the first run)."""
    try:
        rows = await adapter.fetch(f"SELECT version FROM {adapter.table('schema_migrations')}")
    except Exception:
        # Table doesn't exist yet, run all migrations
        return set()
    return {row["version"] for row in rows}


async def run_migrations(adapter: DatabaseAdapter) -> list[str]:
    """
    Run pending database migrations.

    Returns:
        Versions applied by this call
    """
    await adapter.ensure_schema()

    directory = migrations_dir(adapter)
    if not directory.exists():
        logger.warning(f"Migrations directory not found: {directory}")
        return []

    done = await applied_versions(adapter)
    applied = []

    for sql_file in sorted(directory.glob("*.sql")):
        version = sql_file.name.split("_")[0]
        if version in done:
            continue

        logger.info(f"Running migration: {sql_file.name}")
        for statement in split_statements(sql_file.read_text()):
            try:
                await adapter.execute(statement)
            except Exception as e:
                logger.error(f"Migration error in {sql_file.name}: {e}")
                raise

        await adapter.execute(
            f"INSERT INTO {adapter.table('schema_migrations')} (version, applied_at) VALUES ($1, $2)",
            version, datetime.now(timezone.utc),
        )
        applied.append(version)

    return applied
