"""
Tests for SQLite database adapter and migrations.
"""

import pytest
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path


@pytest.fixture
async def sqlite_adapter():
    """Create a temporary SQLite adapter for testing."""
    from nexusflow.db.sqlite import SQLiteAdapter

    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        adapter = SQLiteAdapter(str(db_path))
        await adapter.connect()

        # Create test table
        await adapter.execute("""
            CREATE TABLE test_items (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                value INTEGER,
                tags TEXT DEFAULT '[]',
                flag INTEGER DEFAULT 0,
                due TEXT
            )
        """)

        yield adapter

        await adapter.close()


@pytest.mark.asyncio
async def test_sqlite_connect(sqlite_adapter):
    """Test SQLite connection."""
    result = await sqlite_adapter.fetchval("SELECT 1")
    assert result == 1


@pytest.mark.asyncio
async def test_sqlite_execute_insert(sqlite_adapter):
    """Test inserting data with $n placeholders."""
    result = await sqlite_adapter.execute(
        "INSERT INTO test_items (id, name, value) VALUES ($1, $2, $3)",
        "test-1", "Test Item", 42,
    )

    assert result == "INSERT 0 1"


@pytest.mark.asyncio
async def test_sqlite_insert_on_conflict_do_nothing(sqlite_adapter):
    """A duplicate insert reports zero rows instead of failing."""
    from nexusflow.db import rows_affected

    query = "INSERT INTO test_items (id, name) VALUES ($1, $2) ON CONFLICT DO NOTHING"
    first = await sqlite_adapter.execute(query, "dup", "First")
    second = await sqlite_adapter.execute(query, "dup", "Second")

    assert rows_affected(first) == 1
    assert rows_affected(second) == 0
    assert await sqlite_adapter.fetchval("SELECT name FROM test_items WHERE id = $1", "dup") == "First"


@pytest.mark.asyncio
async def test_sqlite_duplicate_key_raises_conflict(sqlite_adapter):
    """A unique violation surfaces as ConflictError and leaves the connection usable."""
    from nexusflow.errors import ConflictError

    query = "INSERT INTO test_items (id, name) VALUES ($1, $2)"
    await sqlite_adapter.execute(query, "dup", "First")

    with pytest.raises(ConflictError):
        await sqlite_adapter.execute(query, "dup", "Second")

    assert await sqlite_adapter.execute(query, "other", "Other") == "INSERT 0 1"
    assert await sqlite_adapter.fetchval("SELECT COUNT(*) FROM test_items") == 2


@pytest.mark.asyncio
async def test_sqlite_other_integrity_errors_propagate(sqlite_adapter):
    import aiosqlite

    from nexusflow.errors import ConflictError

    with pytest.raises(aiosqlite.IntegrityError) as exc:
        await sqlite_adapter.execute("INSERT INTO test_items (id, name) VALUES ($1, $2)", "x", None)

    assert not isinstance(exc.value, ConflictError)


@pytest.mark.asyncio
async def test_sqlite_update_status(sqlite_adapter):
    await sqlite_adapter.execute("INSERT INTO test_items (id, name) VALUES ($1, $2)", "a", "A")
    await sqlite_adapter.execute("INSERT INTO test_items (id, name) VALUES ($1, $2)", "b", "B")

    result = await sqlite_adapter.execute("UPDATE test_items SET value = $1", 7)

    assert result == "UPDATE 2"


@pytest.mark.asyncio
async def test_sqlite_fetch(sqlite_adapter):
    """Test fetching multiple rows."""
    await sqlite_adapter.execute(
        "INSERT INTO test_items (id, name, value) VALUES (?, ?, ?)",
        "item-1", "Item 1", 10,
    )
    await sqlite_adapter.execute(
        "INSERT INTO test_items (id, name, value) VALUES (?, ?, ?)",
        "item-2", "Item 2", 20,
    )

    rows = await sqlite_adapter.fetch("SELECT * FROM test_items ORDER BY name")

    assert len(rows) == 2
    assert rows[0]["name"] == "Item 1"
    assert rows[1]["name"] == "Item 2"


@pytest.mark.asyncio
async def test_sqlite_fetchrow_not_found(sqlite_adapter):
    """Test fetchrow returns None when not found."""
    row = await sqlite_adapter.fetchrow(
        "SELECT * FROM test_items WHERE id = ?", "nonexistent"
    )

    assert row is None


@pytest.mark.asyncio
async def test_sqlite_adapts_params(sqlite_adapter):
    """Lists become JSON text, booleans 0/1 and dates ISO text."""
    await sqlite_adapter.execute(
        "INSERT INTO test_items (id, name, tags, flag, due) VALUES ($1, $2, $3, $4, $5)",
        "typed", "Typed", ["a", "b"], True, date(2026, 10, 18),
    )

    row = await sqlite_adapter.fetchrow("SELECT * FROM test_items WHERE id = $1", "typed")

    assert row["tags"] == '["a", "b"]'
    assert row["flag"] == 1
    assert row["due"] == "2026-10-18"


def test_adapt_param_datetime():
    from nexusflow.db.sqlite import SQLiteAdapter

    adapter = SQLiteAdapter("/tmp/unused.db")
    moment = datetime(2026, 10, 18, 3, 0, tzinfo=timezone.utc)

    assert adapter.adapt_param(moment) == "2026-10-18T03:00:00+00:00"
    assert adapter.adapt_param(False) == 0
    assert adapter.adapt_param({"1": 2}) == '{"1": 2}'
    assert adapter.adapt_param(None) is None


@pytest.mark.asyncio
async def test_sqlite_format_query(sqlite_adapter):
    """Test query placeholder conversion."""
    sqlite_query = sqlite_adapter.format_query("SELECT * FROM items WHERE id = $1 AND name = $12")

    assert sqlite_query == "SELECT * FROM items WHERE id = ? AND name = ?"
    assert sqlite_adapter.placeholder_style == "qmark"
    assert sqlite_adapter.table("tasks") == "tasks"


def test_rows_affected():
    from nexusflow.db import rows_affected

    assert rows_affected("INSERT 0 1") == 1
    assert rows_affected("UPDATE 3") == 3
    assert rows_affected("OK") == 0
    assert rows_affected("") == 0


class TestMigrations:
    """Tests for run_migrations()."""

    @pytest.mark.asyncio
    async def test_creates_tables(self, tmp_path):
        from nexusflow.db.migrations import run_migrations
        from nexusflow.db.sqlite import SQLiteAdapter

        adapter = SQLiteAdapter(str(tmp_path / "m.db"))
        await adapter.connect()
        try:
            applied = await run_migrations(adapter)

            rows = await adapter.fetch("SELECT name FROM sqlite_master WHERE type = 'table'")
            tables = {row["name"] for row in rows}
        finally:
            await adapter.close()

        assert applied == ["001", "002"]
        assert {
            "profiles",
            "clients",
            "client_task_generation_templates",
            "tasks",
            "client_tasks",
            "public_approval_links",
            "rollover_watermarks",
            "standard_task_templates",
            "client_task_history",
            "schema_migrations",
        } <= tables

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, db):
        from nexusflow.db.migrations import run_migrations

        assert await run_migrations(db) == []

    @pytest.mark.asyncio
    async def test_upgrade_compacts_duplicate_order_indexes(self, tmp_path):
        """Columns that already hold duplicate positions are renumbered before the unique index."""
        from nexusflow.db.migrations import migrations_dir, run_migrations, split_statements
        from nexusflow.db.sqlite import SQLiteAdapter
        from nexusflow.errors import ConflictError

        adapter = SQLiteAdapter(str(tmp_path / "old.db"))
        await adapter.connect()
        try:
            initial = migrations_dir(adapter) / "001_initial.sql"
            for statement in split_statements(initial.read_text()):
                await adapter.execute(statement)
            await adapter.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES ($1, $2)", "001", "2026-01-01"
            )
            for task_id, created in (("a", "2026-10-01"), ("b", "2026-10-02"), ("c", "2026-10-03")):
                await adapter.execute(
                    """
                    INSERT INTO client_tasks (id, user_id, client_id, title, status,
                        month_year_reference, order_index, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    """,
                    task_id, "u1", "c1", task_id.upper(), "pending", "2026-10", 0, created,
                )

            applied = await run_migrations(adapter)
            rows = await adapter.fetch("SELECT id, order_index FROM client_tasks ORDER BY id")

            with pytest.raises(ConflictError):
                await adapter.execute("UPDATE client_tasks SET order_index = $1 WHERE id = $2", 0, "c")
        finally:
            await adapter.close()

        assert applied == ["002"]
        assert [(row["id"], row["order_index"]) for row in rows] == [("a", 0), ("b", 1), ("c", 2)]

    def test_split_statements_drops_comments(self):
        from nexusflow.db.migrations import split_statements

        sql = "-- header\nCREATE TABLE a (id TEXT);\n\n-- next\nCREATE TABLE b (id TEXT);\n"

        assert split_statements(sql) == ["CREATE TABLE a (id TEXT)", "CREATE TABLE b (id TEXT)"]

    def test_every_backend_has_migrations(self):
        from nexusflow.db.migrations import MIGRATIONS_ROOT

        sqlite_files = sorted(p.name for p in (MIGRATIONS_ROOT / "sqlite").glob("*.sql"))
        postgres_files = sorted(p.name for p in (MIGRATIONS_ROOT / "postgres").glob("*.sql"))

        assert sqlite_files == postgres_files
        assert sqlite_files
