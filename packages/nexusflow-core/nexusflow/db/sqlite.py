"""
SQLite database adapter using aiosqlite.

Feature degradation compared to PostgreSQL:
- JSON columns: stored as TEXT holding JSON
- Dates and timestamps: stored as ISO 8601 TEXT
- Booleans: stored as INTEGER 0/1
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Optional, List, Any

from nexusflow.db.interface import DatabaseAdapter
from nexusflow.errors import ConflictError

logger = logging.getLogger(__name__)

try:
    import aiosqlite
    HAS_AIOSQLITE = True
except ImportError:
    HAS_AIOSQLITE = False
    aiosqlite = None


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite adapter.

    Uses aiosqlite for async database operations.
    Automatically creates the database file and parent directories.
    """

    def __init__(self, db_path: str = "~/.nexusflow/nexusflow.db"):
        """
        Initialize SQLite adapter.

        Args:
            db_path: Path to SQLite database file.
                    Supports ~ expansion for home directory.
        """
        if not HAS_AIOSQLITE:
            raise RuntimeError(
                "aiosqlite not installed. Run: pip install nexusflow"
            )

        self.db_path = Path(db_path).expanduser()
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Initialize database connection and create file if needed."""
        if self._conn is not None:
            return

        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Connect (creates file if doesn't exist)
        self._conn = await aiosqlite.connect(str(self.db_path))

        await self._conn.execute("PRAGMA foreign_keys = ON")

        # Use WAL mode for better concurrent access
        await self._conn.execute("PRAGMA journal_mode = WAL")

        # Row factory to return dicts
        self._conn.row_factory = aiosqlite.Row

        logger.info(f"SQLite database connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("SQLite connection closed")

    async def _get_conn(self) -> aiosqlite.Connection:
        """Get or create connection."""
        if self._conn is None:
            await self.connect()
        return self._conn

    async def execute(self, query: str, *args) -> str:
        """Execute query and return status."""
        conn = await self._get_conn()
        query = self.format_query(query)

        try:
            cursor = await conn.execute(query, self.adapt_params(args))
        except aiosqlite.IntegrityError as e:
            await conn.rollback()
            if "UNIQUE constraint failed" in str(e):
                raise ConflictError(str(e)) from e
            raise
        await conn.commit()

        # Return a status string similar to PostgreSQL
        verb = query.strip().split(None, 1)[0].upper() if query.strip() else ""
        if verb == "INSERT":
            return f"INSERT 0 {cursor.rowcount}"
        elif verb == "UPDATE":
            return f"UPDATE {cursor.rowcount}"
        elif verb == "DELETE":
            return f"DELETE {cursor.rowcount}"
        return "OK"

    async def fetch(self, query: str, *args) -> List[dict]:
        """Fetch rows as list of dicts."""
        conn = await self._get_conn()
        query = self.format_query(query)

        cursor = await conn.execute(query, self.adapt_params(args))
        rows = await cursor.fetchall()

        # Convert Row objects to dicts
        return [dict(row) for row in rows]

    async def fetchrow(self, query: str, *args) -> Optional[dict]:
        """Fetch single row as dict."""
        conn = await self._get_conn()
        query = self.format_query(query)

        cursor = await conn.execute(query, self.adapt_params(args))
        row = await cursor.fetchone()

        return dict(row) if row else None

    async def fetchval(self, query: str, *args) -> Any:
        """Fetch single value."""
        conn = await self._get_conn()
        query = self.format_query(query)

        cursor = await conn.execute(query, self.adapt_params(args))
        row = await cursor.fetchone()

        if row:
            # Return first column value
            return row[0]
        return None

    @property
    def placeholder_style(self) -> str:
        """SQLite uses ? style placeholders."""
        return "qmark"

    def adapt_param(self, value: Any) -> Any:
        """Dates become ISO text and booleans become 0/1."""
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return super().adapt_param(value)
