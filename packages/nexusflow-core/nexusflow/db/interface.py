"""
Abstract database adapter interface.

Supports both PostgreSQL and SQLite. Queries are written with $1, $2 placeholders
and converted per adapter; parameters pass through adapt_param() so services can
hand over dates, lists and dicts without caring which backend is in use.
"""

import json
import re
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.

    Implementations must support:
    - Basic CRUD operations (execute, fetch, fetchrow, fetchval)
    - INSERT ... ON CONFLICT DO NOTHING (the generator relies on it for idempotency)
    - Parameter adaptation for dates and JSON columns
    """

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection/pool."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connection/pool."""
        pass

    @abstractmethod
    async def execute(self, query: str, *args) -> str:
        """
        Execute a query and return status.

        Args:
            query: SQL query with placeholders ($1, $2 for PG; ? for SQLite)
            *args: Query parameters

        Returns:
            Status string (e.g., "INSERT 0 1", "UPDATE 3")

        Raises:
            ConflictError: The statement violated a uniqueness constraint
        """
        pass

    @abstractmethod
    async def fetch(self, query: str, *args) -> list[dict]:
        """
        Fetch multiple rows as list of dicts.

        Args:
            query: SQL SELECT query
            *args: Query parameters

        Returns:
            List of row dicts
        """
        pass

    @abstractmethod
    async def fetchrow(self, query: str, *args) -> dict | None:
        """
        Fetch single row as dict.

        Args:
            query: SQL SELECT query
            *args: Query parameters

        Returns:
            Row dict or None if no results
        """
        pass

    @abstractmethod
    async def fetchval(self, query: str, *args) -> Any:
        """
        Fetch single value.

        Args:
            query: SQL SELECT query returning one column
            *args: Query parameters

        Returns:
            The value or None
        """
        pass

    @property
    @abstractmethod
    def placeholder_style(self) -> str:
        """
        Return the placeholder style for this adapter.

        Returns:
            "dollar" for PostgreSQL ($1, $2, ...)
            "qmark" for SQLite (?, ?, ...)
        """
        pass

    @property
    def schema(self) -> str | None:
        """Schema that holds the nexusflow tables, or None for the default one."""
        return None

    def table(self, name: str) -> str:
        """Qualified table name for this backend."""
        if self.schema:
            return f"{self.schema}.{name}"
        return name

    def format_query(self, query: str) -> str:
        """
        Convert query placeholders to the adapter's style.

        Input uses $1, $2 style (PostgreSQL).
        For SQLite, converts to ? style.
        """
        if self.placeholder_style == "dollar":
            return query

        # Convert $1, $2, etc. to ? for SQLite
        return re.sub(r'\$\d+', '?', query)

    def adapt_param(self, value: Any) -> Any:
        """
        Convert a Python value into something the driver accepts.

        JSON columns (lists and dicts) are sent as JSON text on every backend.
        """
        if isinstance(value, (list, dict)):
            return json.dumps(value)
        return value

    def adapt_params(self, params) -> list:
        """Apply adapt_param to a sequence of parameters."""
        return [self.adapt_param(p) for p in params]

    async def ensure_schema(self) -> None:
        """
        Create schema if needed (PostgreSQL only).
        Default implementation does nothing.
        """
        pass


def rows_affected(status: str) -> int:
    """
    Number of rows touched, parsed from a status string like "INSERT 0 1" or "UPDATE 2".

    Returns 0 for statuses without a trailing count.
    """
    if not status:
        return 0
    last = status.strip().split()[-1]
    return int(last) if last.isdigit() else 0


def to_iso(value: date | datetime | None) -> str | None:
    """ISO string for a date/datetime, None passes through."""
    return value.isoformat() if value is not None else None
