"""
Database abstraction layer supporting PostgreSQL and SQLite.
"""

from nexusflow.db.factory import close_adapter, get_adapter, init_adapter, reset_adapter
from nexusflow.db.interface import DatabaseAdapter, rows_affected
from nexusflow.db.migrations import run_migrations

__all__ = [
    "DatabaseAdapter",
    "get_adapter",
    "init_adapter",
    "close_adapter",
    "reset_adapter",
    "rows_affected",
    "run_migrations",
]
