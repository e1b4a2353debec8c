"""
Nexusflow Core Library

Recurring client task generation and daily task rollover for PostgreSQL and SQLite.
"""

__version__ = "0.1.0"

from nexusflow.config import NexusflowConfig, load_config
from nexusflow.db import DatabaseAdapter, get_adapter

__all__ = [
    "load_config",
    "NexusflowConfig",
    "get_adapter",
    "DatabaseAdapter",
]
