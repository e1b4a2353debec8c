"""
Pytest configuration and fixtures for nexusflow tests.
"""

import pytest
import sys
from datetime import date, datetime, timezone
from pathlib import Path

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]

# Add packages to path for testing
packages_dir = Path(__file__).parent.parent / "packages"
sys.path.insert(0, str(packages_dir / "nexusflow-core"))
sys.path.insert(0, str(packages_dir / "nexusflow-mcp"))


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / ".nexusflow"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
async def db(tmp_path):
    """A migrated SQLite database in a temporary directory."""
    from nexusflow.db.migrations import run_migrations
    from nexusflow.db.sqlite import SQLiteAdapter

    adapter = SQLiteAdapter(str(tmp_path / "test.db"))
    await adapter.connect()
    await run_migrations(adapter)

    yield adapter

    await adapter.close()


@pytest.fixture
def config():
    """Default config with a fixed default timezone."""
    from nexusflow.config import NexusflowConfig

    config = NexusflowConfig()
    config.rollover.default_timezone = "America/Sao_Paulo"
    config.rollover.max_concurrency = 2
    return config


@pytest.fixture
def utc():
    """Build an aware UTC datetime."""
    def make(year, month, day, hour=12, minute=0):
        return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
    return make


class RecordingDispatcher:
    """Notification dispatcher that keeps every digest it receives."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.digests = []

    async def dispatch(self, digest):
        from nexusflow.errors import ExternalDependencyError

        if self.fail:
            raise ExternalDependencyError("webhook down")
        self.digests.append(digest)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def failing_dispatcher():
    return RecordingDispatcher(fail=True)


@pytest.fixture
def sample_pattern():
    """Two Monday deliveries in week 1 and one Friday in week 3."""
    return [
        {"week": 1, "day_of_week": "Monday", "count": 2},
        {"week": 3, "day_of_week": "Friday", "count": 1},
    ]


@pytest.fixture
def october_2026():
    """Month reference used across tests. 1 Oct 2026 is a Thursday."""
    return "2026-10", date(2026, 10, 1)
