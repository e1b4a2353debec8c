"""
Row value parsing shared by the models.

Rows arrive as ISO text and JSON text from SQLite and as native values from
PostgreSQL; these helpers turn either into typed Python values.
"""

import json
from datetime import date, datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a timestamp; naive values are taken to be UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def parse_date(value: Any) -> Optional[date]:
    """Parse a calendar date from a date, datetime or ISO string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_json(value: Any, default: Any) -> Any:
    """Decode a JSON column that may already be decoded."""
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value) if value else default
    return value


def parse_bool(value: Any, default: bool = False) -> bool:
    """SQLite hands back 0/1, PostgreSQL hands back bool."""
    if value is None:
        return default
    return bool(value)
