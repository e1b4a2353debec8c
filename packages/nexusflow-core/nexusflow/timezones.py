"""
Per-user timezone resolution and local date helpers.

Every function takes the timezone explicitly; nothing here reads a process-wide
default, so concurrent per-user work cannot leak one user's zone into another's.
"""

import logging
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from nexusflow.errors import TimezoneResolutionError

logger = logging.getLogger(__name__)


def load_timezone(name: str) -> ZoneInfo:
    """
    Load an IANA timezone.

    Raises:
        TimezoneResolutionError: If the name is empty or unknown
    """
    if not name:
        raise TimezoneResolutionError("Empty timezone name")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise TimezoneResolutionError(f"Unknown timezone: {name}") from e


def resolve_timezone(name: str | None, default: str) -> ZoneInfo:
    """
    Resolve a user's timezone, falling back to the default when unset or invalid.

    Falls back to UTC if the default itself cannot be loaded.
    """
    if name:
        try:
            return load_timezone(name)
        except TimezoneResolutionError as e:
            logger.warning(f"{e}; falling back to {default}")

    try:
        return load_timezone(default)
    except TimezoneResolutionError as e:
        logger.error(f"Default timezone invalid ({e}); using UTC")
        return ZoneInfo("UTC")


def local_date(moment: datetime, tz: ZoneInfo) -> date:
    """Calendar date of a moment in the given timezone. Naive moments are UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).date()
