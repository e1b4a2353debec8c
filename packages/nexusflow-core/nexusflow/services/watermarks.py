"""
Per-user rollover watermark.

Records the last local date whose daily advancement completed for a user, so a
second run on the same day skips the step.
"""

import logging
from datetime import date, datetime

from nexusflow.models.fields import parse_date, utcnow
from nexusflow.services.base import BaseService

logger = logging.getLogger(__name__)

TABLE = "rollover_watermarks"


class WatermarkService(BaseService):
    """Reads and advances rollover watermarks."""

    async def get(self, user_id: str) -> date | None:
        value = await self.adapter.fetchval(
            f"SELECT last_processed_date FROM {self.adapter.table(TABLE)} WHERE user_id = $1",
            user_id,
        )
        return parse_date(value)

    async def advance(self, user_id: str, day: date, now: datetime | None = None) -> None:
        """Move the watermark forward to day. Never moves it backwards."""
        now = now or utcnow()
        await self.adapter.execute(
            f"""
            INSERT INTO {self.adapter.table(TABLE)} (user_id, last_processed_date, updated_at)
            VALUES ($1, $2, $3)
            ON CONFLICT (user_id) DO UPDATE
            SET last_processed_date = excluded.last_processed_date,
                updated_at = excluded.updated_at
            WHERE {self.adapter.table(TABLE)}.last_processed_date < excluded.last_processed_date
            """,
            user_id, day, now,
        )
        logger.debug(f"[User {user_id}] Watermark at {day.isoformat()}")
