"""
Rollover digest notifications.

The rollover hands each user's digest to a NotificationDispatcher after its
changes are committed. Delivery is best effort: a failure is reported as
ExternalDependencyError and never undoes the rollover.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date

import httpx

from nexusflow.errors import ExternalDependencyError

logger = logging.getLogger(__name__)


@dataclass
class RolloverDigest:
    """What one user's rollover changed."""

    user_id: str
    date: date
    overdue: int = 0
    advanced: int = 0
    instantiated: int = 0
    generated: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.overdue or self.advanced or self.instantiated or self.generated)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "date": self.date.isoformat(),
            "overdue": self.overdue,
            "advanced": self.advanced,
            "instantiated": self.instantiated,
            "generated": self.generated,
        }


class NotificationDispatcher(ABC):
    """Delivers rollover digests somewhere outside the core."""

    @abstractmethod
    async def dispatch(self, digest: RolloverDigest) -> None:
        """
        Deliver a digest.

        Raises:
            ExternalDependencyError: Delivery failed
        """
        pass


class LoggingDispatcher(NotificationDispatcher):
    """Writes digests to the log. Used when no webhook is configured."""

    async def dispatch(self, digest: RolloverDigest) -> None:
        logger.info(
            f"[User {digest.user_id}] Rollover {digest.date.isoformat()}: "
            f"{digest.overdue} overdue, {digest.advanced} advanced, "
            f"{digest.instantiated} instantiated, {digest.generated} generated"
        )


class WebhookDispatcher(NotificationDispatcher):
    """POSTs each digest as JSON to a webhook URL."""

    def __init__(self, url: str, timeout: float = 10.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def dispatch(self, digest: RolloverDigest) -> None:
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=digest.to_dict(), timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=digest.to_dict())
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalDependencyError(f"Webhook delivery to {self.url} failed: {e}") from e


def create_dispatcher(config=None) -> NotificationDispatcher:
    """Dispatcher for the notification config: webhook if a URL is set, else logging."""
    if config is None:
        from nexusflow.config import get_config
        config = get_config()

    notifications = config.notifications
    if notifications.webhook_url:
        return WebhookDispatcher(notifications.webhook_url, timeout=notifications.timeout_seconds)
    return LoggingDispatcher()
