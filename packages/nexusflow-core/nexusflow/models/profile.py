"""
User profile model.

Only the fields the rollover needs: identity and timezone.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from nexusflow.models.fields import parse_datetime


@dataclass
class UserProfile:
    """A dashboard user. timezone is an IANA name and may be unset."""

    id: str
    timezone: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timezone": self.timezone,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserProfile":
        return cls(
            id=data.get("id"),
            timezone=data.get("timezone") or None,
            created_at=parse_datetime(data.get("created_at")),
        )
