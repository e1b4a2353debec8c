"""
Streak and success metrics carried by daily-recurring tasks.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Set

from nexusflow.models.fields import parse_date, parse_json


def sunday_weekday(day: date) -> int:
    """Weekday index with Sunday = 0 ... Saturday = 6."""
    return (day.weekday() + 1) % 7


@dataclass
class StreakMetrics:
    """
    Completion history of a daily-recurring task.

    Attributes:
        streak: Consecutive completed days
        total_completed: Days completed overall
        missed_days: Days the task was not completed
        fail_by_weekday: Miss count per weekday (0 = Sunday)
        success_rate: Cached value of compute_success_rate()
    """

    streak: int = 0
    total_completed: int = 0
    missed_days: Set[date] = field(default_factory=set)
    fail_by_weekday: Dict[int, int] = field(default_factory=dict)
    success_rate: float = 0.0

    def compute_success_rate(self) -> float:
        """total_completed / (total_completed + missed days), 0.0 with no history."""
        attempts = self.total_completed + len(self.missed_days)
        if attempts == 0:
            return 0.0
        return self.total_completed / attempts

    def record_completion(self) -> None:
        self.streak += 1
        self.total_completed += 1
        self.success_rate = self.compute_success_rate()

    def record_miss(self, day: date) -> None:
        """Count a missed day. Recording the same day twice is a no-op."""
        if day in self.missed_days:
            return
        self.missed_days.add(day)
        weekday = sunday_weekday(day)
        self.fail_by_weekday[weekday] = self.fail_by_weekday.get(weekday, 0) + 1
        self.streak = 0
        self.success_rate = self.compute_success_rate()

    def to_columns(self) -> dict:
        """Column values as stored on the tasks table."""
        return {
            "recurrence_streak": self.streak,
            "total_completed": self.total_completed,
            "missed_days": [d.isoformat() for d in sorted(self.missed_days)],
            # JSON object keys are strings
            "fail_by_weekday": {str(k): v for k, v in sorted(self.fail_by_weekday.items())},
            "success_rate": self.success_rate,
        }

    @classmethod
    def from_columns(cls, data: dict) -> "StreakMetrics":
        missed = parse_json(data.get("missed_days"), [])
        fails = parse_json(data.get("fail_by_weekday"), {})
        return cls(
            streak=data.get("recurrence_streak") or 0,
            total_completed=data.get("total_completed") or 0,
            missed_days={parse_date(d) for d in missed},
            fail_by_weekday={int(k): int(v) for k, v in fails.items()},
            success_rate=float(data.get("success_rate") or 0.0),
        )
