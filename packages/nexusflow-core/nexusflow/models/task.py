"""
Task model for Nexusflow.

Tasks are the general dashboard work items. They sit on a board; the daily
rollover moves late ones to the overdue board, advances the metrics of
daily-recurring ones and instantiates weekly and monthly templates.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List
from uuid import uuid4

from nexusflow.models.fields import parse_bool, parse_date, parse_datetime, parse_json, utcnow
from nexusflow.models.metrics import StreakMetrics


# Valid board values
TASK_BOARDS = (
    "general",
    "today_high_priority",
    "today_medium_priority",
    "urgent",
    "week_low_priority",
    "overdue",
    "completed",
    "client_tasks",
)

# Valid recurrence types
RECURRENCE_TYPES = ("none", "daily", "weekly", "monthly", "custom")

# Recurrence types instantiated from a template task by the rollover
TEMPLATE_RECURRENCE_TYPES = ("weekly", "monthly")


@dataclass
class Task:
    """
    A dashboard task.

    Attributes:
        id: Unique identifier (UUID)
        user_id: Owner
        title: Task title/summary
        description: Detailed description
        due_date: Calendar due date
        time: Optional time of day ("HH:MM")
        is_completed: Completion flag
        completed_at: When the task was completed
        origin_board: Board the task was created on (never changes)
        current_board: Board the task sits on now
        is_priority: Priority flag
        overdue: Set once the rollover demotes the task
        last_moved_to_overdue_at: When the rollover demoted the task
        recurrence_type: none, daily, weekly, monthly, custom
        recurrence_details: Weekday names (weekly) or day of month (monthly)
        recurrence_time: Time of day given to instances of a template
        metrics: Streak metrics (daily-recurring tasks)
        last_rollover_date: Local date the metrics were last advanced for
        parent_task_id: Parent task for subtasks
        client_name: Client label for mirrors of client tasks
        tags: List of tags for categorization
        generation_key: Uniqueness key of a generated task
        template_task_id: StandardTaskTemplate this task was created from
        created_at: When the task was created
        updated_at: When last modified
    """

    user_id: str
    title: str
    id: str = field(default_factory=lambda: str(uuid4()))
    description: Optional[str] = None
    due_date: Optional[date] = None
    time: Optional[str] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    origin_board: str = "general"
    current_board: Optional[str] = None
    is_priority: bool = False
    overdue: bool = False
    last_moved_to_overdue_at: Optional[datetime] = None
    recurrence_type: str = "none"
    recurrence_details: Optional[str] = None
    recurrence_time: Optional[str] = None
    metrics: StreakMetrics = field(default_factory=StreakMetrics)
    last_rollover_date: Optional[date] = None
    parent_task_id: Optional[str] = None
    client_name: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    generation_key: Optional[str] = None
    template_task_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.current_board is None:
            self.current_board = self.origin_board
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_daily_recurring(self) -> bool:
        return self.recurrence_type == "daily"

    @property
    def is_recurring_template(self) -> bool:
        """A weekly or monthly task the rollover copies on matching days."""
        return self.recurrence_type in TEMPLATE_RECURRENCE_TYPES and self.parent_task_id is None

    @property
    def success_rate(self) -> float:
        return self.metrics.compute_success_rate()

    def is_late(self, today: date) -> bool:
        """Incomplete and due before the given local date."""
        return not self.is_completed and self.due_date is not None and self.due_date < today

    def to_dict(self) -> dict:
        """Convert to dictionary for storage/serialization."""
        metrics = self.metrics.to_columns()
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "time": self.time,
            "is_completed": self.is_completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "origin_board": self.origin_board,
            "current_board": self.current_board,
            "is_priority": self.is_priority,
            "overdue": self.overdue,
            "last_moved_to_overdue_at": (
                self.last_moved_to_overdue_at.isoformat() if self.last_moved_to_overdue_at else None
            ),
            "recurrence_type": self.recurrence_type,
            "recurrence_details": self.recurrence_details,
            "recurrence_time": self.recurrence_time,
            "recurrence_streak": metrics["recurrence_streak"],
            "total_completed": metrics["total_completed"],
            "missed_days": metrics["missed_days"],
            "fail_by_weekday": metrics["fail_by_weekday"],
            "success_rate": self.metrics.compute_success_rate(),
            "last_rollover_date": self.last_rollover_date.isoformat() if self.last_rollover_date else None,
            "parent_task_id": self.parent_task_id,
            "client_name": self.client_name,
            "tags": self.tags,
            "generation_key": self.generation_key,
            "template_task_id": self.template_task_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        """Create Task from dictionary (e.g., database row)."""
        return cls(
            id=data.get("id"),
            user_id=data.get("user_id", ""),
            title=data.get("title", ""),
            description=data.get("description"),
            due_date=parse_date(data.get("due_date")),
            time=data.get("time"),
            is_completed=parse_bool(data.get("is_completed")),
            completed_at=parse_datetime(data.get("completed_at")),
            origin_board=data.get("origin_board") or "general",
            current_board=data.get("current_board"),
            is_priority=parse_bool(data.get("is_priority")),
            overdue=parse_bool(data.get("overdue")),
            last_moved_to_overdue_at=parse_datetime(data.get("last_moved_to_overdue_at")),
            recurrence_type=data.get("recurrence_type") or "none",
            recurrence_details=data.get("recurrence_details"),
            recurrence_time=data.get("recurrence_time"),
            metrics=StreakMetrics.from_columns(data),
            last_rollover_date=parse_date(data.get("last_rollover_date")),
            parent_task_id=data.get("parent_task_id"),
            client_name=data.get("client_name"),
            tags=parse_json(data.get("tags"), []),
            generation_key=data.get("generation_key"),
            template_task_id=data.get("template_task_id"),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class StandardTaskTemplate:
    """
    A routine task the rollover creates on given weekdays.

    A new instance is created on a matching day only while no earlier instance
    is still open.

    Attributes:
        user_id: Owner
        title: Title given to each instance
        recurrence_days: Weekday names, Sunday = 0 through Saturday = 6
        origin_board: Board instances are created on
        is_active: Inactive templates are ignored
    """

    user_id: str
    title: str
    recurrence_days: List[str]
    id: str = field(default_factory=lambda: str(uuid4()))
    description: Optional[str] = None
    origin_board: str = "general"
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_priority(self) -> bool:
        """Instances on a high priority board are flagged as priority."""
        return "high_priority" in self.origin_board

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "recurrence_days": ",".join(self.recurrence_days),
            "origin_board": self.origin_board,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StandardTaskTemplate":
        days = data.get("recurrence_days") or ""
        return cls(
            id=data.get("id"),
            user_id=data.get("user_id", ""),
            title=data.get("title", ""),
            description=data.get("description"),
            recurrence_days=[day.strip() for day in days.split(",") if day.strip()],
            origin_board=data.get("origin_board") or "general",
            is_active=parse_bool(data.get("is_active"), default=True),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )
