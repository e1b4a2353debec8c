"""
Client models for Nexusflow.

A client engagement owns generation templates; templates produce ClientTasks
for each month, and ClientTasks move through the review workflow on a kanban.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional, List
from uuid import uuid4

from nexusflow.models.fields import parse_bool, parse_date, parse_datetime, parse_json, utcnow


# Valid client task statuses (kanban columns)
CLIENT_TASK_STATUSES = (
    "pending",
    "in_progress",
    "under_review",
    "approved",
    "rejected",
    "edit_requested",
    "posted",
    "completed",
)

# Statuses that mean the delivery is done
FINISHED_STATUSES = ("posted", "completed")


@dataclass
class Client:
    """A client engagement."""

    user_id: str
    name: str
    id: str = field(default_factory=lambda: str(uuid4()))
    monthly_delivery_goal: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "monthly_delivery_goal": self.monthly_delivery_goal,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Client":
        return cls(
            id=data.get("id"),
            user_id=data.get("user_id", ""),
            name=data.get("name", ""),
            monthly_delivery_goal=data.get("monthly_delivery_goal") or 0,
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class PatternEntry:
    """
    One (week-of-month, weekday, count) slot of a generation pattern.

    Values are kept as stored; expand_pattern() validates them.
    """

    week: Any
    day_of_week: Any
    count: Any = 1

    def to_dict(self) -> dict:
        return {"week": self.week, "day_of_week": self.day_of_week, "count": self.count}

    @classmethod
    def from_dict(cls, data: dict) -> "PatternEntry":
        return cls(
            week=data.get("week"),
            day_of_week=data.get("day_of_week"),
            count=data.get("count", 1),
        )


@dataclass
class ClientTaskGenerationTemplate:
    """
    A recipe producing client tasks every month.

    Attributes:
        id: Unique identifier (UUID)
        user_id: Owner
        client_id: Client the tasks are generated for
        template_name: Title given to generated tasks
        description: Free text
        delivery_count: Deliveries promised per month
        generation_pattern: Ordered pattern entries
        default_due_days: Days added to each slot date to get the due date
        is_active: Inactive templates generate nothing
        is_standard_task: Mirror generated tasks onto the main dashboard
        tags: Tags copied onto generated tasks
    """

    user_id: str
    client_id: str
    template_name: str
    id: str = field(default_factory=lambda: str(uuid4()))
    description: Optional[str] = None
    delivery_count: int = 0
    generation_pattern: List[PatternEntry] = field(default_factory=list)
    default_due_days: int = 0
    is_active: bool = True
    is_standard_task: bool = False
    tags: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "client_id": self.client_id,
            "template_name": self.template_name,
            "description": self.description,
            "delivery_count": self.delivery_count,
            "generation_pattern": [entry.to_dict() for entry in self.generation_pattern],
            "default_due_days": self.default_due_days,
            "is_active": self.is_active,
            "is_standard_task": self.is_standard_task,
            "tags": self.tags,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ClientTaskGenerationTemplate":
        pattern = parse_json(data.get("generation_pattern"), [])
        return cls(
            id=data.get("id"),
            user_id=data.get("user_id", ""),
            client_id=data.get("client_id", ""),
            template_name=data.get("template_name", ""),
            description=data.get("description"),
            delivery_count=data.get("delivery_count") or 0,
            generation_pattern=[
                entry if isinstance(entry, PatternEntry) else PatternEntry.from_dict(entry)
                for entry in pattern
            ],
            default_due_days=data.get("default_due_days") or 0,
            is_active=parse_bool(data.get("is_active"), default=True),
            is_standard_task=parse_bool(data.get("is_standard_task")),
            tags=parse_json(data.get("tags"), []),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class ClientTask:
    """
    A delivery for a client in a given month.

    Attributes:
        id: Unique identifier (UUID)
        user_id: Owner
        client_id: Client
        template_id: Generating template (None for ad hoc tasks)
        title: Task title
        status: Kanban column (see CLIENT_TASK_STATUSES)
        month_year_reference: Billing period "YYYY-MM"
        due_date: Calendar due date
        order_index: Position within the status column
        is_standard_task: Mirrored onto the main dashboard
        main_task_id: The mirrored dashboard Task
        public_approval_enabled: Reviewable through a public approval link
        public_approval_link_id: unique_id of that link
        edit_reason: Reason given with the latest edit request
        generation_slot: Slot key within its template and month
        overdue: Set once the rollover flags the task as late
    """

    user_id: str
    client_id: str
    title: str
    month_year_reference: str
    id: str = field(default_factory=lambda: str(uuid4()))
    template_id: Optional[str] = None
    description: Optional[str] = None
    status: str = "pending"
    due_date: Optional[date] = None
    time: Optional[str] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    order_index: int = 0
    is_standard_task: bool = False
    main_task_id: Optional[str] = None
    public_approval_enabled: bool = False
    public_approval_link_id: Optional[str] = None
    edit_reason: Optional[str] = None
    parent_task_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    generation_slot: Optional[str] = None
    overdue: bool = False
    last_moved_to_overdue_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_finished(self) -> bool:
        return self.is_completed or self.status in FINISHED_STATUSES

    def is_late(self, today: date) -> bool:
        return not self.is_finished and self.due_date is not None and self.due_date < today

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "client_id": self.client_id,
            "template_id": self.template_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "month_year_reference": self.month_year_reference,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "time": self.time,
            "is_completed": self.is_completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "order_index": self.order_index,
            "is_standard_task": self.is_standard_task,
            "main_task_id": self.main_task_id,
            "public_approval_enabled": self.public_approval_enabled,
            "public_approval_link_id": self.public_approval_link_id,
            "edit_reason": self.edit_reason,
            "parent_task_id": self.parent_task_id,
            "tags": self.tags,
            "generation_slot": self.generation_slot,
            "overdue": self.overdue,
            "last_moved_to_overdue_at": (
                self.last_moved_to_overdue_at.isoformat() if self.last_moved_to_overdue_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ClientTask":
        return cls(
            id=data.get("id"),
            user_id=data.get("user_id", ""),
            client_id=data.get("client_id", ""),
            template_id=data.get("template_id"),
            title=data.get("title", ""),
            description=data.get("description"),
            status=data.get("status") or "pending",
            month_year_reference=data.get("month_year_reference", ""),
            due_date=parse_date(data.get("due_date")),
            time=data.get("time"),
            is_completed=parse_bool(data.get("is_completed")),
            completed_at=parse_datetime(data.get("completed_at")),
            order_index=data.get("order_index") or 0,
            is_standard_task=parse_bool(data.get("is_standard_task")),
            main_task_id=data.get("main_task_id"),
            public_approval_enabled=parse_bool(data.get("public_approval_enabled")),
            public_approval_link_id=data.get("public_approval_link_id"),
            edit_reason=data.get("edit_reason"),
            parent_task_id=data.get("parent_task_id"),
            tags=parse_json(data.get("tags"), []),
            generation_slot=data.get("generation_slot"),
            overdue=parse_bool(data.get("overdue")),
            last_moved_to_overdue_at=parse_datetime(data.get("last_moved_to_overdue_at")),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class PublicApprovalLink:
    """A time-limited link letting a client review one month of tasks."""

    user_id: str
    client_id: str
    month_year_reference: str
    expires_at: datetime
    id: str = field(default_factory=lambda: str(uuid4()))
    unique_id: str = field(default_factory=lambda: uuid4().hex)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utcnow()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "unique_id": self.unique_id,
            "user_id": self.user_id,
            "client_id": self.client_id,
            "month_year_reference": self.month_year_reference,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PublicApprovalLink":
        return cls(
            id=data.get("id"),
            unique_id=data.get("unique_id"),
            user_id=data.get("user_id", ""),
            client_id=data.get("client_id", ""),
            month_year_reference=data.get("month_year_reference", ""),
            expires_at=parse_datetime(data.get("expires_at")),
            created_at=parse_datetime(data.get("created_at")),
        )


@dataclass
class ClientTaskHistoryEvent:
    """
    An entry in a client task's audit trail.

    Review decisions made through a public approval link are recorded here with
    event_type "<status>_via_public_link".
    """

    client_task_id: str
    user_id: str
    event_type: str
    details: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utcnow()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_task_id": self.client_task_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ClientTaskHistoryEvent":
        return cls(
            id=data.get("id"),
            client_task_id=data.get("client_task_id", ""),
            user_id=data.get("user_id", ""),
            event_type=data.get("event_type", ""),
            details=parse_json(data.get("details"), {}),
            created_at=parse_datetime(data.get("created_at")),
        )
