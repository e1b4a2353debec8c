"""
Weekly and monthly task instantiation.

Two kinds of template produce dashboard tasks on matching days:

- Recurring template tasks are top-level Tasks with recurrence_type weekly or
  monthly. On a matching day a plain copy due that day is created under the
  template.
- Standard task templates are routines on given weekdays. A new instance is
  only created while no earlier instance is still open.

Every instance carries a generation_key naming its template and day, so running
again on the same day creates nothing new.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List

from nexusflow.errors import NotFoundError, ValidationError
from nexusflow.models.fields import utcnow
from nexusflow.models.metrics import sunday_weekday
from nexusflow.models.task import TASK_BOARDS, StandardTaskTemplate, Task
from nexusflow.services.base import BaseService
from nexusflow.services.patterns import WEEKDAY_NAMES, parse_weekday_list, recurrence_matches
from nexusflow.services.tasks import TaskService
from nexusflow.services.transitions import RESERVED_BOARDS

logger = logging.getLogger(__name__)

TEMPLATES_TABLE = "standard_task_templates"


def recurring_generation_key(template_id: str, day: date) -> str:
    """Uniqueness key of a recurring template's instance for a day."""
    return f"recurring:{template_id}:{day.isoformat()}"


def standard_generation_key(template_id: str, day: date) -> str:
    """Uniqueness key of a standard template's instance for a day."""
    return f"standard:{template_id}:{day.isoformat()}"


@dataclass
class InstantiationReport:
    """Outcome of instantiating one user's templates for a day."""

    user_id: str
    day: date
    created: List[Task] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    def add_error(self, template_id: str, error: Exception) -> None:
        self.errors.append({"template_id": template_id, "type": type(error).__name__, "error": str(error)})


class RecurringTaskInstantiator(BaseService):
    """
    Creates the day's tasks from weekly, monthly and standard templates.

    Usage:
        instantiator = RecurringTaskInstantiator(adapter)
        report = await instantiator.instantiate(user_id, today)
    """

    def __init__(self, adapter=None, tasks: TaskService | None = None):
        super().__init__(adapter)
        self.tasks = tasks or TaskService(adapter)

    # -------------------------------------------------------------------------
    # Standard task templates
    # -------------------------------------------------------------------------

    async def create_standard_template(
        self,
        user_id: str,
        title: str,
        recurrence_days,
        description: str | None = None,
        origin_board: str = "general",
    ) -> StandardTaskTemplate:
        """
        Create a standard task template.

        Args:
            user_id: Owner
            title: Title given to each instance
            recurrence_days: Weekday names, as a list or a comma separated string
            description: Description given to each instance
            origin_board: Board instances are created on

        Raises:
            ValidationError: Unknown weekday or board
        """
        if origin_board not in TASK_BOARDS or origin_board in RESERVED_BOARDS:
            raise ValidationError(f"Invalid board for a standard template: {origin_board}")
        days = [WEEKDAY_NAMES[i] for i in sorted(parse_weekday_list(recurrence_days))]

        template = StandardTaskTemplate(
            user_id=user_id,
            title=title,
            recurrence_days=days,
            description=description,
            origin_board=origin_board,
        )
        row = template.to_dict()
        row["created_at"] = template.created_at
        row["updated_at"] = template.updated_at
        await self.adapter.execute(self._insert_sql(TEMPLATES_TABLE, row), *row.values())

        logger.info(f"Created standard template: {template.id} - {template.title} ({row['recurrence_days']})")
        return template

    async def get_standard_template(self, template_id: str) -> StandardTaskTemplate | None:
        row = await self.adapter.fetchrow(
            f"SELECT * FROM {self.adapter.table(TEMPLATES_TABLE)} WHERE id = $1", template_id
        )
        return StandardTaskTemplate.from_dict(row) if row else None

    async def list_active_standard_templates(self, user_id: str) -> List[StandardTaskTemplate]:
        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self.adapter.table(TEMPLATES_TABLE)}
            WHERE user_id = $1 AND is_active = $2
            ORDER BY created_at ASC
            """,
            user_id, True,
        )
        return [StandardTaskTemplate.from_dict(row) for row in rows]

    async def set_standard_template_active(self, template_id: str, is_active: bool) -> StandardTaskTemplate:
        """
        Pause or resume a standard template.

        Raises:
            NotFoundError: Unknown template
        """
        await self._update_fields(
            TEMPLATES_TABLE, template_id, {"is_active": is_active, "updated_at": utcnow()}
        )
        template = await self.get_standard_template(template_id)
        if template is None:
            raise NotFoundError("StandardTaskTemplate", template_id)
        return template

    # -------------------------------------------------------------------------
    # Instantiation
    # -------------------------------------------------------------------------

    async def instantiate(self, user_id: str, today: date) -> InstantiationReport:
        """
        Create today's instances of every template that falls on today.

        A template with malformed recurrence details is reported and skipped;
        the others still run.

        Args:
            user_id: Owner
            today: The user's local date

        Returns:
            Report listing the tasks created by this call
        """
        report = InstantiationReport(user_id=user_id, day=today)

        for template in await self.tasks.list_recurring_templates(user_id):
            try:
                if not recurrence_matches(template.recurrence_type, template.recurrence_details, today):
                    continue
            except ValidationError as e:
                logger.warning(f"[User {user_id}] Recurring task {template.id} skipped: {e}")
                report.add_error(template.id, e)
                continue

            instance = Task(
                user_id=user_id,
                title=template.title,
                description=template.description,
                due_date=today,
                time=template.recurrence_time,
                origin_board=template.origin_board,
                is_priority=template.is_priority,
                parent_task_id=template.id,
                client_name=template.client_name,
                tags=list(template.tags),
                generation_key=recurring_generation_key(template.id, today),
            )
            if await self.tasks.insert_if_absent(instance):
                report.created.append(instance)

        weekday = sunday_weekday(today)
        for standard in await self.list_active_standard_templates(user_id):
            try:
                if weekday not in parse_weekday_list(standard.recurrence_days):
                    continue
            except ValidationError as e:
                logger.warning(f"[User {user_id}] Standard template {standard.id} skipped: {e}")
                report.add_error(standard.id, e)
                continue

            if await self.tasks.has_open_instance(standard.id):
                logger.debug(f"[User {user_id}] Standard template {standard.id} still has an open task")
                continue

            instance = Task(
                user_id=user_id,
                title=standard.title,
                description=standard.description,
                due_date=today,
                origin_board=standard.origin_board,
                is_priority=standard.is_priority,
                template_task_id=standard.id,
                generation_key=standard_generation_key(standard.id, today),
            )
            if await self.tasks.insert_if_absent(instance):
                report.created.append(instance)

        if report.created:
            logger.info(f"[User {user_id}] Instantiated {report.created_count} task(s) for {today.isoformat()}")
        return report
