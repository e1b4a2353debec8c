"""
Task Service for Nexusflow.

Record store operations for dashboard tasks, working across PostgreSQL and SQLite.
"""

import builtins
import logging
from datetime import date, datetime

from nexusflow.db import rows_affected
from nexusflow.errors import NotFoundError, ValidationError
from nexusflow.models.fields import utcnow
from nexusflow.models.task import RECURRENCE_TYPES, TASK_BOARDS, TEMPLATE_RECURRENCE_TYPES, Task
from nexusflow.services.base import BaseService
from nexusflow.services.patterns import normalize_recurrence_details
from nexusflow.services.transitions import RESERVED_BOARDS, BoardTrigger, check_board_move

logger = logging.getLogger(__name__)

TABLE = "tasks"


def task_row(task: Task) -> dict:
    """Column values for inserting a task (native Python values)."""
    metrics = task.metrics.to_columns()
    return {
        "id": task.id,
        "user_id": task.user_id,
        "title": task.title,
        "description": task.description,
        "due_date": task.due_date,
        "time": task.time,
        "is_completed": task.is_completed,
        "completed_at": task.completed_at,
        "origin_board": task.origin_board,
        "current_board": task.current_board,
        "is_priority": task.is_priority,
        "overdue": task.overdue,
        "last_moved_to_overdue_at": task.last_moved_to_overdue_at,
        "recurrence_type": task.recurrence_type,
        "recurrence_details": task.recurrence_details,
        "recurrence_time": task.recurrence_time,
        "recurrence_streak": metrics["recurrence_streak"],
        "total_completed": metrics["total_completed"],
        "missed_days": metrics["missed_days"],
        "fail_by_weekday": metrics["fail_by_weekday"],
        "success_rate": task.metrics.compute_success_rate(),
        "last_rollover_date": task.last_rollover_date,
        "parent_task_id": task.parent_task_id,
        "client_name": task.client_name,
        "tags": task.tags,
        "generation_key": task.generation_key,
        "template_task_id": task.template_task_id,
        "created_at": task.created_at,
        "updated_at": task.updated_at,
    }


class TaskService(BaseService):
    """
    Service for managing dashboard tasks.

    Provides the filtered reads the rollover needs plus the board moves and
    completion action that BoardStateMachine governs.
    """

    async def create(
        self,
        user_id: str,
        title: str,
        description: str | None = None,
        due_date: date | None = None,
        time: str | None = None,
        origin_board: str = "general",
        recurrence_type: str = "none",
        is_priority: bool = False,
        parent_task_id: str | None = None,
        client_name: str | None = None,
        tags: list[str] | None = None,
        recurrence_details: str | None = None,
        recurrence_time: str | None = None,
    ) -> Task:
        """
        Create a new task (ad hoc user action).

        Args:
            user_id: Owner
            title: Task title
            description: Task description
            due_date: Calendar due date
            time: Optional time of day
            origin_board: Board to create the task on
            recurrence_type: none, daily, weekly, monthly, custom
            is_priority: Priority flag
            parent_task_id: Parent task for subtasks
            client_name: Client label
            tags: List of tags
            recurrence_details: Weekday names (weekly) or day of month (monthly)
            recurrence_time: Time of day given to weekly and monthly instances

        Returns:
            Created Task object

        Raises:
            ValidationError: Unknown board or recurrence, or malformed recurrence details
        """
        if origin_board not in TASK_BOARDS or origin_board in RESERVED_BOARDS:
            allowed = [b for b in TASK_BOARDS if b not in RESERVED_BOARDS]
            raise ValidationError(f"Invalid board. Must be one of: {', '.join(allowed)}")
        if recurrence_type not in RECURRENCE_TYPES:
            raise ValidationError(f"Invalid recurrence. Must be one of: {', '.join(RECURRENCE_TYPES)}")
        recurrence_details = normalize_recurrence_details(recurrence_type, recurrence_details)

        task = Task(
            user_id=user_id,
            title=title,
            description=description,
            due_date=due_date,
            time=time,
            origin_board=origin_board,
            recurrence_type=recurrence_type,
            recurrence_details=recurrence_details,
            recurrence_time=recurrence_time,
            is_priority=is_priority,
            parent_task_id=parent_task_id,
            client_name=client_name,
            tags=tags or [],
        )
        row = task_row(task)
        await self.adapter.execute(self._insert_sql(TABLE, row), *row.values())

        logger.info(f"Created task: {task.id} - {task.title}")
        return task

    async def insert_if_absent(self, task: Task) -> bool:
        """
        Insert a task unless another task already holds its generation_key.

        Returns:
            True if inserted, False if it already existed
        """
        row = task_row(task)
        status = await self.adapter.execute(
            self._insert_sql(TABLE, row, conflict_target=("generation_key",)), *row.values()
        )
        return rows_affected(status) > 0

    async def get(self, task_id: str) -> Task | None:
        """Get a task by ID."""
        row = await self.adapter.fetchrow(
            f"SELECT * FROM {self.adapter.table(TABLE)} WHERE id = $1", task_id
        )
        if row:
            return Task.from_dict(row)
        return None

    async def get_by_generation_key(self, generation_key: str) -> Task | None:
        row = await self.adapter.fetchrow(
            f"SELECT * FROM {self.adapter.table(TABLE)} WHERE generation_key = $1", generation_key
        )
        return Task.from_dict(row) if row else None

    async def list(
        self,
        user_id: str,
        board: str | None = None,
        is_completed: bool | None = None,
        due_from: date | None = None,
        due_before: date | None = None,
        recurrence_type: str | None = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[Task]:
        """
        List a user's tasks with optional filters.

        Args:
            user_id: Owner
            board: Filter by current board
            is_completed: Filter by completion flag
            due_from: Due on or after this date
            due_before: Due strictly before this date
            recurrence_type: Filter by recurrence
            limit: Max results
            offset: Pagination offset

        Returns:
            Tasks ordered by creation time
        """
        conditions = ["user_id = $1"]
        params: list = [user_id]

        def add(clause: str, value) -> None:
            params.append(value)
            conditions.append(clause.format(n=len(params)))

        if board:
            add("current_board = ${n}", board)
        if is_completed is not None:
            add("is_completed = ${n}", is_completed)
        if due_from:
            add("due_date >= ${n}", due_from)
        if due_before:
            add("due_date < ${n}", due_before)
        if recurrence_type:
            add("recurrence_type = ${n}", recurrence_type)

        where_clause = " AND ".join(conditions)
        params.extend([limit, offset])
        query = f"""
            SELECT * FROM {self.adapter.table(TABLE)}
            WHERE {where_clause}
            ORDER BY created_at ASC
            LIMIT ${len(params) - 1} OFFSET ${len(params)}
        """
        rows = await self.adapter.fetch(query, *params)
        return [Task.from_dict(row) for row in rows]

    async def list_late(self, user_id: str, today: date) -> builtins.list[Task]:
        """
        Incomplete tasks due before today that are not yet on the overdue board.

        Daily-recurring tasks are included; their metrics keep advancing on the
        overdue board.
        """
        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self.adapter.table(TABLE)}
            WHERE user_id = $1
              AND is_completed = $2
              AND due_date IS NOT NULL
              AND due_date < $3
              AND current_board != $4
            ORDER BY due_date ASC
            """,
            user_id, False, today, "overdue",
        )
        return [Task.from_dict(row) for row in rows]

    async def list_daily_recurring(self, user_id: str) -> builtins.list[Task]:
        return await self.list(user_id, recurrence_type="daily", limit=10000)

    async def list_recurring_templates(self, user_id: str) -> builtins.list[Task]:
        """Top-level weekly and monthly tasks, the templates for their instances."""
        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self.adapter.table(TABLE)}
            WHERE user_id = $1
              AND recurrence_type IN ($2, $3)
              AND parent_task_id IS NULL
            ORDER BY created_at ASC
            """,
            user_id, *TEMPLATE_RECURRENCE_TYPES,
        )
        return [Task.from_dict(row) for row in rows]

    async def has_open_instance(self, template_task_id: str) -> bool:
        """Whether a task created from this standard template is still incomplete."""
        found = await self.adapter.fetchval(
            f"""
            SELECT 1 FROM {self.adapter.table(TABLE)}
            WHERE template_task_id = $1 AND is_completed = $2
            LIMIT 1
            """,
            template_task_id, False,
        )
        return found is not None

    async def mark_overdue(self, task: Task, now: datetime | None = None) -> bool:
        """
        Move a task to the overdue board (rollover only).

        The update is conditional, so a task demoted by a concurrent run is left alone.

        Returns:
            True if this call moved the task
        """
        check_board_move(task, "overdue", BoardTrigger.ROLLOVER)
        now = now or utcnow()
        status = await self._update_fields(
            TABLE,
            task.id,
            {
                "current_board": "overdue",
                "overdue": True,
                "last_moved_to_overdue_at": now,
                "updated_at": now,
            },
            condition="current_board != $1 AND is_completed = $2",
            condition_params=("overdue", False),
        )
        return rows_affected(status) > 0

    async def move(self, task_id: str, new_board: str) -> Task:
        """
        Manually move a task to another board (reprioritization).

        Raises:
            NotFoundError: Unknown task
            ValidationError: Unknown board
            TransitionError: Board reserved for rollover or completion
        """
        task = await self.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)

        check_board_move(task, new_board, BoardTrigger.MANUAL)
        if task.current_board == new_board:
            return task

        await self._update_fields(
            TABLE,
            task_id,
            {"current_board": new_board, "overdue": False, "updated_at": utcnow()},
        )
        logger.info(f"Moved task {task_id}: {task.current_board} -> {new_board}")
        return await self.get(task_id)

    async def complete(self, task_id: str, now: datetime | None = None) -> Task:
        """
        Mark a task as done (user completion action).

        Daily-recurring tasks keep their board; the next rollover counts the
        completion and reopens them. Other tasks move to the completed board.

        Raises:
            NotFoundError: Unknown task
        """
        task = await self.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        if task.is_completed:
            return task

        now = now or utcnow()
        fields = {"is_completed": True, "completed_at": now, "updated_at": now}
        if not task.is_daily_recurring:
            check_board_move(task, "completed", BoardTrigger.COMPLETION)
            fields.update({"current_board": "completed", "overdue": False})

        await self._update_fields(TABLE, task_id, fields)
        logger.info(f"Completed task: {task_id}")
        return await self.get(task_id)

    async def save_rollover(self, task: Task, today: date, now: datetime | None = None) -> bool:
        """
        Persist advanced metrics and reopen a daily-recurring task for today.

        Only applies if the task hasn't been advanced for today yet, which keeps
        racing or repeated rollovers from double counting.

        Returns:
            True if this call advanced the task
        """
        now = now or utcnow()
        fields = dict(task.metrics.to_columns())
        fields["success_rate"] = task.metrics.compute_success_rate()
        fields.update({
            "is_completed": False,
            "completed_at": None,
            "last_rollover_date": today,
            "updated_at": now,
        })
        status = await self._update_fields(
            TABLE,
            task.id,
            fields,
            condition="last_rollover_date IS NULL OR last_rollover_date < $1",
            condition_params=(today,),
        )
        return rows_affected(status) > 0
