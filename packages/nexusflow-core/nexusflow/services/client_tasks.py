"""
Client Task Service for Nexusflow.

Client tasks live on a per-client kanban. Status changes go through the board
state machine; public approval links let a client review a month of tasks.
"""

import builtins
import logging
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable

from nexusflow.db import rows_affected
from nexusflow.errors import ConflictError, NotFoundError, TransitionError, ValidationError
from nexusflow.models.client import (
    FINISHED_STATUSES,
    ClientTask,
    ClientTaskHistoryEvent,
    PublicApprovalLink,
)
from nexusflow.models.fields import utcnow
from nexusflow.services.base import BaseService
from nexusflow.services.patterns import parse_month_reference
from nexusflow.services.tasks import TaskService
from nexusflow.services.transitions import Actor, check_client_task_transition

logger = logging.getLogger(__name__)

TABLE = "client_tasks"
LINKS_TABLE = "public_approval_links"
HISTORY_TABLE = "client_task_history"

# Unique key of a generated task's slot
SLOT_KEY = ("client_id", "template_id", "month_year_reference", "generation_slot")

# Statements racing for the same order_index are retried this many times
ORDER_INDEX_ATTEMPTS = 3

# Days a freshly generated approval link stays valid
APPROVAL_LINK_DAYS = 7


def client_task_row(task: ClientTask) -> dict:
    """Column values for inserting a client task (native Python values)."""
    return {
        "id": task.id,
        "user_id": task.user_id,
        "client_id": task.client_id,
        "template_id": task.template_id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "month_year_reference": task.month_year_reference,
        "due_date": task.due_date,
        "time": task.time,
        "is_completed": task.is_completed,
        "completed_at": task.completed_at,
        "order_index": task.order_index,
        "is_standard_task": task.is_standard_task,
        "main_task_id": task.main_task_id,
        "public_approval_enabled": task.public_approval_enabled,
        "public_approval_link_id": task.public_approval_link_id,
        "edit_reason": task.edit_reason,
        "parent_task_id": task.parent_task_id,
        "tags": task.tags,
        "generation_slot": task.generation_slot,
        "overdue": task.overdue,
        "last_moved_to_overdue_at": task.last_moved_to_overdue_at,
        "created_at": task.created_at,
        "updated_at": task.updated_at,
    }


class ClientTaskService(BaseService):
    """Service for client tasks and their public approval links."""

    def __init__(self, adapter=None, task_service: TaskService | None = None):
        super().__init__(adapter)
        self._tasks = task_service

    @property
    def tasks(self) -> TaskService:
        """TaskService used to keep mirror tasks in step."""
        if self._tasks is None:
            self._tasks = TaskService(self._adapter)
        return self._tasks

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, task_id: str) -> ClientTask | None:
        row = await self.adapter.fetchrow(
            f"SELECT * FROM {self.adapter.table(TABLE)} WHERE id = $1", task_id
        )
        return ClientTask.from_dict(row) if row else None

    async def list(
        self,
        client_id: str,
        month_year_reference: str | None = None,
        status: str | None = None,
        limit: int = 500,
    ) -> list[ClientTask]:
        """
        List a client's tasks, in kanban order.

        Args:
            client_id: Client
            month_year_reference: Only this "YYYY-MM"
            status: Only this kanban column
            limit: Max results
        """
        conditions = ["client_id = $1"]
        params: list = [client_id]
        if month_year_reference:
            params.append(month_year_reference)
            conditions.append(f"month_year_reference = ${len(params)}")
        if status:
            params.append(status)
            conditions.append(f"status = ${len(params)}")
        params.append(limit)

        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self.adapter.table(TABLE)}
            WHERE {' AND '.join(conditions)}
            ORDER BY status, order_index ASC, created_at ASC
            LIMIT ${len(params)}
            """,
            *params,
        )
        return [ClientTask.from_dict(row) for row in rows]

    async def existing_slots(self, client_id: str, template_id: str, month_year_reference: str) -> set[str]:
        """Slot keys already generated for a template and month."""
        rows = await self.adapter.fetch(
            f"""
            SELECT generation_slot FROM {self.adapter.table(TABLE)}
            WHERE client_id = $1 AND template_id = $2 AND month_year_reference = $3
              AND generation_slot IS NOT NULL
            """,
            client_id, template_id, month_year_reference,
        )
        return {row["generation_slot"] for row in rows}

    async def history(self, task_id: str) -> builtins.list[ClientTaskHistoryEvent]:
        """Audit trail of a client task, oldest first."""
        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self.adapter.table(HISTORY_TABLE)}
            WHERE client_task_id = $1
            ORDER BY created_at ASC
            """,
            task_id,
        )
        return [ClientTaskHistoryEvent.from_dict(row) for row in rows]

    async def list_late(self, user_id: str, today: date) -> builtins.list[ClientTask]:
        """Unfinished client tasks due before today that are not yet flagged overdue."""
        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self.adapter.table(TABLE)}
            WHERE user_id = $1
              AND is_completed = $2
              AND status NOT IN ($3, $4)
              AND due_date IS NOT NULL
              AND due_date < $5
              AND overdue = $6
            ORDER BY due_date ASC
            """,
            user_id, False, FINISHED_STATUSES[0], FINISHED_STATUSES[1], today, False,
        )
        return [ClientTask.from_dict(row) for row in rows]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _next_order_index_sql(self) -> str:
        """Position after the last task of a column, for $1 client and $2 status."""
        return (
            f"(SELECT COALESCE(MAX(o.order_index) + 1, 0) FROM {self.adapter.table(TABLE)} AS o "
            "WHERE o.client_id = $1 AND o.status = $2)"
        )

    async def _claim_order_index(self, statement: Callable[[], Awaitable[str]], task_id: str) -> str:
        """
        Run a statement that takes the next order_index of a column.

        The unique (client_id, status, order_index) index rejects a position
        another writer took first; the statement is then rerun.
        """
        for attempt in range(1, ORDER_INDEX_ATTEMPTS + 1):
            try:
                return await statement()
            except ConflictError:
                if attempt == ORDER_INDEX_ATTEMPTS:
                    raise
                logger.debug(f"order_index of client task {task_id} taken, retrying ({attempt})")

    async def _insert(self, task: ClientTask, conflict_target: tuple[str, ...] = ()) -> bool:
        """Insert at the end of the task's status column and record the position taken."""
        row = client_task_row(task)
        del row["order_index"]
        query = self._insert_sql(
            TABLE,
            row,
            conflict_target=conflict_target,
            computed={"order_index": self._next_order_index_sql()},
        )
        status = await self._claim_order_index(
            lambda: self.adapter.execute(query, *row.values(), task.client_id, task.status),
            task.id,
        )
        if rows_affected(status) == 0:
            return False

        task.order_index = await self.adapter.fetchval(
            f"SELECT order_index FROM {self.adapter.table(TABLE)} WHERE id = $1", task.id
        )
        return True

    async def insert_if_absent(self, task: ClientTask) -> bool:
        """
        Insert a client task unless its generation slot is already taken.

        On insert the task's order_index is set to the position it took.

        Returns:
            True if inserted, False if the slot already had a task
        """
        return await self._insert(task, conflict_target=SLOT_KEY)

    async def create(
        self,
        user_id: str,
        client_id: str,
        title: str,
        month_year_reference: str,
        description: str | None = None,
        due_date: date | None = None,
        time: str | None = None,
        public_approval_enabled: bool = False,
        parent_task_id: str | None = None,
        tags: builtins.list[str] | None = None,
    ) -> ClientTask:
        """Create an ad hoc client task at the end of the pending column."""
        parse_month_reference(month_year_reference)

        task = ClientTask(
            user_id=user_id,
            client_id=client_id,
            title=title,
            month_year_reference=month_year_reference,
            description=description,
            due_date=due_date,
            time=time,
            public_approval_enabled=public_approval_enabled,
            parent_task_id=parent_task_id,
            tags=tags or [],
        )
        await self._insert(task)
        logger.info(f"Created client task: {task.id} - {task.title}")
        return task

    async def mark_overdue(self, task: ClientTask, now: datetime | None = None) -> bool:
        """
        Flag a late client task as overdue. Its status column is left alone.

        Returns:
            True if this call set the flag
        """
        now = now or utcnow()
        status = await self._update_fields(
            TABLE,
            task.id,
            {"overdue": True, "last_moved_to_overdue_at": now, "updated_at": now},
            condition="overdue = $1 AND is_completed = $2",
            condition_params=(False, False),
        )
        return rows_affected(status) > 0

    async def transition(
        self,
        task_id: str,
        new_status: str,
        actor: Actor = Actor.OWNER,
        link: PublicApprovalLink | None = None,
        edit_reason: str | None = None,
        now: datetime | None = None,
    ) -> ClientTask:
        """
        Move a client task to another status column.

        The task goes to the end of the target column. Finishing a standard task
        also completes its mirror on the dashboard.

        Args:
            task_id: Client task
            new_status: Target status
            actor: Who is making the move
            link: Approval link, required for the public actor
            edit_reason: Recorded with edit_requested and rejected
            now: Current time (defaults to utcnow)

        Raises:
            NotFoundError: Unknown task
            ValidationError: Unknown status
            TransitionError: Move not allowed, or the task changed underneath us
            PermissionDeniedError: Actor not allowed
        """
        task = await self.get(task_id)
        if task is None:
            raise NotFoundError("ClientTask", task_id)

        now = now or utcnow()
        check_client_task_transition(task, new_status, actor=actor, link=link, now=now)

        fields = {"status": new_status, "updated_at": now}
        if new_status in ("edit_requested", "rejected"):
            fields["edit_reason"] = edit_reason
        elif new_status == "approved":
            fields["edit_reason"] = None
        if new_status in FINISHED_STATUSES:
            fields.update({"is_completed": True, "completed_at": now})

        status = await self._claim_order_index(
            lambda: self._update_fields(
                TABLE,
                task_id,
                fields,
                condition="status = $1",
                condition_params=(task.status,),
                computed={"order_index": self._next_order_index_sql()},
                computed_params=(task.client_id, new_status),
            ),
            task_id,
        )
        if rows_affected(status) == 0:
            raise TransitionError(f"Client task {task_id} changed status concurrently")

        logger.info(f"Client task {task_id}: {task.status} -> {new_status} ({actor.value})")

        if new_status in FINISHED_STATUSES and task.is_standard_task and task.main_task_id:
            try:
                await self.tasks.complete(task.main_task_id, now)
            except NotFoundError:
                logger.warning(f"Mirror task {task.main_task_id} of client task {task_id} is missing")

        return await self.get(task_id)

    # -------------------------------------------------------------------------
    # Public approval links
    # -------------------------------------------------------------------------

    async def create_approval_link(
        self,
        user_id: str,
        client_id: str,
        month_year_reference: str,
        valid_days: int = APPROVAL_LINK_DAYS,
        now: datetime | None = None,
    ) -> PublicApprovalLink:
        """
        Generate a link for the client to review a month of tasks.

        Every task of that month waiting in under_review with public approval
        enabled is assigned to the new link.
        """
        parse_month_reference(month_year_reference)
        if valid_days <= 0:
            raise ValidationError("valid_days must be positive")

        now = now or utcnow()
        link = PublicApprovalLink(
            user_id=user_id,
            client_id=client_id,
            month_year_reference=month_year_reference,
            expires_at=now + timedelta(days=valid_days),
            created_at=now,
        )
        row = {
            "id": link.id,
            "unique_id": link.unique_id,
            "user_id": link.user_id,
            "client_id": link.client_id,
            "month_year_reference": link.month_year_reference,
            "expires_at": link.expires_at,
            "created_at": link.created_at,
        }
        await self.adapter.execute(self._insert_sql(LINKS_TABLE, row), *row.values())

        status = await self.adapter.execute(
            f"""
            UPDATE {self.adapter.table(TABLE)}
            SET public_approval_link_id = $1, updated_at = $2
            WHERE user_id = $3 AND client_id = $4 AND month_year_reference = $5
              AND status = $6 AND public_approval_enabled = $7
            """,
            link.unique_id, now, user_id, client_id, month_year_reference, "under_review", True,
        )
        logger.info(
            f"Created approval link {link.unique_id} for client {client_id} "
            f"({month_year_reference}), {rows_affected(status)} task(s)"
        )
        return link

    async def get_approval_link(self, unique_id: str) -> PublicApprovalLink | None:
        row = await self.adapter.fetchrow(
            f"SELECT * FROM {self.adapter.table(LINKS_TABLE)} WHERE unique_id = $1", unique_id
        )
        return PublicApprovalLink.from_dict(row) if row else None

    async def list_for_approval_link(self, unique_id: str) -> builtins.list[ClientTask]:
        """Tasks a link holder may see."""
        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self.adapter.table(TABLE)}
            WHERE public_approval_link_id = $1 AND public_approval_enabled = $2
            ORDER BY order_index ASC, created_at ASC
            """,
            unique_id, True,
        )
        return [ClientTask.from_dict(row) for row in rows]

    async def public_transition(
        self,
        link_unique_id: str,
        task_id: str,
        new_status: str,
        edit_reason: str | None = None,
        now: datetime | None = None,
    ) -> ClientTask:
        """
        Apply a review decision made through a public approval link.

        The decision is added to the task's history. A failure to write the
        history entry is logged; the decision itself stands.

        Raises:
            NotFoundError: Unknown link or task
            PermissionDeniedError: Link expired, not assigned to the task, or the move isn't a review decision
        """
        link = await self.get_approval_link(link_unique_id)
        if link is None:
            raise NotFoundError("PublicApprovalLink", link_unique_id)

        now = now or utcnow()
        task = await self.transition(
            task_id,
            new_status,
            actor=Actor.PUBLIC,
            link=link,
            edit_reason=edit_reason,
            now=now,
        )
        try:
            await self._record_public_decision(task, edit_reason, now)
        except Exception:
            logger.exception(f"Could not record public decision on client task {task_id}")
        return task

    async def _record_public_decision(self, task: ClientTask, edit_reason: str | None, now: datetime) -> None:
        client_name = await self.adapter.fetchval(
            f"SELECT name FROM {self.adapter.table('clients')} WHERE id = $1", task.client_id
        )
        event = ClientTaskHistoryEvent(
            client_task_id=task.id,
            user_id=task.user_id,
            event_type=f"{task.status}_via_public_link",
            details={
                "client_name": client_name,
                "task_title": task.title,
                "month_year_reference": task.month_year_reference,
                "edit_reason": edit_reason,
            },
            created_at=now,
        )
        row = {
            "id": event.id,
            "client_task_id": event.client_task_id,
            "user_id": event.user_id,
            "event_type": event.event_type,
            "details": event.details,
            "created_at": event.created_at,
        }
        await self.adapter.execute(self._insert_sql(HISTORY_TABLE, row), *row.values())
