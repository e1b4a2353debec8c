"""
Task instance generation.

Turns a client's generation templates into ClientTasks for a month. Running it
again for the same month creates only the slots that are still missing, so it
is safe to call from every rollover and from concurrent workers.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from nexusflow.errors import NotFoundError, ValidationError
from nexusflow.models.client import Client, ClientTask, ClientTaskGenerationTemplate
from nexusflow.models.task import Task
from nexusflow.services.client_tasks import ClientTaskService
from nexusflow.services.clients import ClientService
from nexusflow.services.patterns import TaskSlot, expand_task_slots, parse_month_reference
from nexusflow.services.tasks import TaskService

logger = logging.getLogger(__name__)

MIRROR_BOARD = "client_tasks"


def mirror_generation_key(client_id: str, template_id: str, month_year_reference: str, slot_key: str) -> str:
    """Uniqueness key of the dashboard mirror of a generated client task."""
    return f"{client_id}:{template_id}:{month_year_reference}:{slot_key}"


@dataclass
class GenerationReport:
    """Outcome of generating every active template of a client for a month."""

    client_id: str
    month_year_reference: str
    created: List[ClientTask] = field(default_factory=list)
    templates: int = 0
    errors: List[dict] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "month_year_reference": self.month_year_reference,
            "templates": self.templates,
            "created": self.created_count,
            "created_ids": [task.id for task in self.created],
            "errors": self.errors,
        }


class TaskInstanceGenerator:
    """
    Creates the ClientTasks a template asks for in a month.

    Each template slot is identified by (client, template, month, slot key); the
    store's unique index on that key makes the inserts idempotent. Each task
    takes the next order_index of the pending column as it is inserted.
    """

    def __init__(
        self,
        adapter=None,
        clients: ClientService | None = None,
        client_tasks: ClientTaskService | None = None,
        tasks: TaskService | None = None,
    ):
        self.tasks = tasks or TaskService(adapter)
        self.clients = clients or ClientService(adapter)
        self.client_tasks = client_tasks or ClientTaskService(adapter, task_service=self.tasks)

    async def generate(
        self,
        user_id: str,
        client_id: str,
        template_id: str,
        month_year_reference: str,
    ) -> list[ClientTask]:
        """
        Generate the missing tasks of one template for a month.

        Args:
            user_id: Owner of the client and template
            client_id: Client
            template_id: Generation template
            month_year_reference: "YYYY-MM"

        Returns:
            ClientTasks created by this call (empty when everything exists)

        Raises:
            ValidationError: Malformed month reference or pattern
            NotFoundError: Client or template missing for this user
        """
        parse_month_reference(month_year_reference)

        client = await self.clients.get_client(user_id, client_id)
        if client is None:
            raise NotFoundError("Client", client_id)
        template = await self.clients.get_template(user_id, template_id)
        if template is None or template.client_id != client_id:
            raise NotFoundError("ClientTaskGenerationTemplate", template_id)

        if not template.is_active:
            logger.debug(f"Template {template_id} is inactive, nothing to generate")
            return []

        slots = expand_task_slots(
            template.generation_pattern, month_year_reference, template.default_due_days
        )
        existing = await self.client_tasks.existing_slots(client_id, template_id, month_year_reference)
        missing = [slot for slot in slots if slot.slot_key not in existing]
        if not missing:
            return []

        created = []
        for slot in missing:
            main_task_id = None
            if template.is_standard_task:
                main_task_id = await self._ensure_mirror(client, template, month_year_reference, slot)

            task = ClientTask(
                user_id=user_id,
                client_id=client_id,
                template_id=template.id,
                title=template.template_name,
                description=f"Generated from template: {template.template_name}",
                status="pending",
                month_year_reference=month_year_reference,
                due_date=slot.due_date,
                is_standard_task=template.is_standard_task,
                main_task_id=main_task_id,
                tags=list(template.tags),
                generation_slot=slot.slot_key,
            )
            if await self.client_tasks.insert_if_absent(task):
                created.append(task)
            else:
                logger.debug(f"Slot {slot.slot_key} of template {template_id} already generated")

        logger.info(
            f"Generated {len(created)} task(s) from template {template.template_name} "
            f"for client {client.name} ({month_year_reference})"
        )
        return created

    async def _ensure_mirror(
        self,
        client: Client,
        template: ClientTaskGenerationTemplate,
        month_year_reference: str,
        slot: TaskSlot,
    ) -> str:
        """Id of the dashboard mirror for a slot, creating it if needed."""
        key = mirror_generation_key(client.id, template.id, month_year_reference, slot.slot_key)
        mirror = Task(
            user_id=template.user_id,
            title=f"[CLIENT] {template.template_name}",
            description=f"Client task: {client.name}",
            due_date=slot.due_date,
            origin_board=MIRROR_BOARD,
            client_name=client.name,
            tags=list(template.tags),
            generation_key=key,
        )
        if await self.tasks.insert_if_absent(mirror):
            return mirror.id

        existing = await self.tasks.get_by_generation_key(key)
        if existing is None:
            # Removed between the insert and the lookup
            raise NotFoundError("Task", key)
        return existing.id

    async def generate_for_client(
        self,
        user_id: str,
        client_id: str,
        month_year_reference: str,
    ) -> GenerationReport:
        """
        Generate every active template of a client for a month.

        A template that fails validation or lookup is reported and skipped; the
        others still run.
        """
        report = GenerationReport(client_id=client_id, month_year_reference=month_year_reference)
        templates = await self.clients.list_active_templates(user_id, client_id)
        report.templates = len(templates)

        for template in templates:
            try:
                report.created.extend(
                    await self.generate(user_id, client_id, template.id, month_year_reference)
                )
            except (ValidationError, NotFoundError) as e:
                logger.error(f"Template {template.id} ({template.template_name}) failed: {e}")
                report.errors.append({
                    "template_id": template.id,
                    "template_name": template.template_name,
                    "error": str(e),
                })
        return report
