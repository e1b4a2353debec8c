"""
Client Service for Nexusflow.

Clients, their generation templates, and the user profiles the rollover iterates.
"""

import logging

from nexusflow.db import rows_affected
from nexusflow.models.client import Client, ClientTaskGenerationTemplate, PatternEntry
from nexusflow.models.profile import UserProfile
from nexusflow.services.base import BaseService

logger = logging.getLogger(__name__)


class ClientService(BaseService):
    """Service for clients, generation templates and profiles."""

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    async def upsert_profile(self, user_id: str, timezone: str | None = None) -> UserProfile:
        """Create a profile or update its timezone."""
        profile = UserProfile(id=user_id, timezone=timezone)
        await self.adapter.execute(
            f"""
            INSERT INTO {self.adapter.table('profiles')} (id, timezone)
            VALUES ($1, $2)
            ON CONFLICT (id) DO UPDATE SET timezone = excluded.timezone
            """,
            profile.id, profile.timezone,
        )
        return profile

    async def list_profiles(self) -> list[UserProfile]:
        rows = await self.adapter.fetch(
            f"SELECT * FROM {self.adapter.table('profiles')} ORDER BY id"
        )
        return [UserProfile.from_dict(row) for row in rows]

    # -------------------------------------------------------------------------
    # Clients
    # -------------------------------------------------------------------------

    async def create_client(self, user_id: str, name: str, monthly_delivery_goal: int = 0) -> Client:
        client = Client(user_id=user_id, name=name, monthly_delivery_goal=monthly_delivery_goal)
        row = {
            "id": client.id,
            "user_id": client.user_id,
            "name": client.name,
            "monthly_delivery_goal": client.monthly_delivery_goal,
            "created_at": client.created_at,
            "updated_at": client.updated_at,
        }
        await self.adapter.execute(self._insert_sql("clients", row), *row.values())
        logger.info(f"Created client: {client.id} - {client.name}")
        return client

    async def get_client(self, user_id: str, client_id: str) -> Client | None:
        """Get a client owned by user_id."""
        row = await self.adapter.fetchrow(
            f"SELECT * FROM {self.adapter.table('clients')} WHERE id = $1 AND user_id = $2",
            client_id, user_id,
        )
        return Client.from_dict(row) if row else None

    # -------------------------------------------------------------------------
    # Generation templates
    # -------------------------------------------------------------------------

    async def create_template(
        self,
        user_id: str,
        client_id: str,
        template_name: str,
        generation_pattern: list[PatternEntry | dict],
        default_due_days: int = 0,
        delivery_count: int | None = None,
        is_active: bool = True,
        is_standard_task: bool = False,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> ClientTaskGenerationTemplate:
        """
        Store a generation template.

        The pattern is stored as given; it is validated when tasks are generated so
        that a bad template only fails its own generation.

        Args:
            delivery_count: Defaults to the number of tasks the pattern asks for
        """
        entries = [e if isinstance(e, PatternEntry) else PatternEntry.from_dict(e) for e in generation_pattern]
        if delivery_count is None:
            delivery_count = sum(e.count for e in entries if isinstance(e.count, int))

        template = ClientTaskGenerationTemplate(
            user_id=user_id,
            client_id=client_id,
            template_name=template_name,
            description=description,
            delivery_count=delivery_count,
            generation_pattern=entries,
            default_due_days=default_due_days,
            is_active=is_active,
            is_standard_task=is_standard_task,
            tags=tags or [],
        )
        row = {
            "id": template.id,
            "user_id": template.user_id,
            "client_id": template.client_id,
            "template_name": template.template_name,
            "description": template.description,
            "delivery_count": template.delivery_count,
            "generation_pattern": [e.to_dict() for e in template.generation_pattern],
            "default_due_days": template.default_due_days,
            "is_active": template.is_active,
            "is_standard_task": template.is_standard_task,
            "tags": template.tags,
            "created_at": template.created_at,
            "updated_at": template.updated_at,
        }
        await self.adapter.execute(
            self._insert_sql("client_task_generation_templates", row), *row.values()
        )
        logger.info(f"Created generation template: {template.id} - {template.template_name}")
        return template

    async def get_template(self, user_id: str, template_id: str) -> ClientTaskGenerationTemplate | None:
        row = await self.adapter.fetchrow(
            f"""
            SELECT * FROM {self.adapter.table('client_task_generation_templates')}
            WHERE id = $1 AND user_id = $2
            """,
            template_id, user_id,
        )
        return ClientTaskGenerationTemplate.from_dict(row) if row else None

    async def set_template_active(self, template_id: str, is_active: bool) -> bool:
        status = await self._update_fields(
            "client_task_generation_templates", template_id, {"is_active": is_active}
        )
        return rows_affected(status) > 0

    async def list_active_templates(
        self,
        user_id: str,
        client_id: str | None = None,
    ) -> list[ClientTaskGenerationTemplate]:
        """Active templates of a user, optionally for one client, oldest first."""
        conditions = ["user_id = $1", "is_active = $2"]
        params: list = [user_id, True]
        if client_id:
            params.append(client_id)
            conditions.append(f"client_id = ${len(params)}")

        rows = await self.adapter.fetch(
            f"""
            SELECT * FROM {self.adapter.table('client_task_generation_templates')}
            WHERE {' AND '.join(conditions)}
            ORDER BY created_at ASC
            """,
            *params,
        )
        return [ClientTaskGenerationTemplate.from_dict(row) for row in rows]

    async def clients_with_active_templates(self, user_id: str) -> list[str]:
        """Ids of the user's clients that have at least one active template."""
        rows = await self.adapter.fetch(
            f"""
            SELECT DISTINCT client_id FROM {self.adapter.table('client_task_generation_templates')}
            WHERE user_id = $1 AND is_active = $2
            ORDER BY client_id
            """,
            user_id, True,
        )
        return [row["client_id"] for row in rows]
