"""
Tests for Client Service and Client Task Service.
"""

import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone

from nexusflow.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransitionError,
    ValidationError,
)
from nexusflow.models.client import ClientTask
from nexusflow.services.client_tasks import ORDER_INDEX_ATTEMPTS

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def services(db):
    from nexusflow.services import ClientService, ClientTaskService, TaskService

    tasks = TaskService(adapter=db)
    return {
        "tasks": tasks,
        "clients": ClientService(adapter=db),
        "client_tasks": ClientTaskService(adapter=db, task_service=tasks),
    }


@pytest.fixture
async def client(services):
    return await services["clients"].create_client("u1", "Acme Bakery", monthly_delivery_goal=12)


async def move_through(service, task_id, *statuses, **kwargs):
    task = None
    for status in statuses:
        task = await service.transition(task_id, status, now=NOW, **kwargs)
    return task


class TestClientService:
    @pytest.mark.asyncio
    async def test_profiles(self, services):
        clients = services["clients"]
        await clients.upsert_profile("u2", "Europe/Lisbon")
        await clients.upsert_profile("u1")
        await clients.upsert_profile("u1", "Asia/Tokyo")

        profiles = await clients.list_profiles()

        assert [(p.id, p.timezone) for p in profiles] == [("u1", "Asia/Tokyo"), ("u2", "Europe/Lisbon")]

    @pytest.mark.asyncio
    async def test_get_client_scoped_to_user(self, services, client):
        assert (await services["clients"].get_client("u1", client.id)).name == "Acme Bakery"
        assert await services["clients"].get_client("u2", client.id) is None

    @pytest.mark.asyncio
    async def test_template_roundtrip(self, services, client, sample_pattern):
        clients = services["clients"]
        template = await clients.create_template(
            "u1", client.id, "Instagram post", sample_pattern, default_due_days=1, tags=["social"]
        )

        fetched = await clients.get_template("u1", template.id)

        assert fetched.template_name == "Instagram post"
        assert fetched.delivery_count == 3
        assert fetched.default_due_days == 1
        assert [e.to_dict() for e in fetched.generation_pattern] == sample_pattern
        assert fetched.tags == ["social"]

    @pytest.mark.asyncio
    async def test_active_templates(self, services, client, sample_pattern):
        clients = services["clients"]
        active = await clients.create_template("u1", client.id, "Post", sample_pattern)
        paused = await clients.create_template("u1", client.id, "Story", sample_pattern)
        assert await clients.set_template_active(paused.id, False) is True

        templates = await clients.list_active_templates("u1", client.id)

        assert [t.id for t in templates] == [active.id]
        assert await clients.clients_with_active_templates("u1") == [client.id]
        assert await clients.clients_with_active_templates("u2") == []


class TestClientTaskServiceBasics:
    @pytest.mark.asyncio
    async def test_create_appends_to_pending_column(self, services, client):
        service = services["client_tasks"]

        first = await service.create("u1", client.id, "Banner", "2026-10")
        second = await service.create("u1", client.id, "Reel", "2026-10", due_date=date(2026, 10, 9))

        assert first.order_index == 0
        assert second.order_index == 1
        assert [t.title for t in await service.list(client.id, "2026-10")] == ["Banner", "Reel"]

    @pytest.mark.asyncio
    async def test_create_rejects_bad_month(self, services, client):
        with pytest.raises(ValidationError):
            await services["client_tasks"].create("u1", client.id, "Banner", "Oct 2026")

    @pytest.mark.asyncio
    async def test_insert_if_absent_unique_slot(self, services, client):
        service = services["client_tasks"]

        def slot_task():
            return ClientTask(
                user_id="u1", client_id=client.id, title="Post", month_year_reference="2026-10",
                template_id="tpl", generation_slot="2026-10-05#0",
            )

        assert await service.insert_if_absent(slot_task()) is True
        assert await service.insert_if_absent(slot_task()) is False
        assert await service.existing_slots(client.id, "tpl", "2026-10") == {"2026-10-05#0"}

    @pytest.mark.asyncio
    async def test_list_late_and_mark_overdue(self, services, client):
        service = services["client_tasks"]
        late = await service.create("u1", client.id, "Late", "2026-10", due_date=date(2026, 10, 5))
        await service.create("u1", client.id, "Future", "2026-10", due_date=date(2026, 10, 30))

        today = date(2026, 10, 18)
        assert [t.id for t in await service.list_late("u1", today)] == [late.id]

        assert await service.mark_overdue(late, NOW) is True
        assert await service.mark_overdue(late, NOW) is False
        assert await service.list_late("u1", today) == []

        fetched = await service.get(late.id)
        assert fetched.overdue is True
        assert fetched.status == "pending"
        assert fetched.last_moved_to_overdue_at == NOW


class TestClientTaskTransitions:
    @pytest.mark.asyncio
    async def test_owner_workflow(self, services, client):
        service = services["client_tasks"]
        task = await service.create("u1", client.id, "Banner", "2026-10")

        task = await move_through(service, task.id, "in_progress", "under_review", "approved", "posted")

        assert task.status == "posted"
        assert task.is_completed is True
        assert task.completed_at == NOW

    @pytest.mark.asyncio
    async def test_new_column_gets_next_order_index(self, services, client):
        service = services["client_tasks"]
        a = await service.create("u1", client.id, "A", "2026-10")
        b = await service.create("u1", client.id, "B", "2026-10")

        a = await service.transition(a.id, "in_progress", now=NOW)
        b = await service.transition(b.id, "in_progress", now=NOW)

        assert (a.order_index, b.order_index) == (0, 1)

    @pytest.mark.asyncio
    async def test_invalid_transition(self, services, client):
        service = services["client_tasks"]
        task = await service.create("u1", client.id, "Banner", "2026-10")

        with pytest.raises(TransitionError):
            await service.transition(task.id, "posted", now=NOW)

        assert (await service.get(task.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_missing_task(self, services):
        with pytest.raises(NotFoundError):
            await services["client_tasks"].transition("nope", "in_progress")

    @pytest.mark.asyncio
    async def test_edit_request_records_reason(self, services, client):
        service = services["client_tasks"]
        task = await service.create("u1", client.id, "Banner", "2026-10")
        await move_through(service, task.id, "in_progress", "under_review")

        task = await service.transition(task.id, "edit_requested", edit_reason="Bigger logo", now=NOW)
        assert task.edit_reason == "Bigger logo"

        task = await move_through(service, task.id, "in_progress", "under_review", "approved")
        assert task.edit_reason is None

    @pytest.mark.asyncio
    async def test_completing_standard_task_completes_mirror(self, services, client):
        service = services["client_tasks"]
        mirror = await services["tasks"].create(
            user_id="u1", title="[CLIENT] Banner", origin_board="client_tasks"
        )
        task = ClientTask(
            user_id="u1", client_id=client.id, title="Banner", month_year_reference="2026-10",
            is_standard_task=True, main_task_id=mirror.id,
        )
        await service.insert_if_absent(task)

        await move_through(service, task.id, "in_progress", "under_review", "approved", "completed")

        mirror = await services["tasks"].get(mirror.id)
        assert mirror.is_completed is True
        assert mirror.current_board == "completed"


@pytest.fixture
async def reviewable(services, client):
    """One task open to public review and one that is not, both under_review, plus a link."""
    service = services["client_tasks"]
    task = await service.create("u1", client.id, "Banner", "2026-10", public_approval_enabled=True)
    other = await service.create("u1", client.id, "Private", "2026-10")
    await move_through(service, task.id, "in_progress", "under_review")
    await move_through(service, other.id, "in_progress", "under_review")
    link = await service.create_approval_link("u1", client.id, "2026-10", now=NOW)
    return task, other, link


class TestPublicApproval:

    @pytest.mark.asyncio
    async def test_link_assigned_to_enabled_tasks(self, services, reviewable):
        task, other, link = reviewable
        service = services["client_tasks"]

        assert link.expires_at == NOW + timedelta(days=7)
        assert (await service.get(task.id)).public_approval_link_id == link.unique_id
        assert (await service.get(other.id)).public_approval_link_id is None
        assert [t.id for t in await service.list_for_approval_link(link.unique_id)] == [task.id]

    @pytest.mark.asyncio
    async def test_public_approve(self, services, reviewable):
        task, _, link = reviewable

        approved = await services["client_tasks"].public_transition(
            link.unique_id, task.id, "approved", now=NOW + timedelta(days=1)
        )

        assert approved.status == "approved"

    @pytest.mark.asyncio
    async def test_public_edit_request(self, services, reviewable):
        task, _, link = reviewable

        result = await services["client_tasks"].public_transition(
            link.unique_id, task.id, "edit_requested", edit_reason="Wrong colour", now=NOW
        )

        assert result.status == "edit_requested"
        assert result.edit_reason == "Wrong colour"

    @pytest.mark.asyncio
    async def test_public_cannot_touch_task_without_approval(self, services, reviewable):
        _, other, link = reviewable

        with pytest.raises(PermissionDeniedError):
            await services["client_tasks"].public_transition(link.unique_id, other.id, "approved", now=NOW)

    @pytest.mark.asyncio
    async def test_public_link_expired(self, services, reviewable):
        task, _, link = reviewable

        with pytest.raises(PermissionDeniedError):
            await services["client_tasks"].public_transition(
                link.unique_id, task.id, "approved", now=NOW + timedelta(days=8)
            )
        assert (await services["client_tasks"].get(task.id)).status == "under_review"

    @pytest.mark.asyncio
    async def test_public_cannot_post(self, services, reviewable):
        task, _, link = reviewable
        service = services["client_tasks"]
        await service.public_transition(link.unique_id, task.id, "approved", now=NOW)

        with pytest.raises(PermissionDeniedError):
            await service.public_transition(link.unique_id, task.id, "posted", now=NOW)

    @pytest.mark.asyncio
    async def test_unknown_link(self, services, reviewable):
        task, _, _ = reviewable

        with pytest.raises(NotFoundError):
            await services["client_tasks"].public_transition("missing", task.id, "approved", now=NOW)

    @pytest.mark.asyncio
    async def test_public_decisions_are_recorded_in_history(self, services, reviewable):
        task, _, link = reviewable
        service = services["client_tasks"]
        later = NOW + timedelta(hours=2)

        await service.public_transition(link.unique_id, task.id, "edit_requested", edit_reason="Wrong colour", now=NOW)
        await move_through(service, task.id, "in_progress", "under_review")
        await service.public_transition(link.unique_id, task.id, "approved", now=later)

        events = await service.history(task.id)
        assert [e.event_type for e in events] == ["edit_requested_via_public_link", "approved_via_public_link"]
        assert events[0].details == {
            "client_name": "Acme Bakery",
            "task_title": "Banner",
            "month_year_reference": "2026-10",
            "edit_reason": "Wrong colour",
        }
        assert events[0].user_id == "u1"
        assert events[1].created_at == later

    @pytest.mark.asyncio
    async def test_owner_moves_leave_no_history(self, services, reviewable):
        task, _, _ = reviewable

        await services["client_tasks"].transition(task.id, "approved", now=NOW)

        assert await services["client_tasks"].history(task.id) == []

    @pytest.mark.asyncio
    async def test_history_failure_keeps_decision(self, services, reviewable, monkeypatch, caplog):
        task, _, link = reviewable
        service = services["client_tasks"]

        async def broken(*args, **kwargs):
            raise RuntimeError("history table locked")

        monkeypatch.setattr(service, "_record_public_decision", broken)
        with caplog.at_level("ERROR", logger="nexusflow.services.client_tasks"):
            result = await service.public_transition(link.unique_id, task.id, "approved", now=NOW)

        assert result.status == "approved"
        assert (await service.get(task.id)).status == "approved"
        assert "Could not record public decision" in caplog.text


class TestOrderIndex:
    """Positions in a kanban column stay unique under interleaved writers."""

    @pytest.mark.asyncio
    async def test_generation_and_ad_hoc_creates_interleaved(self, services, client, sample_pattern):
        from nexusflow.services.generation import TaskInstanceGenerator

        service = services["client_tasks"]
        generator = TaskInstanceGenerator(
            clients=services["clients"], client_tasks=service, tasks=services["tasks"]
        )
        template = await services["clients"].create_template("u1", client.id, "Post", sample_pattern)

        created, *ad_hoc = await asyncio.gather(
            generator.generate("u1", client.id, template.id, "2026-10"),
            *(service.create("u1", client.id, f"Ad hoc {n}", "2026-10") for n in range(3)),
        )

        pending = await service.list(client.id, status="pending")
        assert len(pending) == 6
        assert sorted(t.order_index for t in pending) == list(range(6))
        assert sorted(t.order_index for t in [*created, *ad_hoc]) == list(range(6))

    @pytest.mark.asyncio
    async def test_concurrent_transitions_into_one_column(self, services, client):
        service = services["client_tasks"]
        tasks = [await service.create("u1", client.id, f"T{n}", "2026-10") for n in range(4)]

        moved = await asyncio.gather(*(service.transition(t.id, "in_progress", now=NOW) for t in tasks))

        assert sorted(t.order_index for t in moved) == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_taken_position_is_retried(self, services, client, monkeypatch):
        service = services["client_tasks"]
        adapter = service.adapter
        execute = adapter.execute
        collisions = []

        async def collide_once(query, *args):
            if query.startswith("INSERT") and not collisions:
                collisions.append(query)
                raise ConflictError("UNIQUE constraint failed: client_tasks.order_index")
            return await execute(query, *args)

        monkeypatch.setattr(adapter, "execute", collide_once)
        task = await service.create("u1", client.id, "Banner", "2026-10")

        assert len(collisions) == 1
        assert task.order_index == 0
        assert (await service.get(task.id)).order_index == 0

    @pytest.mark.asyncio
    async def test_persistent_collision_raises(self, services, client, monkeypatch):
        service = services["client_tasks"]
        attempts = []

        async def always_collide(query, *args):
            attempts.append(query)
            raise ConflictError("UNIQUE constraint failed: client_tasks.order_index")

        monkeypatch.setattr(service.adapter, "execute", always_collide)

        with pytest.raises(ConflictError):
            await service.create("u1", client.id, "Banner", "2026-10")
        assert len(attempts) == ORDER_INDEX_ATTEMPTS
