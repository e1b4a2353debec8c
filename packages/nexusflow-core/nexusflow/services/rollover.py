"""
Daily rollover engine.

Runs once per logical day for every user, in the user's own timezone:

1. Overdue detection: late tasks move to the overdue board, late client tasks
   get the overdue flag.
2. Daily-recurrence advancement: yesterday's outcome of each daily task is
   folded into its streak metrics and the task is reopened for today.
3. Instantiation: weekly, monthly and standard templates that fall on today
   produce today's tasks.
4. Period-boundary generation: client templates are expanded for the current month.
5. Digest: a summary goes to the notification dispatcher.

Every step is idempotent, so the engine can be triggered any number of times a
day. Users are processed concurrently with a bounded number of workers; one
user's failure never affects another's.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

from nexusflow.errors import ExternalDependencyError
from nexusflow.models.fields import utcnow
from nexusflow.models.profile import UserProfile
from nexusflow.services.client_tasks import ClientTaskService
from nexusflow.services.clients import ClientService
from nexusflow.services.generation import TaskInstanceGenerator
from nexusflow.services.notifications import NotificationDispatcher, RolloverDigest, create_dispatcher
from nexusflow.services.patterns import format_month_reference
from nexusflow.services.recurrence import RecurringTaskInstantiator
from nexusflow.services.tasks import TaskService
from nexusflow.services.watermarks import WatermarkService
from nexusflow.timezones import local_date, resolve_timezone

logger = logging.getLogger(__name__)

PROCESSED = "processed"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class UserRolloverResult:
    """Outcome of one user's rollover."""

    user_id: str
    status: str = PROCESSED
    date: Optional[date] = None
    timezone: Optional[str] = None
    overdue: int = 0
    advanced: int = 0
    instantiated: int = 0
    generated: int = 0
    advancement_skipped: bool = False
    notified: bool = False
    errors: List[dict] = field(default_factory=list)

    def add_error(self, step: str, error: Exception) -> None:
        self.errors.append({"step": step, "type": type(error).__name__, "error": str(error)})

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "status": self.status,
            "date": self.date.isoformat() if self.date else None,
            "timezone": self.timezone,
            "overdue": self.overdue,
            "advanced": self.advanced,
            "instantiated": self.instantiated,
            "generated": self.generated,
            "advancement_skipped": self.advancement_skipped,
            "notified": self.notified,
            "errors": self.errors,
        }


@dataclass
class RolloverSummary:
    """Outcome of a rollover over every user."""

    status_code: int = 200
    users: List[UserRolloverResult] = field(default_factory=list)
    error: Optional[str] = None

    def _count(self, status: str) -> int:
        return sum(1 for user in self.users if user.status == status)

    @property
    def processed(self) -> int:
        return self._count(PROCESSED)

    @property
    def skipped(self) -> int:
        return self._count(SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(FAILED)

    def to_dict(self) -> dict:
        result = {
            "status_code": self.status_code,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "users": [user.to_dict() for user in self.users],
        }
        if self.error:
            result["error"] = self.error
        return result


class DailyRolloverEngine:
    """
    Orchestrates the daily lifecycle for all users.

    Usage:
        engine = DailyRolloverEngine(adapter, config)
        summary = await engine.run()
    """

    def __init__(
        self,
        adapter=None,
        config=None,
        dispatcher: NotificationDispatcher | None = None,
        tasks: TaskService | None = None,
        client_tasks: ClientTaskService | None = None,
        clients: ClientService | None = None,
        watermarks: WatermarkService | None = None,
        generator: TaskInstanceGenerator | None = None,
        instantiator: RecurringTaskInstantiator | None = None,
    ):
        if config is None:
            from nexusflow.config import get_config
            config = get_config()

        self.config = config
        self.dispatcher = dispatcher or create_dispatcher(config)
        self.tasks = tasks or TaskService(adapter)
        self.clients = clients or ClientService(adapter)
        self.client_tasks = client_tasks or ClientTaskService(adapter, task_service=self.tasks)
        self.watermarks = watermarks or WatermarkService(adapter)
        self.generator = generator or TaskInstanceGenerator(
            adapter, clients=self.clients, client_tasks=self.client_tasks, tasks=self.tasks
        )
        self.instantiator = instantiator or RecurringTaskInstantiator(adapter, tasks=self.tasks)

    async def run(self, now: datetime | None = None) -> RolloverSummary:
        """
        Run the rollover for every user profile.

        Per-user failures are reported in the summary; the status code is 500
        only when the profiles cannot be listed at all.
        """
        now = now or utcnow()
        try:
            profiles = await self.clients.list_profiles()
        except Exception as e:
            logger.exception("Rollover aborted: could not list profiles")
            return RolloverSummary(status_code=500, error=str(e))

        max_concurrency = max(1, self.config.rollover.max_concurrency)
        semaphore = asyncio.Semaphore(max_concurrency)
        logger.info(f"Rollover started for {len(profiles)} user(s), {max_concurrency} worker(s)")

        async def worker(profile: UserProfile) -> UserRolloverResult:
            async with semaphore:
                try:
                    return await self.run_for_user(profile, now)
                except Exception as e:
                    logger.exception(f"[User {profile.id}] Rollover failed")
                    result = UserRolloverResult(user_id=profile.id, status=FAILED)
                    result.add_error("user", e)
                    return result

        results = await asyncio.gather(*(worker(profile) for profile in profiles))
        summary = RolloverSummary(users=list(results))
        logger.info(
            f"Rollover finished: {summary.processed} processed, "
            f"{summary.skipped} skipped, {summary.failed} failed"
        )
        return summary

    async def run_for_user(self, profile: UserProfile, now: datetime | None = None) -> UserRolloverResult:
        """
        Run the rollover steps for one user.

        Steps run in order and are isolated from each other: a failing step is
        recorded and the next one still runs.
        """
        now = now or utcnow()
        tz = resolve_timezone(profile.timezone, self.config.rollover.default_timezone)
        today = local_date(now, tz)
        result = UserRolloverResult(user_id=profile.id, date=today, timezone=tz.key)

        try:
            result.overdue = await self.detect_overdue(profile.id, today, now)
        except Exception as e:
            logger.exception(f"[User {profile.id}] Overdue detection failed")
            result.add_error("overdue", e)

        try:
            advanced = await self.advance_daily_tasks(profile.id, today, tz, now)
            if advanced is None:
                result.advancement_skipped = True
            else:
                result.advanced = advanced
        except Exception as e:
            logger.exception(f"[User {profile.id}] Daily advancement failed")
            result.add_error("advancement", e)

        try:
            result.instantiated = await self.instantiate_templates(profile.id, today, result)
        except Exception as e:
            logger.exception(f"[User {profile.id}] Template instantiation failed")
            result.add_error("instantiation", e)

        try:
            result.generated = await self.generate_current_period(profile.id, today, result)
        except Exception as e:
            logger.exception(f"[User {profile.id}] Task generation failed")
            result.add_error("generation", e)

        digest = RolloverDigest(
            user_id=profile.id,
            date=today,
            overdue=result.overdue,
            advanced=result.advanced,
            instantiated=result.instantiated,
            generated=result.generated,
        )
        if digest.has_changes:
            result.notified = await self.notify(digest)

        if result.errors:
            result.status = FAILED
        elif result.advancement_skipped and not digest.has_changes:
            result.status = SKIPPED

        logger.info(
            f"[User {profile.id}] {today.isoformat()} ({tz.key}): {result.overdue} overdue, "
            f"{result.advanced} advanced, {result.instantiated} instantiated, "
            f"{result.generated} generated, status {result.status}"
        )
        return result

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    async def detect_overdue(self, user_id: str, today: date, now: datetime) -> int:
        """
        Demote late tasks and flag late client tasks.

        Returns:
            Number of records changed by this call
        """
        changed = 0
        for task in await self.tasks.list_late(user_id, today):
            if await self.tasks.mark_overdue(task, now):
                changed += 1
        for client_task in await self.client_tasks.list_late(user_id, today):
            if await self.client_tasks.mark_overdue(client_task, now):
                changed += 1

        if changed:
            logger.info(f"[User {user_id}] Marked {changed} record(s) overdue")
        return changed

    async def advance_daily_tasks(
        self,
        user_id: str,
        today: date,
        tz: ZoneInfo,
        now: datetime,
    ) -> int | None:
        """
        Fold yesterday's outcome into each daily-recurring task's metrics.

        Tasks created today (local) have no yesterday and are left alone.

        Returns:
            Number of tasks advanced, or None if today was already processed
        """
        watermark = await self.watermarks.get(user_id)
        if watermark is not None and watermark >= today:
            logger.debug(f"[User {user_id}] Already advanced for {today.isoformat()}")
            return None

        yesterday = today - timedelta(days=1)
        advanced = 0
        for task in await self.tasks.list_daily_recurring(user_id):
            if task.created_at and local_date(task.created_at, tz) > yesterday:
                continue
            if task.last_rollover_date and task.last_rollover_date >= today:
                continue

            if task.is_completed:
                task.metrics.record_completion()
            else:
                task.metrics.record_miss(yesterday)

            if await self.tasks.save_rollover(task, today, now):
                advanced += 1

        await self.watermarks.advance(user_id, today, now)
        return advanced

    async def instantiate_templates(self, user_id: str, today: date, result: UserRolloverResult) -> int:
        """
        Create today's tasks from weekly, monthly and standard templates.

        Malformed templates are recorded on result.

        Returns:
            Number of tasks created
        """
        report = await self.instantiator.instantiate(user_id, today)
        for error in report.errors:
            result.errors.append({"step": "instantiation", **error})
        return report.created_count

    async def generate_current_period(self, user_id: str, today: date, result: UserRolloverResult) -> int:
        """
        Generate the month containing today for every client with active templates.

        Template and client failures are recorded on result.

        Returns:
            Number of client tasks created
        """
        month = format_month_reference(today)
        generated = 0
        for client_id in await self.clients.clients_with_active_templates(user_id):
            try:
                report = await self.generator.generate_for_client(user_id, client_id, month)
            except Exception as e:
                logger.exception(f"[User {user_id}] Generation failed for client {client_id}")
                result.add_error("generation", e)
                continue

            generated += report.created_count
            for error in report.errors:
                result.errors.append({"step": "generation", "client_id": client_id, **error})
        return generated

    async def notify(self, digest: RolloverDigest) -> bool:
        """Send a digest. Failures are logged and never raised."""
        try:
            await self.dispatcher.dispatch(digest)
            return True
        except ExternalDependencyError as e:
            logger.error(f"[User {digest.user_id}] Digest not delivered: {e}")
        except Exception as e:
            error = ExternalDependencyError(f"Dispatcher error: {e}")
            logger.error(f"[User {digest.user_id}] Digest not delivered: {error}")
        return False
