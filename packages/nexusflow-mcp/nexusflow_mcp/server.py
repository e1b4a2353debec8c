"""
Nexusflow MCP Server

Exposes the daily rollover trigger and the client task workflow as MCP tools,
backed by PostgreSQL or SQLite.
"""

import asyncio
import json
import logging
import sys
from typing import Optional

from mcp.server.fastmcp import FastMCP

from nexusflow.errors import NexusflowError, NotFoundError

# Initialize FastMCP server
mcp = FastMCP("nexusflow")

logger = logging.getLogger(__name__)

# Global state
_initialized = False


async def ensure_initialized():
    """Ensure database is initialized and migrated."""
    global _initialized
    if _initialized:
        return

    from nexusflow.db import init_adapter, run_migrations
    from nexusflow.config import get_config

    config = get_config()
    adapter = await init_adapter(config)

    applied = await run_migrations(adapter)
    if applied:
        logger.info(f"Applied migrations: {', '.join(applied)}")

    _initialized = True
    logger.info("Nexusflow initialized")


def _error(e: Exception) -> dict:
    return {"error": str(e), "error_type": type(e).__name__}


# =============================================================================
# ROLLOVER TOOLS
# =============================================================================

@mcp.tool()
async def nexusflow_run_daily_rollover() -> dict:
    """
    Run the daily rollover for every user.

    Moves late tasks to overdue, advances daily-recurring streaks, creates the
    day's weekly, monthly and standard tasks, generates this month's client
    tasks and sends digests. Safe to run more than once a day.

    Returns:
        status_code, processed/skipped/failed counts and per-user outcomes
    """
    try:
        await ensure_initialized()
    except Exception as e:
        logger.exception("Rollover trigger failed before processing users")
        return {"status_code": 500, "processed": 0, "skipped": 0, "failed": 0, "users": [], "error": str(e)}

    from nexusflow.config import get_config
    from nexusflow.services import DailyRolloverEngine

    engine = DailyRolloverEngine(config=get_config())
    summary = await engine.run()
    return summary.to_dict()


@mcp.tool()
async def nexusflow_generate_client_tasks(
    user_id: str,
    client_id: str,
    month_year_reference: str,
    template_id: Optional[str] = None,
) -> dict:
    """
    Generate client tasks from templates for a month.

    Only missing tasks are created, so repeating the call is harmless.

    Args:
        user_id: Owner of the client
        client_id: Client UUID
        month_year_reference: Month as YYYY-MM
        template_id: Only this template (default: every active template)

    Returns:
        Created task count and ids, plus per-template errors
    """
    await ensure_initialized()
    from nexusflow.services import TaskInstanceGenerator

    generator = TaskInstanceGenerator()
    try:
        if template_id:
            created = await generator.generate(user_id, client_id, template_id, month_year_reference)
            return {
                "client_id": client_id,
                "month_year_reference": month_year_reference,
                "created": len(created),
                "created_ids": [t.id for t in created],
                "errors": [],
            }
        report = await generator.generate_for_client(user_id, client_id, month_year_reference)
    except NexusflowError as e:
        return _error(e)

    return report.to_dict()


# =============================================================================
# TASK TOOLS
# =============================================================================

@mcp.tool()
async def nexusflow_task_tree(
    user_id: Optional[str] = None,
    client_id: Optional[str] = None,
    month_year_reference: Optional[str] = None,
    board: Optional[str] = None,
) -> dict:
    """
    Show tasks as a parent/subtask tree.

    Pass user_id for dashboard tasks, or client_id for a client's tasks.

    Args:
        user_id: Owner of dashboard tasks
        client_id: Client whose tasks to show instead
        month_year_reference: Month filter for client tasks (YYYY-MM)
        board: Board filter for dashboard tasks

    Returns:
        Root tasks with nested subtasks and progress
    """
    await ensure_initialized()
    from nexusflow.services import ClientTaskService, TaskService
    from nexusflow.services.tree import build_task_forest

    if client_id:
        tasks = await ClientTaskService().list(client_id, month_year_reference=month_year_reference)
    elif user_id:
        tasks = await TaskService().list(user_id, board=board)
    else:
        return {"error": "Pass user_id or client_id"}

    forest = build_task_forest(tasks)
    return {
        "tree": [
            {**node.to_dict(), "progress": node.progress}
            for node in forest
        ],
        "roots": len(forest),
        "count": len(tasks),
    }


@mcp.tool()
async def nexusflow_complete_task(task_id: str) -> dict:
    """
    Mark a dashboard task as done.

    Args:
        task_id: Task UUID

    Returns:
        Updated task details
    """
    await ensure_initialized()
    from nexusflow.services import TaskService

    try:
        task = await TaskService().complete(task_id)
    except NexusflowError as e:
        return _error(e)

    return task.to_dict()


@mcp.tool()
async def nexusflow_move_task(task_id: str, board: str) -> dict:
    """
    Move a dashboard task to another board.

    The overdue and completed boards are managed by the rollover and by
    completion; they cannot be chosen here.

    Args:
        task_id: Task UUID
        board: general, today_high_priority, today_medium_priority, urgent,
               week_low_priority, client_tasks

    Returns:
        Updated task details
    """
    await ensure_initialized()
    from nexusflow.services import TaskService

    try:
        task = await TaskService().move(task_id, board)
    except NexusflowError as e:
        return _error(e)

    return task.to_dict()


@mcp.tool()
async def nexusflow_create_standard_template(
    user_id: str,
    title: str,
    recurrence_days: str,
    description: Optional[str] = None,
    origin_board: str = "general",
) -> dict:
    """
    Create a routine task the rollover adds on the given weekdays.

    A new task is only added while the previous one has been completed.

    Args:
        user_id: Owner
        title: Title of each task
        recurrence_days: Comma separated weekday names (e.g., "Monday,Thursday")
        description: Description of each task
        origin_board: Board the tasks are created on

    Returns:
        Created template details
    """
    await ensure_initialized()
    from nexusflow.services import RecurringTaskInstantiator

    try:
        template = await RecurringTaskInstantiator().create_standard_template(
            user_id, title, recurrence_days, description=description, origin_board=origin_board
        )
    except NexusflowError as e:
        return _error(e)

    return template.to_dict()


# =============================================================================
# CLIENT TASK TOOLS
# =============================================================================

@mcp.tool()
async def nexusflow_transition_client_task(
    task_id: str,
    status: str,
    edit_reason: Optional[str] = None,
) -> dict:
    """
    Move a client task to another kanban column as its owner.

    Args:
        task_id: Client task UUID
        status: pending, in_progress, under_review, approved, rejected,
                edit_requested, posted, completed
        edit_reason: Reason for edit_requested or rejected

    Returns:
        Updated client task details
    """
    await ensure_initialized()
    from nexusflow.services import ClientTaskService

    try:
        task = await ClientTaskService().transition(task_id, status, edit_reason=edit_reason)
    except NexusflowError as e:
        return _error(e)

    return task.to_dict()


@mcp.tool()
async def nexusflow_create_approval_link(
    user_id: str,
    client_id: str,
    month_year_reference: str,
    valid_days: int = 7,
) -> dict:
    """
    Create a public approval link for a client's month.

    Tasks waiting in under_review with public approval enabled are assigned to it.

    Args:
        user_id: Owner
        client_id: Client UUID
        month_year_reference: Month as YYYY-MM
        valid_days: Days until the link expires (default 7)

    Returns:
        The link, including its unique_id
    """
    await ensure_initialized()
    from nexusflow.services import ClientTaskService

    try:
        link = await ClientTaskService().create_approval_link(
            user_id, client_id, month_year_reference, valid_days=valid_days
        )
    except NexusflowError as e:
        return _error(e)

    return link.to_dict()


@mcp.tool()
async def nexusflow_public_approval(
    link_id: str,
    task_id: str,
    status: str,
    edit_reason: Optional[str] = None,
) -> dict:
    """
    Record a client's review decision made through a public approval link.

    Args:
        link_id: unique_id of the approval link
        task_id: Client task UUID
        status: approved, rejected or edit_requested
        edit_reason: What the client wants changed

    Returns:
        Updated client task details
    """
    await ensure_initialized()
    from nexusflow.services import ClientTaskService

    try:
        task = await ClientTaskService().public_transition(link_id, task_id, status, edit_reason=edit_reason)
    except NexusflowError as e:
        return _error(e)

    return task.to_dict()


@mcp.tool()
async def nexusflow_approval_link_tasks(link_id: str) -> dict:
    """
    List the tasks a public approval link gives access to.

    Args:
        link_id: unique_id of the approval link

    Returns:
        Link details and its tasks, or an error if expired
    """
    await ensure_initialized()
    from nexusflow.services import ClientTaskService

    service = ClientTaskService()
    link = await service.get_approval_link(link_id)
    if link is None:
        return _error(NotFoundError("PublicApprovalLink", link_id))
    if link.is_expired():
        return {"error": "Approval link has expired", "error_type": "PermissionDeniedError"}

    tasks = await service.list_for_approval_link(link_id)
    return {
        "link": link.to_dict(),
        "tasks": [t.to_dict() for t in tasks],
        "count": len(tasks),
    }


@mcp.tool()
async def nexusflow_client_task_history(task_id: str) -> dict:
    """
    Audit trail of a client task, including decisions made through approval links.

    Args:
        task_id: Client task UUID

    Returns:
        History events, oldest first
    """
    await ensure_initialized()
    from nexusflow.services import ClientTaskService

    events = await ClientTaskService().history(task_id)
    return {
        "task_id": task_id,
        "events": [e.to_dict() for e in events],
        "count": len(events),
    }


# =============================================================================
# UTILITY TOOLS
# =============================================================================

@mcp.tool()
async def nexusflow_migrate() -> dict:
    """
    Run pending database migrations.

    Returns:
        Migration status
    """
    await ensure_initialized()
    return {"status": "migrations complete"}


@mcp.tool()
async def nexusflow_health() -> dict:
    """
    Check database connectivity and health.

    Returns:
        Health status including database type and rollover settings
    """
    await ensure_initialized()
    from nexusflow.db import get_adapter
    from nexusflow.config import get_config

    config = get_config()
    adapter = get_adapter()

    try:
        result = await adapter.fetchval("SELECT 1")
        connected = result == 1
    except Exception as e:
        connected = False
        logger.error(f"Health check failed: {e}")

    return {
        "status": "healthy" if connected else "unhealthy",
        "database_type": "postgres" if adapter.placeholder_style == "dollar" else "sqlite",
        "default_timezone": config.rollover.default_timezone,
        "max_concurrency": config.rollover.max_concurrency,
        "webhook_configured": bool(config.notifications.webhook_url),
    }


# =============================================================================
# CLI ENTRY POINT
# =============================================================================

def main():
    """Main entry point for nexusflow-mcp command."""
    import argparse

    parser = argparse.ArgumentParser(description="Nexusflow MCP Server")
    parser.add_argument(
        "command", nargs="?", default="serve", help="Command to run (serve, migrate, rollover)"
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default INFO)")
    args = parser.parse_args()

    # stdout carries the MCP protocol
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "migrate":
        # Run migrations only
        async def do_migrate():
            await ensure_initialized()
            print("Migrations complete")

        asyncio.run(do_migrate())
    elif args.command == "rollover":
        async def do_rollover():
            from nexusflow.db import close_adapter

            try:
                return await nexusflow_run_daily_rollover()
            finally:
                await close_adapter()

        summary = asyncio.run(do_rollover())
        print(json.dumps(summary, indent=2))
        sys.exit(0 if summary["status_code"] == 200 else 1)
    else:
        # Start MCP server
        mcp.run()


if __name__ == "__main__":
    main()
