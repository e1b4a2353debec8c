"""
Business logic services for Nexusflow.
"""

from nexusflow.services.client_tasks import ClientTaskService
from nexusflow.services.clients import ClientService
from nexusflow.services.generation import GenerationReport, TaskInstanceGenerator
from nexusflow.services.notifications import (
    LoggingDispatcher,
    NotificationDispatcher,
    RolloverDigest,
    WebhookDispatcher,
)
from nexusflow.services.patterns import expand_pattern, expand_task_slots
from nexusflow.services.recurrence import InstantiationReport, RecurringTaskInstantiator
from nexusflow.services.rollover import DailyRolloverEngine, RolloverSummary, UserRolloverResult
from nexusflow.services.tasks import TaskService
from nexusflow.services.transitions import Actor, BoardTrigger
from nexusflow.services.tree import TaskNode, build_task_forest
from nexusflow.services.watermarks import WatermarkService

__all__ = [
    "TaskService",
    "ClientService",
    "ClientTaskService",
    "WatermarkService",
    "TaskInstanceGenerator",
    "GenerationReport",
    "RecurringTaskInstantiator",
    "InstantiationReport",
    "DailyRolloverEngine",
    "RolloverSummary",
    "UserRolloverResult",
    "NotificationDispatcher",
    "LoggingDispatcher",
    "WebhookDispatcher",
    "RolloverDigest",
    "expand_pattern",
    "expand_task_slots",
    "build_task_forest",
    "TaskNode",
    "Actor",
    "BoardTrigger",
]
