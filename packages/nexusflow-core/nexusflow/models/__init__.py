"""
Core data models for Nexusflow.
"""

from nexusflow.models.client import (
    CLIENT_TASK_STATUSES,
    Client,
    ClientTask,
    ClientTaskHistoryEvent,
    ClientTaskGenerationTemplate,
    PatternEntry,
    PublicApprovalLink,
)
from nexusflow.models.metrics import StreakMetrics
from nexusflow.models.profile import UserProfile
from nexusflow.models.task import RECURRENCE_TYPES, TASK_BOARDS, StandardTaskTemplate, Task

__all__ = [
    "Task",
    "TASK_BOARDS",
    "RECURRENCE_TYPES",
    "StandardTaskTemplate",
    "StreakMetrics",
    "Client",
    "ClientTask",
    "ClientTaskHistoryEvent",
    "ClientTaskGenerationTemplate",
    "PatternEntry",
    "PublicApprovalLink",
    "CLIENT_TASK_STATUSES",
    "UserProfile",
]
