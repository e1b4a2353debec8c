"""
Board state machine.

Client tasks move through a review workflow; dashboard tasks move between boards.
These checks decide what may happen and who may make it happen. They never
touch the database.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from nexusflow.errors import PermissionDeniedError, TransitionError, ValidationError
from nexusflow.models.client import CLIENT_TASK_STATUSES, ClientTask, PublicApprovalLink
from nexusflow.models.task import TASK_BOARDS, Task


class Actor(str, Enum):
    OWNER = "owner"
    PUBLIC = "public"  # anonymous viewer holding a public approval link


class BoardTrigger(str, Enum):
    MANUAL = "manual"
    ROLLOVER = "rollover"
    COMPLETION = "completion"


CLIENT_TASK_TRANSITIONS = {
    "pending": ("in_progress",),
    "in_progress": ("under_review",),
    "under_review": ("approved", "rejected", "edit_requested"),
    "approved": ("posted", "completed"),
    "rejected": ("in_progress",),
    "edit_requested": ("in_progress",),
    "posted": (),
    "completed": (),
}

# The only transitions a public approval link may perform
PUBLIC_TRANSITIONS = frozenset({
    ("under_review", "approved"),
    ("under_review", "rejected"),
    ("under_review", "edit_requested"),
})

# Boards only the system may move a task into, and the trigger that owns each
RESERVED_BOARDS = {
    "overdue": BoardTrigger.ROLLOVER,
    "completed": BoardTrigger.COMPLETION,
}


def allowed_next_statuses(status: str) -> Tuple[str, ...]:
    """Statuses reachable from status in one step."""
    if status not in CLIENT_TASK_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(CLIENT_TASK_STATUSES)}"
        )
    return CLIENT_TASK_TRANSITIONS[status]


def check_client_task_transition(
    task: ClientTask,
    new_status: str,
    actor: Actor = Actor.OWNER,
    link: Optional[PublicApprovalLink] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Verify a client task may move to new_status.

    Owners may take any transition in CLIENT_TASK_TRANSITIONS. A public actor may
    only take the review decisions out of under_review, on a task that has public
    approval enabled, through the unexpired link assigned to that task.

    Raises:
        ValidationError: Unknown status
        TransitionError: The workflow doesn't allow the move
        PermissionDeniedError: The actor may not make the move
    """
    if new_status not in CLIENT_TASK_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(CLIENT_TASK_STATUSES)}"
        )

    if new_status not in allowed_next_statuses(task.status):
        raise TransitionError(f"Cannot move client task from {task.status} to {new_status}")

    if actor == Actor.OWNER:
        return

    if actor != Actor.PUBLIC:
        raise PermissionDeniedError(f"Unknown actor: {actor!r}")

    if (task.status, new_status) not in PUBLIC_TRANSITIONS:
        raise PermissionDeniedError(
            f"Public approval cannot move a task from {task.status} to {new_status}"
        )
    if not task.public_approval_enabled:
        raise PermissionDeniedError(f"Public approval is not enabled for task {task.id}")
    if link is None:
        raise PermissionDeniedError("Public approval requires an approval link")
    if task.public_approval_link_id != link.unique_id or task.client_id != link.client_id:
        raise PermissionDeniedError(f"Approval link does not cover task {task.id}")
    if link.is_expired(now):
        raise PermissionDeniedError("Approval link has expired")


def check_board_move(task: Task, new_board: str, trigger: BoardTrigger = BoardTrigger.MANUAL) -> None:
    """
    Verify a dashboard task may move to new_board.

    Only the rollover moves tasks into overdue and only completion moves them into
    completed; every other board is a manual reprioritization.

    Raises:
        ValidationError: Unknown board
        TransitionError: The trigger may not move the task there
    """
    if new_board not in TASK_BOARDS:
        raise ValidationError(f"Invalid board. Must be one of: {', '.join(TASK_BOARDS)}")

    owner = RESERVED_BOARDS.get(new_board)
    if owner is not None and owner != trigger:
        raise TransitionError(f"Only {owner.value} may move a task to {new_board}")
    if owner is None and trigger != BoardTrigger.MANUAL:
        raise TransitionError(f"{trigger.value} cannot move a task to {new_board}")

    if trigger == BoardTrigger.ROLLOVER:
        if task.is_completed:
            raise TransitionError(f"Task {task.id} is completed")
        if task.current_board == "overdue":
            raise TransitionError(f"Task {task.id} is already overdue")
