"""
Task tree assembly.

Builds a parent/subtask forest from a flat task list with one adjacency pass.
Works for Task and ClientTask alike (anything with id, parent_task_id, created_at).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, List, Optional

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class TaskNode:
    """A task with its immediate subtasks."""

    task: Any
    subtasks: List["TaskNode"] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.task.id

    @property
    def completed_subtasks(self) -> int:
        return sum(1 for node in self.subtasks if _is_done(node.task))

    @property
    def progress(self) -> Optional[float]:
        """Fraction of immediate subtasks completed, None without subtasks."""
        if not self.subtasks:
            return None
        return self.completed_subtasks / len(self.subtasks)

    def to_dict(self) -> dict:
        """Nested dict form for display. Iterative, so deep trees are fine."""
        root = {**self.task.to_dict(), "subtasks": []}
        stack = [(self, root)]
        seen = {id(self)}
        while stack:
            node, out = stack.pop()
            for child in node.subtasks:
                if id(child) in seen:
                    continue
                seen.add(id(child))
                child_out = {**child.task.to_dict(), "subtasks": []}
                out["subtasks"].append(child_out)
                stack.append((child, child_out))
        return root


def _is_done(task) -> bool:
    return bool(getattr(task, "is_completed", False))


def _created(task) -> datetime:
    created = getattr(task, "created_at", None)
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created


def build_task_forest(tasks: Iterable) -> List[TaskNode]:
    """
    Assemble a flat task list into a forest.

    A task whose parent is missing from the input (or is itself) becomes a root.
    Parent chains that loop back on themselves are cut at the earliest created
    task of the loop, which becomes a root, so every input task appears once.
    Roots and subtask lists are ordered by created_at, ties keep input order.

    Args:
        tasks: Any subset of tasks

    Returns:
        Root nodes
    """
    ordered = sorted(enumerate(tasks), key=lambda pair: (_created(pair[1]), pair[0]))

    nodes = {}
    position = {}
    for rank, (_, task) in enumerate(ordered):
        nodes.setdefault(task.id, TaskNode(task=task))
        position.setdefault(task.id, rank)

    roots = []
    for _, task in ordered:
        node = nodes[task.id]
        if node.task is not task:
            # Duplicate id in the input; first occurrence wins
            continue
        parent_id = task.parent_task_id
        if parent_id and parent_id != task.id and parent_id in nodes:
            nodes[parent_id].subtasks.append(node)
        else:
            roots.append(node)

    # Tasks on a parent cycle are unreachable from every root
    reached = {node.id for node in iter_forest(roots)}
    for _, task in ordered:
        if task.id in reached or nodes[task.id].task is not task:
            continue
        chain = []
        current = task.id
        while current not in chain:
            chain.append(current)
            current = nodes[current].task.parent_task_id
        cycle = chain[chain.index(current):]

        head = nodes[min(cycle, key=position.get)]
        parent = nodes[head.task.parent_task_id]
        parent.subtasks = [child for child in parent.subtasks if child is not head]
        roots.append(head)
        reached.update(node.id for node in iter_forest([head]))

    roots.sort(key=lambda node: position[node.id])
    return roots


def iter_forest(forest: List[TaskNode]) -> Iterator[TaskNode]:
    """Depth-first walk over every node reachable from the roots, each visited once."""
    stack = list(reversed(forest))
    seen = set()
    while stack:
        node = stack.pop()
        if node.id in seen:
            continue
        seen.add(node.id)
        yield node
        stack.extend(reversed(node.subtasks))
