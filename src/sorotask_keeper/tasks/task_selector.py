# src/sorotask_keeper/tasks/task_selector.py

from __future__ import annotations

from collections.abc import Iterable

from .task_models import Task, TaskStatus


def is_due(task: Task, now: float) -> bool:
    return task.status == TaskStatus.ACTIVE and now >= task.next_eligible_time


def select_due_tasks(
        tasks: Iterable[Task],
        now: float,
        *,
        keeper_id: str | None = None,
) -> list[Task]:
    """
    Pick the tasks that may be executed at `now`.

    Pure function of the snapshot and the clock. A stale or partial snapshot
    is fine: anything missing here is simply picked up on a later cycle, and
    the claim step rejects anything that moved on in the meantime.

    keeper_id filters out tasks whose whitelist does not include this keeper.
    Returned in next_eligible_time order (most overdue first); callers must not
    rely on cross-task ordering.
    """
    due = [t for t in tasks if is_due(t, now) and t.allows_keeper(keeper_id)]
    due.sort(key=lambda t: (t.next_eligible_time, t.id))
    return due
