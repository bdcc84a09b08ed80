# src/sorotask_keeper/tasks/task_scheduler.py

from __future__ import annotations

"""
Keeper scheduler.

A small polling loop that, every cadence tick:
- reads an Active-task snapshot from the registry (paged),
- selects the tasks that are due for this keeper,
- runs the execution coordinator per task in a bounded pool,
- hands every outcome to the recorder.

One task's failure never aborts the cycle or the loop.
"""

import asyncio
import logging
import time
from collections.abc import Callable

from ..core.ports import RegistryClient
from .outcome_log import OutcomeRecorder
from .task_executor import ExecutionCoordinator
from .task_models import AttemptOutcome, Task
from .task_selector import select_due_tasks

logger = logging.getLogger(__name__)


def fetch_snapshot(registry: RegistryClient, *, page_size: int = 100) -> list[Task]:
    """
    Read all Active tasks page by page.

    A failing page ends the read early; the partial snapshot is still usable
    (the rest is picked up next cycle).
    """
    size = max(1, int(page_size))
    out: list[Task] = []
    after_id = 0

    while True:
        try:
            page = registry.list_active_tasks(limit=size, after_id=after_id)
        except Exception:
            logger.exception("list_active_tasks failed after_id=%s", after_id)
            break

        out.extend(page)
        if len(page) < size:
            break
        after_id = page[-1].id

    return out


def _warn_slow_cadence(tasks: list[Task], cadence_seconds: float, warned: set[int]) -> None:
    for t in tasks:
        if t.interval_seconds <= cadence_seconds and t.id not in warned:
            warned.add(t.id)
            logger.warning(
                "Task %s interval %ss is not longer than the poll cadence %ss; runs will lag",
                t.id,
                t.interval_seconds,
                cadence_seconds,
            )


async def run_keeper_cycle(
        registry: RegistryClient,
        coordinator: ExecutionCoordinator,
        recorder: OutcomeRecorder,
        *,
        now: float | None = None,
        max_concurrency: int = 8,
        page_size: int = 100,
        cadence_seconds: float | None = None,
        cadence_warned: set[int] | None = None,
) -> list[AttemptOutcome]:
    """
    One Selector -> Coordinator -> Recorder pass.

    Tasks run concurrently (bounded by max_concurrency): each one owns
    independent registry state and the claim is atomic per task.
    Returns the recorded outcomes (claim conflicts are not outcomes).

    cadence_warned holds task ids already warned about a too-short interval;
    pass the same set across cycles to warn once per task.
    """
    now_ts = time.time() if now is None else float(now)

    snapshot = fetch_snapshot(registry, page_size=page_size)
    if cadence_seconds is not None:
        _warn_slow_cadence(
            snapshot, cadence_seconds, set() if cadence_warned is None else cadence_warned
        )

    due = select_due_tasks(snapshot, now_ts, keeper_id=coordinator.keeper_id)
    if not due:
        return []

    logger.debug("Cycle: %d active, %d due", len(snapshot), len(due))

    sem = asyncio.Semaphore(max(1, int(max_concurrency)))
    outcomes: list[AttemptOutcome] = []

    async def run_one(task: Task) -> None:
        async with sem:
            outcome = await coordinator.execute(task)
        if outcome is not None:
            recorder.record(outcome)
            outcomes.append(outcome)

    results = await asyncio.gather(*(run_one(t) for t in due), return_exceptions=True)

    for task, res in zip(due, results):
        if isinstance(res, Exception):
            logger.error("Task %s crashed in the coordinator", task.id, exc_info=res)
        elif isinstance(res, BaseException):
            raise res

    return outcomes


async def run_keeper_scheduler(
        registry: RegistryClient,
        coordinator: ExecutionCoordinator,
        recorder: OutcomeRecorder,
        *,
        interval_seconds: float = 5.0,
        max_concurrency: int = 8,
        page_size: int = 100,
        stop_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.time,
) -> None:
    """
    Polling keeper loop.

    Every interval_seconds: run one keeper cycle, then sleep.
    The cadence must stay shorter than the shortest task interval (a warning
    is logged per offending task) and long enough for upstream rate limits.

    To stop: set stop_event, or cancel the coroutine/task.
    """
    sleep_s = max(0.05, float(interval_seconds))
    cadence_warned: set[int] = set()
    logger.info(
        "Keeper %s scheduler started (cadence=%.2fs, concurrency=%s)",
        coordinator.keeper_id,
        sleep_s,
        max_concurrency,
    )

    while stop_event is None or not stop_event.is_set():
        try:
            await run_keeper_cycle(
                registry,
                coordinator,
                recorder,
                now=clock(),
                max_concurrency=max_concurrency,
                page_size=page_size,
                cadence_seconds=sleep_s,
                cadence_warned=cadence_warned,
            )
        except Exception:
            logger.exception("Keeper cycle failed")

        if stop_event is None:
            await asyncio.sleep(sleep_s)
            continue

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=sleep_s)
        except TimeoutError:
            pass

    logger.info("Keeper %s scheduler stopped", coordinator.keeper_id)
