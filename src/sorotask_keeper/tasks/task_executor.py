# src/sorotask_keeper/tasks/task_executor.py

from __future__ import annotations

"""
Execution coordinator.

Drives one selected task to a terminal attempt outcome:
- claim the current interval (atomic, leased, in the registry),
- check funds against the estimated cost,
- consult the resolver (if any),
- submit with bounded retries for transport failures,
- classify, then advance the schedule or release the claim.

The claim is the only cross-keeper lock. Nothing here holds process-local locks.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from ..core.errors import SubmissionError
from ..core.ports import RegistryClient
from .task_models import AttemptOutcome, OutcomeStatus, Task, TaskStatus

logger = logging.getLogger(__name__)

# Transient, transport-level failures. Contract reverts come back as InvokeResult.
SUBMISSION_ERRORS: tuple[type[BaseException], ...] = (SubmissionError, TimeoutError, ConnectionError)

FeeEstimator = Callable[[Task], int]


def next_slot(prev: int, interval: int, now: float) -> int:
    """
    Next eligible time after an execution of the interval starting at `prev`.

    Anchored on `prev` (not on `now`) so execution latency never drifts the
    schedule. If whole intervals were missed, skip them instead of replaying.
    """
    nxt = prev + interval
    if nxt <= now:
        missed = int((now - nxt) // interval) + 1
        nxt += missed * interval
    return nxt


def backoff_delay(attempt: int, base_seconds: float) -> float:
    """Delay after failed attempt number `attempt` (1-based): base, 2*base, 4*base..."""
    return float(base_seconds) * (2 ** max(0, attempt - 1))


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    return f"{exc.__class__.__name__}: {text}" if text else exc.__class__.__name__


class ExecutionCoordinator:
    """
    Drives claimed tasks through submission with up to max_attempts tries.

    Backoff sleeps happen only between attempts: no sleep follows the final one.
    """

    def __init__(
        self,
        registry: RegistryClient,
        *,
        keeper_id: str,
        claim_lease_seconds: float = 120.0,
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        submit_timeout_seconds: float = 30.0,
        fee_estimator: FeeEstimator | int = 10,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not keeper_id:
            raise ValueError("keeper_id is required")
        self._registry = registry
        self.keeper_id = keeper_id
        self._lease_s = max(1.0, float(claim_lease_seconds))
        self._max_attempts = max(1, int(max_attempts))
        self._backoff_s = max(0.0, float(backoff_base_seconds))
        self._submit_timeout_s = max(0.1, float(submit_timeout_seconds))
        self._clock = clock
        self._sleep = sleep

        if callable(fee_estimator):
            self._estimate: FeeEstimator = fee_estimator
        else:
            fixed = max(0, int(fee_estimator))
            self._estimate = lambda _task: fixed

    async def execute(self, task: Task) -> AttemptOutcome | None:
        """
        Run the claim/submit protocol for one task.

        Returns None when the claim was not won (another keeper has it, or the
        interval already moved on): that is expected and nothing is recorded.
        """
        try:
            claimed = self._registry.try_claim(
                task.id,
                task.next_eligible_time,
                keeper_id=self.keeper_id,
                lease_seconds=self._lease_s,
                now=self._clock(),
            )
        except Exception:
            logger.exception("try_claim failed task_id=%s", task.id)
            return None

        if not claimed:
            logger.debug("Task %s interval %s already claimed; skipping", task.id, task.next_eligible_time)
            return None

        try:
            return await self._run_claimed(task)
        except Exception as e:
            # Registry hiccup or a bug: never leave the claim behind on purpose.
            logger.exception("Execution crashed task_id=%s", task.id)
            return self._settle(task, OutcomeStatus.ABANDONED, error=_describe(e))

    def _holds(self, task: Task | None, expected_next: int) -> bool:
        return (
            task is not None
            and task.status == TaskStatus.ACTIVE
            and task.next_eligible_time == expected_next
            and task.claim_holder == self.keeper_id
        )

    async def _run_claimed(self, snapshot: Task) -> AttemptOutcome:
        # Balances in the cycle snapshot may be stale; decide on the claimed row.
        task = self._registry.get_task(snapshot.id)
        if task is None or not self._holds(task, snapshot.next_eligible_time):
            return self._settle(snapshot, OutcomeStatus.ABANDONED, error="task changed before execution")

        estimate = max(0, int(self._estimate(task)))

        if task.fee_balance < estimate:
            return self._pause(task, estimate, attempts=0)

        if task.resolver and not await self._resolver_allows(task, task.resolver):
            return self._settle(task, OutcomeStatus.SKIPPED, error="resolver condition not met")

        attempts = 0
        last_error: str | None = None

        while attempts < self._max_attempts:
            attempts += 1
            try:
                result = await asyncio.wait_for(
                    self._registry.invoke(task.target_contract, task.function_name, list(task.args)),
                    timeout=self._submit_timeout_s,
                )
            except SUBMISSION_ERRORS as e:
                last_error = _describe(e)
                logger.warning(
                    "Task %s submission failed (attempt %d/%d): %s",
                    task.id,
                    attempts,
                    self._max_attempts,
                    last_error,
                )
            else:
                if result.confirmed:
                    status = OutcomeStatus.FAILED if result.reverted else OutcomeStatus.SUCCESS
                    return self._settle(
                        task, status, attempts=attempts, cost=result.cost, tx_hash=result.tx_hash
                    )
                last_error = "not confirmed before timeout"
                logger.warning(
                    "Task %s tx=%s not confirmed (attempt %d/%d)",
                    task.id,
                    result.tx_hash,
                    attempts,
                    self._max_attempts,
                )

            if attempts >= self._max_attempts:
                break

            await self._sleep(backoff_delay(attempts, self._backoff_s))

            fresh = self._registry.get_task(task.id)
            if fresh is None or not self._holds(fresh, task.next_eligible_time):
                logger.info("Task %s changed while retrying; giving up this interval", task.id)
                return self._settle(
                    task,
                    OutcomeStatus.ABANDONED,
                    attempts=attempts,
                    error="task changed while retrying",
                )
            if fresh.fee_balance < estimate:
                return self._pause(fresh, estimate, attempts=attempts)
            task = fresh

        return self._settle(task, OutcomeStatus.ABANDONED, attempts=attempts, error=last_error)

    def _settle(
        self,
        task: Task,
        status: OutcomeStatus,
        *,
        attempts: int = 0,
        cost: int = 0,
        tx_hash: str | None = None,
        error: str | None = None,
    ) -> AttemptOutcome:
        """Apply the registry side of a terminal outcome, as its status prescribes."""
        if status.advances_schedule:
            new_next = next_slot(task.next_eligible_time, task.interval_seconds, self._clock())
            debited = self._registry.advance_schedule(
                task.id,
                new_next,
                max(0, int(cost)) if status.debits_fee else 0,
                keeper_id=self.keeper_id,
                expected_next_eligible_time=task.next_eligible_time,
                outcome=status,
            )
            if debited is None:
                logger.warning(
                    "Task %s executed (tx=%s) but the claim was lost before advancing the schedule",
                    task.id,
                    tx_hash,
                )
                return self._outcome(
                    task, status, attempts=attempts, error="claim lost before schedule advance"
                )
            return self._outcome(
                task,
                status,
                attempts=attempts,
                cost=debited,
                next_eligible_time=new_next,
                error=error,
            )

        if status.releases_claim:
            self._release(task, status)
        return self._outcome(task, status, attempts=attempts, error=error)

    def _pause(self, task: Task, estimate: int, *, attempts: int) -> AttemptOutcome:
        paused = self._registry.pause_task(
            task.id,
            keeper_id=self.keeper_id,
            outcome=OutcomeStatus.OUT_OF_FUNDS,
            balance_below=estimate,
        )
        if not paused:
            logger.info(
                "Task %s not paused (funds arrived or claim lost); leaving it to the next cycle",
                task.id,
            )
            return self._settle(
                task, OutcomeStatus.ABANDONED, attempts=attempts, error="funds changed before pause"
            )
        return self._outcome(
            task,
            OutcomeStatus.OUT_OF_FUNDS,
            attempts=attempts,
            error=f"balance {task.fee_balance} < estimated cost {estimate}",
        )

    async def _resolver_allows(self, task: Task, resolver: str) -> bool:
        # A broken resolver must not wedge the task: any failure reads as "not now".
        try:
            ok = await asyncio.wait_for(
                self._registry.check_condition(resolver, list(task.args)),
                timeout=self._submit_timeout_s,
            )
        except Exception as e:
            logger.warning("Task %s resolver %s failed: %s", task.id, resolver, _describe(e))
            return False
        return bool(ok)

    def _release(self, task: Task, outcome: OutcomeStatus) -> None:
        try:
            self._registry.release_claim(task.id, keeper_id=self.keeper_id, outcome=outcome)
        except Exception:
            logger.exception("release_claim failed task_id=%s (lease will expire)", task.id)

    def _outcome(
        self,
        task: Task,
        status: OutcomeStatus,
        *,
        attempts: int = 0,
        cost: int = 0,
        next_eligible_time: int | None = None,
        error: str | None = None,
    ) -> AttemptOutcome:
        return AttemptOutcome(
            task_id=task.id,
            target_contract=task.target_contract,
            function_name=task.function_name,
            keeper_id=self.keeper_id,
            status=status,
            timestamp=self._clock(),
            attempts=attempts,
            cost=cost,
            next_eligible_time=next_eligible_time,
            error=error,
        )
