# src/sorotask_keeper/registry/client.py

from __future__ import annotations

from typing import Any

from ..core.ports import ContractInvoker
from ..tasks.task_models import InvokeResult, OutcomeStatus, Task
from .task_registry import SqliteTaskRegistry


class KeeperRegistryClient:
    """
    The registry as one keeper sees it: authoritative state + the network path.

    State operations go to the registry; invoke/check_condition go to the
    invoker. Several clients (one per keeper) may share one registry file.
    """

    def __init__(self, registry: SqliteTaskRegistry, invoker: ContractInvoker) -> None:
        self.registry = registry
        self.invoker = invoker

    def list_active_tasks(self, *, limit: int | None = None, after_id: int = 0) -> list[Task]:
        return self.registry.list_active_tasks(limit=limit, after_id=after_id)

    def get_task(self, task_id: int) -> Task | None:
        return self.registry.get_task(task_id)

    def try_claim(
        self,
        task_id: int,
        expected_next_eligible_time: int,
        *,
        keeper_id: str,
        lease_seconds: float,
        now: float | None = None,
    ) -> bool:
        return self.registry.try_claim(
            task_id,
            expected_next_eligible_time,
            keeper_id=keeper_id,
            lease_seconds=lease_seconds,
            now=now,
        )

    def release_claim(
        self,
        task_id: int,
        *,
        keeper_id: str,
        outcome: OutcomeStatus | None = None,
    ) -> bool:
        return self.registry.release_claim(task_id, keeper_id=keeper_id, outcome=outcome)

    async def invoke(self, target: str, function: str, args: list[Any]) -> InvokeResult:
        return await self.invoker.invoke(target, function, args)

    async def check_condition(self, resolver: str, args: list[Any]) -> bool:
        return await self.invoker.check_condition(resolver, args)

    def advance_schedule(
        self,
        task_id: int,
        new_next_eligible_time: int,
        fee_debit: int,
        *,
        keeper_id: str,
        expected_next_eligible_time: int,
        outcome: OutcomeStatus,
    ) -> int | None:
        return self.registry.advance_schedule(
            task_id,
            new_next_eligible_time,
            fee_debit,
            keeper_id=keeper_id,
            expected_next_eligible_time=expected_next_eligible_time,
            outcome=outcome,
        )

    def pause_task(
        self,
        task_id: int,
        *,
        keeper_id: str | None = None,
        outcome: OutcomeStatus = OutcomeStatus.OUT_OF_FUNDS,
        balance_below: int | None = None,
    ) -> bool:
        return self.registry.pause_task(
            task_id, keeper_id=keeper_id, outcome=outcome, balance_below=balance_below
        )
