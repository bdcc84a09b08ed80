# src/sorotask_keeper/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The scheduler and coordinator depend on Protocols instead of concrete
implementations. This keeps the registry backend and the network path
swappable and makes testing easier.

Registry reads/mutations are plain calls (the local registry is SQLite);
anything that talks to the network returns an awaitable.
"""

from typing import Any, Awaitable, Protocol

from ..tasks.task_models import InvokeResult, OutcomeStatus, Task


class ContractInvoker(Protocol):
    """Network-side port: submit a contract call and wait for the verdict."""

    def invoke(self, target: str, function: str, args: list[Any]) -> Awaitable[InvokeResult]: ...

    def check_condition(self, resolver: str, args: list[Any]) -> Awaitable[bool]: ...


class TransactionSigner(Protocol):
    """
    Opaque transaction builder/signer supplied by the bootstrap layer.

    The invoker never sees keys; it only moves encoded envelopes around.
    """

    def build_invocation(self, target: str, function: str, args: list[Any]) -> str: ...

    def sign(self, envelope: str, simulation: dict[str, Any]) -> str: ...

    def decode_bool(self, result_xdr: str) -> bool: ...


class RegistryClient(Protocol):
    # Snapshot reads (eventually consistent)
    def list_active_tasks(self, *, limit: int | None = None, after_id: int = 0) -> list[Task]: ...
    def get_task(self, task_id: int) -> Task | None: ...

    # Mutual exclusion
    def try_claim(
            self,
            task_id: int,
            expected_next_eligible_time: int,
            *,
            keeper_id: str,
            lease_seconds: float,
            now: float | None = None,
    ) -> bool: ...
    def release_claim(
            self,
            task_id: int,
            *,
            keeper_id: str,
            outcome: OutcomeStatus | None = None,
    ) -> bool: ...

    # Network
    def invoke(self, target: str, function: str, args: list[Any]) -> Awaitable[InvokeResult]: ...
    def check_condition(self, resolver: str, args: list[Any]) -> Awaitable[bool]: ...

    # Schedule / funds
    def advance_schedule(
            self,
            task_id: int,
            new_next_eligible_time: int,
            fee_debit: int,
            *,
            keeper_id: str,
            expected_next_eligible_time: int,
            outcome: OutcomeStatus,
    ) -> int | None: ...
    def pause_task(
            self,
            task_id: int,
            *,
            keeper_id: str | None = None,
            outcome: OutcomeStatus = OutcomeStatus.OUT_OF_FUNDS,
            balance_below: int | None = None,
    ) -> bool: ...


class OutcomeSink(Protocol):
    """Append-only execution log (read by the creator dashboard)."""

    def append(
            self,
            task_id: int,
            target: str,
            keeper_id: str,
            status: OutcomeStatus,
            timestamp: float,
            *,
            cost: int = 0,
            attempts: int = 0,
            error: str | None = None,
    ) -> int: ...
