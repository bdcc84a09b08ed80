# src/sorotask_keeper/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """
    Registry-side task lifecycle status.

    Notes:
    - PAUSED means "not enough funds"; a creator deposit reactivates it.
    - CANCELED is terminal. Rows are never deleted from the registry.
    """

    ACTIVE = "Active"
    PAUSED = "Paused"
    CANCELED = "Canceled"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.ACTIVE
        try:
            return cls(raw)
        except ValueError:
            return cls.PAUSED


class OutcomeStatus(StrEnum):
    """
    Result of one execution attempt, as shown in the execution log.

    Each tag carries its own scheduling policy (see the properties below);
    retry decisions branch on the tag, never on a plain success flag.
    """

    SUCCESS = "Success"
    FAILED = "Failed"  # confirmed on-chain revert
    OUT_OF_FUNDS = "OutOfFunds"
    ABANDONED = "Abandoned"  # submission kept failing; claim released
    SKIPPED = "Skipped"  # resolver said "not now"

    @classmethod
    def from_db(cls, raw: str | None) -> OutcomeStatus | None:
        if not raw:
            return None
        try:
            return cls(raw)
        except ValueError:
            return None

    @property
    def advances_schedule(self) -> bool:
        return self in (OutcomeStatus.SUCCESS, OutcomeStatus.FAILED)

    @property
    def debits_fee(self) -> bool:
        return self in (OutcomeStatus.SUCCESS, OutcomeStatus.FAILED)

    @property
    def releases_claim(self) -> bool:
        # Advancing the schedule releases the claim implicitly.
        return self in (OutcomeStatus.ABANDONED, OutcomeStatus.SKIPPED)


@dataclass(slots=True)
class Task:
    id: int
    creator: str
    target_contract: str
    function_name: str
    interval_seconds: int
    next_eligible_time: int
    fee_balance: int
    status: TaskStatus

    args: list[Any] = field(default_factory=list)
    last_outcome: OutcomeStatus | None = None
    resolver: str | None = None
    whitelist: tuple[str, ...] = ()

    claim_holder: str | None = None
    claim_expires_at: float | None = None
    last_debit: int = 0  # fee actually taken by the last schedule advance

    created_at: float = 0.0
    updated_at: float = 0.0

    def is_claimed(self, now: float) -> bool:
        return self.claim_holder is not None and (self.claim_expires_at or 0.0) > now

    def allows_keeper(self, keeper_id: str | None) -> bool:
        # keeper_id=None means "don't filter" (registry-side views).
        if not self.whitelist or keeper_id is None:
            return True
        return keeper_id in self.whitelist


@dataclass(slots=True, frozen=True)
class InvokeResult:
    """
    What the network reported for one submitted call.

    confirmed=False means we gave up waiting; the caller treats that as a
    submission-level failure, not as a contract outcome.
    """

    confirmed: bool
    reverted: bool
    cost: int = 0
    tx_hash: str | None = None


@dataclass(slots=True, frozen=True)
class AttemptOutcome:
    task_id: int
    target_contract: str
    function_name: str
    keeper_id: str
    status: OutcomeStatus
    timestamp: float

    attempts: int = 0
    cost: int = 0
    next_eligible_time: int | None = None
    error: str | None = None
