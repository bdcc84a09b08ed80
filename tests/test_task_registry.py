# tests/test_task_registry.py

from __future__ import annotations

import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest

from sorotask_keeper.core.errors import (
    InsufficientBalanceError,
    InvalidIntervalError,
    TaskNotFoundError,
    UnauthorizedError,
)
from sorotask_keeper.registry.task_registry import SqliteTaskRegistry
from sorotask_keeper.tasks.task_models import OutcomeStatus, TaskStatus

from .fakes import T0, register


def test_register_assigns_sequential_ids_and_persists_fields(registry: SqliteTaskRegistry) -> None:
    first = register(registry, args=["a", 1], resolver="CRESOLVER", whitelist=["keeper-a"])
    second = register(registry)

    assert second == first + 1
    task = registry.get_task(first)
    assert task is not None
    assert task.creator == "alice"
    assert task.target_contract == "CTARGET"
    assert task.function_name == "ping"
    assert task.args == ["a", 1]
    assert task.resolver == "CRESOLVER"
    assert task.whitelist == ("keeper-a",)
    assert task.next_eligible_time == T0
    assert task.status == TaskStatus.ACTIVE
    assert task.last_outcome is None
    assert task.claim_holder is None
    assert registry.count_tasks() == 2


@pytest.mark.parametrize("interval", [0, -60])
def test_register_rejects_non_positive_interval(registry: SqliteTaskRegistry, interval: int) -> None:
    with pytest.raises(InvalidIntervalError):
        register(registry, interval_seconds=interval)
    assert registry.count_tasks() == 0


def test_get_missing_task_returns_none(registry: SqliteTaskRegistry) -> None:
    assert registry.get_task(404) is None


def test_list_active_tasks_pages_by_id(registry: SqliteTaskRegistry) -> None:
    ids = [register(registry) for _ in range(5)]
    registry.cancel_task(ids[1], creator="alice")

    page1 = registry.list_active_tasks(limit=2)
    page2 = registry.list_active_tasks(limit=2, after_id=page1[-1].id)
    page3 = registry.list_active_tasks(limit=2, after_id=page2[-1].id)

    assert [t.id for t in page1] == [ids[0], ids[2]]
    assert [t.id for t in page2] == [ids[3], ids[4]]
    assert page3 == []
    assert len(registry.list_active_tasks()) == 4
    assert len(registry.list_tasks()) == 5


def test_deposit_adds_funds_and_reactivates_paused_task(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry, fee_balance=5)
    assert registry.pause_task(task_id)
    assert registry.get_task(task_id).status == TaskStatus.PAUSED

    assert registry.deposit_fee(task_id, 50) == 55
    task = registry.get_task(task_id)
    assert task.status == TaskStatus.ACTIVE
    assert task.fee_balance == 55


def test_deposit_does_not_revive_canceled_task(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry)
    registry.cancel_task(task_id, creator="alice")
    registry.deposit_fee(task_id, 10)
    assert registry.get_task(task_id).status == TaskStatus.CANCELED


def test_deposit_errors(registry: SqliteTaskRegistry) -> None:
    with pytest.raises(TaskNotFoundError):
        registry.deposit_fee(999, 10)
    task_id = register(registry)
    with pytest.raises(ValueError):
        registry.deposit_fee(task_id, 0)


def test_withdraw_is_creator_only_and_bounded_by_balance(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry, fee_balance=100)

    with pytest.raises(UnauthorizedError):
        registry.withdraw_fee(task_id, 10, creator="mallory")
    with pytest.raises(InsufficientBalanceError):
        registry.withdraw_fee(task_id, 101, creator="alice")

    assert registry.withdraw_fee(task_id, 40, creator="alice") == 60
    assert registry.get_task(task_id).fee_balance == 60


def test_cancel_is_creator_only(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry)
    with pytest.raises(UnauthorizedError):
        registry.cancel_task(task_id, creator="mallory")
    with pytest.raises(TaskNotFoundError):
        registry.cancel_task(999, creator="alice")

    registry.cancel_task(task_id, creator="alice")
    assert registry.get_task(task_id).status == TaskStatus.CANCELED
    assert registry.list_active_tasks() == []


def test_claim_is_exclusive_while_the_lease_holds(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry)

    assert registry.try_claim(task_id, T0, keeper_id="keeper-a", lease_seconds=60, now=T0 + 1)
    assert not registry.try_claim(task_id, T0, keeper_id="keeper-b", lease_seconds=60, now=T0 + 2)

    task = registry.get_task(task_id)
    assert task.claim_holder == "keeper-a"
    assert task.claim_expires_at == pytest.approx(T0 + 61)
    assert task.is_claimed(T0 + 2)
    assert not task.is_claimed(T0 + 61)


def test_claim_requires_the_expected_interval_and_active_status(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry)

    assert not registry.try_claim(task_id, T0 - 60, keeper_id="keeper-a", lease_seconds=60, now=T0)

    registry.pause_task(task_id)
    assert not registry.try_claim(task_id, T0, keeper_id="keeper-a", lease_seconds=60, now=T0)
    assert not registry.try_claim(999, T0, keeper_id="keeper-a", lease_seconds=60, now=T0)


def test_expired_lease_can_be_taken_over(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry)
    assert registry.try_claim(task_id, T0, keeper_id="keeper-a", lease_seconds=30, now=T0)

    assert not registry.try_claim(task_id, T0, keeper_id="keeper-b", lease_seconds=30, now=T0 + 29)
    assert registry.try_claim(task_id, T0, keeper_id="keeper-b", lease_seconds=30, now=T0 + 30)
    assert registry.get_task(task_id).claim_holder == "keeper-b"


def test_release_only_affects_the_holder(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry)
    assert registry.try_claim(task_id, T0, keeper_id="keeper-a", lease_seconds=60, now=T0)

    assert not registry.release_claim(task_id, keeper_id="keeper-b", outcome=OutcomeStatus.ABANDONED)
    assert registry.get_task(task_id).claim_holder == "keeper-a"

    assert registry.release_claim(task_id, keeper_id="keeper-a", outcome=OutcomeStatus.ABANDONED)
    task = registry.get_task(task_id)
    assert task.claim_holder is None
    assert task.claim_expires_at is None
    assert task.last_outcome == OutcomeStatus.ABANDONED
    assert task.next_eligible_time == T0

    # Releasing again is a harmless no-op; the interval is claimable once more.
    assert not registry.release_claim(task_id, keeper_id="keeper-a")
    assert registry.try_claim(task_id, T0, keeper_id="keeper-b", lease_seconds=60, now=T0 + 1)


def test_advance_schedule_moves_debits_and_releases(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry, fee_balance=100)
    assert registry.try_claim(task_id, T0, keeper_id="keeper-a", lease_seconds=60, now=T0)

    debited = registry.advance_schedule(
        task_id,
        T0 + 60,
        25,
        keeper_id="keeper-a",
        expected_next_eligible_time=T0,
        outcome=OutcomeStatus.SUCCESS,
    )

    assert debited == 25
    task = registry.get_task(task_id)
    assert task.next_eligible_time == T0 + 60
    assert task.fee_balance == 75
    assert task.last_outcome == OutcomeStatus.SUCCESS
    assert task.claim_holder is None


def test_advance_schedule_caps_debit_at_balance(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry, fee_balance=10)
    assert registry.try_claim(task_id, T0, keeper_id="keeper-a", lease_seconds=60, now=T0)

    debited = registry.advance_schedule(
        task_id,
        T0 + 60,
        500,
        keeper_id="keeper-a",
        expected_next_eligible_time=T0,
        outcome=OutcomeStatus.FAILED,
    )
    assert debited == 10
    task = registry.get_task(task_id)
    assert task.fee_balance == 0
    assert task.last_debit == 10


def test_advance_schedule_requires_claim_and_matching_interval(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry)

    # Nobody holds the claim.
    assert (
        registry.advance_schedule(
            task_id,
            T0 + 60,
            10,
            keeper_id="keeper-a",
            expected_next_eligible_time=T0,
            outcome=OutcomeStatus.SUCCESS,
        )
        is None
    )

    assert registry.try_claim(task_id, T0, keeper_id="keeper-a", lease_seconds=60, now=T0)
    # Someone else's claim.
    assert (
        registry.advance_schedule(
            task_id,
            T0 + 60,
            10,
            keeper_id="keeper-b",
            expected_next_eligible_time=T0,
            outcome=OutcomeStatus.SUCCESS,
        )
        is None
    )
    # Stale interval.
    assert (
        registry.advance_schedule(
            task_id,
            T0 + 120,
            10,
            keeper_id="keeper-a",
            expected_next_eligible_time=T0 - 60,
            outcome=OutcomeStatus.SUCCESS,
        )
        is None
    )

    task = registry.get_task(task_id)
    assert task.next_eligible_time == T0
    assert task.fee_balance == 100


def test_advance_schedule_never_moves_backwards(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry)
    assert registry.try_claim(task_id, T0, keeper_id="keeper-a", lease_seconds=60, now=T0)
    with pytest.raises(ValueError):
        registry.advance_schedule(
            task_id, T0, 0, keeper_id="keeper-a", expected_next_eligible_time=T0, outcome=OutcomeStatus.SUCCESS
        )


def test_pause_with_keeper_requires_its_claim(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry)
    assert not registry.pause_task(task_id, keeper_id="keeper-a")

    assert registry.try_claim(task_id, T0, keeper_id="keeper-a", lease_seconds=60, now=T0)
    assert registry.pause_task(task_id, keeper_id="keeper-a")

    task = registry.get_task(task_id)
    assert task.status == TaskStatus.PAUSED
    assert task.last_outcome == OutcomeStatus.OUT_OF_FUNDS
    assert task.claim_holder is None


def test_pause_with_balance_guard_skips_funded_task(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry, fee_balance=100)
    assert registry.try_claim(task_id, T0, keeper_id="keeper-a", lease_seconds=60, now=T0)

    assert not registry.pause_task(task_id, keeper_id="keeper-a", balance_below=10)
    assert registry.get_task(task_id).status == TaskStatus.ACTIVE

    registry.withdraw_fee(task_id, 95, creator="alice")
    assert registry.pause_task(task_id, keeper_id="keeper-a", balance_below=10)
    assert registry.get_task(task_id).status == TaskStatus.PAUSED


def test_concurrent_claims_from_threads_have_one_winner(registry: SqliteTaskRegistry) -> None:
    task_id = register(registry)

    def claim(i: int) -> bool:
        return registry.try_claim(task_id, T0, keeper_id=f"keeper-{i}", lease_seconds=60, now=T0 + 1)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(claim, range(16)))

    assert results.count(True) == 1
    winner = f"keeper-{results.index(True)}"
    assert registry.get_task(task_id).claim_holder == winner


def test_schema_migration_adds_missing_columns(tmp_path) -> None:
    db_path = tmp_path / "old.sqlite3"
    conn = sqlite3.connect(str(db_path))
    conn.execute(
        """
        CREATE TABLE tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            creator TEXT NOT NULL,
            target_contract TEXT NOT NULL,
            function_name TEXT NOT NULL,
            args TEXT NOT NULL DEFAULT '[]',
            interval_seconds INTEGER NOT NULL,
            next_eligible_time INTEGER NOT NULL,
            fee_balance INTEGER NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'Active',
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        )
        """
    )
    conn.execute(
        """
        INSERT INTO tasks(creator, target_contract, function_name, interval_seconds,
                          next_eligible_time, fee_balance, created_at, updated_at)
        VALUES ('alice', 'CTARGET', 'ping', 60, ?, 100, 0, 0)
        """,
        (T0,),
    )
    conn.commit()
    conn.close()

    registry = SqliteTaskRegistry(db_path)
    task = registry.get_task(1)
    assert task is not None
    assert task.whitelist == ()
    assert task.resolver is None
    assert registry.try_claim(1, T0, keeper_id="keeper-a", lease_seconds=60, now=T0)
