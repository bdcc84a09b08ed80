# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from sorotask_keeper.core.state import KeeperState
from sorotask_keeper.registry.task_registry import SqliteTaskRegistry
from sorotask_keeper.tasks.outcome_log import ExecutionLog

from .fakes import FakeClock


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with KeeperState and the bootstrap layer.

    A SimpleNamespace instead of the real config keeps tests independent of
    the environment.
    """
    return SimpleNamespace(
        app_name="sorotask-keeper-test",
        log_level="DEBUG",
        keeper_id="keeper-a",
        rpc_url="",
        signer="",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        registry_db_path=tmp_path / "registry.sqlite3",
        execution_log_path=tmp_path / "executions.sqlite3",
        # Scheduler
        poll_interval_seconds=0.05,
        max_concurrency=4,
        page_size=2,
        # Execution
        claim_lease_seconds=120.0,
        max_attempts=3,
        backoff_base_seconds=1.0,
        submit_timeout_seconds=1.0,
        confirm_timeout_seconds=0.5,
        confirm_poll_seconds=0.1,
        execution_fee_estimate=10,
    )


@pytest.fixture()
def registry(settings: SimpleNamespace) -> SqliteTaskRegistry:
    return SqliteTaskRegistry(settings.registry_db_path)


@pytest.fixture()
def execution_log(settings: SimpleNamespace) -> ExecutionLog:
    return ExecutionLog(settings.execution_log_path)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    registry: SqliteTaskRegistry,
    execution_log: ExecutionLog,
) -> KeeperState:
    """
    KeeperState over real SQLite stores: their correctness is part of what
    the command tests exercise.
    """
    return KeeperState(
        settings=settings,
        keeper_id=settings.keeper_id,
        registry=registry,
        execution_log=execution_log,
    )
