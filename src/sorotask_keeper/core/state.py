# src/sorotask_keeper/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..registry.task_registry import SqliteTaskRegistry
from ..tasks.outcome_log import ExecutionLog


@dataclass
class KeeperState:
    # Settings object (real Settings or a test SimpleNamespace).
    settings: Any

    keeper_id: str
    registry: SqliteTaskRegistry
    execution_log: ExecutionLog
