# src/sorotask_keeper/tasks/outcome_log.py

from __future__ import annotations

"""
Execution log (outcome recorder).

An append-only projection of attempt results for task creators:
Task ID, Target, Keeper, Status, Timestamp (+ cost/attempts/error).

Nothing in the keeper reads this back to decide eligibility; the registry is
the only source of truth.
"""

import contextlib
import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path

from ..core.ports import OutcomeSink
from .task_models import AttemptOutcome, OutcomeStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExecutionRecord:
    id: int
    task_id: int
    target: str
    keeper_id: str
    status: OutcomeStatus | str
    timestamp: float
    cost: int
    attempts: int
    error: str | None


class ExecutionLog:
    """
    SQLite execution log. Rows are only ever inserted.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "executions.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("Execution log ready db=%s", self._db_path)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS executions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER NOT NULL,
                    target TEXT NOT NULL,
                    keeper_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    timestamp REAL NOT NULL,
                    cost INTEGER NOT NULL DEFAULT 0,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    error TEXT
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_exec_task ON executions(task_id, timestamp)")
            conn.commit()
        finally:
            conn.close()

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
    ) -> int:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                INSERT INTO executions(task_id, target, keeper_id, status, timestamp, cost, attempts, error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(task_id),
                    target,
                    keeper_id,
                    str(status),
                    float(timestamp),
                    int(cost),
                    int(attempts),
                    error,
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for executions insert")
            return int(rowid)
        finally:
            conn.close()

    def list_records(self, *, task_id: int | None = None, limit: int = 50) -> list[ExecutionRecord]:
        """Newest first."""
        conn = self._get_conn()
        try:
            if task_id is None:
                cur = conn.execute(
                    "SELECT * FROM executions ORDER BY timestamp DESC, id DESC LIMIT ?",
                    (int(limit),),
                )
            else:
                cur = conn.execute(
                    """
                    SELECT *
                    FROM executions
                    WHERE task_id = ?
                    ORDER BY timestamp DESC, id DESC
                        LIMIT ?
                    """,
                    (int(task_id), int(limit)),
                )
            return [self._row_to_record(r) for r in cur.fetchall()]
        finally:
            conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ExecutionRecord:
        raw_status = str(row["status"])
        return ExecutionRecord(
            id=int(row["id"]),
            task_id=int(row["task_id"]),
            target=str(row["target"]),
            keeper_id=str(row["keeper_id"]),
            status=OutcomeStatus.from_db(raw_status) or raw_status,
            timestamp=float(row["timestamp"]),
            cost=int(row["cost"] or 0),
            attempts=int(row["attempts"] or 0),
            error=row["error"],
        )


class OutcomeRecorder:
    """Feeds AttemptOutcomes into a sink. Never raises into the scheduler."""

    def __init__(self, sink: OutcomeSink) -> None:
        self._sink = sink

    def record(self, outcome: AttemptOutcome) -> None:
        try:
            self._sink.append(
                outcome.task_id,
                outcome.target_contract,
                outcome.keeper_id,
                outcome.status,
                outcome.timestamp or time.time(),
                cost=outcome.cost,
                attempts=outcome.attempts,
                error=outcome.error,
            )
        except Exception:
            logger.exception(
                "Failed to record outcome task_id=%s status=%s", outcome.task_id, outcome.status
            )
            return

        logger.info(
            "Task %s %s keeper=%s attempts=%s cost=%s next=%s",
            outcome.task_id,
            outcome.status.value,
            outcome.keeper_id,
            outcome.attempts,
            outcome.cost,
            outcome.next_eligible_time,
        )
