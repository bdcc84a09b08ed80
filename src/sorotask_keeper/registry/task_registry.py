# src/sorotask_keeper/registry/task_registry.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ..core.errors import (
    InsufficientBalanceError,
    InvalidIntervalError,
    TaskNotFoundError,
    UnauthorizedError,
)
from ..tasks.task_models import OutcomeStatus, Task, TaskStatus

logger = logging.getLogger(__name__)


class SqliteTaskRegistry:
    """
    SQLite-backed authoritative task registry.

    Mirrors the on-chain registry contract closely enough to run keepers
    against it locally: every keeper-side mutation is ONE conditional UPDATE,
    so concurrent keepers (threads or separate processes sharing the file)
    get the same compare-and-set semantics the contract provides.

    The schema is migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "registry.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("Task registry ready db=%s total=%s", self._db_path, total)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    creator TEXT NOT NULL,
                    target_contract TEXT NOT NULL,
                    function_name TEXT NOT NULL,
                    args TEXT NOT NULL DEFAULT '[]',
                    interval_seconds INTEGER NOT NULL,
                    next_eligible_time INTEGER NOT NULL,
                    fee_balance INTEGER NOT NULL DEFAULT 0 CHECK (fee_balance >= 0),
                    status TEXT NOT NULL DEFAULT 'Active',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): columns added after the first schema.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("Task registry migration: added column %s", name)

            add_col("last_outcome", "TEXT")
            add_col("resolver", "TEXT")
            add_col("whitelist", "TEXT NOT NULL DEFAULT '[]'")
            add_col("claim_holder", "TEXT")
            add_col("claim_expires_at", "REAL")
            add_col("last_debit", "INTEGER NOT NULL DEFAULT 0")

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_status_next ON tasks(status, next_eligible_time)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_creator ON tasks(creator)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _list_to_str(values: Iterable[Any] | None) -> str:
        if not values:
            return "[]"
        try:
            return json.dumps(list(values), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise ValueError("task args/whitelist must be JSON-encodable") from e

    @staticmethod
    def _str_to_list(s: str | None) -> list[Any]:
        if not s:
            return []
        try:
            val = json.loads(s)
            return val if isinstance(val, list) else []
        except ValueError:
            return []

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            creator=str(row["creator"]),
            target_contract=str(row["target_contract"]),
            function_name=str(row["function_name"]),
            interval_seconds=int(row["interval_seconds"]),
            next_eligible_time=int(row["next_eligible_time"]),
            fee_balance=int(row["fee_balance"] or 0),
            status=TaskStatus.from_db(row["status"]),
            args=self._str_to_list(row["args"]),
            last_outcome=OutcomeStatus.from_db(row["last_outcome"]),
            resolver=row["resolver"],
            whitelist=tuple(str(k) for k in self._str_to_list(row["whitelist"])),
            claim_holder=row["claim_holder"],
            claim_expires_at=(
                float(row["claim_expires_at"]) if row["claim_expires_at"] is not None else None
            ),
            last_debit=int(row["last_debit"] or 0),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    def _require_task(self, conn: sqlite3.Connection, task_id: int) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
        if row is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return row

    # ---- reads ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def get_task(self, task_id: int) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def list_active_tasks(self, *, limit: int | None = None, after_id: int = 0) -> list[Task]:
        """
        Page through Active tasks in id order.

        Paging is keyset-based (after_id) so a page boundary never skips or
        repeats a row while other keepers mutate the table.
        """
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE status = 'Active'
                  AND id > ?
                ORDER BY id ASC
                    LIMIT ?
                """,
                (int(after_id), -1 if limit is None else int(limit)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_tasks(self, *, limit: int = 100) -> list[Task]:
        """All tasks regardless of status (operator view)."""
        conn = self._get_conn()
        try:
            cur = conn.execute("SELECT * FROM tasks ORDER BY id ASC LIMIT ?", (int(limit),))
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    # ---- creator-side operations ----

    def register_task(
        self,
        *,
        creator: str,
        target_contract: str,
        function_name: str,
        interval_seconds: int,
        fee_balance: int = 0,
        args: list[Any] | None = None,
        resolver: str | None = None,
        whitelist: Iterable[str] | None = None,
        start_at: int | None = None,
    ) -> int:
        """Register a task and return its sequential id. First run is due at start_at (default: now)."""
        if int(interval_seconds) <= 0:
            raise InvalidIntervalError("interval_seconds must be > 0")
        if not creator or not target_contract or not function_name:
            raise ValueError("creator, target_contract and function_name are required")
        if int(fee_balance) < 0:
            raise ValueError("fee_balance must be >= 0")

        now = time.time()
        next_eligible = int(now) if start_at is None else int(start_at)

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO tasks(
                    creator, target_contract, function_name, args,
                    interval_seconds, next_eligible_time, fee_balance, status,
                    resolver, whitelist, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 'Active', ?, ?, ?, ?)
                """,
                (
                    creator.strip(),
                    target_contract.strip(),
                    function_name.strip(),
                    self._list_to_str(args),
                    int(interval_seconds),
                    next_eligible,
                    int(fee_balance),
                    resolver,
                    self._list_to_str(whitelist),
                    now,
                    now,
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for tasks insert")
            task_id = int(rowid)
            logger.info(
                "TaskRegistered id=%s creator=%s target=%s.%s interval=%s",
                task_id,
                creator,
                target_contract,
                function_name,
                interval_seconds,
            )
            return task_id
        finally:
            conn.close()

    def deposit_fee(self, task_id: int, amount: int) -> int:
        """Add funds; a Paused task becomes Active again. Returns the new balance."""
        if int(amount) <= 0:
            raise ValueError("amount must be > 0")

        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE tasks
                SET fee_balance = fee_balance + ?,
                    status = CASE WHEN status = 'Paused' THEN 'Active' ELSE status END,
                    updated_at = ?
                WHERE id = ?
                """,
                (int(amount), time.time(), int(task_id)),
            )
            if cur.rowcount != 1:
                raise TaskNotFoundError(f"Task not found: {task_id}")
            conn.commit()
            balance = int(self._require_task(conn, task_id)["fee_balance"])
            logger.info("FeeDeposited id=%s amount=%s balance=%s", task_id, amount, balance)
            return balance
        finally:
            conn.close()

    def withdraw_fee(self, task_id: int, amount: int, *, creator: str) -> int:
        """Creator-only withdrawal. Returns the new balance."""
        if int(amount) <= 0:
            raise ValueError("amount must be > 0")

        conn = self._get_conn()
        try:
            row = self._require_task(conn, task_id)
            if row["creator"] != creator:
                raise UnauthorizedError(f"Only the creator may withdraw from task {task_id}")

            cur = conn.execute(
                """
                UPDATE tasks
                SET fee_balance = fee_balance - ?, updated_at = ?
                WHERE id = ?
                  AND fee_balance >= ?
                """,
                (int(amount), time.time(), int(task_id), int(amount)),
            )
            if cur.rowcount != 1:
                raise InsufficientBalanceError(
                    f"Task {task_id} balance is below the requested {amount}"
                )
            conn.commit()
            balance = int(self._require_task(conn, task_id)["fee_balance"])
            logger.info("FeeWithdrawn id=%s amount=%s balance=%s", task_id, amount, balance)
            return balance
        finally:
            conn.close()

    def cancel_task(self, task_id: int, *, creator: str) -> None:
        conn = self._get_conn()
        try:
            row = self._require_task(conn, task_id)
            if row["creator"] != creator:
                raise UnauthorizedError(f"Only the creator may cancel task {task_id}")
            conn.execute(
                "UPDATE tasks SET status = 'Canceled', updated_at = ? WHERE id = ?",
                (time.time(), int(task_id)),
            )
            conn.commit()
            logger.info("TaskCanceled id=%s", task_id)
        finally:
            conn.close()

    # ---- keeper-side operations ----

    def try_claim(
        self,
        task_id: int,
        expected_next_eligible_time: int,
        *,
        keeper_id: str,
        lease_seconds: float,
        now: float | None = None,
    ) -> bool:
        """
        Atomically claim the interval starting at expected_next_eligible_time.

        Succeeds only if the task is Active, its schedule still points at the
        expected interval, and nobody holds an unexpired lease.

        Returns True if the row was claimed by this caller.
        """
        if now is None:
            now = time.time()

        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE tasks
                SET claim_holder = ?, claim_expires_at = ?, updated_at = ?
                WHERE id = ?
                  AND status = 'Active'
                  AND next_eligible_time = ?
                  AND (claim_holder IS NULL OR claim_expires_at IS NULL OR claim_expires_at <= ?)
                """,
                (
                    keeper_id,
                    float(now) + float(lease_seconds),
                    float(now),
                    int(task_id),
                    int(expected_next_eligible_time),
                    float(now),
                ),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def release_claim(
        self,
        task_id: int,
        *,
        keeper_id: str,
        outcome: OutcomeStatus | None = None,
    ) -> bool:
        """Drop our claim without touching the schedule. No-op if someone else holds it."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE tasks
                SET claim_holder = NULL,
                    claim_expires_at = NULL,
                    last_outcome = COALESCE(?, last_outcome),
                    updated_at = ?
                WHERE id = ?
                  AND claim_holder = ?
                """,
                (
                    outcome.value if outcome is not None else None,
                    time.time(),
                    int(task_id),
                    keeper_id,
                ),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

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
        """
        Move the schedule forward, debit fees and release the claim in one step.

        Conditional on the caller still holding the claim for the expected
        interval, so a keeper whose lease was taken over cannot advance twice.
        The debit is capped at the balance (never negative).

        Returns the fee actually debited, or None if nothing was advanced.
        """
        if int(new_next_eligible_time) <= int(expected_next_eligible_time):
            raise ValueError("new_next_eligible_time must be after the claimed interval")

        requested = max(0, int(fee_debit))
        conn = self._get_conn()
        try:
            # Both MIN() terms see the pre-update balance.
            cur = conn.execute(
                """
                UPDATE tasks
                SET next_eligible_time = ?,
                    fee_balance = fee_balance - MIN(?, fee_balance),
                    last_debit = MIN(?, fee_balance),
                    last_outcome = ?,
                    claim_holder = NULL,
                    claim_expires_at = NULL,
                    updated_at = ?
                WHERE id = ?
                  AND claim_holder = ?
                  AND next_eligible_time = ?
                """,
                (
                    int(new_next_eligible_time),
                    requested,
                    requested,
                    outcome.value,
                    time.time(),
                    int(task_id),
                    keeper_id,
                    int(expected_next_eligible_time),
                ),
            )
            if cur.rowcount != 1:
                conn.rollback()
                return None
            # Same transaction: nobody else has touched the row yet.
            (debited,) = conn.execute(
                "SELECT last_debit FROM tasks WHERE id = ?", (int(task_id),)
            ).fetchone()
            conn.commit()
            return int(debited)
        finally:
            conn.close()

    def pause_task(
        self,
        task_id: int,
        *,
        keeper_id: str | None = None,
        outcome: OutcomeStatus = OutcomeStatus.OUT_OF_FUNDS,
        balance_below: int | None = None,
    ) -> bool:
        """
        Active -> Paused, clearing any claim.

        When keeper_id is given the pause only applies if that keeper holds the claim.
        When balance_below is given it only applies if the stored balance is
        still below it (a deposit that landed first wins).
        """
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE tasks
                SET status = 'Paused',
                    last_outcome = ?,
                    claim_holder = NULL,
                    claim_expires_at = NULL,
                    updated_at = ?
                WHERE id = ?
                  AND status = 'Active'
                  AND (? IS NULL OR claim_holder = ?)
                  AND (? IS NULL OR fee_balance < ?)
                """,
                (
                    outcome.value,
                    time.time(),
                    int(task_id),
                    keeper_id,
                    keeper_id,
                    balance_below,
                    balance_below,
                ),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()
