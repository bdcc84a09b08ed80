# src/sorotask_keeper/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from ..core.errors import KeeperError
from ..core.state import KeeperState
from ..tasks.task_models import Task

CommandHandler = Callable[[KeeperState, list[str]], str]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the operator CLI (/help, /tasks, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: KeeperState, line: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return handler(state, args)
        except (KeeperError, ValueError) as e:
            logger.debug("Command /%s rejected: %s", name, e)
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts(ts: float | None) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _format_task(t: Task) -> str:
    outcome = t.last_outcome.value if t.last_outcome else "-"
    return (
        f"#{t.id} [{t.status.value}] {t.target_contract}.{t.function_name} "
        f"every {t.interval_seconds}s next={_ts(t.next_eligible_time)} "
        f"balance={t.fee_balance} last={outcome}"
    )


def _int_arg(args: list[str], idx: int, name: str) -> int:
    try:
        return int(args[idx])
    except IndexError as e:
        raise ValueError(f"missing <{name}>") from e
    except ValueError as e:
        raise ValueError(f"<{name}> must be an integer") from e


def cmd_help(state: KeeperState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: KeeperState, args: list[str]) -> str:
    s = state.settings
    return (
        "Status:\n"
        f"  Keeper: {state.keeper_id}\n"
        f"  Registry: {state.registry.db_path} ({state.registry.count_tasks()} tasks)\n"
        f"  RPC: {getattr(s, 'rpc_url', '') or '(not set)'}\n"
        f"  Cadence: {getattr(s, 'poll_interval_seconds', '?')}s, "
        f"concurrency {getattr(s, 'max_concurrency', '?')}, "
        f"lease {getattr(s, 'claim_lease_seconds', '?')}s"
    )


def cmd_tasks(state: KeeperState, args: list[str]) -> str:
    tasks = state.registry.list_tasks(limit=100)
    if not tasks:
        return "No tasks registered."
    return "\n".join(_format_task(t) for t in tasks)


def cmd_task(state: KeeperState, args: list[str]) -> str:
    task_id = _int_arg(args, 0, "id")
    t = state.registry.get_task(task_id)
    if t is None:
        return f"Task {task_id} not found."
    lines = [_format_task(t), f"  creator: {t.creator}", f"  args: {t.args}"]
    if t.resolver:
        lines.append(f"  resolver: {t.resolver}")
    if t.whitelist:
        lines.append(f"  keepers: {', '.join(t.whitelist)}")
    if t.claim_holder:
        lines.append(f"  claimed by {t.claim_holder} until {_ts(t.claim_expires_at)}")
    return "\n".join(lines)


def cmd_log(state: KeeperState, args: list[str]) -> str:
    """
    /log            -> latest executions
    /log <task_id>  -> latest executions of one task
    """
    task_id = _int_arg(args, 0, "task_id") if args else None
    records = state.execution_log.list_records(task_id=task_id, limit=20)
    if not records:
        return "Execution log is empty."
    lines = ["Task ID | Target | Keeper | Status | Timestamp"]
    for r in records:
        lines.append(f"{r.task_id} | {r.target} | {r.keeper_id} | {r.status} | {_ts(r.timestamp)}")
    return "\n".join(lines)


def cmd_register(state: KeeperState, args: list[str]) -> str:
    """/register <creator> <target> <function> <interval> [fee] [start_at]"""
    if len(args) < 4:
        return "Usage: /register <creator> <target> <function> <interval> [fee] [start_at]"
    task_id = state.registry.register_task(
        creator=args[0],
        target_contract=args[1],
        function_name=args[2],
        interval_seconds=_int_arg(args, 3, "interval"),
        fee_balance=_int_arg(args, 4, "fee") if len(args) > 4 else 0,
        start_at=_int_arg(args, 5, "start_at") if len(args) > 5 else None,
    )
    return f"Registered task {task_id}."


def cmd_deposit(state: KeeperState, args: list[str]) -> str:
    task_id = _int_arg(args, 0, "id")
    balance = state.registry.deposit_fee(task_id, _int_arg(args, 1, "amount"))
    return f"Task {task_id} balance: {balance}."


def cmd_withdraw(state: KeeperState, args: list[str]) -> str:
    if len(args) < 3:
        return "Usage: /withdraw <id> <creator> <amount>"
    task_id = _int_arg(args, 0, "id")
    balance = state.registry.withdraw_fee(task_id, _int_arg(args, 2, "amount"), creator=args[1])
    return f"Task {task_id} balance: {balance}."


def cmd_cancel(state: KeeperState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /cancel <id> <creator>"
    task_id = _int_arg(args, 0, "id")
    state.registry.cancel_task(task_id, creator=args[1])
    return f"Task {task_id} canceled."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show keeper identity and settings.")
registry.register("tasks", cmd_tasks, help_text="List registered tasks.")
registry.register("task", cmd_task, help_text="Show one task: /task <id>.")
registry.register("log", cmd_log, help_text="Execution log: /log [task_id].")
registry.register(
    "register",
    cmd_register,
    help_text="Register a task: /register <creator> <target> <function> <interval> [fee] [start_at].",
)
registry.register("deposit", cmd_deposit, help_text="Add fee funds: /deposit <id> <amount>.")
registry.register(
    "withdraw", cmd_withdraw, help_text="Withdraw fee funds: /withdraw <id> <creator> <amount>."
)
registry.register("cancel", cmd_cancel, help_text="Cancel a task: /cancel <id> <creator>.")
