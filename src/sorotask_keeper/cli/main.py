# src/sorotask_keeper/cli/main.py

"""
CLI entrypoint.

    sorotask-keeper [run]          run the keeper loop until SIGINT/SIGTERM
    sorotask-keeper <command> ...  one-shot operator command (see `help`)

Initializes logging, builds KeeperState, then either runs the scheduler or
dispatches a single command.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from ..cli.bootstrap import build_keeper, create_initial_state
from ..cli.commands import registry as command_registry
from ..config import get_settings
from ..core.errors import ConfigurationError
from ..core.state import KeeperState
from ..logging_setup import setup_logging
from ..tasks.task_scheduler import run_keeper_scheduler

logger = logging.getLogger(__name__)


async def _run_keeper(state: KeeperState) -> None:
    settings = state.settings
    runtime = build_keeper(state)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, finishing the current cycle...", signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_signal, sig)
        except (NotImplementedError, RuntimeError):
            # Some platforms (Windows) have no loop signal handlers.
            pass

    try:
        await run_keeper_scheduler(
            runtime.client,
            runtime.coordinator,
            runtime.recorder,
            interval_seconds=settings.poll_interval_seconds,
            max_concurrency=settings.max_concurrency,
            page_size=settings.page_size,
            stop_event=stop,
        )
    finally:
        await runtime.invoker.aclose()


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    args = list(sys.argv[1:] if argv is None else argv)

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    state = create_initial_state(settings=settings)

    if args and args[0] != "run":
        reply = command_registry.handle(state, "/" + " ".join(args))
        print(reply)
        return 0

    logger.info("Starting %s as keeper %s...", settings.app_name, state.keeper_id)
    try:
        asyncio.run(_run_keeper(state))
    except ConfigurationError as e:
        logger.error("%s", e)
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted.")

    logger.info("Bye.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
