# src/sorotask_keeper/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the registry and execution log into KeeperState,
- resolves the signer and builds the network-facing keeper pieces.
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass

from ..config import get_settings
from ..core.errors import ConfigurationError
from ..core.ports import TransactionSigner
from ..core.state import KeeperState
from ..registry.client import KeeperRegistryClient
from ..registry.rpc_invoker import SorobanRpcInvoker
from ..registry.task_registry import SqliteTaskRegistry
from ..tasks.outcome_log import ExecutionLog, OutcomeRecorder
from ..tasks.task_executor import ExecutionCoordinator

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.registry_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.execution_log_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> KeeperState:
    """
    Create KeeperState from the provided settings (no network, no secrets).

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    return KeeperState(
        settings=settings,
        keeper_id=settings.keeper_id,
        registry=SqliteTaskRegistry(settings.registry_db_path),
        execution_log=ExecutionLog(settings.execution_log_path),
    )


def load_signer(factory_path: str) -> TransactionSigner:
    """
    Resolve "package.module:factory" into a signer instance.

    Key material never passes through this package; the factory owns it.
    """
    if not factory_path or ":" not in factory_path:
        raise ConfigurationError(
            "Signer is not configured. Set SOROTASK_SIGNER=package.module:factory."
        )

    module_name, _, attr = factory_path.partition(":")
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load signer {factory_path!r}: {e}") from e

    signer = factory()
    for method in ("build_invocation", "sign", "decode_bool"):
        if not callable(getattr(signer, method, None)):
            raise ConfigurationError(f"Signer {factory_path!r} does not implement {method}()")
    return signer


@dataclass(slots=True)
class KeeperRuntime:
    client: KeeperRegistryClient
    coordinator: ExecutionCoordinator
    recorder: OutcomeRecorder
    invoker: SorobanRpcInvoker


def build_keeper(state: KeeperState, *, signer: TransactionSigner | None = None) -> KeeperRuntime:
    """Wire invoker -> registry client -> coordinator/recorder for the run command."""
    settings = state.settings

    rpc_url = (getattr(settings, "rpc_url", "") or "").strip()
    if not rpc_url:
        raise ConfigurationError("RPC endpoint is not configured. Set SOROTASK_RPC_URL.")

    if signer is None:
        signer = load_signer(getattr(settings, "signer", ""))

    timing_warnings = getattr(settings, "timing_warnings", None)
    if callable(timing_warnings):
        for warning in timing_warnings():
            logger.warning("Config: %s", warning)

    invoker = SorobanRpcInvoker(
        rpc_url,
        signer,
        confirm_timeout_seconds=settings.confirm_timeout_seconds,
        poll_interval_seconds=settings.confirm_poll_seconds,
    )
    client = KeeperRegistryClient(state.registry, invoker)
    coordinator = ExecutionCoordinator(
        client,
        keeper_id=state.keeper_id,
        claim_lease_seconds=settings.claim_lease_seconds,
        max_attempts=settings.max_attempts,
        backoff_base_seconds=settings.backoff_base_seconds,
        submit_timeout_seconds=settings.submit_timeout_seconds,
        fee_estimator=settings.execution_fee_estimate,
    )
    return KeeperRuntime(
        client=client,
        coordinator=coordinator,
        recorder=OutcomeRecorder(state.execution_log),
        invoker=invoker,
    )
