# src/sorotask_keeper/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole keeper process.
- No secrets required at import time (the signer is resolved at startup).
- Every knob has a safe default so `sorotask-keeper tasks` works out of the box.
"""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "SOROTASK"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _default_keeper_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Identity / network ----
    keeper_id: str
    rpc_url: str
    signer: str  # "package.module:factory", resolved by the bootstrap layer

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    registry_db_path: Path
    execution_log_path: Path

    # ---- Scheduler ----
    poll_interval_seconds: float
    max_concurrency: int
    page_size: int

    # ---- Execution ----
    claim_lease_seconds: float
    max_attempts: int
    backoff_base_seconds: float
    submit_timeout_seconds: float
    confirm_timeout_seconds: float
    confirm_poll_seconds: float
    execution_fee_estimate: int

    @property
    def worst_case_attempt_seconds(self) -> float:
        """Longest a single claimed interval can stay in flight."""
        backoff = sum(self.backoff_base_seconds * (2 ** i) for i in range(max(0, self.max_attempts - 1)))
        return self.max_attempts * self.submit_timeout_seconds + backoff

    def timing_warnings(self) -> list[str]:
        out: list[str] = []
        if self.claim_lease_seconds <= self.worst_case_attempt_seconds:
            out.append(
                f"claim lease {self.claim_lease_seconds:.0f}s does not cover the worst-case attempt "
                f"({self.worst_case_attempt_seconds:.0f}s); another keeper may reclaim a live task"
            )
        if self.confirm_timeout_seconds >= self.submit_timeout_seconds:
            out.append(
                "confirm timeout is not shorter than the submit timeout; "
                "slow confirmations will surface as timeouts instead of unconfirmed results"
            )
        return out

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "sorotask-keeper")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        keeper_id = _env(_k("KEEPER_ID"), "").strip() or _default_keeper_id()
        rpc_url = _env(_k("RPC_URL"), "").strip()
        signer = _env(_k("SIGNER"), "").strip()

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/sorotask"))
        registry_db_path = _env_path(_k("REGISTRY_DB_PATH"), data_dir / "registry.sqlite3")
        execution_log_path = _env_path(_k("EXECUTION_LOG_PATH"), data_dir / "executions.sqlite3")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            keeper_id=keeper_id,
            rpc_url=rpc_url,
            signer=signer,
            data_dir=data_dir,
            registry_db_path=registry_db_path,
            execution_log_path=execution_log_path,
            poll_interval_seconds=_env_float(_k("POLL_INTERVAL_SECONDS"), 5.0),
            max_concurrency=_env_int(_k("MAX_CONCURRENCY"), 8),
            page_size=_env_int(_k("PAGE_SIZE"), 100),
            claim_lease_seconds=_env_float(_k("CLAIM_LEASE_SECONDS"), 120.0),
            max_attempts=_env_int(_k("MAX_ATTEMPTS"), 3),
            backoff_base_seconds=_env_float(_k("BACKOFF_BASE_SECONDS"), 1.0),
            submit_timeout_seconds=_env_float(_k("SUBMIT_TIMEOUT_SECONDS"), 30.0),
            confirm_timeout_seconds=_env_float(_k("CONFIRM_TIMEOUT_SECONDS"), 25.0),
            confirm_poll_seconds=_env_float(_k("CONFIRM_POLL_SECONDS"), 1.0),
            execution_fee_estimate=_env_int(_k("EXECUTION_FEE_ESTIMATE"), 10),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
