# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit signing keys. The signer factory named by SOROTASK_SIGNER owns key material;
it reads whatever it needs from its own environment.

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "SOROTASK_APP_NAME": "App display name (default: sorotask-keeper).",
    "SOROTASK_LOG_LEVEL": "Console logging level (default: INFO). The file log is always DEBUG.",
    # Identity / network
    "SOROTASK_KEEPER_ID": "Keeper identity used for claims and whitelists (default: <hostname>-<pid>).",
    "SOROTASK_RPC_URL": "Soroban JSON-RPC endpoint (required for `run`).",
    "SOROTASK_SIGNER": "Signer factory as package.module:factory (required for `run`).",
    # Paths (gitignored)
    "SOROTASK_DATA_DIR": "Local data directory (default: .local/sorotask).",
    "SOROTASK_REGISTRY_DB_PATH": "Task registry SQLite path (default: <data_dir>/registry.sqlite3).",
    "SOROTASK_EXECUTION_LOG_PATH": "Execution log SQLite path (default: <data_dir>/executions.sqlite3).",
    # Scheduler
    "SOROTASK_POLL_INTERVAL_SECONDS": "Cadence between keeper cycles (default: 5).",
    "SOROTASK_MAX_CONCURRENCY": "Tasks executed in parallel per cycle (default: 8).",
    "SOROTASK_PAGE_SIZE": "Active tasks read per registry page (default: 100).",
    # Execution
    "SOROTASK_CLAIM_LEASE_SECONDS": "Claim lease; must exceed the worst-case attempt (default: 120).",
    "SOROTASK_MAX_ATTEMPTS": "Submission attempts per claimed interval (default: 3).",
    "SOROTASK_BACKOFF_BASE_SECONDS": "First retry delay, doubled per attempt (default: 1).",
    "SOROTASK_SUBMIT_TIMEOUT_SECONDS": "Upper bound for one submission attempt (default: 30).",
    "SOROTASK_CONFIRM_TIMEOUT_SECONDS": "How long to poll for confirmation (default: 25).",
    "SOROTASK_CONFIRM_POLL_SECONDS": "Confirmation polling interval (default: 1).",
    "SOROTASK_EXECUTION_FEE_ESTIMATE": "Minimum balance required before submitting (default: 10).",
}
