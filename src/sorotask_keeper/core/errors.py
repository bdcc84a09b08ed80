# src/sorotask_keeper/core/errors.py

from __future__ import annotations


class KeeperError(Exception):
    """Base class for keeper errors."""


class SubmissionError(KeeperError):
    """
    Transport-level failure while simulating, sending or confirming a call.

    Transient by definition: the coordinator retries it with backoff.
    A contract revert is NOT a SubmissionError.
    """


class TaskNotFoundError(KeeperError, LookupError):
    pass


class InvalidIntervalError(KeeperError, ValueError):
    pass


class InsufficientBalanceError(KeeperError, ValueError):
    pass


class UnauthorizedError(KeeperError, PermissionError):
    pass


class ConfigurationError(KeeperError):
    """Bootstrap cannot continue (missing signer, bad endpoint, ...)."""
