"""Error taxonomy for discovery, projection and reconciliation."""

from __future__ import annotations


class HomerOperatorError(Exception):
    """Base class. ``retryable`` tells the work queue whether backoff helps."""

    retryable = True


class ConnectivityError(HomerOperatorError):
    def __init__(self, cluster: str, message: str):
        super().__init__(f"cluster {cluster}: {message}")
        self.cluster = cluster


class SelectorError(HomerOperatorError):
    retryable = False


class SecretResolutionError(HomerOperatorError):
    retryable = False


class MissingDependencyError(HomerOperatorError):
    retryable = False


class ConflictError(HomerOperatorError):
    pass


class NotFoundError(HomerOperatorError):
    retryable = False


class RetryExhaustedError(HomerOperatorError):
    def __init__(self, attempts: int, last_error: BaseException | None):
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class ReconcileCancelled(HomerOperatorError):
    pass
