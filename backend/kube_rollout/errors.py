"""
Error taxonomy for rollouts.

Store and observer adapters raise these; the mutator and the convergence
waiter catch them and hand them back as part of their results, so the
controller can branch on every failure without unwinding.
"""


class RolloutError(Exception):
    """Base class for all rollout errors."""


class StoreError(RolloutError):
    """Non-retryable read/write failure against the workload store."""


class VersionConflict(StoreError):
    """Write rejected because the version token was stale."""


class ConflictExhausted(RolloutError):
    """Conflict retry budget used up without a successful write."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class ObserverError(RolloutError):
    """Failure listing instances or reading their readiness."""


class PreconditionFailed(RolloutError):
    """Baseline health check failed before any mutation."""


class RollbackFailed(RolloutError):
    """Neither the update nor the rollback converged."""
