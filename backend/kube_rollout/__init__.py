"""kube-rollout.

Scripted rolling update of a single Kubernetes deployment:
 - conflict-safe update of the container image (retry on 409 Conflict)
 - bounded wait for every pod to report ready
 - automatic rollback to the previous image when the update does not converge
"""
from .controller import RolloutController
from .convergence import ConvergenceWaiter
from .errors import (
    ConflictExhausted,
    ObserverError,
    PreconditionFailed,
    RollbackFailed,
    RolloutError,
    StoreError,
    VersionConflict,
)
from .kube_types import (
    ConvergenceResult,
    Instance,
    MutationResult,
    RolloutOutcome,
    RolloutResult,
    WaitState,
    WorkloadRef,
)
from .mutator import Backoff, ConflictSafeMutator, container_image, set_image

__version__ = "0.1.0"

__all__ = [
    "RolloutController",
    "ConvergenceWaiter",
    "ConflictSafeMutator",
    "Backoff",
    "set_image",
    "container_image",
    "WorkloadRef",
    "Instance",
    "ConvergenceResult",
    "MutationResult",
    "RolloutOutcome",
    "RolloutResult",
    "WaitState",
    "RolloutError",
    "StoreError",
    "VersionConflict",
    "ConflictExhausted",
    "ObserverError",
    "PreconditionFailed",
    "RollbackFailed",
]
