"""
Type definitions for workloads, instances and rollout results.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from .errors import RolloutError


@dataclass(frozen=True)
class WorkloadRef:
    """A deployment, identified by name and namespace."""
    name: str
    namespace: str = "default"

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class VersionedState:
    """Desired-state descriptor together with the version it was read at."""
    descriptor: Any
    version: Optional[str]


@dataclass(frozen=True)
class DesiredStateSnapshot:
    """Container image a workload ran before a rollout, used to roll back."""
    workload: WorkloadRef
    image: str


@dataclass
class Instance:
    """Kubernetes Pod representation with per-container readiness."""
    name: str
    namespace: str
    status: str
    labels: Dict[str, str]
    container_ready: Dict[str, bool] = field(default_factory=dict)
    creation_timestamp: Optional[datetime] = None

    @property
    def is_ready(self) -> bool:
        # A pod that has not reported any container status yet is still starting.
        return bool(self.container_ready) and all(self.container_ready.values())


@dataclass
class DeploymentStatus:
    """Replica counts reported by the deployment controller."""
    deployment: str
    namespace: str
    status: str  # "ready", "pending"
    ready_replicas: int
    desired_replicas: int
    updated_replicas: int
    image: Optional[str] = None


class WorkloadStore(Protocol):
    def get_desired_state(self, workload: WorkloadRef) -> VersionedState:
        ...

    def update_desired_state(self, workload: WorkloadRef, descriptor: Any, version: Optional[str]) -> None:
        ...


class InstanceObserver(Protocol):
    def list_instances(self, workload: WorkloadRef) -> List[Instance]:
        ...


class WaitState(str, Enum):
    POLLING = "polling"
    CONVERGED = "converged"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ConvergenceResult:
    """Outcome of waiting for a workload's instances to become ready."""
    workload: WorkloadRef
    state: WaitState
    polls: int = 0
    ready: int = 0
    total: int = 0
    elapsed_s: float = 0.0
    last_error: Optional[RolloutError] = None

    @property
    def converged(self) -> bool:
        return self.state is WaitState.CONVERGED


@dataclass
class MutationResult:
    """Outcome of a conflict-safe read-transform-write cycle."""
    workload: WorkloadRef
    attempts: int
    error: Optional[RolloutError] = None

    @property
    def applied(self) -> bool:
        return self.error is None


class RolloutOutcome(str, Enum):
    SUCCESS = "success"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    PRECONDITION_FAILED = "precondition_failed"
    ABORTED = "aborted"


@dataclass
class RolloutAttempt:
    """One verification pass: which image was expected and how waiting went."""
    phase: str  # "update" or "rollback"
    target_image: str
    timeout_s: float
    poll_interval_s: float
    mutation: Optional[MutationResult] = None
    convergence: Optional[ConvergenceResult] = None


@dataclass
class RolloutResult:
    """Final outcome of a rollout."""
    outcome: RolloutOutcome
    workload: WorkloadRef
    target_image: str
    previous_image: Optional[str] = None
    message: str = ""
    error: Optional[RolloutError] = None
    attempts: List[RolloutAttempt] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "deployment": self.workload.name,
            "namespace": self.workload.namespace,
            "target_image": self.target_image,
            "previous_image": self.previous_image,
            "message": self.message,
            "error": f"{type(self.error).__name__}: {self.error}" if self.error else None,
            "attempts": [
                {
                    "phase": a.phase,
                    "target_image": a.target_image,
                    "timeout_s": a.timeout_s,
                    "poll_interval_s": a.poll_interval_s,
                    "mutation_attempts": a.mutation.attempts if a.mutation else None,
                    "state": a.convergence.state.value if a.convergence else None,
                    "polls": a.convergence.polls if a.convergence else 0,
                    "ready": a.convergence.ready if a.convergence else 0,
                    "total": a.convergence.total if a.convergence else 0,
                }
                for a in self.attempts
            ],
        }
