"""
Conflict-safe mutation of a deployment's desired state.
"""
import copy
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
    wait_random,
)

from .errors import ConflictExhausted, StoreError, VersionConflict
from .kube_types import MutationResult, WorkloadRef, WorkloadStore

logger = logging.getLogger(__name__)

Transform = Callable[[Any], Any]


@dataclass(frozen=True)
class Backoff:
    """Retry schedule between conflicting writes.

    Delays start at ``duration`` and are multiplied by ``factor`` after each
    attempt, optionally capped; ``jitter`` adds up to that fraction of
    ``duration`` at random.
    """
    steps: int = 5
    duration: float = 0.01
    factor: float = 1.0
    jitter: float = 0.1
    cap: Optional[float] = None

    def wait(self):
        """tenacity wait strategy for this schedule."""
        if self.factor > 1:
            limits = {"max": self.cap} if self.cap is not None else {}
            strategy = wait_exponential(multiplier=self.duration, exp_base=self.factor, **limits)
        else:
            duration = self.duration if self.cap is None else min(self.duration, self.cap)
            strategy = wait_fixed(duration)
        if self.jitter > 0:
            strategy = strategy + wait_random(0, self.jitter * self.duration)
        return strategy


DEFAULT_BACKOFF = Backoff()


def _find_container(descriptor: Any, container: Optional[str]):
    try:
        containers = descriptor.spec.template.spec.containers or []
    except AttributeError:
        containers = []
    if not containers:
        raise StoreError(f"{descriptor.metadata.name} has no container template")
    if container is None:
        return containers[0]
    for spec in containers:
        if spec.name == container:
            return spec
    raise StoreError(f"{descriptor.metadata.name} has no container named '{container}'")


def container_image(descriptor: Any, container: Optional[str] = None) -> str:
    """Image of the managed container (the first one unless named)."""
    return _find_container(descriptor, container).image


def set_image(image: str, container: Optional[str] = None) -> Transform:
    """Transform that points the managed container at ``image``."""
    def transform(descriptor: Any) -> Any:
        _find_container(descriptor, container).image = image
        return descriptor
    return transform


class ConflictSafeMutator:
    """Applies a transform to a workload, re-reading and retrying on conflicts."""

    def __init__(
        self,
        store: WorkloadStore,
        backoff: Backoff = DEFAULT_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.backoff = backoff
        self._sleep = sleep

    def mutate(self, workload: WorkloadRef, transform: Transform) -> MutationResult:
        """
        Read the latest descriptor, transform a copy of it and write it back.

        Args:
            workload: Deployment to modify
            transform: Function from descriptor to modified descriptor; it is
                called again on every retry with a freshly read descriptor

        Returns:
            MutationResult; ``error`` is a StoreError or ConflictExhausted
            when nothing was written
        """
        def log_conflict(retry_state: RetryCallState) -> None:
            logger.info(
                f"Conflict updating {workload} (attempt {retry_state.attempt_number}/{self.backoff.steps}): "
                f"{retry_state.outcome.exception()}"
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.backoff.steps),
            wait=self.backoff.wait(),
            retry=retry_if_exception_type(VersionConflict),
            sleep=self._sleep,
            before_sleep=log_conflict,
        )

        attempts = 0
        try:
            for attempt in retrying:
                with attempt:
                    attempts += 1
                    current = self.store.get_desired_state(workload)
                    desired = transform(copy.deepcopy(current.descriptor))
                    self.store.update_desired_state(workload, desired, current.version)
        except RetryError as e:
            error = ConflictExhausted(
                f"Gave up updating {workload} after {e.last_attempt.attempt_number} conflicting attempts",
                attempts=e.last_attempt.attempt_number,
            )
            logger.error(f"❌ {error}")
            return MutationResult(workload=workload, attempts=attempts, error=error)
        except StoreError as e:
            logger.error(f"❌ Failed to update {workload}: {e}")
            return MutationResult(workload=workload, attempts=attempts, error=e)

        logger.info(f"✅ Updated {workload} after {attempts} attempt(s)")
        return MutationResult(workload=workload, attempts=attempts)
