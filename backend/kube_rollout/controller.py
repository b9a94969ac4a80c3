"""
Rollout controller: update a deployment's image, verify it, roll back on failure.
"""
import logging
import threading
from typing import Optional

from .convergence import ConvergenceWaiter
from .errors import PreconditionFailed, RollbackFailed, StoreError
from .kube_types import (
    DesiredStateSnapshot,
    InstanceObserver,
    RolloutAttempt,
    RolloutOutcome,
    RolloutResult,
    WorkloadRef,
    WorkloadStore,
)
from .mutator import ConflictSafeMutator, container_image, set_image

logger = logging.getLogger(__name__)


class RolloutController:
    """Drives one image rollout of a single deployment.

    The sequence is: snapshot the current state, check that every pod is
    ready, apply the new image, wait for the pods to converge and, if they do
    not, restore the snapshot's image and wait again.
    """

    def __init__(
        self,
        store: WorkloadStore,
        observer: InstanceObserver,
        mutator: Optional[ConflictSafeMutator] = None,
        waiter: Optional[ConvergenceWaiter] = None,
        timeout_s: float = 10.0,
        poll_interval_s: float = 2.0,
        container: Optional[str] = None,
    ):
        # A zero timeout would verify with one immediate read, which still sees the old pods.
        if timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        if poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be positive")
        self.store = store
        self.observer = observer
        self.mutator = mutator or ConflictSafeMutator(store)
        self.waiter = waiter or ConvergenceWaiter(observer)
        self.timeout_s = timeout_s
        self.poll_interval_s = poll_interval_s
        self.container = container

    def rollout(
        self,
        workload: WorkloadRef,
        new_image: str,
        cancel: Optional[threading.Event] = None,
    ) -> RolloutResult:
        """
        Roll ``workload`` to ``new_image``.

        Args:
            workload: Deployment to update
            new_image: Image for the managed container
            cancel: Optional event that cuts the forward verification short;
                the rollback that follows is always verified in full

        Returns:
            RolloutResult with outcome SUCCESS, ROLLED_BACK, ROLLBACK_FAILED,
            PRECONDITION_FAILED or ABORTED
        """
        logger.info(f"🚀 Starting rollout of {workload} to {new_image}")

        try:
            state = self.store.get_desired_state(workload)
            snapshot = DesiredStateSnapshot(
                workload=workload, image=container_image(state.descriptor, self.container)
            )
        except StoreError as e:
            logger.error(f"❌ Failed to get latest version of {workload}: {e}")
            return RolloutResult(
                outcome=RolloutOutcome.ABORTED,
                workload=workload,
                target_image=new_image,
                message=f"Could not read {workload}",
                error=e,
            )

        baseline = self.waiter.check_once(workload)
        if not baseline.converged:
            error = PreconditionFailed(
                f"Not all containers are currently running ({baseline.ready}/{baseline.total} pods ready)"
                + (f": {baseline.last_error}" if baseline.last_error else "")
            )
            logger.error(f"❌ {workload}: {error}")
            return RolloutResult(
                outcome=RolloutOutcome.PRECONDITION_FAILED,
                workload=workload,
                target_image=new_image,
                previous_image=snapshot.image,
                message=str(error),
                error=error,
            )

        result = RolloutResult(
            outcome=RolloutOutcome.SUCCESS,
            workload=workload,
            target_image=new_image,
            previous_image=snapshot.image,
        )

        forward = self._apply_and_verify("update", workload, new_image, cancel)
        result.attempts.append(forward)
        if not forward.mutation.applied:
            result.outcome = RolloutOutcome.ABORTED
            result.error = forward.mutation.error
            result.message = f"Update of {workload} was not applied"
            return result
        if forward.convergence.converged:
            result.message = "Deploy successful"
            logger.info(f"✅ {workload} is running {new_image}")
            return result

        logger.warning(
            f"⚠️ {workload} did not become ready on {new_image} "
            f"({forward.convergence.state.value}), rolling back to {snapshot.image}"
        )
        rollback = self._apply_and_verify("rollback", workload, snapshot.image, None)
        result.attempts.append(rollback)

        if rollback.mutation.applied and rollback.convergence.converged:
            result.outcome = RolloutOutcome.ROLLED_BACK
            result.message = f"Rolled back successfully to {snapshot.image}"
            result.error = forward.convergence.last_error
            logger.info(f"✅ {workload}: {result.message}")
            return result

        cause = rollback.mutation.error or rollback.convergence.last_error
        error = RollbackFailed(
            f"{workload} did not converge on {new_image} nor on rollback image {snapshot.image}"
            + (f": {cause}" if cause else "")
        )
        error.__cause__ = cause
        result.outcome = RolloutOutcome.ROLLBACK_FAILED
        result.error = error
        result.message = str(error)
        logger.critical(f"🚨 {error}. Manual intervention required.")
        return result

    def _apply_and_verify(
        self,
        phase: str,
        workload: WorkloadRef,
        image: str,
        cancel: Optional[threading.Event],
    ) -> RolloutAttempt:
        attempt = RolloutAttempt(
            phase=phase,
            target_image=image,
            timeout_s=self.timeout_s,
            poll_interval_s=self.poll_interval_s,
        )
        attempt.mutation = self.mutator.mutate(workload, set_image(image, self.container))
        if attempt.mutation.applied:
            attempt.convergence = self.waiter.wait_until_healthy(
                workload, self.timeout_s, self.poll_interval_s, cancel
            )
        return attempt
