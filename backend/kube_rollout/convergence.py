"""
Waits for a workload's pods to report ready.
"""
import logging
import math
import threading
import time
from typing import Callable, Optional, Tuple

from .errors import ObserverError
from .kube_types import ConvergenceResult, InstanceObserver, WaitState, WorkloadRef

logger = logging.getLogger(__name__)


class ConvergenceWaiter:
    """Polls an instance observer until every instance is ready or time runs out.

    ``clock`` and ``sleep`` can be replaced so the loop can be driven without
    real delays. When ``sleep`` is not given the pause between polls waits on
    the cancellation event, so setting it interrupts the wait immediately.
    """

    def __init__(
        self,
        observer: InstanceObserver,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.observer = observer
        self._clock = clock
        self._sleep = sleep

    def check_once(self, workload: WorkloadRef) -> ConvergenceResult:
        """Single immediate readiness check, without waiting."""
        start = self._clock()
        ready, total, error = self._poll(workload)
        if total and ready == total:
            state = WaitState.CONVERGED
        elif error is not None:
            state = WaitState.FAILED
        else:
            state = WaitState.TIMED_OUT
        return ConvergenceResult(
            workload=workload,
            state=state,
            polls=1,
            ready=ready,
            total=total,
            elapsed_s=self._clock() - start,
            last_error=error,
        )

    def wait_until_healthy(
        self,
        workload: WorkloadRef,
        timeout_s: float,
        poll_interval_s: float,
        cancel: Optional[threading.Event] = None,
    ) -> ConvergenceResult:
        """
        Wait for all instances of a workload to become ready.

        Args:
            workload: Deployment whose pods are checked
            timeout_s: Time allowed before giving up; 0 means a single check
            poll_interval_s: Delay before each check
            cancel: Optional event that stops the wait when set

        Returns:
            ConvergenceResult in state CONVERGED, TIMED_OUT, FAILED or CANCELLED
        """
        if timeout_s < 0:
            raise ValueError("timeout_s must not be negative")
        if timeout_s == 0:
            return self.check_once(workload)
        if poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be positive")

        cancel = cancel or threading.Event()
        start = self._clock()
        deadline = start + timeout_s
        max_polls = max(1, math.ceil(timeout_s / poll_interval_s))

        polls = ready = total = 0
        error: Optional[ObserverError] = None
        last_error: Optional[ObserverError] = None
        state = WaitState.POLLING

        while polls < max_polls:
            remaining = max(0.0, deadline - self._clock())
            if self._pause(min(poll_interval_s, remaining), cancel):
                state = WaitState.CANCELLED
                logger.warning(f"⚠️ Stopped waiting for {workload}: cancelled")
                break

            polls += 1
            ready, total, error = self._poll(workload)
            if error is not None:
                last_error = error
            elif total and ready == total:
                state = WaitState.CONVERGED
                break

            if self._clock() >= deadline:
                break

        if state is WaitState.POLLING:
            state = WaitState.FAILED if error is not None else WaitState.TIMED_OUT
            logger.warning(
                f"⚠️ {workload} did not converge within {timeout_s}s "
                f"({ready}/{total} ready after {polls} checks)"
            )

        return ConvergenceResult(
            workload=workload,
            state=state,
            polls=polls,
            ready=ready,
            total=total,
            elapsed_s=self._clock() - start,
            last_error=last_error,
        )

    def _pause(self, seconds: float, cancel: threading.Event) -> bool:
        """Sleep between polls; returns True if the wait was cancelled."""
        if self._sleep is None:
            return cancel.wait(seconds)
        if seconds > 0:
            self._sleep(seconds)
        return cancel.is_set()

    def _poll(self, workload: WorkloadRef) -> Tuple[int, int, Optional[ObserverError]]:
        try:
            instances = self.observer.list_instances(workload)
        except ObserverError as e:
            # Transient read errors must not end the wait early.
            logger.warning(f"⚠️ Encountered an error checking pods of {workload}: {e}")
            return 0, 0, e

        total = len(instances)
        ready = sum(1 for i in instances if i.is_ready)
        logger.info(f"⏳ {workload}: {ready}/{total} pods ready")
        return ready, total, None
