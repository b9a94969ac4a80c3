import threading

import pytest

from kube_rollout.controller import RolloutController
from kube_rollout.errors import (
    ConflictExhausted,
    ObserverError,
    PreconditionFailed,
    RollbackFailed,
    StoreError,
)
from kube_rollout.kube_types import RolloutOutcome, WaitState

from conftest import FakeStore, ImageObserver, ScriptedObserver, make_instance


@pytest.fixture
def make_controller(make_mutator, make_waiter):
    def factory(store, observer, **kwargs):
        kwargs.setdefault("timeout_s", 10)
        kwargs.setdefault("poll_interval_s", 2)
        return RolloutController(
            store,
            observer,
            mutator=make_mutator(store),
            waiter=make_waiter(observer),
            **kwargs,
        )
    return factory


def test_successful_rollout(workload, store, make_controller):
    observer = ImageObserver(store, healthy_images={"redis:3", "redis:4"})

    result = make_controller(store, observer).rollout(workload, "redis:4")

    assert result.outcome is RolloutOutcome.SUCCESS
    assert result.previous_image == "redis:3"
    assert result.error is None
    assert store.written_images == ["redis:4"]
    assert [a.phase for a in result.attempts] == ["update"]
    assert result.attempts[0].convergence.ready == 2


def test_failed_update_is_rolled_back(workload, store, make_controller):
    observer = ImageObserver(store, healthy_images={"redis:3"})

    result = make_controller(store, observer).rollout(workload, "redis:doesntexist")

    assert result.outcome is RolloutOutcome.ROLLED_BACK
    assert store.written_images == ["redis:doesntexist", "redis:3"]
    assert store.image == "redis:3"
    update, rollback = result.attempts
    assert update.convergence.state is WaitState.TIMED_OUT
    assert rollback.target_image == "redis:3"
    assert rollback.convergence.converged


def test_rollback_that_never_converges(workload, store, make_controller):
    # Healthy only until the first write; nothing recovers afterwards.
    observer = ImageObserver(store, healthy_images={"redis:3"})
    original_list = observer.list_instances

    def list_instances(w):
        if store.written_images:
            return [make_instance(f"redis-{i}", ready=False) for i in range(2)]
        return original_list(w)

    observer.list_instances = list_instances

    result = make_controller(store, observer).rollout(workload, "redis:doesntexist")

    assert result.outcome is RolloutOutcome.ROLLBACK_FAILED
    assert isinstance(result.error, RollbackFailed)
    assert store.written_images == ["redis:doesntexist", "redis:3"]
    assert [a.convergence.state for a in result.attempts] == [WaitState.TIMED_OUT, WaitState.TIMED_OUT]


def test_unhealthy_baseline_is_not_touched(workload, store, make_controller):
    observer = ScriptedObserver([make_instance("redis-0"), make_instance("redis-1", ready=False)])

    result = make_controller(store, observer).rollout(workload, "redis:4")

    assert result.outcome is RolloutOutcome.PRECONDITION_FAILED
    assert isinstance(result.error, PreconditionFailed)
    assert "1/2" in result.message
    assert store.written_images == []
    assert store.image == "redis:3"
    assert observer.calls == 1
    assert result.attempts == []


def test_baseline_observer_error_fails_precondition(workload, store, make_controller):
    observer = ScriptedObserver(ObserverError("pods is forbidden"))

    result = make_controller(store, observer).rollout(workload, "redis:4")

    assert result.outcome is RolloutOutcome.PRECONDITION_FAILED
    assert "forbidden" in result.message
    assert store.written_images == []


def test_unreadable_workload_aborts(workload, make_controller):
    store = FakeStore(read_error=StoreError("deployments.apps \"redis\" not found"))
    observer = ScriptedObserver([make_instance()])

    result = make_controller(store, observer).rollout(workload, "redis:4")

    assert result.outcome is RolloutOutcome.ABORTED
    assert isinstance(result.error, StoreError)
    assert observer.calls == 0


def test_exhausted_conflicts_abort_without_rollback(workload, store, make_controller):
    store.conflicting_writes = [lambda d: None] * 5
    observer = ImageObserver(store, healthy_images={"redis:3"})

    result = make_controller(store, observer).rollout(workload, "redis:4")

    assert result.outcome is RolloutOutcome.ABORTED
    assert isinstance(result.error, ConflictExhausted)
    assert len(result.attempts) == 1
    assert result.attempts[0].convergence is None
    assert store.written_images == []


def test_rollback_write_failure_is_fatal(workload, store, make_controller):
    observer = ImageObserver(store, healthy_images={"redis:3"})
    controller = make_controller(store, observer)
    original_update = store.update_desired_state

    def update_then_forbid(w, descriptor, version):
        if store.written_images:
            raise StoreError("deployments.apps \"redis\" is forbidden")
        original_update(w, descriptor, version)

    store.update_desired_state = update_then_forbid

    result = controller.rollout(workload, "redis:doesntexist")

    assert result.outcome is RolloutOutcome.ROLLBACK_FAILED
    assert isinstance(result.error.__cause__, StoreError)
    assert store.image == "redis:doesntexist"


def test_forward_errors_are_folded_into_rollback(workload, store, make_controller):
    observer = ImageObserver(store, healthy_images={"redis:3"})
    original_list = observer.list_instances

    def list_instances(w):
        if store.image == "redis:4":
            raise ObserverError("connection reset")
        return original_list(w)

    observer.list_instances = list_instances

    result = make_controller(store, observer).rollout(workload, "redis:4")

    assert result.outcome is RolloutOutcome.ROLLED_BACK
    assert result.attempts[0].convergence.state is WaitState.FAILED
    assert isinstance(result.error, ObserverError)


def test_cancelled_update_still_rolls_back(workload, store, make_controller):
    observer = ImageObserver(store, healthy_images={"redis:3"})
    cancel = threading.Event()
    cancel.set()

    result = make_controller(store, observer).rollout(workload, "redis:4", cancel=cancel)

    assert result.outcome is RolloutOutcome.ROLLED_BACK
    assert result.attempts[0].convergence.state is WaitState.CANCELLED
    assert result.attempts[1].convergence.converged


def test_result_serializes(workload, store, make_controller):
    observer = ImageObserver(store, healthy_images={"redis:3"})

    body = make_controller(store, observer, timeout_s=4).rollout(workload, "redis:doesntexist").to_dict()

    assert body["outcome"] == "rolled_back"
    assert body["deployment"] == "redis"
    assert body["previous_image"] == "redis:3"
    assert [a["phase"] for a in body["attempts"]] == ["update", "rollback"]
    assert body["attempts"][0]["state"] == "timed_out"
    assert body["attempts"][0]["polls"] == 2


@pytest.mark.parametrize("kwargs", [{"timeout_s": 0}, {"timeout_s": -1}, {"poll_interval_s": 0}])
def test_controller_requires_positive_wait(store, kwargs):
    # Pods of the old image are still ready right after the write.
    observer = ScriptedObserver([make_instance("redis-0"), make_instance("redis-1")])

    with pytest.raises(ValueError):
        RolloutController(store, observer, **kwargs)


def test_rollback_restores_image_from_before_the_rollout(workload, store, make_controller):
    observer = ImageObserver(store, healthy_images={"redis:3"})
    controller = make_controller(store, observer)
    # Someone else edits the deployment after the snapshot was taken.
    store.conflicting_writes = [lambda d: setattr(d.spec, "replicas", 5)]

    result = controller.rollout(workload, "redis:doesntexist")

    assert result.outcome is RolloutOutcome.ROLLED_BACK
    assert store.image == "redis:3"
    # Only the image is restored; the concurrent scale survives the rollback.
    assert store.deployment.spec.replicas == 5
