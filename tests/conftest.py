import copy

import pytest
from kubernetes import client as k8s

from kube_rollout.convergence import ConvergenceWaiter
from kube_rollout.errors import VersionConflict
from kube_rollout.kube_types import Instance, VersionedState, WorkloadRef
from kube_rollout.mutator import Backoff, ConflictSafeMutator


def make_deployment(name="redis", image="redis:3", namespace="default", replicas=2, extra_containers=()):
    containers = [k8s.V1Container(name=name, image=image)]
    containers.extend(k8s.V1Container(name=c, image=f"{c}:latest") for c in extra_containers)
    return k8s.V1Deployment(
        metadata=k8s.V1ObjectMeta(name=name, namespace=namespace, resource_version="1"),
        spec=k8s.V1DeploymentSpec(
            replicas=replicas,
            selector=k8s.V1LabelSelector(match_labels={"app": name}),
            template=k8s.V1PodTemplateSpec(
                metadata=k8s.V1ObjectMeta(labels={"app": name}),
                spec=k8s.V1PodSpec(containers=containers),
            ),
        ),
    )


def make_instance(name="redis-0", ready=True, containers=("redis",)):
    return Instance(
        name=name,
        namespace="default",
        status="Running" if ready else "Pending",
        labels={"app": "redis"},
        container_ready={c: ready for c in containers},
    )


def ready_pods(n=2):
    return [make_instance(f"redis-{i}") for i in range(n)]


class FakeStore:
    """In-memory workload store with a resourceVersion-like counter.

    ``conflicting_writes`` are applied by "someone else" just before a write,
    which makes that write stale.
    """

    def __init__(self, deployment=None, read_error=None, write_error=None):
        self.deployment = deployment or make_deployment()
        self.version = 1
        self.read_error = read_error
        self.write_error = write_error
        self.conflicting_writes = []
        self.reads = 0
        self.written_images = []

    @property
    def image(self):
        return self.deployment.spec.template.spec.containers[0].image

    def get_desired_state(self, workload):
        self.reads += 1
        if self.read_error:
            raise self.read_error
        return VersionedState(descriptor=copy.deepcopy(self.deployment), version=str(self.version))

    def update_desired_state(self, workload, descriptor, version):
        if self.write_error:
            raise self.write_error
        if self.conflicting_writes:
            self.conflicting_writes.pop(0)(self.deployment)
            self.version += 1
        if version != str(self.version):
            raise VersionConflict(f"{workload} changed since version {version}")
        self.deployment = copy.deepcopy(descriptor)
        self.version += 1
        self.written_images.append(self.image)


class ScriptedObserver:
    """Returns the scripted responses in order, repeating the last one."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    def list_instances(self, workload):
        response = self.responses[min(self.calls, len(self.responses) - 1)]
        self.calls += 1
        if isinstance(response, Exception):
            raise response
        return list(response)


class ImageObserver:
    """Pods are ready only while the store's image is one of ``healthy_images``."""

    def __init__(self, store, healthy_images, replicas=2):
        self.store = store
        self.healthy_images = set(healthy_images)
        self.replicas = replicas
        self.calls = 0

    def list_instances(self, workload):
        self.calls += 1
        ready = self.store.image in self.healthy_images
        return [make_instance(f"redis-{i}", ready=ready) for i in range(self.replicas)]


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def workload():
    return WorkloadRef(name="redis", namespace="default")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def make_waiter(clock):
    def factory(observer):
        return ConvergenceWaiter(observer, clock=clock.monotonic, sleep=clock.sleep)
    return factory


@pytest.fixture
def make_mutator():
    def factory(store, steps=5):
        return ConflictSafeMutator(store, backoff=Backoff(steps=steps, jitter=0), sleep=lambda s: None)
    return factory
