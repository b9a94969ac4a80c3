"""
Adapters exposing KubeClient as a workload store and an instance observer.
"""
import logging
from typing import Any, List, Optional

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .config import Settings, settings as default_settings
from .controller import RolloutController
from .convergence import ConvergenceWaiter
from .errors import ObserverError, StoreError, VersionConflict
from .kube_client import KubeClient
from .kube_types import Instance, VersionedState, WorkloadRef
from .mutator import Backoff, ConflictSafeMutator

logger = logging.getLogger(__name__)


def _describe(e: Exception) -> str:
    if isinstance(e, ApiException):
        return f"HTTP {e.status} {e.reason}"
    return f"{type(e).__name__}: {e}"


class KubeWorkloadStore:
    """Reads and writes Deployments, using resourceVersion as the version token."""

    def __init__(self, kube_client: KubeClient):
        self.kube_client = kube_client

    def get_desired_state(self, workload: WorkloadRef) -> VersionedState:
        try:
            deployment = self.kube_client.read_deployment(workload.name, workload.namespace)
        except (ApiException, HTTPError) as e:
            raise StoreError(f"Failed to get latest version of {workload}: {_describe(e)}") from e
        return VersionedState(descriptor=deployment, version=deployment.metadata.resource_version)

    def update_desired_state(self, workload: WorkloadRef, descriptor: Any, version: Optional[str]) -> None:
        descriptor.metadata.resource_version = version
        try:
            self.kube_client.replace_deployment(workload.name, descriptor, workload.namespace)
        except ApiException as e:
            if e.status == 409:
                raise VersionConflict(f"{workload} changed since version {version}") from e
            raise StoreError(f"Failed to update {workload}: {_describe(e)}") from e
        except HTTPError as e:
            raise StoreError(f"Failed to update {workload}: {_describe(e)}") from e


class KubeInstanceObserver:
    """Lists the pods of a deployment by its name label."""

    def __init__(self, kube_client: KubeClient, label_key: str = "app"):
        self.kube_client = kube_client
        self.label_key = label_key

    def list_instances(self, workload: WorkloadRef) -> List[Instance]:
        try:
            return self.kube_client.get_pods(
                label_selector=f"{self.label_key}={workload.name}",
                namespace=workload.namespace,
            )
        except (ApiException, HTTPError) as e:
            raise ObserverError(f"Failed to list pods of {workload}: {_describe(e)}") from e


def build_kube_client(settings: Settings = default_settings) -> KubeClient:
    return KubeClient(
        namespace=settings.K8S_NAMESPACE,
        in_cluster=settings.K8S_IN_CLUSTER,
        context=settings.K8S_CONTEXT,
    )


def build_controller(
    kube_client: KubeClient,
    settings: Settings = default_settings,
    timeout_s: Optional[float] = None,
    poll_interval_s: Optional[float] = None,
    container: Optional[str] = None,
) -> RolloutController:
    """Wire a RolloutController to a cluster using the configured defaults."""
    store = KubeWorkloadStore(kube_client)
    observer = KubeInstanceObserver(kube_client, label_key=settings.INSTANCE_LABEL_KEY)
    backoff = Backoff(
        steps=settings.CONFLICT_RETRY_STEPS,
        duration=settings.CONFLICT_RETRY_DELAY_SECS,
        factor=settings.CONFLICT_RETRY_FACTOR,
        jitter=settings.CONFLICT_RETRY_JITTER,
    )
    return RolloutController(
        store,
        observer,
        mutator=ConflictSafeMutator(store, backoff=backoff),
        waiter=ConvergenceWaiter(observer),
        timeout_s=settings.ROLLOUT_TIMEOUT_SECS if timeout_s is None else timeout_s,
        poll_interval_s=settings.ROLLOUT_POLL_INTERVAL_SECS if poll_interval_s is None else poll_interval_s,
        container=container,
    )
