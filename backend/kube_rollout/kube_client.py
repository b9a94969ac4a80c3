"""
Kubernetes client for deployment operations.
"""
import logging
from typing import List, Optional
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from .kube_types import DeploymentStatus, Instance

logger = logging.getLogger(__name__)


class KubeClient:
    """Kubernetes client for orchestrator operations."""

    def __init__(self, namespace: str, in_cluster: bool = True, context: str | None = None):
        """
        Initialize Kubernetes client.

        Args:
            namespace: Default Kubernetes namespace
            in_cluster: Whether running inside cluster (default: True)
            context: Kubernetes context name (optional)
        """
        self.namespace = namespace
        self.in_cluster = in_cluster

        try:
            if in_cluster:
                config.load_incluster_config()
            else:
                if context:
                    config.load_kube_config(context=context)
                else:
                    config.load_kube_config()

            self.v1 = client.CoreV1Api()
            self.apps_v1 = client.AppsV1Api()
            logger.info(f"✅ Kubernetes client initialized for namespace: {namespace}")

        except Exception as e:
            logger.error(f"❌ Failed to initialize Kubernetes client: {e}")
            raise

    def get_pods(self, label_selector: str | None = None, namespace: str | None = None) -> List[Instance]:
        """
        Get pods in the namespace.

        Args:
            label_selector: Optional label selector for filtering
            namespace: Namespace override

        Returns:
            List of Instance objects
        """
        namespace = namespace or self.namespace
        try:
            pods = self.v1.list_namespaced_pod(
                namespace=namespace,
                label_selector=label_selector
            )

            pod_list = []
            for pod in pods.items:
                # Freshly scheduled pods may not carry a status block yet.
                pod_status = pod.status
                statuses = (pod_status.container_statuses if pod_status else None) or []
                pod_list.append(Instance(
                    name=pod.metadata.name,
                    namespace=pod.metadata.namespace,
                    status=(pod_status.phase if pod_status else None) or "Unknown",
                    labels=pod.metadata.labels or {},
                    container_ready={s.name: bool(s.ready) for s in statuses},
                    creation_timestamp=pod.metadata.creation_timestamp
                ))

            logger.debug(f"Retrieved {len(pod_list)} pods from namespace {namespace}")
            return pod_list

        except ApiException as e:
            logger.error(f"Failed to get pods: {e}")
            raise

    def read_deployment(self, deployment: str, namespace: str | None = None) -> client.V1Deployment:
        """
        Read the current deployment object.

        Args:
            deployment: Deployment name
            namespace: Namespace override

        Returns:
            V1Deployment, including metadata.resource_version
        """
        try:
            return self.apps_v1.read_namespaced_deployment(
                name=deployment,
                namespace=namespace or self.namespace
            )
        except ApiException as e:
            logger.error(f"Failed to read deployment {deployment}: {e.status} {e.reason}")
            raise

    def replace_deployment(self, deployment: str, body: client.V1Deployment,
                           namespace: str | None = None) -> client.V1Deployment:
        """
        Replace a deployment.

        The API server rejects the write with 409 Conflict when
        body.metadata.resource_version is no longer current.

        Args:
            deployment: Deployment name
            body: Full deployment object to store
            namespace: Namespace override
        """
        try:
            return self.apps_v1.replace_namespaced_deployment(
                name=deployment,
                namespace=namespace or self.namespace,
                body=body
            )
        except ApiException as e:
            # Conflicts are expected under contention; the caller retries.
            if e.status == 409:
                logger.debug(f"Conflict replacing deployment {deployment}: {e.reason}")
            else:
                logger.error(f"Failed to replace deployment {deployment}: {e.status} {e.reason}")
            raise

    def rollout_status(self, deployment: str, namespace: str | None = None) -> DeploymentStatus:
        """
        Check deployment rollout status.

        Args:
            deployment: Deployment name
            namespace: Namespace override

        Returns:
            DeploymentStatus object
        """
        namespace = namespace or self.namespace
        deployment_obj = self.read_deployment(deployment, namespace)

        ready_replicas = deployment_obj.status.ready_replicas or 0
        desired_replicas = deployment_obj.spec.replicas or 0
        containers = deployment_obj.spec.template.spec.containers or []

        return DeploymentStatus(
            deployment=deployment,
            namespace=namespace,
            status="ready" if ready_replicas == desired_replicas else "pending",
            ready_replicas=ready_replicas,
            desired_replicas=desired_replicas,
            updated_replicas=deployment_obj.status.updated_replicas or 0,
            image=containers[0].image if containers else None,
        )
