# fastapi_app.py
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from kubernetes.client.rest import ApiException
from pydantic import BaseModel, Field

from .adapters import KubeInstanceObserver, build_controller, build_kube_client
from .config import settings
from .errors import ObserverError
from .kube_client import KubeClient
from .kube_types import RolloutOutcome, WorkloadRef

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# FastAPI app + CORS
# -----------------------------------------------------------------------------
app = FastAPI(title="Kube Rollout Backend", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------
class RolloutPlan(BaseModel):
    namespace: str = Field(default=settings.K8S_NAMESPACE, description="Target namespace")
    deployment: str = Field(..., description="Deployment name")
    image: str = Field(..., description="New image for the managed container")
    container: Optional[str] = Field(default=None, description="Container name, defaults to the first one")
    timeoutSecs: Optional[float] = Field(default=None, gt=0)
    pollIntervalSecs: Optional[float] = Field(default=None, gt=0)


STATUS_CODES = {
    RolloutOutcome.SUCCESS: 200,
    RolloutOutcome.ROLLED_BACK: 200,
    RolloutOutcome.PRECONDITION_FAILED: 409,
    RolloutOutcome.ABORTED: 502,
    RolloutOutcome.ROLLBACK_FAILED: 500,
}

# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------
@lru_cache(maxsize=1)
def _cached_kube_client() -> KubeClient:
    return build_kube_client(settings)


def get_kube_client() -> KubeClient:
    """Kubernetes client, created on first use."""
    try:
        return _cached_kube_client()
    except Exception as e:
        logger.warning(f"⚠️ Kubernetes client initialization failed: {e}")
        raise HTTPException(status_code=503, detail=f"Kubernetes is not available: {e}")


def get_controller_factory(kube_client: KubeClient = Depends(get_kube_client)):
    def factory(plan: RolloutPlan):
        return build_controller(
            kube_client,
            settings,
            timeout_s=plan.timeoutSecs,
            poll_interval_s=plan.pollIntervalSecs,
            container=plan.container,
        )
    return factory

# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "healthy"}

@app.get("/api/health")
async def api_health():
    return {"status": "healthy"}

@app.post("/api/rollout")
def api_rollout(plan: RolloutPlan, controller_factory=Depends(get_controller_factory)):
    """Roll a deployment to a new image, rolling back if its pods do not become ready."""
    workload = WorkloadRef(name=plan.deployment, namespace=plan.namespace)
    logger.info(f"📋 Rollout requested: {workload} -> {plan.image}")

    result = controller_factory(plan).rollout(workload, plan.image)
    body: Dict[str, Any] = result.to_dict()

    if result.outcome is RolloutOutcome.ROLLBACK_FAILED:
        logger.critical(f"🚨 Rollout of {workload} left it unhealthy: {result.message}")
    return JSONResponse(status_code=STATUS_CODES[result.outcome], content=body)

@app.get("/api/deployments/{namespace}/{name}/status")
def deployment_status(namespace: str, name: str, kube_client: KubeClient = Depends(get_kube_client)):
    """Replica counts and per-pod readiness of a deployment."""
    workload = WorkloadRef(name=name, namespace=namespace)
    try:
        status = kube_client.rollout_status(name, namespace)
    except ApiException as e:
        raise HTTPException(status_code=e.status or 502, detail=f"Failed to read {workload}: {e.reason}")

    observer = KubeInstanceObserver(kube_client, label_key=settings.INSTANCE_LABEL_KEY)
    try:
        pods = observer.list_instances(workload)
    except ObserverError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "deployment": status.deployment,
        "namespace": status.namespace,
        "status": status.status,
        "image": status.image,
        "ready_replicas": status.ready_replicas,
        "desired_replicas": status.desired_replicas,
        "updated_replicas": status.updated_replicas,
        "pods": [
            {"name": p.name, "phase": p.status, "ready": p.is_ready, "containers": p.container_ready}
            for p in pods
        ],
    }
