"""
Configuration settings for kube-rollout.
"""
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # Kubernetes Configuration
    K8S_NAMESPACE: str = Field(default="default", description="Kubernetes namespace")
    K8S_CONTEXT: Optional[str] = Field(default=None, description="Kubernetes context")
    K8S_IN_CLUSTER: bool = Field(default=False, description="Running in cluster")
    INSTANCE_LABEL_KEY: str = Field(default="app", description="Pod label holding the deployment name")

    # Rollout verification
    ROLLOUT_TIMEOUT_SECS: float = Field(default=10.0, gt=0, description="Time allowed for pods to become ready")
    ROLLOUT_POLL_INTERVAL_SECS: float = Field(default=2.0, gt=0, description="Delay between readiness checks")

    # Optimistic concurrency retry (defaults match client-go retry.DefaultRetry)
    CONFLICT_RETRY_STEPS: int = Field(default=5, ge=1, description="Attempts before giving up on conflicts")
    CONFLICT_RETRY_DELAY_SECS: float = Field(default=0.01, ge=0, description="Initial delay between attempts")
    CONFLICT_RETRY_FACTOR: float = Field(default=1.0, ge=1.0, description="Delay multiplier per attempt")
    CONFLICT_RETRY_JITTER: float = Field(default=0.1, ge=0, description="Random extra delay, as a fraction")

    # Service Configuration
    LOG_LEVEL: str = Field(default="info", description="Log level: info|debug|warning")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
