"""Configuration module for the G-Match deployer."""

import os
from enum import Enum
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class PollingStrategyType(str, Enum):
    """Readiness polling strategy."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class LogFormat(str, Enum):
    """Log output format."""
    CONSOLE = "console"
    JSON = "json"


class DeployConfig(BaseSettings):
    """Deployer configuration from environment variables."""

    # Kubernetes settings
    namespace: str = Field(
        default="g-match",
        description="Kubernetes namespace"
    )
    manifests_dir: str = Field(
        default="./k8s",
        description="Directory holding mysql.yaml, redis.yaml and migration-job.yaml"
    )
    kubectl_bin: str = Field(
        default="kubectl",
        description="kubectl executable"
    )

    # Helm settings
    release_name: str = Field(
        default="g-match",
        description="Helm release name"
    )
    chart_path: str = Field(
        default="./helm/g-match",
        description="Helm chart directory"
    )
    values_file: str = Field(
        default="./helm/g-match/values-secret.yaml",
        description="Secrets values file used by install and template"
    )
    helm_bin: str = Field(
        default="helm",
        description="helm executable"
    )
    helm_timeout: int = Field(
        default=600,
        description="Helm install/upgrade timeout in seconds"
    )
    image_tag_keys: List[str] = Field(
        default=["django.image.tag", "matcher.image.tag"],
        description="Chart values set to the image tag on upgrade"
    )

    # Images
    registry: str = Field(
        default="ghcr.io/ysa5347",
        description="Container registry prefix"
    )
    django_image: str = Field(
        default="g-match-backend",
        description="Django (web + migrate) image name"
    )
    matcher_image: str = Field(
        default="g-match-backend-matcher",
        description="Matcher image name"
    )

    # Readiness
    poll_interval: float = Field(
        default=2.0,
        description="Readiness poll interval in seconds"
    )
    polling_strategy: PollingStrategyType = Field(
        default=PollingStrategyType.FIXED,
        description="Readiness polling strategy (fixed or exponential)"
    )
    parallel_waits: bool = Field(
        default=False,
        description="Wait for targets of the same stage concurrently"
    )

    # Rollback
    auto_rollback: bool = Field(
        default=True,
        description="Revert application stages to the last good revision on failure"
    )
    rollback_timeout: int = Field(
        default=600,
        description="Helm rollback timeout in seconds"
    )

    # Job output
    failure_log_lines: int = Field(
        default=50,
        description="Log lines shown when the migration job fails"
    )
    success_log_lines: int = Field(
        default=20,
        description="Log lines shown when the migration job completes"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="Log renderer (console or json)"
    )

    class Config:
        """Pydantic config."""
        env_prefix = "GMATCH_DEPLOY_"
        case_sensitive = False

    @property
    def django_repository(self) -> str:
        """Full Django image repository, without tag."""
        return f"{self.registry}/{self.django_image}"

    @property
    def matcher_repository(self) -> str:
        """Full matcher image repository, without tag."""
        return f"{self.registry}/{self.matcher_image}"

    def manifest_path(self, name: str) -> str:
        """Resolve a manifest file name under the manifests directory.

        Args:
            name: Manifest file name (e.g. mysql.yaml)

        Returns:
            Path to the manifest
        """
        return os.path.join(self.manifests_dir, name)
