"""Adapters for the cluster orchestrator and release manager CLIs."""

from .base import (
    ClusterExecutor,
    CommandExecutor,
    DeploymentResult,
    ProbeResult,
    ProbeState,
    ReleaseExecutor,
)
from .helm import HelmExecutor
from .kubectl import LISTING_KINDS, KubectlExecutor

__all__ = [
    "ClusterExecutor",
    "CommandExecutor",
    "DeploymentResult",
    "ProbeResult",
    "ProbeState",
    "ReleaseExecutor",
    "HelmExecutor",
    "KubectlExecutor",
    "LISTING_KINDS",
]
