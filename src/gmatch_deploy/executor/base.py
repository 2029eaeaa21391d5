"""Base executor interfaces."""

import asyncio
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

import structlog

from ..errors import CommandError, PreconditionMissing
from ..models import ReleaseInfo, ReleaseRevision, ResourceSummary

logger = structlog.get_logger()


class ProbeState(str, Enum):
    """Readiness state reported by one probe."""

    READY = "ready"
    PROGRESSING = "progressing"
    FAILED = "failed"


@dataclass
class ProbeResult:
    """Result of a single readiness probe."""

    state: ProbeState
    message: Optional[str] = None


@dataclass
class DeploymentResult:
    """Result of a release manager operation."""

    status: str  # "success" or "failed"
    revision: Optional[int] = None
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


class CommandExecutor:
    """Runs an external CLI in a worker thread."""

    binary: str = ""

    def require(self):
        """Fail unless the CLI is on PATH.

        Raises:
            PreconditionMissing: Binary not found
        """
        if not shutil.which(self.binary):
            raise PreconditionMissing(f"Required tool not found: {self.binary}")

    async def _run(
        self, args: List[str], timeout: float = 60, check: bool = True
    ) -> subprocess.CompletedProcess:
        """Execute the CLI with arguments.

        Args:
            args: Arguments after the binary
            timeout: Hard subprocess timeout in seconds
            check: Raise CommandError on non-zero exit

        Returns:
            CompletedProcess with text output
        """
        cmd = [self.binary, *args]
        logger.debug("command.run", cmd=" ".join(cmd))

        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(cmd, -1, f"timed out after {timeout}s") from e
        except FileNotFoundError as e:
            raise PreconditionMissing(f"Required tool not found: {self.binary}") from e

        if check and result.returncode != 0:
            logger.debug(
                "command.failed",
                cmd=" ".join(cmd),
                returncode=result.returncode,
                stderr=result.stderr,
            )
            raise CommandError(cmd, result.returncode, result.stderr, result.stdout)

        return result


class ClusterExecutor(ABC):
    """Cluster orchestrator operations."""

    @abstractmethod
    def require(self):
        """Check that the cluster CLI is available."""
        pass

    @abstractmethod
    async def ensure_namespace(self) -> bool:
        """Create the namespace if missing.

        Returns:
            True when the namespace was created
        """
        pass

    @abstractmethod
    async def apply_manifest(self, path: str):
        """Apply a manifest file."""
        pass

    @abstractmethod
    async def set_image(self, ref: str, images: Dict[str, str]):
        """Update container images of a resource.

        Args:
            ref: Resource reference (kind/name)
            images: Container name -> image reference
        """
        pass

    @abstractmethod
    async def delete(self, ref: str, ignore_not_found: bool = True):
        """Delete a resource."""
        pass

    @abstractmethod
    async def probe(self, ref: str) -> ProbeResult:
        """Report readiness of a resource once."""
        pass

    @abstractmethod
    async def get_logs(self, ref: str, tail: int) -> str:
        """Return the last lines of a resource's output."""
        pass

    @abstractmethod
    async def list_resources(self, kind: str) -> List[ResourceSummary]:
        """List resources of a kind in the namespace."""
        pass


class ReleaseExecutor(ABC):
    """Release manager operations."""

    @abstractmethod
    def require(self):
        """Check that the release manager CLI is available."""
        pass

    @abstractmethod
    async def install(self, chart: str, values_file: str) -> DeploymentResult:
        """Install the release."""
        pass

    @abstractmethod
    async def upgrade(self, chart: str, overrides: Dict[str, str]) -> DeploymentResult:
        """Upgrade the release, reusing current values plus overrides."""
        pass

    @abstractmethod
    async def rollback(self, revision: int, timeout: int) -> DeploymentResult:
        """Roll the release back to a revision."""
        pass

    @abstractmethod
    async def uninstall(self) -> DeploymentResult:
        """Uninstall the release."""
        pass

    @abstractmethod
    async def history(self) -> List[ReleaseRevision]:
        """Return release history, oldest first."""
        pass

    @abstractmethod
    async def status(self) -> ReleaseInfo:
        """Return release metadata."""
        pass

    @abstractmethod
    async def template(self, chart: str, values_file: str) -> str:
        """Render chart templates."""
        pass
