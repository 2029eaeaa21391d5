"""Helm executor for release management."""

import json
from dataclasses import dataclass
from typing import Dict, List, Optional

import structlog

from ..errors import CommandError
from ..models import ReleaseInfo, ReleaseRevision
from .base import CommandExecutor, DeploymentResult, ReleaseExecutor

logger = structlog.get_logger()

# Subprocess budget on top of helm's own --timeout
TIMEOUT_MARGIN = 60


@dataclass
class HelmConfig:
    """Helm configuration."""

    namespace: str
    release_name: str
    timeout: int = 600
    binary: str = "helm"


class HelmExecutor(CommandExecutor, ReleaseExecutor):
    """Kubernetes Helm executor."""

    def __init__(
        self,
        namespace: str,
        release_name: str,
        timeout: int = 600,
        binary: str = "helm",
    ):
        """Initialize Helm executor.

        Args:
            namespace: Kubernetes namespace
            release_name: Helm release name
            timeout: Helm operation timeout in seconds
            binary: helm executable
        """
        self.config = HelmConfig(
            namespace=namespace,
            release_name=release_name,
            timeout=timeout,
            binary=binary,
        )
        self.binary = binary
        logger.debug(
            "helm.executor_initialized",
            namespace=namespace,
            release=release_name,
            timeout=timeout,
        )

    async def install(self, chart: str, values_file: str) -> DeploymentResult:
        """Execute Helm install and wait for resources.

        Args:
            chart: Path to Helm chart
            values_file: Path to secrets values file

        Returns:
            DeploymentResult
        """
        logger.info(
            "helm.install.starting",
            release=self.config.release_name,
            chart=chart,
            values=values_file,
        )

        cmd = [
            "install",
            self.config.release_name,
            chart,
            "--namespace",
            self.config.namespace,
            "--create-namespace",
            "--values",
            values_file,
            "--timeout",
            f"{self.config.timeout}s",
            "--wait",
            "--output",
            "json",
        ]
        return await self._release_command("install", cmd, self.config.timeout)

    async def upgrade(self, chart: str, overrides: Dict[str, str]) -> DeploymentResult:
        """Execute Helm upgrade keeping current values.

        Without --atomic: reverting is left to the rollback controller.

        Args:
            chart: Path to Helm chart
            overrides: Value key -> value passed with --set

        Returns:
            DeploymentResult
        """
        logger.info(
            "helm.upgrade.starting",
            release=self.config.release_name,
            chart=chart,
            overrides=overrides,
        )

        cmd = [
            "upgrade",
            self.config.release_name,
            chart,
            "--namespace",
            self.config.namespace,
            "--reuse-values",
            "--timeout",
            f"{self.config.timeout}s",
            "--wait",
            "--output",
            "json",
        ]

        for key, value in overrides.items():
            cmd.extend(["--set", f"{key}={value}"])

        return await self._release_command("upgrade", cmd, self.config.timeout)

    async def rollback(self, revision: int, timeout: int) -> DeploymentResult:
        """Execute Helm rollback.

        Args:
            revision: Target Helm revision number
            timeout: Rollback timeout in seconds

        Returns:
            DeploymentResult
        """
        logger.info(
            "helm.rollback.starting",
            release=self.config.release_name,
            target_revision=revision,
        )

        cmd = [
            "rollback",
            self.config.release_name,
            str(revision),
            "--namespace",
            self.config.namespace,
            "--timeout",
            f"{timeout}s",
            "--wait",
        ]

        try:
            await self._run(cmd, timeout=timeout + TIMEOUT_MARGIN)
        except CommandError as e:
            logger.error("helm.rollback.failed", stderr=e.stderr)
            return DeploymentResult(
                status="failed",
                message="Helm rollback failed",
                error=e.stderr,
            )

        current_revision = await self._get_current_revision()

        logger.info(
            "helm.rollback.success",
            revision=current_revision,
            release=self.config.release_name,
        )

        return DeploymentResult(
            status="success",
            revision=current_revision,
            message=f"Helm rollback completed (revision {current_revision})",
        )

    async def uninstall(self) -> DeploymentResult:
        logger.info("helm.uninstall.starting", release=self.config.release_name)
        try:
            await self._run(
                [
                    "uninstall",
                    self.config.release_name,
                    "--namespace",
                    self.config.namespace,
                ],
                timeout=self.config.timeout,
            )
        except CommandError as e:
            logger.error("helm.uninstall.failed", stderr=e.stderr)
            return DeploymentResult(
                status="failed", message="Helm uninstall failed", error=e.stderr
            )

        logger.info("helm.uninstall.success", release=self.config.release_name)
        return DeploymentResult(status="success", message="Release uninstalled")

    async def history(self) -> List[ReleaseRevision]:
        """Get release history, oldest first.

        Returns:
            List of revisions

        Raises:
            CommandError: Release not found or helm failed
        """
        result = await self._run(
            [
                "history",
                self.config.release_name,
                "--namespace",
                self.config.namespace,
                "--output",
                "json",
            ],
            timeout=30,
        )
        rows = json.loads(result.stdout or "[]")
        revisions = [ReleaseRevision(**row) for row in rows]
        return sorted(revisions, key=lambda r: r.revision)

    async def status(self) -> ReleaseInfo:
        """Get release metadata.

        Raises:
            CommandError: Release not found or helm failed
        """
        result = await self._run(
            [
                "status",
                self.config.release_name,
                "--namespace",
                self.config.namespace,
                "--output",
                "json",
            ],
            timeout=30,
        )
        data = json.loads(result.stdout or "{}")
        info = data.get("info") or {}
        chart_meta = (data.get("chart") or {}).get("metadata") or {}
        chart = None
        if chart_meta.get("name"):
            chart = f"{chart_meta['name']}-{chart_meta.get('version', '')}".rstrip("-")
        return ReleaseInfo(
            name=data.get("name", self.config.release_name),
            revision=int(data.get("version", 0)),
            status=info.get("status"),
            last_deployed=info.get("last_deployed"),
            chart=chart,
        )

    async def template(self, chart: str, values_file: str) -> str:
        result = await self._run(
            [
                "template",
                self.config.release_name,
                chart,
                "--namespace",
                self.config.namespace,
                "--values",
                values_file,
            ],
            timeout=120,
        )
        return result.stdout

    async def _release_command(
        self, action: str, cmd: List[str], timeout: int
    ) -> DeploymentResult:
        logger.info("helm.command", cmd=" ".join([self.binary, *cmd]))

        try:
            result = await self._run(cmd, timeout=timeout + TIMEOUT_MARGIN)
        except CommandError as e:
            logger.error(
                f"helm.{action}.failed",
                stderr=e.stderr,
                returncode=e.returncode,
            )
            return DeploymentResult(
                status="failed",
                message=f"Helm {action} failed",
                error=e.stderr,
            )

        # Parse output to get revision
        output = {}
        if result.stdout:
            try:
                output = json.loads(result.stdout)
            except json.JSONDecodeError:
                logger.warning("helm.output_not_json", stdout=result.stdout[:200])

        revision = output.get("version")
        if not revision:
            # Fallback: get current revision
            revision = await self._get_current_revision()

        logger.info(
            f"helm.{action}.success",
            revision=revision,
            release=self.config.release_name,
        )

        return DeploymentResult(
            status="success",
            revision=revision,
            message=f"Helm {action} completed successfully (revision {revision})",
        )

    async def _get_current_revision(self) -> Optional[int]:
        """Get current Helm revision.

        Returns:
            Current revision number or None
        """
        try:
            result = await self._run(
                [
                    "list",
                    "-n",
                    self.config.namespace,
                    "-f",
                    f"^{self.config.release_name}$",
                    "-o",
                    "json",
                ],
                timeout=10,
            )
            releases = json.loads(result.stdout or "[]")
            if releases:
                revision = releases[0].get("revision")
                return int(revision) if revision else None
        except (CommandError, ValueError) as e:
            logger.warning("helm.get_revision_error", error=str(e))

        return None
