"""Deployer: sequences planning, execution, rollback and status per command."""

import os
from typing import Optional

import structlog

from .config import DeployConfig
from .errors import (
    ApplyFailed,
    CommandError,
    PreconditionMissing,
    RollbackFailed,
)
from .executor.base import ClusterExecutor, ReleaseExecutor
from .executor.helm import HelmExecutor
from .executor.kubectl import KubectlExecutor
from .models import (
    Abort,
    ExecutionResult,
    Plan,
    RevertToRevision,
    StatusSnapshot,
)
from .planner import PlanBuilder
from .readiness import ReadinessWaiter, strategy_from_config
from .rollback import RollbackController
from .stage import StageExecutor
from .status import StatusReporter, render_history, render_snapshot

logger = structlog.get_logger()


class Deployer:
    """Runs deployer commands against one namespace and release."""

    def __init__(
        self,
        config: DeployConfig,
        cluster: Optional[ClusterExecutor] = None,
        releases: Optional[ReleaseExecutor] = None,
        waiter: Optional[ReadinessWaiter] = None,
    ):
        """Initialize deployer.

        Args:
            config: Deployer configuration
            cluster: Cluster executor, kubectl by default
            releases: Release executor, helm by default
            waiter: Readiness waiter, built from config by default
        """
        self.config = config
        self.cluster = cluster or KubectlExecutor(
            namespace=config.namespace,
            binary=config.kubectl_bin,
        )
        self.releases = releases or HelmExecutor(
            namespace=config.namespace,
            release_name=config.release_name,
            timeout=config.helm_timeout,
            binary=config.helm_bin,
        )
        self.waiter = waiter or ReadinessWaiter(
            self.cluster, strategy_from_config(config)
        )

        self.planner = PlanBuilder(config)
        self.stages = StageExecutor(config, self.cluster, self.waiter)
        self.rollbacks = RollbackController(config, self.cluster, self.releases)
        self.reporter = StatusReporter(config, self.cluster, self.releases)

        logger.debug(
            "deployer.initialized",
            namespace=config.namespace,
            release=config.release_name,
        )

    # ------------------------------------------------------------------
    # Legacy kubectl-driven deploys
    # ------------------------------------------------------------------

    async def deploy(self, selector: Optional[str], tag: Optional[str] = None) -> Plan:
        """Build and run a plan for a selector.

        Args:
            selector: Component name, or an image tag for a full deploy
            tag: Image tag

        Returns:
            The executed plan

        Raises:
            DeployError: Any fatal failure
        """
        plan = self.planner.build(selector, tag)
        self.cluster.require()

        if plan.ensure_namespace:
            try:
                await self.cluster.ensure_namespace()
            except CommandError as e:
                raise PreconditionMissing(
                    f"Cannot create namespace '{self.config.namespace}': {e.stderr or e}"
                ) from e

        known_good = await self._known_good_revision()

        results = await self.stages.run_plan(plan)
        failed = next((r for r in results if not r.ok), None)
        if failed:
            await self._handle_failure(plan, failed, known_good)

        if plan.report_status:
            await self.status()

        logger.info("deploy.done", plan=plan.describe(), tag=str(plan.tag))
        return plan

    # ------------------------------------------------------------------
    # Helm release commands
    # ------------------------------------------------------------------

    async def install(self):
        self.releases.require()
        values_file = self._require_values_file()

        result = await self.releases.install(self.config.chart_path, values_file)
        if not result.ok:
            raise ApplyFailed(f"Helm install failed: {result.error or result.message}")

        logger.info("install.done", revision=result.revision)
        await self.status()

    async def upgrade(self, tag: Optional[str] = None) -> ExecutionResult:
        """Upgrade the release, optionally pinning a new image tag.

        Args:
            tag: Image tag, None reuses current values

        Returns:
            ExecutionResult of the release stage
        """
        plan = self.planner.build_release(tag)
        self.releases.require()

        overrides = {}
        if not plan.tag.is_current:
            overrides = {key: plan.tag.value for key in self.config.image_tag_keys}

        known_good = await self._known_good_revision()
        outcome = await self.releases.upgrade(self.config.chart_path, overrides)

        stage = plan.stages[0]
        if outcome.ok:
            result = ExecutionResult.succeeded(stage.id)
            logger.info("upgrade.done", revision=outcome.revision, tag=str(plan.tag))
            await self.status()
            return result

        result = ExecutionResult.failed(
            stage.id, None, outcome.error or outcome.message or "upgrade failed"
        )
        await self._handle_failure(plan, result, known_good)
        return result

    async def rollback(self, revision: Optional[int] = None):
        """Roll back to an explicit revision.

        Without a revision, print history and fail before any change.
        """
        self.releases.require()

        if revision is None:
            try:
                history = await self.releases.history()
            except CommandError as e:
                raise PreconditionMissing(f"Release history unavailable: {e}") from e
            print(render_history(history))
            raise PreconditionMissing("Usage: rollback <revision>")

        result = await self.rollbacks.perform(
            RevertToRevision(revision=revision, reason="requested by operator")
        )
        if not result.ok:
            snapshot = await self.status()
            raise RollbackFailed(f"Rollback to revision {revision} failed: {result.reason}", snapshot)

        await self.status()

    async def uninstall(self):
        self.releases.require()
        result = await self.releases.uninstall()
        if not result.ok:
            raise ApplyFailed(f"Helm uninstall failed: {result.error or result.message}")

    async def template(self) -> str:
        self.releases.require()
        values_file = self._require_values_file()
        try:
            rendered = await self.releases.template(self.config.chart_path, values_file)
        except CommandError as e:
            raise ApplyFailed(f"Helm template failed: {e.stderr or e}") from e
        print(rendered)
        return rendered

    async def status(self, scope: str = "all") -> StatusSnapshot:
        snapshot = await self.reporter.report(scope)
        print(render_snapshot(snapshot))
        return snapshot

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _handle_failure(
        self, plan: Plan, failed: ExecutionResult, known_good: Optional[int]
    ):
        """Apply rollback policy to a failed stage, then raise its error."""
        stage = next(s for s in plan.stages if s.id == failed.stage_id)
        action = await self.rollbacks.on_failure(plan, stage, failed, known_good)

        if isinstance(action, Abort):
            logger.error("deploy.aborted", stage=stage.id, reason=action.reason)
            if action.log_tail:
                print(action.log_tail)
        else:
            rollback_result = await self.rollbacks.perform(action)
            if not rollback_result.ok:
                snapshot = await self.status()
                raise RollbackFailed(
                    f"Rollback to revision {action.revision} failed after "
                    f"stage '{stage.id}' {failed.status.value}: {rollback_result.reason}",
                    snapshot,
                )
            logger.warning("deploy.reverted", revision=action.revision)
            await self.status()

        failed.raise_for_status()

    async def _known_good_revision(self) -> Optional[int]:
        if not self.config.auto_rollback:
            return None
        try:
            self.releases.require()
        except PreconditionMissing:
            return None
        return await self.rollbacks.snapshot_good_revision()

    def _require_values_file(self) -> str:
        path = self.config.values_file
        if not os.path.isfile(path):
            raise PreconditionMissing(
                f"Values file not found: {path} "
                f"(set GMATCH_DEPLOY_VALUES_FILE to override)"
            )
        return path
