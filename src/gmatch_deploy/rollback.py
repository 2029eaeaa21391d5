"""Rollback controller: decides and performs recovery after a stage failure."""

from typing import List, Optional

import structlog

from .config import DeployConfig
from .errors import CommandError
from .executor.base import ClusterExecutor, ReleaseExecutor
from .models import (
    Abort,
    Action,
    ExecutionResult,
    Plan,
    ReleaseRevision,
    RevertToRevision,
    Stage,
    StagePhase,
)

logger = structlog.get_logger()


def last_good_revision(
    history: List[ReleaseRevision], at_or_before: Optional[int] = None
) -> Optional[int]:
    """Most recent deployed/superseded revision.

    Args:
        history: Release history in any order
        at_or_before: Ignore revisions newer than this one

    Returns:
        Revision number or None
    """
    candidates = [
        r.revision
        for r in history
        if r.is_good and (at_or_before is None or r.revision <= at_or_before)
    ]
    return max(candidates) if candidates else None


class RollbackController:
    """Applies the rollback policy after a failed stage."""

    def __init__(
        self,
        config: DeployConfig,
        cluster: ClusterExecutor,
        releases: ReleaseExecutor,
    ):
        """Initialize rollback controller.

        Args:
            config: Deployer configuration
            cluster: Cluster executor, used for job logs
            releases: Release executor, used for history and rollback
        """
        self.config = config
        self.cluster = cluster
        self.releases = releases

    async def snapshot_good_revision(self) -> Optional[int]:
        """Read the last good revision before a plan mutates anything.

        Returns:
            Revision, or None when the release has no usable history
        """
        try:
            history = await self.releases.history()
        except CommandError as e:
            logger.info("rollback.history_unavailable", error=str(e))
            return None
        return last_good_revision(history)

    async def on_failure(
        self,
        plan: Plan,
        failed_stage: Stage,
        result: ExecutionResult,
        known_good: Optional[int] = None,
    ) -> Action:
        """Choose the action for a failed stage.

        Migrations and infrastructure are never reverted. Application stages
        revert to the most recent good revision at or before ``known_good``.

        Args:
            plan: Plan being executed
            failed_stage: Stage that failed
            result: Its execution result
            known_good: Good revision recorded when the plan started

        Returns:
            Abort or RevertToRevision
        """
        reason = result.reason or result.status.value
        logger.info(
            "rollback.evaluating",
            plan=plan.selector,
            stage=failed_stage.id,
            phase=failed_stage.phase.value,
            status=result.status.value,
        )

        if failed_stage.phase == StagePhase.MIGRATE:
            log_tail = await self._job_log_tail(failed_stage, result)
            return Abort(
                reason=f"migration {result.status.value}: {reason}",
                log_tail=log_tail,
            )

        if failed_stage.phase == StagePhase.INFRA:
            return Abort(reason=f"infrastructure {result.status.value}: {reason}")

        if not self.config.auto_rollback:
            return Abort(reason=f"auto-rollback disabled: {reason}")

        try:
            history = await self.releases.history()
        except CommandError as e:
            logger.warning("rollback.history_unavailable", error=str(e))
            return Abort(reason=f"no release history to revert to: {reason}")

        revision = last_good_revision(history, at_or_before=known_good)
        if revision is None:
            return Abort(reason=f"no previous successful revision: {reason}")

        return RevertToRevision(
            revision=revision,
            reason=f"stage '{failed_stage.id}' {result.status.value}: {reason}",
        )

    async def perform(self, action: RevertToRevision) -> ExecutionResult:
        """Run one rollback. Never retried.

        Args:
            action: Revert action

        Returns:
            ExecutionResult for the rollback itself
        """
        logger.warning(
            "rollback.starting",
            revision=action.revision,
            reason=action.reason,
            timeout=self.config.rollback_timeout,
        )

        outcome = await self.releases.rollback(
            action.revision, self.config.rollback_timeout
        )
        if outcome.ok:
            logger.info("rollback.succeeded", revision=outcome.revision)
            return ExecutionResult.succeeded("rollback")

        logger.error("rollback.failed", error=outcome.error)
        return ExecutionResult.failed(
            "rollback", None, outcome.error or outcome.message or "rollback failed"
        )

    async def _job_log_tail(
        self, stage: Stage, result: ExecutionResult
    ) -> Optional[str]:
        refs = [t.ref for t in stage.targets if t.name == result.target] or [
            t.ref for t in stage.targets
        ]
        if not refs:
            return None
        try:
            return await self.cluster.get_logs(refs[0], self.config.failure_log_lines)
        except CommandError as e:
            logger.warning("rollback.logs_unavailable", error=str(e))
            return None
