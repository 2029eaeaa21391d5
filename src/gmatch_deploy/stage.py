"""Stage executor: applies a stage's targets and waits for readiness."""

import asyncio
import time
from typing import List, Optional

import structlog

from .config import DeployConfig
from .errors import CommandError
from .executor.base import ClusterExecutor, ProbeState
from .models import ExecutionResult, Plan, ReleaseTarget, ResourceKind, Stage
from .readiness import ReadinessResult, ReadinessWaiter

logger = structlog.get_logger()


class StageExecutor:
    """Runs stages against the cluster, one at a time."""

    def __init__(
        self,
        config: DeployConfig,
        cluster: ClusterExecutor,
        waiter: ReadinessWaiter,
    ):
        """Initialize stage executor.

        Args:
            config: Deployer configuration
            cluster: Cluster executor
            waiter: Readiness waiter
        """
        self.config = config
        self.cluster = cluster
        self.waiter = waiter

    async def run_plan(self, plan: Plan) -> List[ExecutionResult]:
        """Execute stages in order, stopping at the first failure.

        Args:
            plan: Plan to execute

        Returns:
            Results for the stages that ran
        """
        results = []
        for stage in plan.stages:
            result = await self.execute(stage)
            results.append(result)
            if not result.ok:
                remaining = [s.id for s in plan.stages[stage.ordinal + 1:]]
                if remaining:
                    logger.warning(
                        "plan.halted", failed_stage=stage.id, skipped=remaining
                    )
                break
        return results

    async def execute(self, stage: Stage) -> ExecutionResult:
        """Apply every target of a stage and wait for readiness.

        Args:
            stage: Stage to execute

        Returns:
            ExecutionResult for the stage
        """
        log = logger.bind(stage=stage.id, phase=stage.phase.value)
        log.info(
            "stage.starting",
            targets=stage.target_names,
            tag=str(stage.tag),
        )
        start = time.monotonic()

        if self.config.parallel_waits and len(stage.targets) > 1:
            result = await self._execute_parallel(stage)
        else:
            result = await self._execute_sequential(stage)

        result.elapsed = time.monotonic() - start
        if result.ok:
            log.info("stage.succeeded", elapsed=round(result.elapsed, 1))
        else:
            log.error(
                "stage.failed",
                status=result.status.value,
                target=result.target,
                reason=result.reason,
            )
        return result

    async def _execute_sequential(self, stage: Stage) -> ExecutionResult:
        for target in stage.targets:
            error = await self._apply(stage, target)
            if error:
                return ExecutionResult.failed(
                    stage.id, target.name, error, rejected=True
                )

            readiness = await self._wait(stage, target)
            failure = self._to_failure(stage, target, readiness)
            if failure:
                return failure
        return ExecutionResult.succeeded(stage.id)

    async def _execute_parallel(self, stage: Stage) -> ExecutionResult:
        for target in stage.targets:
            error = await self._apply(stage, target)
            if error:
                return ExecutionResult.failed(
                    stage.id, target.name, error, rejected=True
                )

        outcomes = await asyncio.gather(
            *(self._wait(stage, target) for target in stage.targets)
        )
        for target, readiness in zip(stage.targets, outcomes):
            failure = self._to_failure(stage, target, readiness)
            if failure:
                return failure
        return ExecutionResult.succeeded(stage.id)

    async def _apply(self, stage: Stage, target: ReleaseTarget) -> Optional[str]:
        """Push desired state for one target.

        Returns:
            Error message, or None when the cluster accepted every change
        """
        log = logger.bind(stage=stage.id, component=target.name)
        try:
            if target.recreate:
                log.info("stage.target.recreating", ref=target.ref)
                await self.cluster.delete(target.ref, ignore_not_found=True)

            if target.manifest:
                log.info("stage.target.applying", manifest=target.manifest)
                await self.cluster.apply_manifest(
                    self.config.manifest_path(target.manifest)
                )

            images = target.image_map(stage.tag)
            if images:
                log.info("stage.target.set_image", images=images)
                await self.cluster.set_image(target.ref, images)
            elif not target.manifest:
                log.info("stage.target.unchanged", tag=str(stage.tag))
        except CommandError as e:
            log.error("stage.target.apply_failed", error=str(e))
            return f"apply rejected: {e.stderr or e}"
        return None

    async def _wait(self, stage: Stage, target: ReleaseTarget) -> ReadinessResult:
        log = logger.bind(stage=stage.id, component=target.name)
        log.info("stage.target.waiting", ref=target.ref, timeout=target.timeout)
        try:
            readiness = await self.waiter.wait_until_ready(target.ref, target.timeout)
        except CommandError as e:
            log.error("stage.target.probe_failed", error=str(e))
            return ReadinessResult(ProbeState.FAILED, f"probe failed: {e.stderr or e}")

        if readiness.ready:
            log.info(
                "stage.target.ready",
                elapsed=round(readiness.elapsed, 1),
                status=readiness.message,
            )
            if target.kind == ResourceKind.JOB:
                await self._show_job_output(target)
        return readiness

    async def _show_job_output(self, target: ReleaseTarget):
        try:
            output = await self.cluster.get_logs(
                target.ref, self.config.success_log_lines
            )
        except CommandError as e:
            logger.warning("stage.target.logs_unavailable", ref=target.ref, error=str(e))
            return
        if output:
            print(output)

    @staticmethod
    def _to_failure(
        stage: Stage, target: ReleaseTarget, readiness: ReadinessResult
    ) -> Optional[ExecutionResult]:
        if readiness.ready:
            return None
        if readiness.timed_out:
            return ExecutionResult.timed_out(stage.id, target.name, readiness.message)
        return ExecutionResult.failed(stage.id, target.name, readiness.message)
