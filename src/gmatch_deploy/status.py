"""Status reporter: read-only view of the release and its resources."""

from typing import List

import structlog

from .config import DeployConfig
from .errors import CommandError, PreconditionMissing
from .executor.base import ClusterExecutor, ReleaseExecutor
from .executor.kubectl import LISTING_KINDS
from .models import ReleaseRevision, ResourceSummary, StatusSnapshot

logger = structlog.get_logger()


class StatusReporter:
    """Aggregates release metadata and resource listings."""

    def __init__(
        self,
        config: DeployConfig,
        cluster: ClusterExecutor,
        releases: ReleaseExecutor,
    ):
        self.config = config
        self.cluster = cluster
        self.releases = releases

    async def report(self, scope: str = "all") -> StatusSnapshot:
        """Collect a status snapshot.

        Query failures become warnings; this never raises for them.

        Args:
            scope: "all" or one of pods, deployments, statefulsets, jobs, pvc

        Returns:
            StatusSnapshot
        """
        kinds = LISTING_KINDS if scope in (None, "all") else (scope,)
        snapshot = StatusSnapshot(namespace=self.config.namespace)

        try:
            snapshot.release = await self.releases.status()
        except (CommandError, PreconditionMissing) as e:
            message = f"Release '{self.config.release_name}' not available: {e}"
            logger.warning("status.release_unavailable", error=str(e))
            snapshot.warnings.append(message)

        for kind in kinds:
            try:
                snapshot.resources[kind] = await self.cluster.list_resources(kind)
            except (CommandError, PreconditionMissing) as e:
                logger.warning("status.listing_failed", kind=kind, error=str(e))
                snapshot.warnings.append(f"Could not list {kind}: {e}")
                snapshot.resources[kind] = []

        return snapshot


def render_snapshot(snapshot: StatusSnapshot) -> str:
    """Render a snapshot as plain text."""
    lines = [f"=== Deployment Status (namespace: {snapshot.namespace}) ==="]

    for warning in snapshot.warnings:
        lines.append(f"WARNING: {warning}")

    release = snapshot.release
    if release:
        lines.append(
            f"Release: {release.name}  revision: {release.revision}  "
            f"status: {release.status or '-'}  chart: {release.chart or '-'}"
        )
        lines.append(f"Last deployed: {release.last_deployed or '-'}")

    for kind, items in snapshot.resources.items():
        lines.append("")
        lines.append(f"[{kind}]")
        lines.extend(_render_rows(items))

    return "\n".join(lines)


def _render_rows(items: List[ResourceSummary]) -> List[str]:
    if not items:
        return ["  (none)"]

    width = max(len(item.name) for item in items)
    rows = []
    for item in items:
        columns = [item.name.ljust(width)]
        for value in (item.ready, item.status, item.detail):
            if value:
                columns.append(value)
        rows.append("  " + "  ".join(columns))
    return rows


def render_history(history: List[ReleaseRevision]) -> str:
    """Render `helm history` rows as plain text."""
    if not history:
        return "No release history."

    lines = ["REVISION  STATUS       CHART                UPDATED"]
    for row in history:
        lines.append(
            f"{row.revision:<9} {row.status:<12} {(row.chart or '-'):<20} {row.updated or '-'}"
        )
    return "\n".join(lines)
