"""
Test configuration and fixtures for pytest.

Provides in-memory fakes for the cluster and release executors and a fake
clock so readiness waits run instantly.
"""

from typing import Dict, List, Optional

import pytest

from gmatch_deploy.config import DeployConfig
from gmatch_deploy.errors import CommandError, PreconditionMissing
from gmatch_deploy.executor.base import (
    ClusterExecutor,
    DeploymentResult,
    ProbeResult,
    ProbeState,
    ReleaseExecutor,
)
from gmatch_deploy.models import ReleaseInfo, ReleaseRevision, ResourceSummary
from gmatch_deploy.readiness import FixedInterval, ReadinessWaiter


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeCluster(ClusterExecutor):
    """In-memory cluster recording every call."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.probes: Dict[str, List[ProbeResult]] = {}
        self.apply_errors: Dict[str, str] = {}
        self.logs: Dict[str, str] = {}
        self.listings: Dict[str, List[ResourceSummary]] = {}
        self.list_errors: set = set()
        self.images: Dict[str, Dict[str, str]] = {}
        self.available = True
        self.namespace_exists = True
        self.namespace_error: Optional[str] = None
        self.log_errors: Dict[str, str] = {}

    def require(self):
        if not self.available:
            raise PreconditionMissing("Required tool not found: kubectl")

    def set_probes(self, ref: str, *states: ProbeState):
        self.probes[ref] = [ProbeResult(state, state.value) for state in states]

    async def ensure_namespace(self) -> bool:
        self.calls.append(("ensure_namespace",))
        if self.namespace_error:
            raise CommandError(["kubectl", "create"], 1, self.namespace_error)
        created = not self.namespace_exists
        self.namespace_exists = True
        return created

    async def apply_manifest(self, path: str):
        self.calls.append(("apply", path))
        if path in self.apply_errors:
            raise CommandError(["kubectl", "apply"], 1, self.apply_errors[path])

    async def set_image(self, ref: str, images: Dict[str, str]):
        self.calls.append(("set_image", ref, dict(images)))
        if ref in self.apply_errors:
            raise CommandError(["kubectl", "set"], 1, self.apply_errors[ref])
        self.images.setdefault(ref, {}).update(images)

    async def delete(self, ref: str, ignore_not_found: bool = True):
        self.calls.append(("delete", ref))

    async def probe(self, ref: str) -> ProbeResult:
        self.calls.append(("probe", ref))
        queue = self.probes.get(ref)
        if not queue:
            return ProbeResult(ProbeState.READY, "ready")
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    async def get_logs(self, ref: str, tail: int) -> str:
        self.calls.append(("logs", ref, tail))
        if ref in self.log_errors:
            raise CommandError(["kubectl", "logs"], 1, self.log_errors[ref])
        return self.logs.get(ref, "")

    async def list_resources(self, kind: str) -> List[ResourceSummary]:
        self.calls.append(("list", kind))
        if kind in self.list_errors:
            raise CommandError(["kubectl", "get"], 1, f"cannot list {kind}")
        return list(self.listings.get(kind, []))

    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in ("apply", "set_image", "delete")]


class FakeReleases(ReleaseExecutor):
    """In-memory Helm release manager."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.revisions: List[ReleaseRevision] = []
        self.installed = True
        self.upgrade_result = DeploymentResult(status="success", revision=None)
        self.rollback_result = DeploymentResult(status="success")
        self.available = True
        self.values: Dict[str, str] = {}

    def require(self):
        if not self.available:
            raise PreconditionMissing("Required tool not found: helm")

    def add_revision(self, revision: int, status: str):
        self.revisions.append(
            ReleaseRevision(revision=revision, status=status, chart="g-match-0.1.0")
        )

    async def install(self, chart: str, values_file: str) -> DeploymentResult:
        self.calls.append(("install", chart, values_file))
        self.installed = True
        self.add_revision(len(self.revisions) + 1, "deployed")
        return DeploymentResult(status="success", revision=len(self.revisions))

    async def upgrade(self, chart: str, overrides: Dict[str, str]) -> DeploymentResult:
        self.calls.append(("upgrade", chart, dict(overrides)))
        if self.upgrade_result.ok:
            self.values.update(overrides)
            for row in self.revisions:
                if row.status == "deployed":
                    row.status = "superseded"
            self.add_revision(len(self.revisions) + 1, "deployed")
            return DeploymentResult(status="success", revision=len(self.revisions))
        self.add_revision(len(self.revisions) + 1, "failed")
        return self.upgrade_result

    async def rollback(self, revision: int, timeout: int) -> DeploymentResult:
        self.calls.append(("rollback", revision, timeout))
        return self.rollback_result

    async def uninstall(self) -> DeploymentResult:
        self.calls.append(("uninstall",))
        self.installed = False
        return DeploymentResult(status="success")

    async def history(self) -> List[ReleaseRevision]:
        self.calls.append(("history",))
        if not self.installed:
            raise CommandError(["helm", "history"], 1, "Error: release: not found")
        return list(self.revisions)

    async def status(self) -> ReleaseInfo:
        self.calls.append(("status",))
        if not self.installed or not self.revisions:
            raise CommandError(["helm", "status"], 1, "Error: release: not found")
        latest = self.revisions[-1]
        return ReleaseInfo(
            name="g-match",
            revision=latest.revision,
            status=latest.status,
            last_deployed="2024-05-01T10:00:00Z",
            chart=latest.chart,
        )

    async def template(self, chart: str, values_file: str) -> str:
        self.calls.append(("template", chart, values_file))
        return "---\nkind: Deployment\n"


@pytest.fixture
def config(tmp_path):
    """Deployer config isolated from the environment."""
    values = tmp_path / "values-secret.yaml"
    values.write_text("django:\n  secretKey: test\n")
    return DeployConfig(
        namespace="g-match",
        release_name="g-match",
        chart_path="/charts/g-match",
        values_file=str(values),
        manifests_dir="/manifests",
        poll_interval=2.0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def releases():
    return FakeReleases()


@pytest.fixture
def waiter(cluster, clock):
    return ReadinessWaiter(cluster, FixedInterval(2.0), clock=clock, sleep=clock.sleep)
