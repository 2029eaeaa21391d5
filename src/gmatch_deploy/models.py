"""Domain types for plans, stages and cluster state."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from .errors import ApplyFailed, StageFailed, StageTimedOut

CURRENT_TAG = "latest"

_TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


class ResourceKind(str, Enum):
    """Kubernetes workload kind managed by the deployer."""

    STATEFULSET = "StatefulSet"
    DEPLOYMENT = "Deployment"
    JOB = "Job"


class StagePhase(str, Enum):
    """Stage category, used by the rollback policy."""

    INFRA = "infra"
    MIGRATE = "migrate"
    APPLICATION = "application"


class StageStatus(str, Enum):
    """Outcome of executing one stage."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ImageTag:
    """Image version to roll out.

    The ``latest`` sentinel means "keep the current images".
    """

    value: str = CURRENT_TAG

    @classmethod
    def current(cls) -> "ImageTag":
        return cls(CURRENT_TAG)

    @staticmethod
    def is_valid(value: str) -> bool:
        return bool(_TAG_PATTERN.match(value))

    @property
    def is_current(self) -> bool:
        return self.value == CURRENT_TAG

    def __str__(self) -> str:
        return "current" if self.is_current else self.value


@dataclass(frozen=True)
class ReleaseTarget:
    """One deployable unit with its own readiness criteria."""

    name: str
    kind: ResourceKind
    resource_name: str
    timeout: int
    containers: Tuple[str, ...] = ()
    image: Optional[str] = None  # Repository without tag
    manifest: Optional[str] = None  # File name under the manifests dir
    recreate: bool = False  # Delete before apply (Jobs are immutable)

    @property
    def ref(self) -> str:
        """kubectl resource reference, e.g. deployment/g-match-web."""
        return f"{self.kind.value.lower()}/{self.resource_name}"

    def image_ref(self, tag: ImageTag) -> str:
        return f"{self.image}:{tag.value}"

    def image_map(self, tag: ImageTag) -> Dict[str, str]:
        """Container -> image mapping for a set-image call.

        Empty when the tag is the sentinel or the target has no image.
        """
        if tag.is_current or not self.image or not self.containers:
            return {}
        return {container: self.image_ref(tag) for container in self.containers}


@dataclass(frozen=True)
class Stage:
    """Ordered group of targets applied together."""

    id: str
    ordinal: int
    phase: StagePhase
    targets: Tuple[ReleaseTarget, ...]
    tag: ImageTag = field(default_factory=ImageTag.current)
    requires_previous: bool = False

    @property
    def target_names(self) -> List[str]:
        return [target.name for target in self.targets]


@dataclass(frozen=True)
class Plan:
    """Ordered stages for one invocation."""

    selector: str
    stages: Tuple[Stage, ...]
    tag: ImageTag = field(default_factory=ImageTag.current)
    ensure_namespace: bool = False
    report_status: bool = True

    @property
    def stage_ids(self) -> List[str]:
        return [stage.id for stage in self.stages]

    def describe(self) -> str:
        return " -> ".join(
            f"{stage.id}({', '.join(stage.target_names)})" for stage in self.stages
        )


@dataclass
class ExecutionResult:
    """Result of executing one stage."""

    stage_id: str
    status: StageStatus
    target: Optional[str] = None  # Target that failed
    reason: Optional[str] = None
    elapsed: float = 0.0
    rejected: bool = False  # Cluster refused the desired state

    @classmethod
    def succeeded(cls, stage_id: str, elapsed: float = 0.0) -> "ExecutionResult":
        return cls(stage_id=stage_id, status=StageStatus.SUCCEEDED, elapsed=elapsed)

    @classmethod
    def failed(
        cls,
        stage_id: str,
        target: Optional[str],
        reason: str,
        elapsed: float = 0.0,
        rejected: bool = False,
    ) -> "ExecutionResult":
        return cls(
            stage_id=stage_id,
            status=StageStatus.FAILED,
            target=target,
            reason=reason,
            elapsed=elapsed,
            rejected=rejected,
        )

    @classmethod
    def timed_out(
        cls, stage_id: str, target: Optional[str], reason: str, elapsed: float = 0.0
    ) -> "ExecutionResult":
        return cls(
            stage_id=stage_id,
            status=StageStatus.TIMED_OUT,
            target=target,
            reason=reason,
            elapsed=elapsed,
        )

    @property
    def ok(self) -> bool:
        return self.status == StageStatus.SUCCEEDED

    def raise_for_status(self):
        """Raise the matching DeployError unless the stage succeeded."""
        if self.ok:
            return
        message = f"Stage '{self.stage_id}' {self.status.value}"
        if self.target:
            message += f" at {self.target}"
        if self.reason:
            message += f": {self.reason}"
        if self.status == StageStatus.TIMED_OUT:
            raise StageTimedOut(message)
        if self.rejected:
            raise ApplyFailed(message)
        raise StageFailed(message)


@dataclass(frozen=True)
class Abort:
    """Stop without reverting."""

    reason: str
    log_tail: Optional[str] = None


@dataclass(frozen=True)
class RevertToRevision:
    """Roll the release back to a known-good revision."""

    revision: int
    reason: str


Action = Union[Abort, RevertToRevision]


# ---------------------------------------------------------------------------
# Records parsed from helm / kubectl JSON output
# ---------------------------------------------------------------------------


class ReleaseRevision(BaseModel):
    """One row of `helm history`."""

    revision: int
    updated: Optional[str] = None
    status: str
    chart: Optional[str] = None
    app_version: Optional[str] = None
    description: Optional[str] = None

    @property
    def is_good(self) -> bool:
        return self.status in ("deployed", "superseded")


class ReleaseInfo(BaseModel):
    """Release metadata from `helm status`."""

    name: str
    revision: int
    status: Optional[str] = None
    last_deployed: Optional[str] = None
    chart: Optional[str] = None


class ResourceSummary(BaseModel):
    """One row of a resource listing."""

    kind: str
    name: str
    ready: Optional[str] = None
    status: Optional[str] = None
    detail: Optional[str] = None


class StatusSnapshot(BaseModel):
    """Read-only view of the release and its resources."""

    namespace: str
    release: Optional[ReleaseInfo] = None
    resources: Dict[str, List[ResourceSummary]] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
