"""kubectl executor for cluster operations."""

import json
from dataclasses import dataclass
from typing import Any, Dict, List

import structlog

from ..errors import CommandError
from ..models import ResourceSummary
from .base import ClusterExecutor, CommandExecutor, ProbeResult, ProbeState

logger = structlog.get_logger()

LISTING_KINDS = ("pods", "deployments", "statefulsets", "jobs", "pvc")


@dataclass
class KubectlConfig:
    """kubectl configuration."""

    namespace: str
    binary: str = "kubectl"


class KubectlExecutor(CommandExecutor, ClusterExecutor):
    """Kubernetes cluster executor backed by kubectl."""

    def __init__(self, namespace: str, binary: str = "kubectl"):
        """Initialize kubectl executor.

        Args:
            namespace: Kubernetes namespace
            binary: kubectl executable
        """
        self.config = KubectlConfig(namespace=namespace, binary=binary)
        self.binary = binary
        logger.debug("kubectl.executor_initialized", namespace=namespace)

    def _ns(self) -> List[str]:
        return ["-n", self.config.namespace]

    async def ensure_namespace(self) -> bool:
        result = await self._run(
            ["get", "namespace", self.config.namespace], check=False
        )
        if result.returncode == 0:
            return False

        logger.info("kubectl.namespace.creating", namespace=self.config.namespace)
        await self._run(["create", "namespace", self.config.namespace])
        return True

    async def apply_manifest(self, path: str):
        logger.debug("kubectl.apply", manifest=path)
        await self._run(["apply", "-f", path, *self._ns()], timeout=120)

    async def set_image(self, ref: str, images: Dict[str, str]):
        if not images:
            return
        pairs = [f"{container}={image}" for container, image in images.items()]
        logger.debug("kubectl.set_image", ref=ref, images=pairs)
        await self._run(["set", "image", ref, *pairs, *self._ns()])

    async def delete(self, ref: str, ignore_not_found: bool = True):
        args = ["delete", ref, *self._ns()]
        if ignore_not_found:
            args.append("--ignore-not-found")
        await self._run(args, timeout=120)

    async def probe(self, ref: str) -> ProbeResult:
        """Check readiness of a Deployment, StatefulSet or Job once.

        Args:
            ref: Resource reference (kind/name)

        Returns:
            ProbeResult
        """
        try:
            obj = await self._get_json(["get", ref])
        except CommandError as e:
            if e.not_found:
                return ProbeResult(ProbeState.PROGRESSING, f"{ref} not found yet")
            raise

        kind = ref.split("/", 1)[0].lower()
        if kind == "job":
            return probe_job(obj)
        if kind == "statefulset":
            return probe_statefulset(obj)
        return probe_deployment(obj)

    async def get_logs(self, ref: str, tail: int) -> str:
        result = await self._run(
            ["logs", ref, *self._ns(), f"--tail={tail}"], check=False
        )
        if result.returncode != 0:
            logger.warning("kubectl.logs_unavailable", ref=ref, stderr=result.stderr)
            return result.stderr.strip()
        return result.stdout.rstrip()

    async def list_resources(self, kind: str) -> List[ResourceSummary]:
        data = await self._get_json(["get", kind])
        summarize = SUMMARIZERS.get(kind, summarize_generic)
        return [summarize(item) for item in data.get("items", [])]

    async def _get_json(self, args: List[str]) -> Dict[str, Any]:
        result = await self._run([*args, *self._ns(), "-o", "json"])
        try:
            return json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            logger.warning("kubectl.output_not_json", stdout=result.stdout[:200])
            return {}


# ---------------------------------------------------------------------------
# Readiness checks
# ---------------------------------------------------------------------------


def _generation_observed(obj: Dict[str, Any]) -> bool:
    metadata = obj.get("metadata", {})
    status = obj.get("status", {})
    return status.get("observedGeneration", 0) >= metadata.get("generation", 0)


def _condition(obj: Dict[str, Any], cond_type: str) -> Dict[str, Any]:
    for condition in obj.get("status", {}).get("conditions") or []:
        if condition.get("type") == cond_type:
            return condition
    return {}


def probe_deployment(obj: Dict[str, Any]) -> ProbeResult:
    """Rollout is complete when all replicas are updated, ready and available."""
    progressing = _condition(obj, "Progressing")
    if progressing.get("reason") == "ProgressDeadlineExceeded":
        return ProbeResult(
            ProbeState.FAILED,
            progressing.get("message") or "progress deadline exceeded",
        )

    if not _generation_observed(obj):
        return ProbeResult(ProbeState.PROGRESSING, "waiting for spec update to be observed")

    desired = obj.get("spec", {}).get("replicas", 1)
    status = obj.get("status", {})
    updated = status.get("updatedReplicas", 0)
    ready = status.get("readyReplicas", 0)
    available = status.get("availableReplicas", 0)
    total = status.get("replicas", 0)

    if updated < desired:
        return ProbeResult(
            ProbeState.PROGRESSING, f"{updated} of {desired} updated replicas"
        )
    if total > updated:
        return ProbeResult(
            ProbeState.PROGRESSING, f"{total - updated} old replicas pending termination"
        )
    if ready < desired or available < desired:
        return ProbeResult(
            ProbeState.PROGRESSING, f"{available} of {desired} replicas available"
        )
    return ProbeResult(ProbeState.READY, f"{ready}/{desired} ready")


def probe_statefulset(obj: Dict[str, Any]) -> ProbeResult:
    """Rollout is complete when all replicas are ready on the update revision."""
    if not _generation_observed(obj):
        return ProbeResult(ProbeState.PROGRESSING, "waiting for spec update to be observed")

    spec = obj.get("spec", {})
    status = obj.get("status", {})
    desired = spec.get("replicas", 1)
    ready = status.get("readyReplicas", 0)

    if ready < desired:
        return ProbeResult(ProbeState.PROGRESSING, f"{ready} of {desired} replicas ready")

    strategy = (spec.get("updateStrategy") or {}).get("type", "RollingUpdate")
    if strategy == "RollingUpdate":
        update_revision = status.get("updateRevision")
        if update_revision and status.get("currentRevision") != update_revision:
            return ProbeResult(
                ProbeState.PROGRESSING, f"waiting for revision {update_revision}"
            )
    return ProbeResult(ProbeState.READY, f"{ready}/{desired} ready")


def probe_job(obj: Dict[str, Any]) -> ProbeResult:
    """Job is ready once Complete, failed once Failed."""
    failed = _condition(obj, "Failed")
    if failed.get("status") == "True":
        return ProbeResult(ProbeState.FAILED, failed.get("message") or "job failed")

    complete = _condition(obj, "Complete")
    if complete.get("status") == "True":
        return ProbeResult(ProbeState.READY, "job complete")

    active = obj.get("status", {}).get("active", 0)
    return ProbeResult(ProbeState.PROGRESSING, f"{active} active pods")


# ---------------------------------------------------------------------------
# Listing summaries
# ---------------------------------------------------------------------------


def _name(item: Dict[str, Any]) -> str:
    return item.get("metadata", {}).get("name", "<unknown>")


def summarize_pod(item: Dict[str, Any]) -> ResourceSummary:
    status = item.get("status", {})
    containers = status.get("containerStatuses") or []
    ready = sum(1 for c in containers if c.get("ready"))
    restarts = sum(c.get("restartCount", 0) for c in containers)
    total = len(item.get("spec", {}).get("containers") or containers)
    node = item.get("spec", {}).get("nodeName")
    detail = f"restarts={restarts}"
    if node:
        detail += f" node={node}"
    return ResourceSummary(
        kind="pod",
        name=_name(item),
        ready=f"{ready}/{total}",
        status=status.get("phase"),
        detail=detail,
    )


def summarize_deployment(item: Dict[str, Any]) -> ResourceSummary:
    status = item.get("status", {})
    desired = item.get("spec", {}).get("replicas", 0)
    return ResourceSummary(
        kind="deployment",
        name=_name(item),
        ready=f"{status.get('readyReplicas', 0)}/{desired}",
        status="Available" if _condition(item, "Available").get("status") == "True" else "Unavailable",
        detail=(
            f"up-to-date={status.get('updatedReplicas', 0)} "
            f"available={status.get('availableReplicas', 0)}"
        ),
    )


def summarize_statefulset(item: Dict[str, Any]) -> ResourceSummary:
    status = item.get("status", {})
    desired = item.get("spec", {}).get("replicas", 0)
    return ResourceSummary(
        kind="statefulset",
        name=_name(item),
        ready=f"{status.get('readyReplicas', 0)}/{desired}",
    )


def summarize_job(item: Dict[str, Any]) -> ResourceSummary:
    status = item.get("status", {})
    completions = item.get("spec", {}).get("completions", 1)
    if _condition(item, "Complete").get("status") == "True":
        state = "Complete"
    elif _condition(item, "Failed").get("status") == "True":
        state = "Failed"
    else:
        state = "Running"
    return ResourceSummary(
        kind="job",
        name=_name(item),
        ready=f"{status.get('succeeded', 0)}/{completions}",
        status=state,
    )


def summarize_pvc(item: Dict[str, Any]) -> ResourceSummary:
    spec = item.get("spec", {})
    status = item.get("status", {})
    capacity = (status.get("capacity") or {}).get("storage")
    detail = " ".join(
        part
        for part in (
            f"capacity={capacity}" if capacity else "",
            f"class={spec.get('storageClassName')}" if spec.get("storageClassName") else "",
        )
        if part
    )
    return ResourceSummary(
        kind="pvc",
        name=_name(item),
        status=status.get("phase"),
        detail=detail or None,
    )


def summarize_generic(item: Dict[str, Any]) -> ResourceSummary:
    return ResourceSummary(kind=item.get("kind", "resource").lower(), name=_name(item))


SUMMARIZERS = {
    "pods": summarize_pod,
    "deployments": summarize_deployment,
    "statefulsets": summarize_statefulset,
    "jobs": summarize_job,
    "pvc": summarize_pvc,
}
