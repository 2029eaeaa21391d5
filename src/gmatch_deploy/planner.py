"""Plan builder: turns a selector and tag into ordered stages."""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

import structlog

from .config import DeployConfig
from .errors import InvalidTarget
from .models import ImageTag, Plan, ReleaseTarget, ResourceKind, Stage, StagePhase

logger = structlog.get_logger()

# First-argument values that name a component
KNOWN_COMPONENTS = (
    "all",
    "infra",
    "mysql",
    "redis",
    "django",
    "web",
    "matcher",
    "migrate",
)

ALIASES = {"web": "django"}


@dataclass(frozen=True)
class KnownSelector:
    """Selector naming a known component."""

    component: str


@dataclass(frozen=True)
class UnrecognizedSelector:
    """Selector text that matched no component."""

    text: str


Selector = Union[KnownSelector, UnrecognizedSelector]


def parse_selector(text: Optional[str]) -> Selector:
    """Classify the first positional argument.

    Args:
        text: Raw argument, None or empty means "all"

    Returns:
        KnownSelector or UnrecognizedSelector
    """
    if not text:
        return KnownSelector("all")
    # Case-sensitive: "DJANGO" is read as an image tag
    name = text.strip()
    if name in KNOWN_COMPONENTS:
        return KnownSelector(ALIASES.get(name, name))
    return UnrecognizedSelector(name)


def build_catalog(config: DeployConfig) -> Dict[str, ReleaseTarget]:
    """Release targets for the G-Match application."""
    return {
        "mysql": ReleaseTarget(
            name="mysql",
            kind=ResourceKind.STATEFULSET,
            resource_name="g-match-mysql",
            manifest="mysql.yaml",
            timeout=300,
        ),
        "redis": ReleaseTarget(
            name="redis",
            kind=ResourceKind.DEPLOYMENT,
            resource_name="g-match-redis",
            manifest="redis.yaml",
            timeout=120,
        ),
        "migrate": ReleaseTarget(
            name="migrate",
            kind=ResourceKind.JOB,
            resource_name="g-match-migrate",
            containers=("migrate",),
            image=config.django_repository,
            manifest="migration-job.yaml",
            recreate=True,
            timeout=180,
        ),
        "web": ReleaseTarget(
            name="web",
            kind=ResourceKind.DEPLOYMENT,
            resource_name="g-match-web",
            containers=("django", "django-collectstatic"),
            image=config.django_repository,
            timeout=180,
        ),
        "matcher-edge-calculator": ReleaseTarget(
            name="matcher-edge-calculator",
            kind=ResourceKind.DEPLOYMENT,
            resource_name="g-match-edge-calculator",
            containers=("edge-calculator",),
            image=config.matcher_repository,
            timeout=120,
        ),
        "matcher-scheduler": ReleaseTarget(
            name="matcher-scheduler",
            kind=ResourceKind.DEPLOYMENT,
            resource_name="g-match-scheduler",
            containers=("scheduler",),
            image=config.matcher_repository,
            timeout=120,
        ),
    }


# Fixed rollout order: (stage id, phase, target names)
STAGE_ORDER: Tuple[Tuple[str, StagePhase, Tuple[str, ...]], ...] = (
    ("infra", StagePhase.INFRA, ("mysql", "redis")),
    ("migrate", StagePhase.MIGRATE, ("migrate",)),
    ("web", StagePhase.APPLICATION, ("web",)),
    ("matcher", StagePhase.APPLICATION, ("matcher-edge-calculator", "matcher-scheduler")),
)

# Component -> {stage id: target subset or None for the full stage}
SELECTIONS: Dict[str, Dict[str, Optional[Tuple[str, ...]]]] = {
    "all": {"infra": None, "migrate": None, "web": None, "matcher": None},
    "infra": {"infra": None},
    "mysql": {"infra": ("mysql",)},
    "redis": {"infra": ("redis",)},
    "migrate": {"migrate": None},
    "django": {"migrate": None, "web": None},
    "matcher": {"matcher": None},
}

# Components whose plans create the namespace first
NAMESPACE_COMPONENTS = ("all", "infra", "mysql", "redis")


class PlanBuilder:
    """Builds immutable plans from CLI selectors."""

    def __init__(self, config: DeployConfig):
        """Initialize plan builder.

        Args:
            config: Deployer configuration
        """
        self.config = config
        self.catalog = build_catalog(config)

    def build(self, selector: Union[str, Selector, None], tag: Optional[str] = None) -> Plan:
        """Build a plan for a selector.

        An unrecognized selector is taken as the image tag for a full
        deploy, unless a tag was also given or the text is not a valid tag.

        Args:
            selector: Raw selector text or parsed Selector
            tag: Explicit image tag, None keeps current images

        Returns:
            Plan

        Raises:
            InvalidTarget: Selector cannot be resolved
        """
        if selector is None or isinstance(selector, str):
            selector = parse_selector(selector)

        if isinstance(selector, KnownSelector):
            component = selector.component
            image_tag = self._parse_tag(tag)
        elif isinstance(selector, UnrecognizedSelector):
            if tag:
                raise InvalidTarget(
                    f"Unknown target '{selector.text}' "
                    f"(known: {', '.join(KNOWN_COMPONENTS)})"
                )
            if not ImageTag.is_valid(selector.text):
                raise InvalidTarget(
                    f"'{selector.text}' is neither a known target nor a valid image tag"
                )
            logger.info("plan.selector_as_tag", tag=selector.text)
            component = "all"
            image_tag = ImageTag(selector.text)
        else:
            raise InvalidTarget(f"Unsupported selector: {selector!r}")

        if component not in SELECTIONS:
            raise InvalidTarget(f"Unknown target '{component}'")

        stages = self._stages_for(SELECTIONS[component], image_tag)
        plan = Plan(
            selector=component,
            stages=tuple(stages),
            tag=image_tag,
            ensure_namespace=component in NAMESPACE_COMPONENTS,
            report_status=component != "migrate",
        )
        logger.info(
            "plan.built",
            selector=component,
            tag=str(image_tag),
            stages=plan.describe(),
        )
        return plan

    def build_release(self, tag: Optional[str] = None) -> Plan:
        """Build the single-stage plan backing a Helm upgrade.

        Args:
            tag: Image tag, None reuses current values

        Returns:
            Plan with one application stage named "release"
        """
        image_tag = self._parse_tag(tag)
        stage = Stage(
            id="release",
            ordinal=0,
            phase=StagePhase.APPLICATION,
            targets=(),
            tag=image_tag,
        )
        return Plan(selector="release", stages=(stage,), tag=image_tag)

    def _stages_for(
        self, selection: Dict[str, Optional[Tuple[str, ...]]], tag: ImageTag
    ) -> List[Stage]:
        stages = []
        for stage_id, phase, target_names in STAGE_ORDER:
            if stage_id not in selection:
                continue
            subset = selection[stage_id]
            names = [name for name in target_names if subset is None or name in subset]
            stages.append(
                Stage(
                    id=stage_id,
                    ordinal=len(stages),
                    phase=phase,
                    targets=tuple(self.catalog[name] for name in names),
                    tag=tag,
                    requires_previous=bool(stages),
                )
            )
        return stages

    @staticmethod
    def _parse_tag(tag: Optional[str]) -> ImageTag:
        if not tag:
            return ImageTag.current()
        if not ImageTag.is_valid(tag):
            raise InvalidTarget(f"Invalid image tag '{tag}'")
        return ImageTag(tag)
