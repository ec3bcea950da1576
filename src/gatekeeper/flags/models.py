"""Feature flag data model and the default flag table."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from gatekeeper.common import Role

MIN_PERCENT = 0
MAX_PERCENT = 100


def valid_percent(percent: int) -> bool:
    """Check that a rollout percentage is within 0-100 inclusive."""
    return MIN_PERCENT <= percent <= MAX_PERCENT


@dataclass(frozen=True)
class FeatureFlag:
    """One feature flag definition.

    Instances are immutable, so a cached flag can be shared between
    concurrent readers and replaced wholesale on invalidation.
    """

    name: str
    enabled: bool = False
    rollout_percent: int = 0
    description: str = ""
    phase: str = ""
    canary_roles: frozenset[Role] = field(default_factory=frozenset)
    dependencies: tuple[str, ...] = ()
    updated_at: datetime | None = None
    updated_by: int | None = None

    def __post_init__(self) -> None:
        """Reject percentages outside 0-100."""
        if not valid_percent(self.rollout_percent):
            msg = f"Rollout percent for {self.name} must be 0-100"
            raise ValueError(msg)


DEFAULT_FLAGS: tuple[FeatureFlag, ...] = (
    FeatureFlag(
        name="authz_unified",
        description="Unified Authentication and Authorization Service",
        phase="Phase 1",
        canary_roles=frozenset({Role.ADMIN}),
    ),
    FeatureFlag(
        name="service_layer_refactor",
        description="Reorganized service layer architecture",
        phase="Phase 2",
        canary_roles=frozenset({Role.ADMIN, Role.CO_ADMIN}),
        dependencies=("authz_unified",),
    ),
    FeatureFlag(
        name="api_gateway",
        description="Centralized API gateway pattern",
        phase="Phase 2",
        canary_roles=frozenset({Role.ADMIN}),
        dependencies=("service_layer_refactor",),
    ),
    FeatureFlag(
        name="design_system",
        description="Unified design system with CSS variables",
        phase="Phase 3",
        canary_roles=frozenset({Role.ADMIN}),
    ),
    FeatureFlag(
        name="module_architecture",
        description="New JavaScript module organization",
        phase="Phase 3",
        canary_roles=frozenset({Role.ADMIN, Role.CO_ADMIN}),
        dependencies=("design_system",),
    ),
    FeatureFlag(
        name="error_handling",
        description="Global error handling framework",
        phase="Phase 3",
        canary_roles=frozenset({Role.ADMIN}),
        dependencies=("module_architecture",),
    ),
    FeatureFlag(
        name="tools_integration",
        description="Unified development tools architecture",
        phase="Phase 4",
        canary_roles=frozenset({Role.ADMIN}),
        dependencies=("authz_unified", "api_gateway"),
    ),
    FeatureFlag(
        name="editor_bridge",
        description="Map editor iframe integration",
        phase="Phase 4",
        canary_roles=frozenset({Role.ADMIN, Role.CO_ADMIN}),
        dependencies=("tools_integration",),
    ),
    FeatureFlag(
        name="database_optimization",
        description="Database connection pooling and indexing",
        phase="Phase 2",
        canary_roles=frozenset({Role.ADMIN}),
    ),
    FeatureFlag(
        name="asset_optimization",
        description="Progressive asset loading system",
        phase="Phase 3",
        canary_roles=frozenset({Role.ADMIN}),
    ),
    FeatureFlag(
        name="legacy_auth_deprecation",
        enabled=True,
        rollout_percent=100,
        description="Show deprecation warnings for legacy auth systems",
        phase="Phase 1",
        dependencies=("authz_unified",),
    ),
)


def find_dependency_cycles(flags: dict[str, tuple[str, ...]]) -> list[list[str]]:
    """Find dependency cycles in a flag name -> dependency names map.

    Dependencies on names missing from the map are ignored here; they
    evaluate to off at runtime.

    :param flags: Adjacency map of flag name to the names it depends on
    :return: Each cycle found, as the path of names that closes on itself
    """
    cycles: list[list[str]] = []
    done: set[str] = set()

    def visit(name: str, path: list[str]) -> None:
        if name in path:
            cycles.append([*path[path.index(name) :], name])
            return
        if name in done or name not in flags:
            return
        path.append(name)
        for dependency in flags[name]:
            visit(dependency, path)
        path.pop()
        done.add(name)

    for name in sorted(flags):
        visit(name, [])
    return cycles
