"""Feature flag store: persisted definitions behind a read cache."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from gatekeeper.audit.events import AuditEventKind
from gatekeeper.errors import FlagNotFoundError, ValidationError

from .cache import FlagCache
from .models import DEFAULT_FLAGS, MAX_PERCENT, find_dependency_cycles, valid_percent

if TYPE_CHECKING:
    from collections.abc import Iterable

    from gatekeeper.audit.log import AuditLog

    from .models import FeatureFlag
    from .queries import FlagQueries

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


class FeatureFlagStore:
    """Reads flags through a TTL cache and applies audited writes."""

    def __init__(
        self,
        flag_queries: FlagQueries,
        audit_log: AuditLog,
        cache: FlagCache | None = None,
        default_flags: Iterable[FeatureFlag] = DEFAULT_FLAGS,
    ) -> None:
        """Create the store.

        :param flag_queries: Persistent flag storage
        :param audit_log: Receives flag_enabled / flag_disabled events
        :param cache: Read cache, a fresh 30 second cache if omitted
        :param default_flags: Flags seeded on initialize
        """
        self.flag_queries = flag_queries
        self.audit_log = audit_log
        self.cache = cache if cache is not None else FlagCache()
        self.default_flags = tuple(default_flags)

    async def initialize(self, *, check_cycles: bool = True) -> None:
        """Create the table, seed missing default flags and check dependencies.

        Seeding never overwrites a stored flag, so operator changes survive
        restarts.

        :param check_cycles: Warn about dependency cycles among stored flags
        """
        await self.flag_queries.initialize_tables()
        inserted = await self.flag_queries.insert_defaults(self.default_flags)
        LOGGER.info("Feature flags initialized, %d new defaults seeded", inserted)

        if check_cycles:
            await self.check_dependency_cycles()

    async def check_dependency_cycles(self) -> list[list[str]]:
        """Log a warning for every dependency cycle among stored flags.

        Flags on a cycle always evaluate to off.

        :return: The cycles found
        """
        flags = await self.flag_queries.get_all_flags()
        adjacency = {flag.name: flag.dependencies for flag in flags}
        cycles = find_dependency_cycles(adjacency)
        for cycle in cycles:
            LOGGER.warning("Feature flag dependency cycle: %s", " -> ".join(cycle))
        return cycles

    async def get_flag(
        self,
        name: str,
        *,
        use_cache: bool = True,
    ) -> FeatureFlag | None:
        """Read one flag, from the cache when fresh.

        :param name: Flag name
        :param use_cache: Set False to read the persisted value directly
        :return: The flag, or None if it does not exist
        """
        if use_cache:
            cached = self.cache.get(name)
            if cached is not None:
                return cached

        flag = await self.flag_queries.get_flag(name)
        if flag is not None:
            self.cache.put(flag)
        return flag

    async def get_all_flags(self) -> list[FeatureFlag]:
        """All stored flags, uncached."""
        return await self.flag_queries.get_all_flags()

    async def get_flags_by_phase(self, phase: str) -> list[FeatureFlag]:
        """Stored flags of one phase, uncached."""
        return await self.flag_queries.get_flags_by_phase(phase)

    async def _write(
        self,
        name: str,
        *,
        enabled: bool,
        rollout_percent: int,
        actor_id: int | None,
    ) -> tuple[FeatureFlag, FeatureFlag]:
        old = await self.flag_queries.get_flag(name)
        if old is None:
            msg = f"Feature flag '{name}' not found"
            raise FlagNotFoundError(msg)

        await self.flag_queries.update_state(
            name,
            enabled=enabled,
            rollout_percent=rollout_percent,
            updated_by=actor_id,
        )
        self.cache.invalidate(name)

        new = await self.flag_queries.get_flag(name)
        if new is None:
            msg = f"Feature flag '{name}' not found"
            raise FlagNotFoundError(msg)
        return old, new

    async def enable(
        self,
        name: str,
        rollout_percent: int = MAX_PERCENT,
        actor_id: int | None = None,
    ) -> FeatureFlag:
        """Enable a flag at a rollout percentage.

        :param name: Flag name
        :param rollout_percent: Percentage of actors to include, 0-100
        :param actor_id: User making the change
        :return: The updated flag
        :raises ValidationError: If the percentage is outside 0-100
        :raises FlagNotFoundError: If the flag does not exist
        """
        if not valid_percent(rollout_percent):
            msg = "Rollout percent must be between 0 and 100"
            raise ValidationError(msg, field="rollout_percent")

        old, new = await self._write(
            name,
            enabled=True,
            rollout_percent=rollout_percent,
            actor_id=actor_id,
        )
        self.audit_log.record(
            actor_id,
            AuditEventKind.FLAG_ENABLED,
            {
                "flag": name,
                "old_percent": old.rollout_percent,
                "new_percent": new.rollout_percent,
                "was_enabled": old.enabled,
            },
        )
        LOGGER.info("Feature flag '%s' enabled at %d%% rollout", name, rollout_percent)
        return new

    async def disable(self, name: str, actor_id: int | None = None) -> FeatureFlag:
        """Disable a flag and reset its rollout to 0.

        :param name: Flag name
        :param actor_id: User making the change
        :return: The updated flag
        :raises FlagNotFoundError: If the flag does not exist
        """
        old, new = await self._write(
            name,
            enabled=False,
            rollout_percent=0,
            actor_id=actor_id,
        )
        self.audit_log.record(
            actor_id,
            AuditEventKind.FLAG_DISABLED,
            {
                "flag": name,
                "old_percent": old.rollout_percent,
                "new_percent": new.rollout_percent,
                "was_enabled": old.enabled,
            },
        )
        LOGGER.info("Feature flag '%s' disabled", name)
        return new

    def clear_cache(self) -> None:
        """Force every flag to be re-read from storage."""
        self.cache.clear()
        LOGGER.info("Feature flag cache cleared")

    async def get_statistics(self) -> dict[str, Any]:
        """Per-phase flag statistics plus cache usage."""
        stats = self.cache.stats()
        return {
            "phases": await self.flag_queries.phase_statistics(),
            "cache": {
                "cached_flags": stats.size,
                "hits": stats.hits,
                "misses": stats.misses,
                "hit_rate": stats.hit_rate,
            },
        }
