"""All queries against the feature flag table."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite

from gatekeeper.common import Role

from .models import FeatureFlag

if TYPE_CHECKING:
    from collections.abc import Iterable

    from aiosqlite import Connection

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


def _parse_roles(name: str, labels: Iterable[str]) -> frozenset[Role]:
    roles = set()
    for label in labels:
        try:
            roles.add(Role.from_label(label))
        except ValueError:
            LOGGER.warning("Ignoring unknown canary role %r on flag %s", label, name)
    return frozenset(roles)


def _row_to_flag(row: tuple) -> FeatureFlag:
    (
        name,
        enabled,
        rollout_percent,
        description,
        phase,
        canary_roles,
        dependencies,
        updated_at,
        updated_by,
    ) = row
    return FeatureFlag(
        name=name,
        enabled=bool(enabled),
        rollout_percent=int(rollout_percent),
        description=description or "",
        phase=phase or "",
        canary_roles=_parse_roles(name, json.loads(canary_roles)),
        dependencies=tuple(json.loads(dependencies)),
        updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        updated_by=updated_by,
    )


class FlagQueries:
    """Repository for feature flag definitions."""

    CREATE_FLAGS_TABLE = """
        CREATE TABLE IF NOT EXISTS feature_flags (
            name TEXT PRIMARY KEY,
            enabled INTEGER NOT NULL DEFAULT 0,
            rollout_percent INTEGER NOT NULL DEFAULT 0
                CHECK (rollout_percent >= 0 AND rollout_percent <= 100),
            description TEXT,
            phase TEXT,
            canary_roles TEXT NOT NULL DEFAULT '[]',
            dependencies TEXT NOT NULL DEFAULT '[]',
            created_at TEXT,
            updated_at TEXT,
            updated_by INTEGER
        );
        """

    FLAG_COLUMNS = (
        "name, enabled, rollout_percent, description, phase, "
        "canary_roles, dependencies, updated_at, updated_by"
    )

    INSERT_IF_ABSENT = """
        INSERT OR IGNORE INTO feature_flags
            (name, enabled, rollout_percent, description, phase,
             canary_roles, dependencies, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
        """

    GET_FLAG = f"SELECT {FLAG_COLUMNS} FROM feature_flags WHERE name = ?;"  # noqa: S608

    GET_ALL_FLAGS = f"SELECT {FLAG_COLUMNS} FROM feature_flags ORDER BY phase, name;"  # noqa: S608

    GET_FLAGS_BY_PHASE = f"""
        SELECT {FLAG_COLUMNS} FROM feature_flags WHERE phase = ? ORDER BY name;
        """  # noqa: S608

    UPDATE_STATE = """
        UPDATE feature_flags
        SET enabled = ?, rollout_percent = ?, updated_at = ?, updated_by = ?
        WHERE name = ?;
        """

    PHASE_STATISTICS = """
        SELECT phase,
               COUNT(*) AS total_flags,
               SUM(CASE WHEN enabled THEN 1 ELSE 0 END) AS enabled_flags,
               AVG(rollout_percent) AS avg_rollout
        FROM feature_flags
        GROUP BY phase
        ORDER BY phase;
        """

    def __init__(self, connection: Connection) -> None:
        self.connection = connection

    async def initialize_tables(self) -> None:
        """Create the feature flag table if it does not exist."""
        await self.connection.execute(FlagQueries.CREATE_FLAGS_TABLE)
        await self.connection.commit()

    async def insert_defaults(self, flags: Iterable[FeatureFlag]) -> int:
        """Insert flags that are not stored yet, leaving existing rows untouched.

        :param flags: Default flag definitions
        :return: Number of flags inserted
        """
        now = datetime.now(UTC).isoformat()
        inserted = 0
        try:
            for flag in flags:
                cursor = await self.connection.execute(
                    FlagQueries.INSERT_IF_ABSENT,
                    (
                        flag.name,
                        int(flag.enabled),
                        flag.rollout_percent,
                        flag.description,
                        flag.phase,
                        json.dumps(sorted(role.label for role in flag.canary_roles)),
                        json.dumps(list(flag.dependencies)),
                        now,
                        now,
                    ),
                )
                inserted += cursor.rowcount
            await self.connection.commit()
        except aiosqlite.Error:
            await self.connection.rollback()
            LOGGER.exception("Error seeding feature flags")
            raise
        return inserted

    async def get_flag(self, name: str) -> FeatureFlag | None:
        """Read one flag by name."""
        async with self.connection.execute(FlagQueries.GET_FLAG, (name,)) as cursor:
            row = await cursor.fetchone()
        return _row_to_flag(row) if row else None

    async def get_all_flags(self) -> list[FeatureFlag]:
        """Read every flag, ordered by phase then name."""
        async with self.connection.execute(FlagQueries.GET_ALL_FLAGS) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_flag(row) for row in rows]

    async def get_flags_by_phase(self, phase: str) -> list[FeatureFlag]:
        """Read the flags of one phase, ordered by name."""
        async with self.connection.execute(
            FlagQueries.GET_FLAGS_BY_PHASE,
            (phase,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_flag(row) for row in rows]

    async def update_state(
        self,
        name: str,
        *,
        enabled: bool,
        rollout_percent: int,
        updated_by: int | None,
    ) -> int:
        """Write a flag's enabled state and rollout percentage.

        :return: Number of rows updated, 0 if the flag does not exist
        """
        try:
            cursor = await self.connection.execute(
                FlagQueries.UPDATE_STATE,
                (
                    int(enabled),
                    rollout_percent,
                    datetime.now(UTC).isoformat(),
                    updated_by,
                    name,
                ),
            )
            await self.connection.commit()
        except aiosqlite.Error:
            await self.connection.rollback()
            LOGGER.exception("Error updating feature flag %s", name)
            raise
        return cursor.rowcount

    async def phase_statistics(self) -> list[dict[str, object]]:
        """Per-phase flag totals, enabled counts and mean rollout."""
        async with self.connection.execute(FlagQueries.PHASE_STATISTICS) as cursor:
            rows = await cursor.fetchall()
        return [
            {
                "phase": phase,
                "total_flags": total,
                "enabled_flags": enabled or 0,
                "avg_rollout": float(avg or 0),
            }
            for phase, total, enabled, avg in rows
        ]
