"""Decides whether a feature flag is on for a given actor.

Evaluation order, short-circuiting at the first rule that applies:

1. Unknown flag: off
2. Flag disabled: off
3. Any dependency off: off
4. Actor's role is a canary role: on
5. Rollout 100: on, rollout 0: off
6. Known actor id: deterministic bucket against the rollout percentage
7. Anonymous with a session id: bucket on the session id
8. Anonymous without one: random draw per call
"""

from __future__ import annotations

import hashlib
import logging
import random
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import aiosqlite

from gatekeeper.common import Role

from .models import MAX_PERCENT, MIN_PERCENT

if TYPE_CHECKING:
    from collections.abc import Callable

    from .store import FeatureFlagStore

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

BUCKET_COUNT = 100


def bucket(identifier: object, salt: str = "") -> int:
    """Map an identifier to a stable bucket in ``[0, 100)``.

    The same identifier and salt always land in the same bucket, across
    processes and restarts. Salting with the flag name keeps one actor from
    landing at the same position in every rollout.

    :param identifier: Stable actor or session identifier
    :param salt: Per-flag salt
    :return: Bucket number from 0 to 99
    """
    digest = hashlib.sha256(f"{salt}:{identifier}".encode()).digest()
    return int.from_bytes(digest[:8], "big") % BUCKET_COUNT


class DecisionReason(StrEnum):
    """Why a flag evaluated the way it did."""

    UNKNOWN_FLAG = "unknown_flag"
    STORAGE_ERROR = "storage_error"
    DEPENDENCY_CYCLE = "dependency_cycle"
    DISABLED = "disabled"
    DEPENDENCY_OFF = "dependency_off"
    CANARY = "canary"
    FULL_ROLLOUT = "full_rollout"
    ZERO_ROLLOUT = "zero_rollout"
    USER_BUCKET = "user_bucket"
    SESSION_BUCKET = "session_bucket"
    RANDOM = "random"


@dataclass(frozen=True)
class FlagDecision:
    """Outcome of one flag evaluation."""

    flag: str
    enabled: bool
    reason: DecisionReason
    dependency: str | None = None


class RolloutEvaluator:
    """Evaluates feature flags against an optional actor."""

    def __init__(
        self,
        store: FeatureFlagStore,
        random_source: Callable[[], float] = random.random,
    ) -> None:
        """Create the evaluator.

        :param store: Where flag definitions are read from
        :param random_source: Returns a float in [0, 1) for anonymous actors
        """
        self.store = store
        self.random_source = random_source

    async def is_enabled(
        self,
        flag_name: str,
        user: object | None = None,
        session_id: str | None = None,
    ) -> bool:
        """Check whether a flag is on for an actor.

        :param flag_name: Flag to check
        :param user: Actor with ``id`` and ``role``, None for anonymous traffic
        :param session_id: Stable id used to bucket anonymous actors
        :return: True if the feature is active
        """
        decision = await self.evaluate(flag_name, user, session_id)
        return decision.enabled

    async def evaluate(
        self,
        flag_name: str,
        user: object | None = None,
        session_id: str | None = None,
    ) -> FlagDecision:
        """Evaluate a flag and report the rule that decided it."""
        return await self._evaluate(flag_name, user, session_id, ())

    async def _evaluate(
        self,
        name: str,
        user: object | None,
        session_id: str | None,
        path: tuple[str, ...],
    ) -> FlagDecision:
        if name in path:
            LOGGER.warning(
                "Feature flag dependency cycle: %s",
                " -> ".join([*path, name]),
            )
            return FlagDecision(
                name,
                enabled=False,
                reason=DecisionReason.DEPENDENCY_CYCLE,
            )

        try:
            flag = await self.store.get_flag(name)
        except (aiosqlite.Error, ValueError):
            LOGGER.exception("Error reading feature flag %s", name)
            return FlagDecision(
                name,
                enabled=False,
                reason=DecisionReason.STORAGE_ERROR,
            )

        if flag is None:
            LOGGER.warning("Unknown feature flag: %s", name)
            return FlagDecision(name, enabled=False, reason=DecisionReason.UNKNOWN_FLAG)

        if not flag.enabled:
            return FlagDecision(name, enabled=False, reason=DecisionReason.DISABLED)

        for dependency in flag.dependencies:
            result = await self._evaluate(dependency, user, session_id, (*path, name))
            if not result.enabled:
                LOGGER.debug(
                    "Feature %s disabled due to dependency: %s",
                    name,
                    dependency,
                )
                reason = (
                    DecisionReason.DEPENDENCY_CYCLE
                    if result.reason == DecisionReason.DEPENDENCY_CYCLE
                    else DecisionReason.DEPENDENCY_OFF
                )
                return FlagDecision(
                    name,
                    enabled=False,
                    reason=reason,
                    dependency=dependency,
                )

        role = getattr(user, "role", None)
        if isinstance(role, Role) and role in flag.canary_roles:
            return FlagDecision(name, enabled=True, reason=DecisionReason.CANARY)

        if flag.rollout_percent >= MAX_PERCENT:
            return FlagDecision(name, enabled=True, reason=DecisionReason.FULL_ROLLOUT)

        if flag.rollout_percent <= MIN_PERCENT:
            return FlagDecision(name, enabled=False, reason=DecisionReason.ZERO_ROLLOUT)

        user_id = getattr(user, "id", None)
        if user_id is not None:
            enabled = bucket(user_id, flag.name) < flag.rollout_percent
            return FlagDecision(
                name,
                enabled=enabled,
                reason=DecisionReason.USER_BUCKET,
            )

        if session_id:
            enabled = bucket(session_id, flag.name) < flag.rollout_percent
            return FlagDecision(
                name,
                enabled=enabled,
                reason=DecisionReason.SESSION_BUCKET,
            )

        enabled = self.random_source() * MAX_PERCENT < flag.rollout_percent
        return FlagDecision(name, enabled=enabled, reason=DecisionReason.RANDOM)
