"""Timed, stepped rollout of a feature flag.

Each step goes through :meth:`FeatureFlagStore.enable`, so every increase is
persisted and audited on its own. A rollout interrupted by cancellation or a
restart leaves the flag at its last written percentage, and a new rollout
continues from the persisted value. Disabling the flag between steps
ends the rollout.

**Example Usage:**

.. code-block:: python

    controller = GradualRolloutController(store)
    controller.start(
        RolloutPlan("api_gateway", step_duration=3600, actor_id=admin.id),
    )
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from gatekeeper.errors import FlagNotFoundError, RolloutInProgressError, ValidationError

from .models import MAX_PERCENT, valid_percent

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .store import FeatureFlagStore

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


@dataclass(frozen=True)
class RolloutPlan:
    """Parameters of one gradual rollout.

    :param flag_name: Flag to roll out
    :param target_percent: Percentage to stop at
    :param step_percent: Increase per step
    :param step_duration: Seconds to wait between steps
    :param actor_id: User the steps are attributed to
    """

    DEFAULT_STEP_PERCENT = 25
    DEFAULT_STEP_DURATION = 60 * 60

    flag_name: str
    target_percent: int = MAX_PERCENT
    step_percent: int = DEFAULT_STEP_PERCENT
    step_duration: float = DEFAULT_STEP_DURATION
    actor_id: int | None = None

    def validate(self) -> None:
        """Reject plans that could never finish or overshoot 0-100.

        :raises ValidationError: If any parameter is out of range
        """
        if not valid_percent(self.target_percent):
            msg = "Target percent must be between 0 and 100"
            raise ValidationError(msg, field="target_percent")
        if self.step_percent <= 0:
            msg = "Step percent must be positive"
            raise ValidationError(msg, field="step_percent")
        if self.step_duration < 0:
            msg = "Step duration must not be negative"
            raise ValidationError(msg, field="step_duration")


class GradualRolloutController:
    """Runs gradual rollouts, at most one per flag, as background tasks."""

    def __init__(
        self,
        store: FeatureFlagStore,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        """Create the controller.

        :param store: Flag store whose audited enable path applies each step
        :param sleep: Waits between steps, injectable for tests
        """
        self.store = store
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task[int]] = {}

    async def run(self, plan: RolloutPlan) -> int:
        """Step a flag's rollout up to the target percentage.

        :param plan: What to roll out and how fast
        :return: The final persisted percentage
        :raises ValidationError: If the plan is invalid
        :raises FlagNotFoundError: If the flag does not exist
        """
        plan.validate()

        flag = await self.store.get_flag(plan.flag_name, use_cache=False)
        if flag is None:
            msg = f"Feature flag '{plan.flag_name}' not found"
            raise FlagNotFoundError(msg)

        current = flag.rollout_percent
        if current >= plan.target_percent:
            LOGGER.info(
                "Rollout for '%s' already at %d%%, target %d%%",
                plan.flag_name,
                current,
                plan.target_percent,
            )
            return current

        LOGGER.info(
            "Starting gradual rollout for '%s' from %d%% to %d%%",
            plan.flag_name,
            current,
            plan.target_percent,
        )

        while current < plan.target_percent:
            current = min(current + plan.step_percent, plan.target_percent)
            await self.store.enable(plan.flag_name, current, plan.actor_id)
            LOGGER.info("Rollout '%s' increased to %d%%", plan.flag_name, current)

            if current >= plan.target_percent:
                break

            LOGGER.debug(
                "Waiting %s seconds before next increment of '%s'",
                plan.step_duration,
                plan.flag_name,
            )
            await self._sleep(plan.step_duration)

            # A disable between steps is final for this rollout
            flag = await self.store.get_flag(plan.flag_name, use_cache=False)
            if flag is None or not flag.enabled:
                LOGGER.warning(
                    "Rollout for '%s' stopped, flag was disabled or removed",
                    plan.flag_name,
                )
                return flag.rollout_percent if flag is not None else current
            current = flag.rollout_percent

        LOGGER.info(
            "Gradual rollout for '%s' completed at %d%%",
            plan.flag_name,
            current,
        )
        return current

    def start(self, plan: RolloutPlan) -> asyncio.Task[int]:
        """Run a rollout in the background.

        :param plan: What to roll out and how fast
        :return: The background task, resolving to the final percentage
        :raises ValidationError: If the plan is invalid
        :raises RolloutInProgressError: If the flag already has a running rollout
        """
        plan.validate()

        running = self._tasks.get(plan.flag_name)
        if running is not None and not running.done():
            msg = f"A rollout for '{plan.flag_name}' is already running"
            raise RolloutInProgressError(msg)

        task = asyncio.create_task(self.run(plan), name=f"rollout:{plan.flag_name}")
        self._tasks[plan.flag_name] = task
        task.add_done_callback(lambda t: self._finished(plan.flag_name, t))
        return task

    def _finished(self, flag_name: str, task: asyncio.Task[int]) -> None:
        if self._tasks.get(flag_name) is task:
            del self._tasks[flag_name]
        if task.cancelled():
            LOGGER.info("Rollout for '%s' cancelled", flag_name)
        elif task.exception() is not None:
            LOGGER.error(
                "Rollout for '%s' failed: %s",
                flag_name,
                task.exception(),
            )

    def active_rollouts(self) -> list[str]:
        """Names of flags with a rollout in progress."""
        return sorted(name for name, task in self._tasks.items() if not task.done())

    def cancel(self, flag_name: str) -> bool:
        """Cancel a running rollout, leaving the flag at its last step.

        :return: True if a running rollout was cancelled
        """
        task = self._tasks.get(flag_name)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        """Cancel every running rollout and wait for them to stop."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        LOGGER.info("Gradual rollout controller shutdown complete")
