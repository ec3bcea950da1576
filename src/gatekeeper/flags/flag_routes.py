"""Feature flag administration and evaluation routes."""

import logging
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from gatekeeper.auth.models import MessageResponse
from gatekeeper.common import User
from gatekeeper.errors import FlagNotFoundError, RolloutInProgressError, ValidationError

from .gradual import RolloutPlan
from .responses import (
    EnableRequest,
    FlagDecisionResponse,
    FlagResponse,
    RolloutRequest,
    RolloutResponse,
)

if TYPE_CHECKING:
    from gatekeeper.auth.validation import Validate

    from .gradual import GradualRolloutController
    from .rollout import RolloutEvaluator
    from .store import FeatureFlagStore

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

READ_SCOPE = "admin.access"
MANAGE_SCOPE = "feature.manage"


def _flag_not_found(name: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Feature flag '{name}' not found",
    )


async def _enable(
    store: "FeatureFlagStore",
    name: str,
    rollout_percent: int,
    user: User,
) -> FlagResponse:
    try:
        flag = await store.enable(name, rollout_percent, user.id)
    except FlagNotFoundError as e:
        raise _flag_not_found(name) from e
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "field": e.field},
        ) from e
    return FlagResponse.from_flag(flag)


async def _start_rollout(
    store: "FeatureFlagStore",
    controller: "GradualRolloutController",
    name: str,
    request: RolloutRequest,
    user: User,
) -> RolloutResponse:
    if await store.get_flag(name, use_cache=False) is None:
        raise _flag_not_found(name)

    plan = RolloutPlan(
        flag_name=name,
        target_percent=request.target_percent,
        step_percent=request.step_percent,
        step_duration=request.step_duration,
        actor_id=user.id,
    )
    try:
        controller.start(plan)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "field": e.field},
        ) from e
    except RolloutInProgressError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e

    LOGGER.info("User %s started gradual rollout of '%s'", user.username, name)
    return RolloutResponse(
        flag=name,
        target_percent=plan.target_percent,
        step_percent=plan.step_percent,
        step_duration=plan.step_duration,
        status="started",
    )


def configure_flag_router(
    router: APIRouter,
    store: "FeatureFlagStore",
    evaluator: "RolloutEvaluator",
    controller: "GradualRolloutController",
    validate: "Validate",
) -> APIRouter:
    """Configure the feature flag router.

    Reading flags needs the admin scope, changing them needs the feature
    management scope. Any signed-in user may evaluate a flag for themselves.

    :param router: The APIRouter to configure
    :param store: Feature flag store
    :param evaluator: Evaluates flags for the calling user
    :param controller: Runs gradual rollouts
    :param validate: Token and scope dependencies
    :return: The configured APIRouter
    """
    reader = validate.require_scope(READ_SCOPE)
    manager = validate.require_scope(MANAGE_SCOPE)

    @router.get("", response_model=list[FlagResponse])
    async def list_flags(
        _user: Annotated[User, Depends(reader)],
        phase: str | None = None,
    ) -> list[FlagResponse]:
        if phase is None:
            flags = await store.get_all_flags()
        else:
            flags = await store.get_flags_by_phase(phase)
        return [FlagResponse.from_flag(flag) for flag in flags]

    @router.get("/statistics")
    async def get_statistics(
        _user: Annotated[User, Depends(reader)],
    ) -> dict[str, Any]:
        statistics = await store.get_statistics()
        statistics["active_rollouts"] = controller.active_rollouts()
        return statistics

    @router.get("/{name}", response_model=FlagResponse)
    async def get_flag(
        name: str,
        _user: Annotated[User, Depends(reader)],
    ) -> FlagResponse:
        flag = await store.get_flag(name)
        if flag is None:
            raise _flag_not_found(name)
        return FlagResponse.from_flag(flag)

    @router.get("/{name}/evaluate", response_model=FlagDecisionResponse)
    async def evaluate_flag(
        name: str,
        user: Annotated[User, Depends(validate.require_auth)],
    ) -> FlagDecisionResponse:
        decision = await evaluator.evaluate(name, user)
        return FlagDecisionResponse.from_decision(decision)

    @router.post("/{name}/enable", response_model=FlagResponse)
    async def enable_flag(
        name: str,
        user: Annotated[User, Depends(manager)],
        request: EnableRequest | None = None,
    ) -> FlagResponse:
        percent = request.rollout_percent if request is not None else 100
        return await _enable(store, name, percent, user)

    @router.post("/{name}/disable", response_model=FlagResponse)
    async def disable_flag(
        name: str,
        user: Annotated[User, Depends(manager)],
    ) -> FlagResponse:
        try:
            flag = await store.disable(name, user.id)
        except FlagNotFoundError as e:
            raise _flag_not_found(name) from e
        if controller.cancel(name):
            LOGGER.info("Disabling '%s' cancelled its gradual rollout", name)
        return FlagResponse.from_flag(flag)

    @router.post(
        "/{name}/rollout",
        response_model=RolloutResponse,
        status_code=status.HTTP_202_ACCEPTED,
    )
    async def start_rollout(
        name: str,
        request: RolloutRequest,
        user: Annotated[User, Depends(manager)],
    ) -> RolloutResponse:
        return await _start_rollout(store, controller, name, request, user)

    @router.delete("/{name}/rollout", response_model=MessageResponse)
    async def cancel_rollout(
        name: str,
        user: Annotated[User, Depends(manager)],
    ) -> MessageResponse:
        if not controller.cancel(name):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No rollout in progress for '{name}'",
            )
        LOGGER.info("User %s cancelled gradual rollout of '%s'", user.username, name)
        return MessageResponse(message="Rollout cancelled")

    return router
