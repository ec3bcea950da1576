"""Authentication and account management routes.

Provides endpoints for registration, login, logout, account information and
account administration. Domain errors are turned into HTTP errors here.
"""

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, status

from gatekeeper.common import Role, User
from gatekeeper.errors import (
    EmailTakenError,
    InvalidCredentialsError,
    PermissionDeniedError,
    UsernameTakenError,
    UserNotFoundError,
    ValidationError,
)

from .authenticator import ACCOUNT_ADMIN_SCOPE
from .models import LoginResponse, MessageResponse, ScopesResponse, UserResponse
from .validation import INSUFFICIENT_PERMISSIONS

if TYPE_CHECKING:
    from .authenticator import Authenticator
    from .permissions import PermissionMatrix
    from .validation import Validate

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


def _bad_request(e: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"message": str(e), "field": e.field},
    )


def _forbidden(e: PermissionDeniedError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "message": str(e),
            "code": INSUFFICIENT_PERMISSIONS,
            "user_role": e.role,
            "required_scope": e.scope,
        },
    )


def _not_found(e: UserNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


async def _register(
    authenticator: "Authenticator",
    username: str,
    email: str,
    password: str,
) -> LoginResponse:
    try:
        result = await authenticator.register(username, email, password)
    except ValidationError as e:
        LOGGER.debug("Rejected registration for %s: %s", username, e)
        raise _bad_request(e) from e
    except (UsernameTakenError, EmailTakenError) as e:
        LOGGER.debug("Duplicate registration for %s", username)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e

    return LoginResponse(
        access_token=result.token,
        user=UserResponse.from_user(result.user),
    )


async def _login(
    authenticator: "Authenticator",
    username: str,
    password: str,
) -> LoginResponse:
    try:
        result = await authenticator.authenticate(username, password)
    except ValidationError as e:
        raise _bad_request(e) from e
    except InvalidCredentialsError as e:
        LOGGER.debug("Failed login attempt for username: %s", username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        ) from e

    LOGGER.debug("User %s logged in successfully", username)
    return LoginResponse(
        access_token=result.token,
        user=UserResponse.from_user(result.user),
    )


async def _change_password(
    authenticator: "Authenticator",
    user: User,
    current_password: str,
    new_password: str,
) -> MessageResponse:
    try:
        await authenticator.change_password(user, current_password, new_password)
    except ValidationError as e:
        raise _bad_request(e) from e
    except InvalidCredentialsError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        ) from e
    except UserNotFoundError as e:
        raise _not_found(e) from e

    LOGGER.debug("Password changed successfully for user: %s", user.username)
    return MessageResponse(message="Password changed successfully")


async def _update_role(
    authenticator: "Authenticator",
    actor: User,
    user_id: int,
    role: str,
) -> UserResponse:
    try:
        new_role = Role.from_label(role)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": f"Unknown role: {role}", "field": "role"},
        ) from e

    try:
        target = await authenticator.update_user_role(actor, user_id, new_role)
    except PermissionDeniedError as e:
        raise _forbidden(e) from e
    except UserNotFoundError as e:
        raise _not_found(e) from e
    return UserResponse.from_user(target)


async def _set_active(
    authenticator: "Authenticator",
    actor: User,
    user_id: int,
    active: bool,  # noqa: FBT001
) -> UserResponse:
    try:
        target = await authenticator.set_user_active(actor, user_id, active=active)
    except PermissionDeniedError as e:
        raise _forbidden(e) from e
    except UserNotFoundError as e:
        raise _not_found(e) from e
    return UserResponse.from_user(target)


def configure_auth_router(
    router: APIRouter,
    authenticator: "Authenticator",
    validate: "Validate",
    permissions: "PermissionMatrix",
) -> APIRouter:
    """Configure the authentication router.

    :param router: The APIRouter to configure
    :param authenticator: Handles credentials and account changes
    :param validate: Token and scope dependencies
    :param permissions: Scope matrix used to list a user's scopes
    :return: The configured APIRouter
    """

    @router.post("/register", response_model=LoginResponse, status_code=201)
    async def register(
        username: Annotated[str, Form()],
        email: Annotated[str, Form()],
        password: Annotated[str, Form()],
    ) -> LoginResponse:
        return await _register(authenticator, username, email, password)

    @router.post("/login", response_model=LoginResponse)
    async def login(
        username: Annotated[str, Form()],
        password: Annotated[str, Form()],
    ) -> LoginResponse:
        return await _login(authenticator, username, password)

    @router.post("/logout", response_model=MessageResponse)
    def logout(
        user: Annotated[User, Depends(validate.require_auth)],
    ) -> MessageResponse:
        """With JWT, logout is handled client-side by discarding the token."""
        authenticator.logout(user)
        LOGGER.debug("User %s logged out", user.username)
        return MessageResponse(message="Logout successful")

    @router.get("/account", response_model=UserResponse)
    def get_account_info(
        user: Annotated[User, Depends(validate.require_auth)],
    ) -> UserResponse:
        return UserResponse.from_user(user)

    @router.get("/account/scopes", response_model=ScopesResponse)
    def get_account_scopes(
        user: Annotated[User, Depends(validate.require_auth)],
    ) -> ScopesResponse:
        return ScopesResponse(
            role=user.role.label,
            scopes=permissions.scopes_for(user.role),
        )

    @router.patch("/account/password", response_model=MessageResponse)
    async def change_password_route(
        current_password: Annotated[str, Form()],
        new_password: Annotated[str, Form()],
        user: Annotated[User, Depends(validate.require_auth)],
    ) -> MessageResponse:
        return await _change_password(
            authenticator,
            user,
            current_password,
            new_password,
        )

    @router.patch("/users/{user_id}/role", response_model=UserResponse)
    async def update_role_route(
        user_id: int,
        role: Annotated[str, Form()],
        actor: Annotated[User, Depends(validate.require_scope(ACCOUNT_ADMIN_SCOPE))],
    ) -> UserResponse:
        return await _update_role(authenticator, actor, user_id, role)

    @router.patch("/users/{user_id}/active", response_model=UserResponse)
    async def set_active_route(
        user_id: int,
        active: Annotated[bool, Form()],
        actor: Annotated[User, Depends(validate.require_scope(ACCOUNT_ADMIN_SCOPE))],
    ) -> UserResponse:
        return await _set_active(authenticator, actor, user_id, active)

    return router
