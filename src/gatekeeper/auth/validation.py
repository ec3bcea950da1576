"""FastAPI dependency validators for authentication and authorization.

Failures end the request with a machine-readable ``code`` in the detail so
callers can branch without parsing the message:

* ``TOKEN_MISSING`` / ``TOKEN_INVALID``: 401
* ``INSUFFICIENT_PERMISSIONS``: 403, with the user's role and the scope
* ``FEATURE_DISABLED``: 404
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gatekeeper.audit.events import AuditEventKind
from gatekeeper.common import User
from gatekeeper.errors import TokenInvalidError

if TYPE_CHECKING:
    from gatekeeper.audit.log import AuditLog
    from gatekeeper.flags.rollout import RolloutEvaluator

    from .permissions import PermissionMatrix
    from .tokens import TokenService

bearer_scheme = HTTPBearer(auto_error=False)

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

TOKEN_MISSING = "TOKEN_MISSING"
TOKEN_INVALID = "TOKEN_INVALID"
INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
FEATURE_DISABLED = "FEATURE_DISABLED"


class Validate:
    """Holds validator dependencies for FastAPI authentication/authorization."""

    def __init__(
        self,
        token_service: "TokenService",
        permissions: "PermissionMatrix",
        audit_log: "AuditLog",
        evaluator: "RolloutEvaluator | None" = None,
    ) -> None:
        """Create a new validator instance.

        :param token_service: Verifies bearer tokens
        :param permissions: Scope matrix for scope guards
        :param audit_log: Receives permission_denied / scope_granted
        :param evaluator: Flag evaluator for feature guards
        """
        self.token_service = token_service
        self.permissions = permissions
        self.audit_log = audit_log
        self.evaluator = evaluator
        self.guarded_scopes: set[str] = set()

    async def require_auth(
        self,
        credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),  # noqa: B008
    ) -> User:
        """Require a valid bearer token and return its live user."""
        if credentials is None or not credentials.credentials:
            LOGGER.debug("Request without bearer token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"message": "Access token required", "code": TOKEN_MISSING},
                headers={"WWW-Authenticate": "Bearer"},
            )

        try:
            user = await self.token_service.verify(credentials.credentials)
        except TokenInvalidError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"message": "Invalid token", "code": TOKEN_INVALID},
                headers={"WWW-Authenticate": "Bearer"},
            ) from e

        return user

    def require_scope(self, scope: str) -> Callable[..., Awaitable[User]]:
        """Return a dependency requiring a valid token and a permitted scope."""
        if scope not in self.permissions:
            LOGGER.warning("Guard configured with unknown scope: %s", scope)
        self.guarded_scopes.add(scope)

        async def validator(
            user: Annotated[User, Depends(self.require_auth)],
        ) -> User:
            if not self.permissions.can(user, scope):
                self.audit_log.record(
                    user.id,
                    AuditEventKind.PERMISSION_DENIED,
                    {"required_scope": scope, "user_role": user.role.label},
                )
                LOGGER.debug("Scope %s denied for user: %s", scope, user.username)
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail={
                        "message": f"Insufficient permissions. Required scope: {scope}",
                        "code": INSUFFICIENT_PERMISSIONS,
                        "user_role": user.role.label,
                        "required_scope": scope,
                    },
                )

            self.audit_log.record(
                user.id,
                AuditEventKind.SCOPE_GRANTED,
                {"scope": scope},
            )
            LOGGER.debug("Scope %s granted for user: %s", scope, user.username)
            return user

        return validator

    def require_flag(self, flag_name: str) -> Callable[..., Awaitable[User]]:
        """Return a dependency requiring a valid token and an active feature."""

        async def validator(
            user: Annotated[User, Depends(self.require_auth)],
        ) -> User:
            if self.evaluator is None or not await self.evaluator.is_enabled(
                flag_name,
                user,
            ):
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail={
                        "message": "Feature not available",
                        "code": FEATURE_DISABLED,
                        "feature": flag_name,
                    },
                )
            return user

        return validator
