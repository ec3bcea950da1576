"""Bearer token issuance and verification."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gatekeeper.audit.events import AuditEventKind
from gatekeeper.errors import TokenInvalidError

if TYPE_CHECKING:
    from gatekeeper.audit.log import AuditLog
    from gatekeeper.common import User

    from .queries import AuthQueries
    from .security_manager import SecurityManager

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


class TokenService:
    """Issues signed access tokens and turns them back into live users."""

    def __init__(
        self,
        security_manager: SecurityManager,
        auth_queries: AuthQueries,
        audit_log: AuditLog,
    ) -> None:
        """Create a new token service.

        :param security_manager: Signs and decodes tokens
        :param auth_queries: Credential store used to re-resolve the subject
        :param audit_log: Receives token_validated / token_validation_failed
        """
        self.security_manager = security_manager
        self.auth_queries = auth_queries
        self.audit_log = audit_log

    def issue(self, user: User) -> str:
        """Issue an access token carrying a snapshot of the user's role."""
        return self.security_manager.create_access_token(user)

    async def verify(self, token: str) -> User:
        """Verify a token and return the subject's current user record.

        The live record is re-read on every call, so deactivation and role
        changes take effect before the token expires.

        :param token: Raw bearer token
        :return: The live, active user the token was issued to
        :raises TokenInvalidError: If the token or its subject is not valid
        """
        claims = None
        try:
            claims = self.security_manager.decode_access_token(token)
            user = await self.auth_queries.get_user_by_id(claims.user_id)
            if user is None:
                msg = "User not found"
                raise TokenInvalidError(msg)
            if not user.is_active:
                msg = "User is inactive"
                raise TokenInvalidError(msg)
        except TokenInvalidError as e:
            LOGGER.debug("Token validation failed: %s", e)
            self.audit_log.record(
                claims.user_id if claims is not None else None,
                AuditEventKind.TOKEN_VALIDATION_FAILED,
                {"error": str(e)},
            )
            raise

        self.audit_log.record(
            user.id,
            AuditEventKind.TOKEN_VALIDATED,
            {"token_exp": claims.expires_at.isoformat()},
        )
        LOGGER.debug("Token validated for user: %s", user.username)
        return user
