"""Credential authentication and account management.

Every input check runs before the credential store is touched. Failed logins
all look the same to the caller; the specific reason only goes to the audit
trail.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from functools import cached_property
from typing import TYPE_CHECKING

import aiosqlite

from gatekeeper.audit.events import AuditEventKind
from gatekeeper.common import Role, User, has_higher_role
from gatekeeper.errors import (
    EmailTakenError,
    InvalidCredentialsError,
    PasswordStrengthError,
    PermissionDeniedError,
    UsernameTakenError,
    UserNotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from gatekeeper.audit.log import AuditLog

    from .permissions import PermissionMatrix
    from .queries import AuthQueries
    from .security_manager import SecurityManager
    from .tokens import TokenService

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

ACCOUNT_ADMIN_SCOPE = "admin.access"


@dataclass(frozen=True)
class AuthResult:
    """A successfully authenticated user and their fresh access token."""

    user: User
    token: str


class Authenticator:
    """Logs users in, registers them and manages their accounts."""

    def __init__(  # noqa: PLR0913
        self,
        auth_queries: AuthQueries,
        security_manager: SecurityManager,
        token_service: TokenService,
        permissions: PermissionMatrix,
        audit_log: AuditLog,
    ) -> None:
        self.auth_queries = auth_queries
        self.security_manager = security_manager
        self.token_service = token_service
        self.permissions = permissions
        self.audit_log = audit_log

    @cached_property
    def _dummy_hash(self) -> bytes:
        # compared against when the user does not exist, so a miss costs as
        # much as a wrong password
        return self.security_manager.hash_password("not-a-real-password")

    async def _check_password(self, password: str, hashed_password: bytes) -> bool:
        return await asyncio.to_thread(
            self.security_manager.check_password,
            password,
            hashed_password,
        )

    async def _hash_password(self, password: str) -> bytes:
        return await asyncio.to_thread(self.security_manager.hash_password, password)

    def _login_failed(self, user_id: int | None, username: str, reason: str) -> None:
        LOGGER.debug("Login failed for %s: %s", username, reason)
        self.audit_log.record(
            user_id,
            AuditEventKind.LOGIN_FAILED,
            {"username": username, "reason": reason},
        )

    def _require_account_admin(self, actor: User) -> None:
        if not self.permissions.can(actor, ACCOUNT_ADMIN_SCOPE):
            msg = "Insufficient permissions to manage accounts"
            raise PermissionDeniedError(msg, actor.role.label, ACCOUNT_ADMIN_SCOPE)

    async def _get_target(self, target_id: int) -> User:
        target = await self.auth_queries.get_user_by_id(target_id)
        if target is None:
            msg = f"User {target_id} not found"
            raise UserNotFoundError(msg)
        return target

    async def authenticate(self, username: str, password: str) -> AuthResult:
        """Log a user in with username and password.

        :param username: The username of the user
        :param password: The plaintext password to verify
        :return: The user, without password hash, and a new access token
        :raises ValidationError: If the input is empty or malformed
        :raises InvalidCredentialsError: For unknown, inactive or wrong-password logins
        """
        if not username or not password:
            msg = "Username and password are required"
            raise ValidationError(msg)

        if self.security_manager.validate_username(username):
            msg = "Invalid username format"
            raise ValidationError(msg, field="username")

        credentials = await self.auth_queries.get_credentials(username)
        if credentials is None:
            await self._check_password(password, self._dummy_hash)
            self._login_failed(None, username, "user_not_found")
            raise InvalidCredentialsError

        user, hashed_password = credentials
        if not user.is_active:
            self._login_failed(user.id, username, "account_inactive")
            raise InvalidCredentialsError

        if not await self._check_password(password, hashed_password):
            self._login_failed(user.id, username, "invalid_password")
            raise InvalidCredentialsError

        user.last_login = await self.auth_queries.update_last_login(user.id)
        token = self.token_service.issue(user)

        self.audit_log.record(
            user.id,
            AuditEventKind.USER_LOGGED_IN,
            {"username": username},
        )
        LOGGER.info("User %s logged in", username)
        return AuthResult(user=user, token=token)

    async def register(self, username: str, email: str, password: str) -> AuthResult:
        """Register a new user with the default role.

        :param username: The desired username
        :param email: The user's email address
        :param password: The desired password
        :return: The created user and a new access token
        :raises ValidationError: If any input is malformed or the password is weak
        :raises UsernameTakenError: If the username is already registered
        :raises EmailTakenError: If the email is already registered
        """
        if not username or not email or not password:
            msg = "Username, email, and password are required"
            raise ValidationError(msg)

        error = self.security_manager.validate_email(email)
        if error:
            raise ValidationError(error, field="email")

        error = self.security_manager.validate_username(username)
        if error:
            raise ValidationError(error, field="username")

        error = self.security_manager.validate_password(password)
        if error:
            raise PasswordStrengthError(error)

        existing = await self.auth_queries.find_existing(username, email)
        if existing is not None:
            existing_username, _ = existing
            if existing_username == username:
                msg = "Username already exists"
                raise UsernameTakenError(msg)
            msg = "Email already exists"
            raise EmailTakenError(msg)

        hashed_password = await self._hash_password(password)
        try:
            user = await self.auth_queries.add_user(
                username,
                email,
                hashed_password,
                Role.USER,
            )
        except aiosqlite.IntegrityError as e:
            # lost a race with a concurrent registration
            msg = "Username or email already exists"
            raise UsernameTakenError(msg) from e

        token = self.token_service.issue(user)

        self.audit_log.record(
            user.id,
            AuditEventKind.USER_REGISTERED,
            {"username": username, "email": email},
        )
        LOGGER.info("Registered user %s", username)
        return AuthResult(user=user, token=token)

    def logout(self, user: User) -> None:
        """Record a logout. Tokens are discarded client-side."""
        self.audit_log.record(
            user.id,
            AuditEventKind.USER_LOGGED_OUT,
            {"username": user.username},
        )

    async def change_password(
        self,
        user: User,
        current_password: str,
        new_password: str,
    ) -> None:
        """Change a user's own password.

        :param user: The user changing their password
        :param current_password: Their current password
        :param new_password: The replacement password
        :raises PasswordStrengthError: If the new password is weak
        :raises InvalidCredentialsError: If the current password is wrong
        """
        error = self.security_manager.validate_password(new_password)
        if error:
            raise PasswordStrengthError(error)

        hashed_password = await self.auth_queries.get_password_hash(user.id)
        if hashed_password is None:
            msg = f"User {user.id} not found"
            raise UserNotFoundError(msg)

        if not await self._check_password(current_password, hashed_password):
            raise InvalidCredentialsError

        await self.auth_queries.update_password(
            user.id,
            await self._hash_password(new_password),
        )
        self.audit_log.record(
            user.id,
            AuditEventKind.PASSWORD_CHANGED,
            {"username": user.username},
        )

    async def update_user_role(
        self,
        actor: User,
        target_id: int,
        new_role: Role,
    ) -> User:
        """Change another user's role.

        The actor needs the account admin scope, must outrank the target
        (unless acting on themselves) and cannot grant a role above their own.
        Admins cannot demote themselves.

        :return: The target user with the new role
        :raises PermissionDeniedError: If any of the rules above is broken
        :raises UserNotFoundError: If the target does not exist
        """
        self._require_account_admin(actor)
        target = await self._get_target(target_id)

        if actor.id == target.id:
            if actor.role == Role.ADMIN and new_role != Role.ADMIN:
                msg = "Admins cannot demote themselves"
                raise PermissionDeniedError(msg, actor.role.label, ACCOUNT_ADMIN_SCOPE)
        elif not has_higher_role(actor, target):
            msg = "Cannot change the role of a user with an equal or higher role"
            raise PermissionDeniedError(msg, actor.role.label, ACCOUNT_ADMIN_SCOPE)

        if new_role > actor.role:
            msg = "Cannot grant a role higher than your own"
            raise PermissionDeniedError(msg, actor.role.label, ACCOUNT_ADMIN_SCOPE)

        await self.auth_queries.update_role(target.id, new_role)

        self.audit_log.record(
            actor.id,
            AuditEventKind.ROLE_CHANGED,
            {
                "target_user_id": target.id,
                "target_username": target.username,
                "old_role": target.role.label,
                "new_role": new_role.label,
            },
        )
        LOGGER.info(
            "User %s changed role of %s from %s to %s",
            actor.username,
            target.username,
            target.role.label,
            new_role.label,
        )
        return dataclasses.replace(target, role=new_role)

    async def set_user_active(
        self,
        actor: User,
        target_id: int,
        *,
        active: bool,
    ) -> User:
        """Activate or deactivate another user's account.

        Deactivation blocks the user's existing tokens immediately, since
        token verification re-reads the live record.

        :raises PermissionDeniedError: If the actor lacks rights over the target
        :raises UserNotFoundError: If the target does not exist
        """
        self._require_account_admin(actor)
        target = await self._get_target(target_id)

        if actor.id == target.id:
            msg = "Cannot change your own account status"
            raise PermissionDeniedError(msg, actor.role.label, ACCOUNT_ADMIN_SCOPE)
        if not has_higher_role(actor, target):
            msg = "Cannot change the status of a user with an equal or higher role"
            raise PermissionDeniedError(msg, actor.role.label, ACCOUNT_ADMIN_SCOPE)

        await self.auth_queries.set_active(target.id, active=active)

        self.audit_log.record(
            actor.id,
            AuditEventKind.ACCOUNT_STATUS_CHANGED,
            {
                "target_user_id": target.id,
                "target_username": target.username,
                "active": active,
            },
        )
        return dataclasses.replace(target, is_active=active)

    async def ensure_admin(self, username: str, email: str, password: str) -> User:
        """Make sure an admin account exists, creating it if needed.

        An existing account with the same username is promoted to admin and
        keeps its password.

        :raises ValidationError: If a new account's input is malformed
        """
        existing = await self.auth_queries.get_user_by_username(username)
        if existing is not None:
            if existing.role != Role.ADMIN:
                await self.auth_queries.update_role(existing.id, Role.ADMIN)
                LOGGER.info("Promoted existing user %s to admin", username)
            else:
                LOGGER.info("Admin user %s already exists", username)
            return dataclasses.replace(existing, role=Role.ADMIN)

        for error, field in (
            (self.security_manager.validate_email(email), "email"),
            (self.security_manager.validate_username(username), "username"),
            (self.security_manager.validate_password(password), "password"),
        ):
            if error:
                raise ValidationError(error, field=field)

        user = await self.auth_queries.add_user(
            username,
            email,
            await self._hash_password(password),
            Role.ADMIN,
        )
        LOGGER.info("Admin user %s created", username)
        return user
