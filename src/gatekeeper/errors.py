"""Custom exceptions for the control plane.

Domain code raises these; the route layer turns them into HTTP responses.
"""

from __future__ import annotations


class GatekeeperError(Exception):
    """Base class for all control plane errors."""


class ValidationError(GatekeeperError):
    """Raised when caller input is malformed, before any storage access."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class PasswordStrengthError(ValidationError):
    """Raised when a password does not meet the strength requirements."""

    def __init__(self, message: str) -> None:
        super().__init__(message, field="password")


class UsernameTakenError(GatekeeperError):
    """Raised when registering a username that already exists."""


class EmailTakenError(GatekeeperError):
    """Raised when registering an email that already exists."""


class InvalidCredentialsError(GatekeeperError):
    """Raised for any failed login; the cause is only kept in the audit trail."""

    def __init__(self) -> None:
        super().__init__("Invalid credentials")


class TokenInvalidError(GatekeeperError):
    """Raised when a bearer token fails verification."""


class PermissionDeniedError(GatekeeperError):
    """Raised when a valid identity lacks the required scope."""

    def __init__(self, message: str, role: str | None, scope: str) -> None:
        super().__init__(message)
        self.role = role
        self.scope = scope


class UserNotFoundError(GatekeeperError):
    """Raised when a referenced user does not exist."""


class FlagNotFoundError(GatekeeperError):
    """Raised when writing to a feature flag that does not exist."""


class RolloutInProgressError(GatekeeperError):
    """Raised when a gradual rollout is already running for a flag."""
