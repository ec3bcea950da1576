"""Audit event data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any


class AuditEventKind(StrEnum):
    """Kinds of security-relevant events recorded in the audit trail."""

    TOKEN_VALIDATED = "token_validated"
    TOKEN_VALIDATION_FAILED = "token_validation_failed"
    PERMISSION_DENIED = "permission_denied"
    SCOPE_GRANTED = "scope_granted"
    USER_LOGGED_IN = "user_logged_in"
    USER_LOGGED_OUT = "user_logged_out"
    LOGIN_FAILED = "login_failed"
    USER_REGISTERED = "user_registered"
    PASSWORD_CHANGED = "password_changed"
    ROLE_CHANGED = "role_changed"
    ACCOUNT_STATUS_CHANGED = "account_status_changed"
    FLAG_ENABLED = "flag_enabled"
    FLAG_DISABLED = "flag_disabled"


@dataclass(frozen=True)
class AuditEvent:
    """Immutable record of one audited decision or state change."""

    actor_id: int | None
    kind: AuditEventKind
    details: MappingProxyType[str, Any] = field(
        default_factory=lambda: MappingProxyType({}),
    )
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def create(
        cls,
        actor_id: int | None,
        kind: AuditEventKind,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Create an event, freezing a copy of the details."""
        return cls(
            actor_id=actor_id,
            kind=AuditEventKind(kind),
            details=MappingProxyType(dict(details or {})),
        )
