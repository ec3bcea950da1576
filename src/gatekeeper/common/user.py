"""Fundamental user data model for the control plane."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum


class Role(IntEnum):
    """User roles, ordered from least to most privileged."""

    USER = 1
    HELPER = 2
    CO_ADMIN = 3
    ADMIN = 4

    @property
    def label(self) -> str:
        """Wire form of the role, e.g. ``"co_admin"``."""
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> Role:
        """Parse a role from its wire form.

        :param label: Lower-case role name
        :return: The matching role
        :raises ValueError: If the label does not name a role
        """
        try:
            return cls[label.upper()]
        except KeyError:
            msg = f"Unknown role: {label}"
            raise ValueError(msg) from None

    def check_permission(self, required_role: Role) -> bool:
        """Check if this role is at least as privileged as the required role.

        :param required_role: Minimum role needed
        :return: True if the current role has permission, False otherwise
        """
        return self >= required_role


@dataclass
class User:
    """A user record as held by the credential store, without its password hash."""

    id: int
    username: str
    email: str
    role: Role
    is_active: bool = True
    created_at: datetime | None = field(default=None)
    last_login: datetime | None = field(default=None)


def has_higher_role(first: object, second: object) -> bool:
    """Return True if ``first`` strictly outranks ``second``.

    Anything without a role ranks below every real role, so two role-less
    actors never outrank each other.
    """
    first_role = getattr(first, "role", None)
    second_role = getattr(second, "role", None)
    first_rank = int(first_role) if isinstance(first_role, Role) else 0
    second_rank = int(second_role) if isinstance(second_role, Role) else 0
    return first_rank > second_rank
