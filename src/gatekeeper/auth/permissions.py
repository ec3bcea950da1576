"""Scope-based permission matrix.

Each scope names one class of operation and maps to the fixed set of roles
allowed to perform it. The matrix is read-only once built.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING

from gatekeeper.common import Role

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

_ALL_ROLES = (Role.ADMIN, Role.CO_ADMIN, Role.HELPER, Role.USER)
_STAFF = (Role.ADMIN, Role.CO_ADMIN, Role.HELPER)
_ADMINS = (Role.ADMIN, Role.CO_ADMIN)

DEFAULT_SCOPES: Mapping[str, Iterable[Role]] = {
    # editor
    "editor:map.write": _ADMINS,
    "editor:ui.write": (Role.ADMIN,),
    "editor:monster.write": (Role.ADMIN,),
    # player management
    "player.ban": _ADMINS,
    "player.kick": _ADMINS,
    "player.mute": _STAFF,
    "player.teleport": _ADMINS,
    # chat moderation
    "chat.moderate": _STAFF,
    "chat.announce": _ADMINS,
    "chat.clear": _ADMINS,
    # server control
    "server.control": (Role.ADMIN,),
    "server.shutdown": (Role.ADMIN,),
    "admin.access": _ADMINS,
    "feature.manage": (Role.ADMIN,),
    "audit.read": _ADMINS,
    # battle system
    "battle.start": _ALL_ROLES,
    "battle.spectate": _ALL_ROLES,
    # basic user permissions
    "user.login": _ALL_ROLES,
    "user.chat": _ALL_ROLES,
}


class PermissionMatrix:
    """Immutable mapping of scope name to the roles allowed to exercise it."""

    def __init__(self, scopes: Mapping[str, Iterable[Role]] = DEFAULT_SCOPES) -> None:
        """Build the matrix.

        :param scopes: Scope name to allowed roles
        :raises ValueError: If a scope has no allowed roles
        """
        frozen: dict[str, frozenset[Role]] = {}
        for scope, roles in scopes.items():
            allowed = frozenset(Role(role) for role in roles)
            if not allowed:
                msg = f"Scope {scope} must allow at least one role"
                raise ValueError(msg)
            frozen[scope] = allowed
        self._scopes = MappingProxyType(frozen)

    def __contains__(self, scope: object) -> bool:
        return scope in self._scopes

    @property
    def scopes(self) -> list[str]:
        """All known scope names, sorted."""
        return sorted(self._scopes)

    def can(self, actor: object, scope: str | None) -> bool:
        """Check whether an actor may exercise a scope.

        Missing actors, actors without a role and unknown scopes are denied.
        Unknown scopes are a misconfiguration and are logged as a warning.

        :param actor: Anything with a ``role`` attribute, usually a User
        :param scope: Scope name to check
        :return: True if the actor's role is allowed for the scope
        """
        role = getattr(actor, "role", None)
        if not isinstance(role, Role) or not scope:
            return False

        allowed = self._scopes.get(scope)
        if allowed is None:
            LOGGER.warning("Unknown scope: %s", scope)
            return False

        return role in allowed

    def allowed_roles(self, scope: str) -> frozenset[Role]:
        """Roles allowed for a scope, empty for unknown scopes."""
        return self._scopes.get(scope, frozenset())

    def scopes_for(self, role: Role) -> list[str]:
        """Scopes a role may exercise, for hiding UI the user cannot use."""
        return sorted(scope for scope, roles in self._scopes.items() if role in roles)

    def check_scopes(self, scopes: Iterable[str]) -> list[str]:
        """Report guard scopes that are missing from the matrix.

        :param scopes: Scope names referenced by route guards
        :return: The unknown scope names, in the order given
        """
        unknown = [scope for scope in scopes if scope not in self._scopes]
        for scope in unknown:
            LOGGER.warning("Guard references unknown scope: %s", scope)
        return unknown
