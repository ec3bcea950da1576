"""Tests for the scope permission matrix."""

import logging

import pytest

from gatekeeper.auth import DEFAULT_SCOPES, PermissionMatrix
from gatekeeper.common import Role, User


def _user(role: Role) -> User:
    return User(id=1, username="test_user", email="t@example.com", role=role)


class TestPermissionMatrix:
    """Test suite for PermissionMatrix."""

    def test_can_matches_membership(self) -> None:
        """Every role and scope combination follows the matrix."""
        matrix = PermissionMatrix()

        for scope, allowed in DEFAULT_SCOPES.items():
            for role in Role:
                assert matrix.can(_user(role), scope) == (role in set(allowed))

    def test_player_ban_example(self) -> None:
        """Helpers cannot ban, admins can."""
        matrix = PermissionMatrix({"player.ban": [Role.ADMIN, Role.CO_ADMIN]})

        assert not matrix.can(_user(Role.HELPER), "player.ban")
        assert matrix.can(_user(Role.ADMIN), "player.ban")
        assert matrix.can(_user(Role.CO_ADMIN), "player.ban")

    def test_unknown_scope_denied_with_warning(
        self,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Unknown scopes are denied even for admins."""
        matrix = PermissionMatrix()

        with caplog.at_level(logging.WARNING):
            assert not matrix.can(_user(Role.ADMIN), "server.explode")

        assert "Unknown scope: server.explode" in caplog.text

    def test_missing_actor_or_scope_denied(self) -> None:
        """No actor, no role or no scope always means no."""
        matrix = PermissionMatrix()

        assert not matrix.can(None, "user.login")
        assert not matrix.can(object(), "user.login")
        assert not matrix.can(_user(Role.ADMIN), None)
        assert not matrix.can(_user(Role.ADMIN), "")

    def test_empty_role_set_rejected(self) -> None:
        """A scope nobody may use is a construction error."""
        with pytest.raises(ValueError, match="at least one role"):
            PermissionMatrix({"player.ban": []})

    def test_scopes_for_role(self) -> None:
        """Role scope listings come from the same matrix."""
        matrix = PermissionMatrix()

        user_scopes = matrix.scopes_for(Role.USER)
        assert user_scopes == [
            "battle.spectate",
            "battle.start",
            "user.chat",
            "user.login",
        ]

        helper_scopes = matrix.scopes_for(Role.HELPER)
        assert "player.mute" in helper_scopes
        assert "player.ban" not in helper_scopes

        assert len(matrix.scopes_for(Role.ADMIN)) == len(matrix.scopes)

    def test_allowed_roles(self) -> None:
        """Allowed roles are exposed read-only."""
        matrix = PermissionMatrix()

        assert matrix.allowed_roles("server.shutdown") == frozenset({Role.ADMIN})
        assert matrix.allowed_roles("nope") == frozenset()

    def test_check_scopes_reports_unknown(self) -> None:
        """Startup check returns unknown guard scopes in order."""
        matrix = PermissionMatrix()

        assert matrix.check_scopes(["player.ban", "bogus.one", "bogus.two"]) == [
            "bogus.one",
            "bogus.two",
        ]
        assert "player.ban" in matrix
        assert "bogus.one" not in matrix
