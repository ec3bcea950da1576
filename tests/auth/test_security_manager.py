"""Tests for input validation, hashing and token primitives."""

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from gatekeeper.auth import SecurityManager
from gatekeeper.common import Role, User
from gatekeeper.errors import TokenInvalidError

SECRET_KEY = "another-test-secret-key-long-enough-for-hs512"  # noqa: S105


@pytest.fixture
def user() -> User:
    """Create a test user."""
    return User(id=7, username="misty", email="misty@example.com", role=Role.HELPER)


class TestValidation:
    """Username, email and password checks."""

    @pytest.mark.parametrize("username", ["ash", "Ash_Ketchum_99", "a" * 50])
    def test_valid_usernames(
        self,
        security_manager: SecurityManager,
        username: str,
    ) -> None:
        """Valid usernames produce no error."""
        assert security_manager.validate_username(username) is None

    @pytest.mark.parametrize("username", ["ab", "a" * 51, "ash ketchum", "ash!"])
    def test_invalid_usernames(
        self,
        security_manager: SecurityManager,
        username: str,
    ) -> None:
        """Short, long or non-word usernames are rejected."""
        assert security_manager.validate_username(username) is not None

    def test_email(self, security_manager: SecurityManager) -> None:
        """Email syntax is checked without DNS."""
        assert security_manager.validate_email("ash@example.com") is None
        assert security_manager.validate_email("not-an-email") == "Invalid email format"

    @pytest.mark.parametrize(
        ("password", "message"),
        [
            ("weak", "at least 8 characters"),
            ("alllowercase1!", "uppercase"),
            ("ALLUPPERCASE1!", "lowercase"),
            ("NoDigitsHere!", "digit"),
            ("NoSymbols123", "special character"),
            ("Aa1!" * 19, "at most 72 bytes"),
        ],
    )
    def test_weak_passwords(
        self,
        security_manager: SecurityManager,
        password: str,
        message: str,
    ) -> None:
        """Each missing requirement is reported."""
        error = security_manager.validate_password(password)
        assert error is not None
        assert message in error

    def test_strong_password(self, security_manager: SecurityManager) -> None:
        """A password meeting every rule passes."""
        assert security_manager.validate_password("Sup3r$ecret") is None


class TestPasswordHashing:
    """bcrypt hashing and comparison."""

    def test_hash_and_check(self, security_manager: SecurityManager) -> None:
        """The right password matches its hash, a wrong one does not."""
        hashed = security_manager.hash_password("Sup3r$ecret")

        assert security_manager.check_password("Sup3r$ecret", hashed)
        assert not security_manager.check_password("Wr0ng$ecret", hashed)

    def test_corrupt_hash_does_not_match(
        self,
        security_manager: SecurityManager,
    ) -> None:
        """A malformed stored hash is a mismatch, not a crash."""
        assert not security_manager.check_password("Sup3r$ecret", b"garbage")


class TestAccessTokens:
    """JWT creation and decoding."""

    def test_round_trip(self, security_manager: SecurityManager, user: User) -> None:
        """A fresh token decodes to the same user and role."""
        token = security_manager.create_access_token(user)

        claims = security_manager.decode_access_token(token)

        assert claims.user_id == user.id
        assert claims.username == user.username
        assert claims.role is Role.HELPER
        assert claims.expires_at - claims.issued_at == timedelta(hours=8)

    def test_claims(self, security_manager: SecurityManager, user: User) -> None:
        """Issuer, audience and type are set on every token."""
        token = security_manager.create_access_token(user)

        payload = jwt.decode(token, options={"verify_signature": False})

        assert payload["sub"] == "7"
        assert payload["iss"] == "gatekeeper"
        assert payload["aud"] == "game-client"
        assert payload["type"] == "access_token"
        assert payload["role"] == int(Role.HELPER)

    def test_expired_token(self, user: User) -> None:
        """Tokens past their lifetime are rejected."""
        issued = datetime.now(UTC) - timedelta(hours=9)
        manager = SecurityManager(secret_key=SECRET_KEY, clock=lambda: issued)
        token = manager.create_access_token(user)

        with pytest.raises(TokenInvalidError, match="expired"):
            SecurityManager(secret_key=SECRET_KEY).decode_access_token(token)

    def test_exp_cannot_outlive_iat(self, user: User) -> None:
        """A token older than the lifetime fails even with a later exp."""
        manager = SecurityManager(secret_key=SECRET_KEY)
        issued = datetime.now(UTC) - timedelta(hours=9)
        payload = {
            "sub": str(user.id),
            "username": user.username,
            "role": int(user.role),
            "iat": issued,
            "exp": datetime.now(UTC) + timedelta(hours=1),
            "iss": manager.issuer,
            "aud": manager.audience,
            "type": manager.TOKEN_TYPE,
        }
        token = jwt.encode(payload, SECRET_KEY, algorithm=manager.algorithm)

        with pytest.raises(TokenInvalidError, match="expired"):
            manager.decode_access_token(token)

    def test_wrong_secret(self, security_manager: SecurityManager, user: User) -> None:
        """Tokens signed with another key are rejected."""
        other = SecurityManager(secret_key="x" * 64)
        token = other.create_access_token(user)

        with pytest.raises(TokenInvalidError):
            security_manager.decode_access_token(token)

    def test_wrong_audience(self, user: User) -> None:
        """Tokens for another audience are rejected."""
        issuer = SecurityManager(secret_key=SECRET_KEY, audience="editor")
        token = issuer.create_access_token(user)

        with pytest.raises(TokenInvalidError):
            SecurityManager(secret_key=SECRET_KEY).decode_access_token(token)

    def test_wrong_type(self, user: User) -> None:
        """Only access tokens are accepted."""
        manager = SecurityManager(secret_key=SECRET_KEY)
        now = datetime.now(UTC)
        payload = {
            "sub": str(user.id),
            "username": user.username,
            "role": int(user.role),
            "iat": now,
            "exp": now + timedelta(hours=1),
            "iss": manager.issuer,
            "aud": manager.audience,
            "type": "refresh_token",
        }
        token = jwt.encode(payload, SECRET_KEY, algorithm=manager.algorithm)

        with pytest.raises(TokenInvalidError, match="wrong token type"):
            manager.decode_access_token(token)

    def test_garbage_token(self, security_manager: SecurityManager) -> None:
        """Strings that are not JWTs are rejected."""
        with pytest.raises(TokenInvalidError):
            security_manager.decode_access_token("not.a.token")

    def test_short_secret_replaced(self) -> None:
        """A short secret is replaced by a generated one."""
        manager = SecurityManager(secret_key="short")  # noqa: S106

        assert manager.secret_key != "short"  # noqa: S105
        assert len(manager.secret_key) >= SecurityManager.MINIMUM_JWT_SECRET_KEY_LENGTH
