"""Password, input and JWT utility functions.

Includes username, email and password requirement checks, bcrypt hashing and
JWT access token creation and decoding.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import jwt
from bcrypt import checkpw, gensalt, hashpw
from email_validator import EmailNotValidError, validate_email

from gatekeeper.common import Role
from gatekeeper.errors import TokenInvalidError

if TYPE_CHECKING:
    from collections.abc import Callable

    from gatekeeper.common import User

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{};':\"\\|,.<>/?"

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

RULES = [
    (
        lambda x: not any(c.isupper() for c in x),
        "at least one uppercase letter",
    ),
    (
        lambda x: not any(c.islower() for c in x),
        "at least one lowercase letter",
    ),
    (lambda x: not any(c.isdigit() for c in x), "at least one digit"),
    (
        lambda x: not any(c in SPECIAL_CHARACTERS for c in x),
        "at least one special character",
    ),
]

# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class TokenClaims:
    """Decoded contents of a verified access token."""

    user_id: int
    username: str
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass
class SecurityManager:
    """Manager for security configurations and validations.

    :param str secret_key: Secret key for JWT signing (generated if not provided)
    :param str algorithm: JWT signing algorithm
    :param int token_lifetime_minutes: Token lifetime in minutes
    :param str issuer: ``iss`` claim set on and required from every token
    :param str audience: ``aud`` claim set on and required from every token
    :param int bcrypt_rounds: bcrypt work factor
    :param clock: Returns the current UTC time, injectable for tests
    """

    DEFAULT_JWT_ALGORITHM = "HS512"
    DEFAULT_TOKEN_LIFETIME_MINUTES = 8 * 60
    DEFAULT_ISSUER = "gatekeeper"
    DEFAULT_AUDIENCE = "game-client"
    DEFAULT_BCRYPT_ROUNDS = 12
    MINIMUM_JWT_SECRET_KEY_LENGTH = 32
    PASSWORD_MIN_LENGTH = 8
    USERNAME_MIN_LENGTH = 3
    USERNAME_MAX_LENGTH = 50
    TOKEN_TYPE = "access_token"

    secret_key: str | None = None
    algorithm: str = DEFAULT_JWT_ALGORITHM
    token_lifetime_minutes: int = DEFAULT_TOKEN_LIFETIME_MINUTES
    issuer: str = DEFAULT_ISSUER
    audience: str = DEFAULT_AUDIENCE
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS
    clock: Callable[[], datetime] = field(default=_utc_now, repr=False)

    def __post_init__(self) -> None:
        """Generate secret key if not provided."""
        if (
            self.secret_key is None
            or len(self.secret_key) < self.MINIMUM_JWT_SECRET_KEY_LENGTH
        ):
            LOGGER.warning("No usable secret key configured, generating one")
            self.secret_key = os.urandom(64).hex()

    @property
    def token_lifetime(self) -> timedelta:
        """Maximum age of an access token."""
        return timedelta(minutes=self.token_lifetime_minutes)

    def validate_username(self, username: str) -> str | None:
        """Validate a username's format.

        :param username: The username to validate
        :return: An error message if the username is malformed, None otherwise
        """
        if not (
            self.USERNAME_MIN_LENGTH <= len(username) <= self.USERNAME_MAX_LENGTH
        ):
            return (
                f"Username must be between {self.USERNAME_MIN_LENGTH} and "
                f"{self.USERNAME_MAX_LENGTH} characters"
            )

        if not USERNAME_PATTERN.match(username):
            return "Username can only contain letters, numbers, and underscores"

        return None

    def validate_email(self, email: str) -> str | None:
        """Validate an email address's format without a deliverability check.

        :param email: The email address to validate
        :return: An error message if the address is malformed, None otherwise
        """
        try:
            validate_email(email, check_deliverability=False)
        except EmailNotValidError:
            return "Invalid email format"
        return None

    def validate_password(self, password: str) -> str | None:
        """Validate password strength.

        A password needs at least ``PASSWORD_MIN_LENGTH`` characters and one
        each of uppercase, lowercase, digit and special character.

        :param password: The password to validate
        :return: An error message if the password does not meet requirements,
        None otherwise
        """
        if len(password) < self.PASSWORD_MIN_LENGTH:
            return f"Password must be at least {self.PASSWORD_MIN_LENGTH} characters"

        if len(password.encode()) > _BCRYPT_MAX_BYTES:
            return f"Password must be at most {_BCRYPT_MAX_BYTES} bytes"

        for rule, error_message in RULES:
            if rule(password):
                return f"Password must contain {error_message}"

        return None

    def hash_password(self, password: str) -> bytes:
        """Hash a password with bcrypt.

        Slow on purpose; call it off the event loop.
        """
        return hashpw(password.encode(), gensalt(rounds=self.bcrypt_rounds))

    def check_password(self, password: str, hashed_password: bytes) -> bool:
        """Compare a plaintext password with a stored bcrypt hash."""
        try:
            return checkpw(password.encode(), hashed_password)
        except ValueError:
            LOGGER.debug("Password could not be compared with stored hash")
            return False

    def create_access_token(self, user: User) -> str:
        """Create a new JWT access token for the user.

        The role is snapshotted into the token; role changes take effect
        through the live user lookup at verification time.

        :param User user: The User object for whom to create the token
        :return: A JWT access token as a string
        """
        issued_at = self.clock()
        payload = {
            "sub": str(user.id),
            "username": user.username,
            "role": int(user.role),
            "iat": issued_at,
            "exp": issued_at + self.token_lifetime,
            "iss": self.issuer,
            "aud": self.audience,
            "type": self.TOKEN_TYPE,
        }

        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def decode_access_token(self, token: str) -> TokenClaims:
        """Verify and decode a JWT access token.

        Checks signature, expiry, issuer, audience and token type, then
        recomputes the token's age from ``iat`` so a forged or skewed ``exp``
        cannot extend its life.

        :param token: The JWT token string to verify
        :return: The decoded claims
        :raises TokenInvalidError: If the token fails any check
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["exp", "iat", "sub", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError as e:
            msg = "Token expired"
            raise TokenInvalidError(msg) from e
        except jwt.InvalidTokenError as e:
            msg = f"Invalid token: {e}"
            raise TokenInvalidError(msg) from e

        if payload.get("type") != self.TOKEN_TYPE:
            msg = "Invalid token: wrong token type"
            raise TokenInvalidError(msg)

        issued_at = datetime.fromtimestamp(payload["iat"], UTC)
        if self.clock() - issued_at > self.token_lifetime:
            msg = "Token expired"
            raise TokenInvalidError(msg)

        try:
            return TokenClaims(
                user_id=int(payload["sub"]),
                username=str(payload["username"]),
                role=Role(int(payload["role"])),
                issued_at=issued_at,
                expires_at=datetime.fromtimestamp(payload["exp"], UTC),
            )
        except (KeyError, TypeError, ValueError) as e:
            msg = "Invalid token: malformed claims"
            raise TokenInvalidError(msg) from e
