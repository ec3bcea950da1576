"""Configuration management for the gatekeeper application.

This module provides utilities for loading and validating configuration
from environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dotenv import load_dotenv
from jwt.algorithms import get_default_algorithms

from gatekeeper.auth import SecurityManager

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

_MIN_BCRYPT_ROUNDS = 4
_MAX_BCRYPT_ROUNDS = 31
_DEFAULT_FLAG_CACHE_TTL_SECONDS = 30
_DEFAULT_AUDIT_QUEUE_SIZE = 1000
_DEFAULT_AUDIT_SHUTDOWN_PERIOD = 5


def configure_logging(app_config: AppConfig) -> None:
    """Configure logging based on the application configuration.

    :param app_config: The application configuration instance
    """
    if not app_config.logging_level:
        logging.basicConfig(level=logging.INFO, force=True)
        return

    numeric_level = getattr(logging, app_config.logging_level.upper(), None)
    if not isinstance(numeric_level, int):
        LOGGER.warning("Invalid log level: %s, using INFO", app_config.logging_level)
        numeric_level = logging.INFO
    logging.basicConfig(level=numeric_level, force=True)


@dataclass
class AppConfig:
    """Holds application configuration loaded from environment variables."""

    database_path: str
    logging_level: str | None
    root_path: str

    secret_key: str
    algorithm: str
    token_lifetime_minutes: int
    token_issuer: str
    token_audience: str
    bcrypt_rounds: int

    flag_cache_ttl_seconds: int
    audit_queue_size: int
    audit_shutdown_period: int | None

    admin_username: str | None = None
    admin_email: str | None = None
    admin_password: str | None = None

    def __post_init__(self) -> None:
        """Initialize derived configuration attributes."""
        self.security_manager = SecurityManager(
            secret_key=self.secret_key,
            algorithm=self.algorithm,
            token_lifetime_minutes=self.token_lifetime_minutes,
            issuer=self.token_issuer,
            audience=self.token_audience,
            bcrypt_rounds=self.bcrypt_rounds,
        )

    @property
    def bootstrap_admin(self) -> bool:
        """Whether an admin account should be ensured at startup."""
        return bool(self.admin_username and self.admin_email and self.admin_password)


def get_env_str(
    var_name: str,
    default: str | None,
    value_checker: Callable[[str], bool] | None = None,
) -> str:
    """Get an environment variable as a string with optional constraints.

    :param var_name: Name of the environment variable
    :param default: Default value if the variable is not set
    :param value_checker: Optional function to validate the value
    :return: The environment variable value
    :raises ValueError: If the value does not meet the constraints
    """
    value = os.getenv(var_name, default)
    if value is None:
        msg = f"Environment variable {var_name} is required"
        raise ValueError(msg)

    if value_checker and not value_checker(value):
        msg = f"Environment variable {var_name} has invalid value: {value}"
        raise ValueError(msg)

    return value


def get_env_optional_str(var_name: str) -> str | None:
    """Get an environment variable as a string, None when unset or empty.

    :param var_name: Name of the environment variable
    :return: The environment variable value or None
    """
    return os.getenv(var_name) or None


def get_env_optional_int(
    var_name: str,
    default: int | None,
    value_checker: Callable[[int], bool] | None = None,
) -> int | None:
    """Get an environment variable as an integer with optional constraints.

    To indicate None, set the environment variable to an empty string.
    To indicate the default, leave the environment variable unset.

    :param var_name: Name of the environment variable
    :param default: Default value if the variable is not set
    :param value_checker: Optional function to validate the value
    :return: The environment variable value as an integer
    :raises ValueError: If the value does not meet the constraints or is not an integer
    """
    value_str = os.getenv(var_name)
    if value_str is None:
        return default

    if value_str == "":
        return None

    return _parse_int(var_name, value_str, value_checker)


def get_env_int(
    var_name: str,
    default: int,
    value_checker: Callable[[int], bool] | None = None,
) -> int:
    """Get an environment variable as an integer with optional constraints.

    :param var_name: Name of the environment variable
    :param default: Default value if the variable is not set
    :param value_checker: Optional function to validate the value
    :return: The environment variable value as an integer
    :raises ValueError: If the value does not meet the constraints or is not an integer
    """
    value_str = os.getenv(var_name)
    if value_str is None or value_str == "":
        return default

    return _parse_int(var_name, value_str, value_checker)


def _parse_int(
    var_name: str,
    value_str: str,
    value_checker: Callable[[int], bool] | None,
) -> int:
    if not value_str.isnumeric():
        msg = f"Environment variable {var_name} must be an integer, got: {value_str}"
        raise ValueError(msg)

    value = int(value_str)

    if value_checker and not value_checker(value):
        msg = f"Environment variable {var_name} has invalid value: {value}"
        raise ValueError(msg)

    return value


def load_config_from_env(env_file: str | Path | None) -> AppConfig:
    """Load application configuration from environment variables.

    :param env_file: Optional .env file loaded before reading the environment
    :return: An AppConfig instance populated with environment variable values
    """
    if env_file:
        load_dotenv(dotenv_path=env_file)

    return AppConfig(
        database_path=get_env_str("DATABASE_PATH", "./gatekeeper.db"),
        logging_level=get_env_str("LOGGING_LEVEL", "INFO"),
        root_path=get_env_str("ROOT_PATH", ""),
        secret_key=get_env_str(
            "SECRET_KEY",
            os.urandom(32).hex(),
            lambda key: len(key) >= SecurityManager.MINIMUM_JWT_SECRET_KEY_LENGTH,
        ),
        algorithm=get_env_str(
            "ALGORITHM",
            SecurityManager.DEFAULT_JWT_ALGORITHM,
            lambda algorithm: algorithm in get_default_algorithms(),
        ),
        token_lifetime_minutes=get_env_int(
            "TOKEN_LIFETIME_MINUTES",
            SecurityManager.DEFAULT_TOKEN_LIFETIME_MINUTES,
            lambda minutes: minutes > 0,
        ),
        token_issuer=get_env_str("TOKEN_ISSUER", SecurityManager.DEFAULT_ISSUER),
        token_audience=get_env_str("TOKEN_AUDIENCE", SecurityManager.DEFAULT_AUDIENCE),
        bcrypt_rounds=get_env_int(
            "BCRYPT_ROUNDS",
            SecurityManager.DEFAULT_BCRYPT_ROUNDS,
            lambda rounds: _MIN_BCRYPT_ROUNDS <= rounds <= _MAX_BCRYPT_ROUNDS,
        ),
        flag_cache_ttl_seconds=get_env_int(
            "FLAG_CACHE_TTL_SECONDS",
            _DEFAULT_FLAG_CACHE_TTL_SECONDS,
        ),
        audit_queue_size=get_env_int(
            "AUDIT_QUEUE_SIZE",
            _DEFAULT_AUDIT_QUEUE_SIZE,
            lambda size: size > 0,
        ),
        audit_shutdown_period=get_env_optional_int(
            "AUDIT_SHUTDOWN_PERIOD",
            _DEFAULT_AUDIT_SHUTDOWN_PERIOD,  # empty string waits indefinitely
        ),
        admin_username=get_env_optional_str("ADMIN_USERNAME"),
        admin_email=get_env_optional_str("ADMIN_EMAIL"),
        admin_password=get_env_optional_str("ADMIN_PASSWORD"),
    )
