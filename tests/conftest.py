"""Shared fixtures for the test suite."""

from collections.abc import AsyncGenerator
from unittest.mock import MagicMock

import aiosqlite
import pytest
import pytest_asyncio

from gatekeeper.audit import AuditLog
from gatekeeper.auth import AuthQueries, PermissionMatrix, SecurityManager, TokenService
from gatekeeper.auth.authenticator import Authenticator
from gatekeeper.common import Role, User
from gatekeeper.flags import FeatureFlagStore, FlagQueries

TEST_SECRET_KEY = "test-secret-key-that-is-long-enough-for-hs512"  # noqa: S105
TEST_PASSWORD = "Sup3r$ecret"  # noqa: S105


@pytest.fixture
def security_manager() -> SecurityManager:
    """Security manager with a fixed key and cheap bcrypt rounds."""
    return SecurityManager(secret_key=TEST_SECRET_KEY, bcrypt_rounds=4)


@pytest.fixture
def audit_log() -> MagicMock:
    """Audit log double recording every call."""
    return MagicMock(spec=AuditLog)


@pytest.fixture
def permissions() -> PermissionMatrix:
    """Default permission matrix."""
    return PermissionMatrix()


@pytest_asyncio.fixture
async def connection() -> AsyncGenerator[aiosqlite.Connection]:
    """In-memory database connection."""
    async with aiosqlite.connect(":memory:") as db:
        yield db


@pytest_asyncio.fixture
async def auth_queries(connection: aiosqlite.Connection) -> AuthQueries:
    """Credential store over an empty users table."""
    queries = AuthQueries(connection)
    await queries.initialize_tables()
    return queries


@pytest.fixture
def token_service(
    security_manager: SecurityManager,
    auth_queries: AuthQueries,
    audit_log: MagicMock,
) -> TokenService:
    """Token service over the in-memory credential store."""
    return TokenService(security_manager, auth_queries, audit_log)


@pytest.fixture
def authenticator(
    auth_queries: AuthQueries,
    security_manager: SecurityManager,
    token_service: TokenService,
    permissions: PermissionMatrix,
    audit_log: MagicMock,
) -> Authenticator:
    """Authenticator wired to the in-memory credential store."""
    return Authenticator(
        auth_queries,
        security_manager,
        token_service,
        permissions,
        audit_log,
    )


@pytest.fixture
def make_user():
    """Build a User without touching storage."""

    def _make_user(
        user_id: int = 1,
        role: Role = Role.USER,
        username: str | None = None,
    ) -> User:
        name = username or f"user_{user_id}"
        return User(id=user_id, username=name, email=f"{name}@example.com", role=role)

    return _make_user


@pytest.fixture
def create_user(auth_queries: AuthQueries, security_manager: SecurityManager):
    """Store a user with a real password hash."""

    async def _create_user(
        username: str,
        role: Role = Role.USER,
        password: str = TEST_PASSWORD,
    ) -> User:
        return await auth_queries.add_user(
            username,
            f"{username}@example.com",
            security_manager.hash_password(password),
            role,
        )

    return _create_user


@pytest_asyncio.fixture
async def flag_queries(connection: aiosqlite.Connection) -> FlagQueries:
    """Flag repository over an empty table."""
    queries = FlagQueries(connection)
    await queries.initialize_tables()
    return queries


@pytest_asyncio.fixture
async def store(flag_queries: FlagQueries, audit_log: MagicMock) -> FeatureFlagStore:
    """Flag store seeded with the default flags."""
    flag_store = FeatureFlagStore(flag_queries, audit_log)
    await flag_store.initialize()
    return flag_store
