"""All queries against the credential store.

Using the AuthQueries class as a repository for user records. Nothing outside
this module depends on the table layout.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite

from gatekeeper.common import Role, User

if TYPE_CHECKING:
    from aiosqlite import Connection

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


def _parse_timestamp(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _row_to_user(row: aiosqlite.Row | tuple) -> User:
    user_id, username, email, role, is_active, created_at, last_login = row
    return User(
        id=int(user_id),
        username=username,
        email=email,
        role=Role(int(role)),
        is_active=bool(is_active),
        created_at=_parse_timestamp(created_at),
        last_login=_parse_timestamp(last_login),
    )


class AuthQueries:
    """Repository for user and credential queries."""

    CREATE_USERS_TABLE = """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            email TEXT NOT NULL UNIQUE,
            hashed_password BLOB NOT NULL,
            role INTEGER NOT NULL DEFAULT 1, -- 1: user, 2: helper, 3: co_admin, 4: admin
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            last_login TEXT
        );
        """

    USER_COLUMNS = "id, username, email, role, is_active, created_at, last_login"

    GET_USER_BY_ID = f"SELECT {USER_COLUMNS} FROM users WHERE id = ?;"  # noqa: S608

    GET_USER_BY_USERNAME = f"SELECT {USER_COLUMNS} FROM users WHERE username = ?;"  # noqa: S608

    GET_CREDENTIALS_BY_USERNAME = f"""
        SELECT {USER_COLUMNS}, hashed_password FROM users WHERE username = ?;
        """  # noqa: S608

    GET_PASSWORD_HASH = "SELECT hashed_password FROM users WHERE id = ?;"

    FIND_USERNAME_OR_EMAIL = """
        SELECT username, email FROM users WHERE username = ? OR email = ?;
        """

    ADD_USER = """
        INSERT INTO users (username, email, hashed_password, role, is_active, created_at)
        VALUES (?, ?, ?, ?, 1, ?);
        """

    UPDATE_LAST_LOGIN = "UPDATE users SET last_login = ? WHERE id = ?;"

    UPDATE_ROLE = "UPDATE users SET role = ? WHERE id = ?;"

    UPDATE_ACTIVE = "UPDATE users SET is_active = ? WHERE id = ?;"

    UPDATE_PASSWORD = "UPDATE users SET hashed_password = ? WHERE id = ?;"

    COUNT_ACTIVE_USERS = "SELECT COUNT(*) FROM users WHERE is_active = 1;"

    def __init__(self, connection: Connection) -> None:
        self.connection = connection

    async def initialize_tables(self) -> None:
        """Create the users table if it does not exist."""
        await self.connection.execute(AuthQueries.CREATE_USERS_TABLE)
        await self.connection.commit()

    async def _fetch_user(self, query: str, params: tuple) -> User | None:
        async with self.connection.execute(query, params) as cursor:
            row = await cursor.fetchone()
        return _row_to_user(row) if row else None

    async def get_user_by_id(self, user_id: int) -> User | None:
        """Get a user by id, whether active or not.

        :param user_id: The user's id
        :return: The User if found, None otherwise
        """
        return await self._fetch_user(AuthQueries.GET_USER_BY_ID, (user_id,))

    async def get_user_by_username(self, username: str) -> User | None:
        """Get a user by username, whether active or not.

        :param username: The username to look up
        :return: The User if found, None otherwise
        """
        return await self._fetch_user(AuthQueries.GET_USER_BY_USERNAME, (username,))

    async def get_credentials(self, username: str) -> tuple[User, bytes] | None:
        """Get a user together with their stored password hash.

        The hash is kept apart from the User so it never travels further than
        the password comparison.

        :param username: The username to look up
        :return: (user, hashed_password) if found, None otherwise
        """
        async with self.connection.execute(
            AuthQueries.GET_CREDENTIALS_BY_USERNAME,
            (username,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        *user_row, hashed_password = row
        return _row_to_user(user_row), bytes(hashed_password)

    async def get_password_hash(self, user_id: int) -> bytes | None:
        """Get the stored password hash for a user id."""
        async with self.connection.execute(
            AuthQueries.GET_PASSWORD_HASH,
            (user_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return bytes(row[0]) if row else None

    async def find_existing(self, username: str, email: str) -> tuple[str, str] | None:
        """Find a user whose username or email collides with the given ones.

        :return: (username, email) of the colliding record, None if free
        """
        async with self.connection.execute(
            AuthQueries.FIND_USERNAME_OR_EMAIL,
            (username, email),
        ) as cursor:
            row = await cursor.fetchone()
        return (row[0], row[1]) if row else None

    async def add_user(
        self,
        username: str,
        email: str,
        hashed_password: bytes,
        role: Role,
    ) -> User:
        """Insert a new, active user.

        :return: The stored User
        :raises aiosqlite.IntegrityError: If the username or email is taken
        """
        created_at = datetime.now(UTC).isoformat()
        try:
            cursor = await self.connection.execute(
                AuthQueries.ADD_USER,
                (username, email, hashed_password, int(role), created_at),
            )
            await self.connection.commit()
        except aiosqlite.Error:
            await self.connection.rollback()
            LOGGER.exception("Error creating account for %s", username)
            raise

        return User(
            id=int(cursor.lastrowid),
            username=username,
            email=email,
            role=role,
            is_active=True,
            created_at=_parse_timestamp(created_at),
        )

    async def _update(self, query: str, params: tuple) -> int:
        try:
            cursor = await self.connection.execute(query, params)
            await self.connection.commit()
        except aiosqlite.Error:
            await self.connection.rollback()
            LOGGER.exception("Error running update on users")
            raise
        return cursor.rowcount

    async def update_last_login(self, user_id: int) -> datetime:
        """Stamp the user's last login with the current time.

        :return: The stored timestamp
        """
        now = datetime.now(UTC)
        await self._update(AuthQueries.UPDATE_LAST_LOGIN, (now.isoformat(), user_id))
        return now

    async def update_role(self, user_id: int, role: Role) -> int:
        """Change a user's role.

        :return: Number of rows updated
        """
        return await self._update(AuthQueries.UPDATE_ROLE, (int(role), user_id))

    async def set_active(self, user_id: int, *, active: bool) -> int:
        """Activate or deactivate a user.

        :return: Number of rows updated
        """
        return await self._update(AuthQueries.UPDATE_ACTIVE, (int(active), user_id))

    async def update_password(self, user_id: int, hashed_password: bytes) -> int:
        """Replace a user's password hash.

        :return: Number of rows updated
        """
        return await self._update(
            AuthQueries.UPDATE_PASSWORD,
            (hashed_password, user_id),
        )

    async def count_active_users(self) -> int:
        """Return the number of active users."""
        async with self.connection.execute(AuthQueries.COUNT_ACTIVE_USERS) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
