"""Storage for the audit trail.

AuditQueries is the default audit sink: an append-only aiosqlite table.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Protocol

from .events import AuditEvent, AuditEventKind

if TYPE_CHECKING:
    from aiosqlite import Connection

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


class AuditSink(Protocol):
    """Anything that can durably append an audit event."""

    async def append(self, event: AuditEvent) -> None:
        """Append one event."""
        ...


class AuditQueries:
    """Repository for the append-only audit table."""

    CREATE_AUDIT_TABLE = """
        CREATE TABLE IF NOT EXISTS auth_audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER,
            action TEXT NOT NULL,
            details TEXT NOT NULL DEFAULT '{}',
            timestamp TEXT NOT NULL
        );
        """

    INSERT_EVENT = """
        INSERT INTO auth_audit_log (user_id, action, details, timestamp)
        VALUES (?, ?, ?, ?);
        """

    def __init__(self, connection: Connection) -> None:
        self.connection = connection

    async def initialize_tables(self) -> None:
        """Create the audit table if it does not exist."""
        await self.connection.execute(AuditQueries.CREATE_AUDIT_TABLE)
        await self.connection.commit()

    async def append(self, event: AuditEvent) -> None:
        """Append an event to the audit table.

        :param event: The event to store
        """
        await self.connection.execute(
            AuditQueries.INSERT_EVENT,
            (
                event.actor_id,
                str(event.kind),
                json.dumps(dict(event.details), default=str),
                event.timestamp.isoformat(),
            ),
        )
        await self.connection.commit()

    async def list_events(
        self,
        actor_id: int | None = None,
        kind: AuditEventKind | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """List the most recent events, newest first, with optional filters.

        :param actor_id: Only events by this actor
        :param kind: Only events of this kind
        :param limit: Maximum number of events
        :return: Matching events
        """
        where_conditions = []
        params: list[object] = []

        if actor_id is not None:
            where_conditions.append("user_id = ?")
            params.append(actor_id)

        if kind is not None:
            where_conditions.append("action = ?")
            params.append(str(kind))

        where_clause = (
            " WHERE " + " AND ".join(where_conditions) if where_conditions else ""
        )
        query = (
            "SELECT user_id, action, details, timestamp FROM auth_audit_log"  # noqa: S608
            f"{where_clause} ORDER BY id DESC LIMIT ?"
        )

        async with self.connection.execute(query, [*params, limit]) as cursor:
            rows = await cursor.fetchall()

        return [
            AuditEvent(
                actor_id=user_id,
                kind=AuditEventKind(action),
                details=MappingProxyType(json.loads(details)),
                timestamp=datetime.fromisoformat(timestamp),
            )
            for user_id, action, details, timestamp in rows
        ]
