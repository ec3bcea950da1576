"""Read access to the audit trail."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from gatekeeper.common import User

from .events import AuditEvent, AuditEventKind

if TYPE_CHECKING:
    from gatekeeper.auth.validation import Validate

    from .queries import AuditQueries

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

AUDIT_SCOPE = "audit.read"
MAX_EVENTS = 500


class AuditEventResponse(BaseModel):
    actor_id: int | None
    kind: AuditEventKind
    details: dict[str, Any]
    timestamp: datetime

    @classmethod
    def from_event(cls, event: AuditEvent) -> "AuditEventResponse":
        """Build the public view of an audit event."""
        return cls(
            actor_id=event.actor_id,
            kind=event.kind,
            details=dict(event.details),
            timestamp=event.timestamp,
        )


def configure_audit_router(
    router: APIRouter,
    audit_queries: "AuditQueries",
    validate: "Validate",
) -> APIRouter:
    """Configure the audit router.

    :param router: The APIRouter to configure
    :param audit_queries: Where audit events are read from
    :param validate: Token and scope dependencies
    :return: The configured APIRouter
    """

    @router.get("/events", response_model=list[AuditEventResponse])
    async def list_events(
        user: Annotated[User, Depends(validate.require_scope(AUDIT_SCOPE))],
        actor_id: int | None = None,
        kind: AuditEventKind | None = None,
        limit: Annotated[int, Query(ge=1, le=MAX_EVENTS)] = 100,
    ) -> list[AuditEventResponse]:
        events = await audit_queries.list_events(actor_id, kind, limit)
        LOGGER.debug("User %s read %d audit events", user.username, len(events))
        return [AuditEventResponse.from_event(event) for event in events]

    return router
