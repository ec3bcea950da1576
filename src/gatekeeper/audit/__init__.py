"""Security audit trail."""

from .audit_routes import configure_audit_router
from .events import AuditEvent, AuditEventKind
from .log import AuditLog
from .queries import AuditQueries, AuditSink

__all__ = [
    "AuditEvent",
    "AuditEventKind",
    "AuditLog",
    "AuditQueries",
    "AuditSink",
    "configure_audit_router",
]
