"""
In-process session events, redaction and the security audit log.
"""

from seller_session.core.events.redaction import redact
from seller_session.core.events.models import EventSeverity, SessionEvent, SourceSubsystem
from seller_session.core.events.bus import EventBus, EventBusConfig
from seller_session.core.events.audit import SecurityAuditLogger

__all__ = [
    "redact",
    "EventSeverity",
    "SessionEvent",
    "SourceSubsystem",
    "EventBus",
    "EventBusConfig",
    "SecurityAuditLogger",
]
