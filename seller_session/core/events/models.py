from __future__ import annotations

import json
import re
import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from seller_session.core.events.redaction import redact

# "<area>.<name>", e.g. auth.state, storage.degraded
EVENT_TYPE_RE = re.compile(r"^[a-z][a-z_]*(\.[a-z_]+)+$")


class EventSeverity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class SourceSubsystem(str, Enum):
    controller = "controller"
    storage = "storage"
    events = "events"


class SessionEvent(BaseModel):
    """One published session event. Payloads are redacted on construction."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    event_type: str
    source_subsystem: SourceSubsystem
    severity: EventSeverity = EventSeverity.INFO
    trace_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: float = Field(default_factory=time.time)

    @field_validator("event_type")
    @classmethod
    def _dotted(cls, v: str) -> str:
        v = str(v or "").strip()
        if not EVENT_TYPE_RE.match(v):
            raise ValueError(f"event_type must look like 'area.name', got {v!r}")
        return v

    @field_validator("payload", mode="before")
    @classmethod
    def _safe_payload(cls, v: Any) -> Dict[str, Any]:
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("payload must be an object")
        safe = redact(v)
        try:
            json.dumps(safe)
        except (TypeError, ValueError) as e:
            raise ValueError(f"payload is not JSON-serializable: {e}") from e
        return safe
