from __future__ import annotations

import collections
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from seller_session.core.events.models import EventSeverity, SessionEvent, SourceSubsystem


class EventBusConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    keep_recent: int = Field(default=200, ge=10, le=10_000)
    max_error_depth: int = Field(default=1, ge=0, le=5)


@dataclass
class _Sub:
    event_type: str
    handler: Callable[[SessionEvent], None]
    priority: int


@dataclass
class _Stats:
    published_total: int = 0
    delivered_total: int = 0
    handler_errors_total: int = 0
    per_type_published: Dict[str, int] = field(default_factory=dict)


class EventBus:
    """
    In-process publish/subscribe for a single event loop.

    - delivery is synchronous in the publishing task, in priority order
    - handler failures are isolated (caught) and re-published as error events
    - handlers must not block; schedule a task for async work
    """

    def __init__(self, *, cfg: Optional[EventBusConfig] = None, logger=None):
        self.cfg = cfg or EventBusConfig()
        self.logger = logger
        self._subs: List[_Sub] = []
        self._stats = _Stats()
        self._recent_events: Deque[Dict[str, Any]] = collections.deque(maxlen=int(self.cfg.keep_recent))
        self._error_depth = 0

    def enabled(self) -> bool:
        return bool(self.cfg.enabled)

    def set_enabled(self, enabled: bool) -> None:
        self.cfg.enabled = bool(enabled)

    def subscribe(self, event_type: str, handler: Callable[[SessionEvent], None], priority: int = 50) -> None:
        """
        event_type supports:
        - exact match ("auth.state")
        - prefix match ("auth.*")
        - wildcard all ("*")
        """
        if not callable(handler):
            raise ValueError("handler must be callable")
        self._subs.append(_Sub(event_type=str(event_type), handler=handler, priority=int(priority)))
        self._subs.sort(key=lambda s: int(s.priority))

    def unsubscribe(self, handler: Callable[[SessionEvent], None]) -> int:
        keep = [s for s in self._subs if s.handler != handler]
        removed = len(self._subs) - len(keep)
        self._subs = keep
        return removed

    def publish(self, ev: SessionEvent) -> bool:
        if not self.cfg.enabled:
            return False
        self._stats.published_total += 1
        self._stats.per_type_published[ev.event_type] = self._stats.per_type_published.get(ev.event_type, 0) + 1
        self._recent_events.appendleft(ev.model_dump())
        for s in list(self._subs):
            if _match(s.event_type, ev.event_type):
                self._safe_handle(s.handler, ev)
        return True

    def emit(self, event_type: str, source: SourceSubsystem, payload: Optional[Dict[str, Any]] = None, *, severity: EventSeverity = EventSeverity.INFO, trace_id: Optional[str] = None) -> bool:
        return self.publish(SessionEvent(event_type=event_type, source_subsystem=source, severity=severity, trace_id=trace_id, payload=payload or {}))

    def get_stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled(),
            "published_total": self._stats.published_total,
            "delivered_total": self._stats.delivered_total,
            "handler_errors_total": self._stats.handler_errors_total,
            "subscribers": len(self._subs),
            "per_type_published": dict(self._stats.per_type_published),
        }

    def dump_recent(self, n: int = 50) -> List[Dict[str, Any]]:
        return list(self._recent_events)[: max(1, int(n))]

    # ---- internals ----
    def _safe_handle(self, handler: Callable[[SessionEvent], None], ev: SessionEvent) -> None:
        t0 = time.time()
        try:
            handler(ev)
            self._stats.delivered_total += 1
        except Exception as e:  # noqa: BLE001
            self._stats.handler_errors_total += 1
            if self.logger:
                self.logger.warning(f"Event handler {getattr(handler, '__name__', 'handler')} failed on {ev.event_type}: {e}")
            # avoid recursion storms from failing error handlers
            if self._error_depth >= int(self.cfg.max_error_depth):
                return
            self._error_depth += 1
            try:
                self.emit(
                    "error.raised",
                    SourceSubsystem.events,
                    {"handler": getattr(handler, "__name__", "handler"), "event_type": ev.event_type, "error": str(e)[:500], "elapsed_ms": round((time.time() - t0) * 1000.0, 3)},
                    severity=EventSeverity.ERROR,
                    trace_id=ev.trace_id,
                )
            finally:
                self._error_depth -= 1


def _match(subscribed: str, event_type: str) -> bool:
    subscribed = str(subscribed)
    if subscribed == "*":
        return True
    if subscribed.endswith(".*"):
        return str(event_type).startswith(subscribed[:-1])
    return subscribed == event_type
