from __future__ import annotations

import json
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from seller_session.core.events.redaction import redact


@dataclass
class SecurityAuditLogger:
    """
    Append-only JSONL trail of session security events: login, logout, token refresh, storage
    degradation and biometric changes. Details are redacted before they are written.
    """

    path: str = os.path.join("logs", "security.jsonl")
    _lock: threading.Lock = field(default_factory=threading.Lock, compare=False, repr=False)

    def log(self, *, trace_id: str, severity: str, event: str, outcome: str, details: Optional[Dict[str, Any]] = None) -> None:
        entry = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "event": event,
            "outcome": outcome,
            "severity": severity,
            "trace_id": trace_id,
            "details": redact(details or {}),
        }
        line = json.dumps(entry, ensure_ascii=False, default=str)
        with self._lock:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def tail(self, n: int = 20) -> List[Dict[str, Any]]:
        """Last `n` entries, oldest first; unreadable lines are skipped."""
        if not os.path.exists(self.path):
            return []
        with self._lock:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = deque(f, maxlen=max(1, int(n)))
        out: List[Dict[str, Any]] = []
        for line in lines:
            try:
                out.append(json.loads(line))
            except ValueError:
                continue
        return out
