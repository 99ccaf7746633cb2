from __future__ import annotations

import re
from typing import Any

MASK = "***REDACTED***"

# substrings of keys whose values never leave the process
SENSITIVE_KEY_PARTS = (
    "password",
    "secret",
    "token",
    "api_key",
    "device_key",
    "authorization",
)

_BEARER = re.compile(r"(Bearer\s+)\S+")
_JWT = re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]*")


def scrub_text(text: str) -> str:
    """Mask bearer credentials and JWTs inside free text."""
    return _JWT.sub("<jwt>", _BEARER.sub(r"\1***", text))


def _sensitive(key: Any) -> bool:
    k = str(key).lower()
    return any(part in k for part in SENSITIVE_KEY_PARTS)


def redact(obj: Any) -> Any:
    """Copy of `obj` with sensitive keys masked and tokens scrubbed out of strings."""
    if isinstance(obj, dict):
        return {k: MASK if _sensitive(k) else redact(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(x) for x in obj]
    if isinstance(obj, str):
        return scrub_text(obj)
    return obj
