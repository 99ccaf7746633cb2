from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from seller_session.core.events.redaction import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorKind(str, Enum):
    validation = "validation"
    network = "network"
    storage = "storage"
    expiry = "expiry"
    biometric = "biometric"


@dataclass
class SessionError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    kind: ErrorKind = ErrorKind.network
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return self.user_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "kind": self.kind.value,
            "context": redact(self.context or {}),
        }


# ---- Storage ----
class StorageError(SessionError):
    def __init__(self, user_message: str = "Unable to access device storage.", **ctx: Any):
        super().__init__("storage_error", user_message, severity=Severity.WARN, recoverable=True, kind=ErrorKind.storage, context=ctx)


# ---- Network ----
class NetworkError(SessionError):
    def __init__(self, user_message: str = "Network error. Cannot connect to server.", **ctx: Any):
        super().__init__("network_error", user_message, severity=Severity.WARN, recoverable=True, kind=ErrorKind.network, context=ctx)


class ApiError(SessionError):
    """
    Non-2xx response from the seller API.

    408/429/5xx are retryable; other client errors are not.
    """

    def __init__(self, user_message: str = "Request failed.", *, status_code: int = 0, **ctx: Any):
        retryable = status_code in (408, 429) or status_code >= 500
        super().__init__("api_error", user_message, severity=Severity.WARN, recoverable=retryable, kind=ErrorKind.network, context=dict(ctx, status_code=status_code))
        self.status_code = int(status_code)


# ---- Tokens ----
class TokenInvalidError(SessionError):
    def __init__(self, user_message: str = "Access token is invalid or expired.", **ctx: Any):
        super().__init__("token_invalid", user_message, severity=Severity.INFO, recoverable=True, kind=ErrorKind.expiry, context=ctx)


class RefreshFailedError(SessionError):
    def __init__(self, user_message: str = "Your session has expired. Please log in again.", **ctx: Any):
        super().__init__("refresh_failed", user_message, severity=Severity.WARN, recoverable=False, kind=ErrorKind.expiry, context=ctx)


# ---- Login ----
class LoginPayloadInvalidError(SessionError):
    def __init__(self, user_message: str = "Invalid login response - missing token or seller data.", **ctx: Any):
        super().__init__("login_payload_invalid", user_message, severity=Severity.WARN, recoverable=False, kind=ErrorKind.validation, context=ctx)


class CredentialsInvalidError(SessionError):
    def __init__(self, user_message: str = "Phone and password are required.", **ctx: Any):
        super().__init__("credentials_invalid", user_message, severity=Severity.INFO, recoverable=False, kind=ErrorKind.validation, context=ctx)


# ---- Biometrics ----
class BiometricUnavailableError(SessionError):
    def __init__(self, user_message: str = "Biometric authentication is not available on this device.", **ctx: Any):
        super().__init__("biometric_unavailable", user_message, severity=Severity.INFO, recoverable=False, kind=ErrorKind.biometric, context=ctx)


# ---- Cancellation ----
class OperationCancelledError(SessionError):
    def __init__(self, user_message: str = "Operation cancelled.", **ctx: Any):
        super().__init__("operation_cancelled", user_message, severity=Severity.INFO, recoverable=False, kind=ErrorKind.network, context=ctx)


def kind_of(err: BaseException, default: ErrorKind = ErrorKind.network) -> ErrorKind:
    if isinstance(err, SessionError):
        return err.kind
    return default


def user_message_of(err: BaseException, default: Optional[str] = None) -> str:
    if isinstance(err, SessionError):
        return err.user_message
    return default or str(err) or err.__class__.__name__
