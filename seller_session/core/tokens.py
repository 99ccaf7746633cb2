from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import jwt
from pydantic import BaseModel, ConfigDict, Field

from seller_session.core.errors import OperationCancelledError
from seller_session.core.events.audit import SecurityAuditLogger
from seller_session.core.retry import CancellationToken, RetryExecutor
from seller_session.core.storage.session_store import SessionKey, SessionStore


class TokenConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    expiry_buffer_seconds: int = Field(default=300, ge=0, le=86_400)
    proactive_refresh: bool = True


class RefreshApi(Protocol):
    def refresh_access_token(self, refresh_token: str) -> Awaitable[Dict[str, Any]]: ...


def decode_payload(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Unverified JWT claims, or None when the token cannot be decoded."""
    if not token or not isinstance(token, str):
        return None
    try:
        claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.PyJWTError:
        return None
    return claims if isinstance(claims, dict) else None


def expiry_of(token: Optional[str]) -> Optional[float]:
    claims = decode_payload(token)
    if not claims:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return float(exp)


class TokenManager:
    """
    Access-token validity checks and refresh.

    Validity is judged from the unverified `exp` claim only; the server stays the authority on
    signatures. Anything that cannot be decoded counts as expired.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        api: RefreshApi,
        executor: RetryExecutor,
        cfg: Optional[TokenConfig] = None,
        clock: Callable[[], float] = time.time,
        logger=None,
        audit: Optional[SecurityAuditLogger] = None,
    ):
        self.store = store
        self.api = api
        self.executor = executor
        self.cfg = cfg or TokenConfig()
        self.clock = clock
        self.logger = logger
        self.audit = audit

    def seconds_until_expiry(self, token: Optional[str]) -> Optional[float]:
        exp = expiry_of(token)
        if exp is None:
            return None
        return exp - float(self.clock())

    def is_expired(self, token: Optional[str]) -> bool:
        remaining = self.seconds_until_expiry(token)
        return remaining is None or remaining <= 0

    def is_expiring_soon(self, token: Optional[str], buffer_seconds: Optional[int] = None) -> bool:
        buffer = float(self.cfg.expiry_buffer_seconds if buffer_seconds is None else buffer_seconds)
        remaining = self.seconds_until_expiry(token)
        return remaining is None or remaining <= buffer

    async def refresh(self, cancel: Optional[CancellationToken] = None) -> bool:
        """
        Exchange the stored refresh token for a new access token.

        Returns False on any failure; raises OperationCancelledError when `cancel` fires, in which
        case nothing is persisted.
        """
        stored = await self.store.get(SessionKey.refresh_token)
        refresh_token = stored.value if stored.ok else None
        if not refresh_token:
            if self.logger:
                self.logger.info("Token refresh skipped: no refresh token stored.")
            self._audit("token.refresh", "no_refresh_token")
            return False

        try:
            resp = await self.executor.perform_with_retry(lambda: self.api.refresh_access_token(refresh_token), name="token_refresh", cancel=cancel)
        except OperationCancelledError:
            self._audit("token.refresh", "cancelled")
            raise
        except Exception as e:  # noqa: BLE001
            if self.logger:
                self.logger.warning(f"Token refresh failed: {e}")
            self._audit("token.refresh", "failed", {"error": str(e)[:200]})
            return False

        access = (resp or {}).get("access_token") or (resp or {}).get("access")
        if not access:
            if self.logger:
                self.logger.warning("Token refresh response missing access token.")
            self._audit("token.refresh", "invalid_response")
            return False

        if cancel is not None:
            cancel.raise_if_cancelled()
        pairs: Dict[str, str] = {SessionKey.access_token.value: str(access)}
        new_refresh = (resp or {}).get("refresh_token") or (resp or {}).get("refresh")
        if new_refresh:
            pairs[SessionKey.refresh_token.value] = str(new_refresh)
        written = await self.store.multi_set(pairs)
        if not written.ok and self.logger:
            self.logger.warning(f"Refreshed token not fully persisted: {written.failed_keys}")
        self._audit("token.refresh", "ok", {"rotated_refresh": bool(new_refresh)})
        return True

    def _audit(self, event: str, outcome: str, details: Optional[Dict[str, Any]] = None) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log(trace_id="tokens", severity="INFO" if outcome == "ok" else "WARN", event=event, outcome=outcome, details=details)
        except Exception:
            pass
