from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from seller_session.core.errors import StorageError
from seller_session.core.events.audit import SecurityAuditLogger


class Tier(str, Enum):
    secure = "secure"
    plain = "plain"


class SessionKey(str, Enum):
    access_token = "accessToken"
    refresh_token = "refreshToken"
    api_token = "apiToken"
    user_type = "userType"
    seller_id = "sellerId"
    seller_data = "sellerData"
    user_phone = "userPhone"
    is_first_time = "isFirstTime"
    last_login = "lastLogin"
    biometric_enabled = "biometricEnabled"
    critical_data = "criticalData"


SECURE_KEYS = frozenset({SessionKey.refresh_token.value, SessionKey.api_token.value})
ALL_SESSION_KEYS: Tuple[str, ...] = tuple(k.value for k in SessionKey)


class SecureBackend(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def delete_item(self, key: str) -> None: ...


class PlainBackend(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


@dataclass(frozen=True)
class StoreResult:
    ok: bool
    key: str
    value: Optional[str] = None
    tier: Optional[Tier] = None
    degraded: bool = False
    error: Optional[StorageError] = None


@dataclass(frozen=True)
class MultiResult:
    results: List[StoreResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed_keys(self) -> List[str]:
        return [r.key for r in self.results if not r.ok]

    @property
    def degraded_keys(self) -> List[str]:
        return [r.key for r in self.results if r.degraded]


def _key(key: Any) -> str:
    return key.value if isinstance(key, SessionKey) else str(key)


class SessionStore:
    """
    Tiered key/value facade.

    Secure-tier keys go to the secure backend first; any failure there falls back to a namespaced
    entry in the plain tier. Nothing here raises to the caller: every operation returns a
    StoreResult. Backend calls run in a worker thread so each access is a suspension point.
    """

    def __init__(
        self,
        *,
        secure: SecureBackend,
        plain: PlainBackend,
        fallback_namespace: str = "secure_fallback.",
        secure_keys: Iterable[str] = SECURE_KEYS,
        logger=None,
        audit: Optional[SecurityAuditLogger] = None,
    ):
        self.secure = secure
        self.plain = plain
        self.fallback_namespace = str(fallback_namespace)
        self.secure_keys = frozenset(_key(k) for k in secure_keys)
        self.logger = logger
        self.audit = audit

    def tier_of(self, key: Any) -> Tier:
        return Tier.secure if _key(key) in self.secure_keys else Tier.plain

    def fallback_key(self, key: Any) -> str:
        return f"{self.fallback_namespace}{_key(key)}"

    # ---------- public API ----------
    async def get(self, key: Any) -> StoreResult:
        k = _key(key)
        if self.tier_of(k) == Tier.secure:
            try:
                value = await asyncio.to_thread(self.secure.get_item, k)
                if value is not None:
                    return StoreResult(ok=True, key=k, value=value, tier=Tier.secure)
                degraded = False
            except Exception as e:  # noqa: BLE001
                self._degraded("read", k, e)
                degraded = True
            return await self._plain_get(k, self.fallback_key(k), degraded=degraded)
        return await self._plain_get(k, k)

    async def get_many(self, keys: Iterable[Any]) -> Dict[str, Optional[str]]:
        ks = [_key(k) for k in keys]
        results = await asyncio.gather(*(self.get(k) for k in ks))
        return {r.key: r.value for r in results}

    async def set(self, key: Any, value: Any) -> StoreResult:
        k = _key(key)
        v = str(value)
        if self.tier_of(k) == Tier.secure:
            try:
                await asyncio.to_thread(self.secure.set_item, k, v)
            except Exception as e:  # noqa: BLE001
                self._degraded("write", k, e)
                return await self._plain_set(k, self.fallback_key(k), v, degraded=True)
            # drop any copy left behind by an earlier degraded write
            await self._plain_remove(k, self.fallback_key(k))
            return StoreResult(ok=True, key=k, value=v, tier=Tier.secure)
        return await self._plain_set(k, k, v)

    async def remove(self, key: Any) -> StoreResult:
        k = _key(key)
        if self.tier_of(k) == Tier.secure:
            degraded = False
            try:
                await asyncio.to_thread(self.secure.delete_item, k)
            except Exception as e:  # noqa: BLE001
                self._degraded("delete", k, e)
                degraded = True
            res = await self._plain_remove(k, self.fallback_key(k))
            if not res.ok:
                return res
            return StoreResult(ok=True, key=k, tier=Tier.plain if degraded else Tier.secure, degraded=degraded)
        return await self._plain_remove(k, k)

    async def multi_set(self, pairs: Any) -> MultiResult:
        items = list(pairs.items()) if isinstance(pairs, dict) else list(pairs)
        results = [await self.set(k, v) for k, v in items]
        out = MultiResult(results=results)
        if not out.ok and self.logger:
            self.logger.warning(f"Partial session write; failed keys: {out.failed_keys}")
        return out

    async def multi_remove(self, keys: Iterable[Any]) -> MultiResult:
        results = [await self.remove(k) for k in keys]
        out = MultiResult(results=results)
        if not out.ok and self.logger:
            self.logger.warning(f"Partial session removal; failed keys: {out.failed_keys}")
        return out

    # ---------- internal ----------
    async def _plain_get(self, key: str, storage_key: str, *, degraded: bool = False) -> StoreResult:
        try:
            value = await asyncio.to_thread(self.plain.get_item, storage_key)
            return StoreResult(ok=True, key=key, value=value, tier=Tier.plain, degraded=degraded)
        except Exception as e:  # noqa: BLE001
            return self._failed("read", key, e)

    async def _plain_set(self, key: str, storage_key: str, value: str, *, degraded: bool = False) -> StoreResult:
        try:
            await asyncio.to_thread(self.plain.set_item, storage_key, value)
            return StoreResult(ok=True, key=key, value=value, tier=Tier.plain, degraded=degraded)
        except Exception as e:  # noqa: BLE001
            return self._failed("write", key, e)

    async def _plain_remove(self, key: str, storage_key: str) -> StoreResult:
        try:
            await asyncio.to_thread(self.plain.remove_item, storage_key)
            return StoreResult(ok=True, key=key, tier=Tier.plain)
        except Exception as e:  # noqa: BLE001
            return self._failed("delete", key, e)

    def _degraded(self, op: str, key: str, err: BaseException) -> None:
        if self.logger:
            self.logger.warning(f"Secure storage {op} failed for {key}; using plain tier fallback: {err}")
        if self.audit is not None:
            try:
                self.audit.log(trace_id="storage", severity="WARN", event="storage.degraded", outcome="fallback", details={"op": op, "item": key, "error": str(err)[:200]})
            except Exception:
                pass

    def _failed(self, op: str, key: str, err: BaseException) -> StoreResult:
        if self.logger:
            self.logger.error(f"Plain storage {op} failed for {key}: {err}")
        return StoreResult(ok=False, key=key, tier=Tier.plain, error=StorageError(f"Unable to {op} {key}.", item=key, cause=str(err)[:200]))
