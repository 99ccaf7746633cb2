from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import jwt

from seller_session.core.errors import ApiError, NetworkError


def make_token(exp: Optional[float] = None, **claims: Any) -> str:
    payload = dict(claims)
    if exp is not None:
        payload["exp"] = int(exp)
    return jwt.encode(payload, "test-secret", algorithm="HS256")


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self._t = float(start)

    def time(self) -> float:
        return self._t

    def advance(self, seconds: float) -> None:
        self._t += float(seconds)


class RecordingSleep:
    """Injected in place of asyncio.sleep; records requested delays and yields once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(float(seconds))
        await asyncio.sleep(0)


class BlockingSleep:
    """Sleep that never returns until released; used to park a retry in its backoff."""

    def __init__(self):
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def __call__(self, seconds: float) -> None:
        self.calls += 1
        self.entered.set()
        await self.release.wait()


class MemoryBackend:
    """Dict-backed storage tier implementing both backend protocols."""

    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(data or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove_item(self, key: str) -> None:
        self.data.pop(key, None)

    def delete_item(self, key: str) -> None:
        self.data.pop(key, None)


class FailingBackend(MemoryBackend):
    """Raises on the selected operations (get/set/delete/remove)."""

    def __init__(self, fail_on=("get", "set", "delete", "remove"), keys: Optional[List[str]] = None):
        super().__init__()
        self.fail_on = set(fail_on)
        self.keys = set(keys) if keys is not None else None

    def _check(self, op: str, key: str) -> None:
        if op in self.fail_on and (self.keys is None or key in self.keys):
            raise RuntimeError(f"{op} failed for {key}")

    def get_item(self, key: str) -> Optional[str]:
        self._check("get", key)
        return super().get_item(key)

    def set_item(self, key: str, value: str) -> None:
        self._check("set", key)
        super().set_item(key, value)

    def remove_item(self, key: str) -> None:
        self._check("remove", key)
        super().remove_item(key)

    def delete_item(self, key: str) -> None:
        self._check("delete", key)
        super().delete_item(key)


@dataclass
class FakeApi:
    """
    Scriptable seller API. Each `*_results` list is consumed front to back; an Exception entry is
    raised, anything else returned. When a list runs dry the default applies.
    """

    refresh_results: List[Any] = field(default_factory=list)
    probe_results: List[Any] = field(default_factory=list)
    profile_results: List[Any] = field(default_factory=list)
    update_results: List[Any] = field(default_factory=list)
    login_results: List[Any] = field(default_factory=list)
    calls: Dict[str, int] = field(default_factory=dict)
    refresh_gate: Optional[asyncio.Event] = None
    last_update: Optional[Dict[str, Any]] = None

    def _next(self, name: str, results: List[Any], default: Any) -> Any:
        self.calls[name] = self.calls.get(name, 0) + 1
        value = results.pop(0) if results else default
        if isinstance(value, BaseException):
            raise value
        return value

    async def test_connection(self) -> bool:
        await asyncio.sleep(0)
        return self._next("test_connection", self.probe_results, True)

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        if self.refresh_gate is not None:
            self.calls["refresh_started"] = self.calls.get("refresh_started", 0) + 1
            await self.refresh_gate.wait()
        return self._next("refresh", self.refresh_results, ApiError("HTTP 401: token not valid", status_code=401))

    async def get_profile(self) -> Dict[str, Any]:
        return self._next("get_profile", self.profile_results, {"seller": {}})

    async def update_profile(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        self.last_update = dict(changes)
        return self._next("update_profile", self.update_results, {"seller": dict(changes)})

    async def login(self, phone: str, password: str) -> Dict[str, Any]:
        return self._next("login", self.login_results, NetworkError())


class FakeBiometricPlatform:
    def __init__(self, *, hardware: bool = True, enrolled: bool = True, results: Optional[List[Any]] = None):
        self.hardware = hardware
        self.enrolled = enrolled
        self.results = list(results or [])
        self.prompts: List[Dict[str, Any]] = []
        self.probes = 0

    async def has_hardware(self) -> bool:
        self.probes += 1
        return self.hardware

    async def is_enrolled(self) -> bool:
        return self.enrolled

    async def prompt(self, options: Dict[str, Any]) -> Dict[str, Any]:
        self.prompts.append(dict(options))
        value = self.results.pop(0) if self.results else {"success": True}
        if isinstance(value, BaseException):
            raise value
        return value


class ListLogger:
    def __init__(self):
        self.records: List[tuple] = []

    def debug(self, msg, *_a, **_k):  # noqa: ANN001
        self.records.append(("debug", str(msg)))

    def info(self, msg, *_a, **_k):  # noqa: ANN001
        self.records.append(("info", str(msg)))

    def warning(self, msg, *_a, **_k):  # noqa: ANN001
        self.records.append(("warning", str(msg)))

    def error(self, msg, *_a, **_k):  # noqa: ANN001
        self.records.append(("error", str(msg)))

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [m for (lvl, m) in self.records if level is None or lvl == level]


async def seed_session(store, *, access_token: str, seller_id: str = "1", seller_data: Optional[Dict[str, Any]] = None, refresh_token: Optional[str] = None, user_type: str = "seller") -> None:
    pairs = {"accessToken": access_token, "sellerId": seller_id, "userType": user_type}
    if seller_data is not None:
        pairs["sellerData"] = json.dumps(seller_data)
    if refresh_token is not None:
        pairs["refreshToken"] = refresh_token
    await store.multi_set(pairs)


async def until(predicate, *, rounds: int = 400) -> None:
    """Yield to the loop until `predicate()` holds."""
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached")
