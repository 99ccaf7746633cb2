"""
Ports to the host platform (network reachability, app lifecycle, biometrics) plus simple host
adapters for desktop use, the CLI and tests.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Protocol, TypeVar

from seller_session.core.models import NetworkState

T = TypeVar("T")

Unsubscribe = Callable[[], None]


class AppState(str, Enum):
    active = "active"
    background = "background"
    inactive = "inactive"


class ConnectivitySource(Protocol):
    def subscribe(self, callback: Callable[[NetworkState], None]) -> Unsubscribe: ...

    def fetch(self) -> Awaitable[NetworkState]: ...


class AppStateSource(Protocol):
    def subscribe(self, callback: Callable[[AppState], None]) -> Unsubscribe: ...


class BiometricPlatform(Protocol):
    def has_hardware(self) -> Awaitable[bool]: ...

    def is_enrolled(self) -> Awaitable[bool]: ...

    def prompt(self, options: Dict[str, Any]) -> Awaitable[Dict[str, Any]]: ...


class _Emitter(Generic[T]):
    def __init__(self) -> None:
        self._callbacks: List[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    def _emit(self, value: T) -> None:
        for cb in list(self._callbacks):
            cb(value)


class ManualConnectivitySource(_Emitter[NetworkState]):
    """Connectivity source driven by explicit `emit()` calls."""

    def __init__(self, initial: Optional[NetworkState] = None):
        super().__init__()
        self.current = initial or NetworkState(is_connected=True, is_internet_reachable=True, type="unknown")

    async def fetch(self) -> NetworkState:
        return self.current

    def emit(self, state: NetworkState) -> None:
        self.current = state
        self._emit(state)


class ManualAppStateSource(_Emitter[AppState]):
    """App-state source driven by explicit `emit()` calls."""

    def __init__(self, initial: AppState = AppState.active):
        super().__init__()
        self.current = initial

    def emit(self, state: AppState) -> None:
        self.current = AppState(state)
        self._emit(self.current)


class UnsupportedBiometricPlatform:
    """Host without biometric hardware."""

    async def has_hardware(self) -> bool:
        return False

    async def is_enrolled(self) -> bool:
        return False

    async def prompt(self, options: Dict[str, Any]) -> Dict[str, Any]:
        return {"success": False, "error": "not_available"}
