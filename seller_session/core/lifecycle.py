from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, Protocol, Set

from seller_session.core.models import CriticalSnapshot
from seller_session.core.platform import AppState, AppStateSource, Unsubscribe
from seller_session.core.storage.session_store import SessionKey, SessionStore


class LifecycleTarget(Protocol):
    def check_auth_status(self) -> Awaitable[Any]: ...

    def test_connection(self) -> Awaitable[bool]: ...

    def critical_snapshot(self, at: float) -> CriticalSnapshot: ...


class LifecycleCoordinator:
    """
    Maps app foreground/background transitions onto session work.

    Platform callbacks are synchronous, so every reaction is scheduled as a task on the running
    loop; `drain()` waits for whatever is still pending.
    """

    def __init__(
        self,
        *,
        source: AppStateSource,
        target: LifecycleTarget,
        store: SessionStore,
        clock: Callable[[], float] = time.time,
        logger=None,
    ):
        self.source = source
        self.target = target
        self.store = store
        self.clock = clock
        self.logger = logger
        self._app_state = AppState.active
        self._unsubscribe: Optional[Unsubscribe] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def app_state(self) -> AppState:
        return self._app_state

    def start(self, initial: Optional[AppState] = None) -> None:
        if self._unsubscribe is not None:
            return
        if initial is not None:
            self._app_state = AppState(initial)
        self._unsubscribe = self.source.subscribe(self.handle_change)

    def stop(self) -> None:
        if self._unsubscribe is None:
            return
        try:
            self._unsubscribe()
        finally:
            self._unsubscribe = None

    def handle_change(self, next_state: AppState) -> None:
        previous = self._app_state
        self._app_state = AppState(next_state)
        if self.logger:
            self.logger.debug(f"App state: {previous.value} -> {self._app_state.value}")
        if self._app_state == AppState.active and previous != AppState.active:
            self._schedule(self.on_foreground())
        elif self._app_state == AppState.background:
            self._schedule(self.save_critical_data())

    async def on_foreground(self) -> None:
        results = await asyncio.gather(self.target.check_auth_status(), self.target.test_connection(), return_exceptions=True)
        for r in results:
            if isinstance(r, Exception) and self.logger:
                self.logger.warning(f"Foreground refresh failed: {r}")

    async def save_critical_data(self) -> bool:
        try:
            snap = self.target.critical_snapshot(float(self.clock()))
            res = await self.store.set(SessionKey.critical_data, snap.model_dump_json())
        except Exception as e:  # noqa: BLE001
            if self.logger:
                self.logger.warning(f"Failed to save critical data: {e}")
            return False
        if not res.ok and self.logger:
            self.logger.warning(f"Failed to save critical data: {res.error}")
        return res.ok

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
