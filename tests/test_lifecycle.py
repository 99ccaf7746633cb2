from __future__ import annotations

import json

import pytest

from seller_session.core.lifecycle import LifecycleCoordinator
from seller_session.core.models import AuthStatus, CriticalSnapshot
from seller_session.core.platform import AppState, ManualAppStateSource
from seller_session.core.storage import SessionStore

from .helpers.fakes import FailingBackend, ListLogger, MemoryBackend


class StubTarget:
    def __init__(self):
        self.calls = []

    async def check_auth_status(self):
        self.calls.append("check")
        return True

    async def test_connection(self):
        self.calls.append("probe")
        return True

    def critical_snapshot(self, at):
        return CriticalSnapshot(last_active_time=at, seller_id="9", auth_status=AuthStatus.authenticated)


def _coordinator(store, target=None, logger=None):
    src = ManualAppStateSource()
    lc = LifecycleCoordinator(source=src, target=target or StubTarget(), store=store, clock=lambda: 1234.0, logger=logger)
    lc.start()
    return lc, src


@pytest.mark.asyncio
async def test_foreground_from_background_runs_check_and_probe(store):
    target = StubTarget()
    lc, src = _coordinator(store, target)
    src.emit(AppState.background)
    src.emit(AppState.active)
    await lc.drain()
    assert sorted(target.calls) == ["check", "probe"]


@pytest.mark.asyncio
async def test_active_to_active_is_ignored(store):
    target = StubTarget()
    lc, src = _coordinator(store, target)
    src.emit(AppState.active)
    src.emit(AppState.inactive)
    await lc.drain()
    assert target.calls == []


@pytest.mark.asyncio
async def test_background_writes_critical_snapshot(store, plain_backend):
    lc, src = _coordinator(store)
    src.emit(AppState.background)
    await lc.drain()
    snap = json.loads(plain_backend.data["criticalData"])
    assert snap == {"last_active_time": 1234.0, "seller_id": "9", "auth_status": "authenticated"}


@pytest.mark.asyncio
async def test_snapshot_failure_is_logged_and_swallowed():
    logger = ListLogger()
    store = SessionStore(secure=MemoryBackend(), plain=FailingBackend())
    lc, src = _coordinator(store, logger=logger)
    src.emit(AppState.background)
    await lc.drain()
    assert await lc.save_critical_data() is False
    assert any("critical data" in m for m in logger.messages("warning"))


@pytest.mark.asyncio
async def test_stop_unsubscribes(store):
    target = StubTarget()
    lc, src = _coordinator(store, target)
    lc.stop()
    assert src.subscriber_count == 0
    src.emit(AppState.background)
    src.emit(AppState.active)
    await lc.drain()
    assert target.calls == []
