from __future__ import annotations

import pytest

from seller_session.core.errors import StorageError
from seller_session.core.models import AuthStatus
from seller_session.core.storage import SessionStore

from .helpers.fakes import FailingBackend, MemoryBackend

LOGIN_OK = {"access_token": "t", "refresh_token": "r", "seller": {"id": 1, "name": "Shop A"}}


@pytest.mark.asyncio
async def test_logout_clears_every_key(controller, plain_backend, secure_backend):
    await controller.login(LOGIN_OK)
    assert await controller.toggle_biometric(True) is True
    plain_backend.data["criticalData"] = "{}"

    await controller.logout()

    assert plain_backend.data == {}
    assert secure_backend.data == {}
    st = controller.state
    assert st.status == AuthStatus.unauthenticated
    assert not st.is_authenticated
    assert st.seller is None
    assert st.biometric_enabled is False
    assert st.phase is None


@pytest.mark.asyncio
async def test_logout_is_idempotent(controller):
    await controller.logout()
    await controller.logout()
    assert controller.state.status == AuthStatus.unauthenticated


@pytest.mark.asyncio
async def test_logout_emits_event(controller):
    events = []
    controller.bus.subscribe("auth.*", lambda ev: events.append(ev.event_type))
    await controller.login(LOGIN_OK)
    await controller.logout()
    assert events[-1] == "auth.logout"
    assert "auth.login" in events


@pytest.mark.asyncio
async def test_failed_removal_raises_after_state_reset(make_controller):
    plain = FailingBackend(fail_on=("remove",), keys=["sellerData"])
    store = SessionStore(secure=MemoryBackend(), plain=plain)
    controller = make_controller(store=store)
    await controller.login(LOGIN_OK)

    with pytest.raises(StorageError) as ei:
        await controller.logout()

    assert ei.value.context["failed_keys"] == ["sellerData"]
    assert not controller.state.is_authenticated
    assert controller.state.status == AuthStatus.unauthenticated
    assert "accessToken" not in plain.data
    assert "sellerData" in plain.data


@pytest.mark.asyncio
async def test_check_after_logout_reports_unauthenticated(controller):
    await controller.login(LOGIN_OK)
    await controller.logout()
    assert await controller.check_auth_status() is False
    assert controller.state.status == AuthStatus.unauthenticated
