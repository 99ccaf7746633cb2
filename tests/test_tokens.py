from __future__ import annotations

import jwt
import pytest

from seller_session.core.errors import NetworkError, OperationCancelledError
from seller_session.core.retry import CancellationToken, RetryExecutor
from seller_session.core.storage import SessionKey
from seller_session.core.tokens import TokenConfig, TokenManager, decode_payload, expiry_of

from .helpers.fakes import make_token


def _tm(store, api, clock, sleep, **kw) -> TokenManager:
    return TokenManager(store=store, api=api, executor=RetryExecutor(sleep=sleep), clock=clock.time, **kw)


def test_decode_payload_is_unverified_and_fail_closed():
    assert decode_payload(make_token(exp=123, sub="1"))["sub"] == "1"
    assert decode_payload("not-a-jwt") is None
    assert decode_payload("") is None
    assert decode_payload(None) is None


def test_expiry_requires_numeric_exp():
    assert expiry_of(make_token(exp=100)) == 100.0
    assert expiry_of(make_token()) is None
    assert expiry_of(jwt.encode({"exp": "soon"}, "k", algorithm="HS256")) is None
    assert expiry_of(jwt.encode({"exp": True}, "k", algorithm="HS256")) is None


def test_is_expired(store, api, clock, sleep):
    tm = _tm(store, api, clock, sleep)
    now = clock.time()
    assert tm.is_expired(make_token(exp=now + 60)) is False
    assert tm.is_expired(make_token(exp=now - 1)) is True
    assert tm.is_expired(make_token(exp=now)) is True
    assert tm.is_expired(make_token()) is True
    assert tm.is_expired("garbage") is True
    assert tm.is_expired(None) is True


def test_is_expiring_soon_uses_buffer(store, api, clock, sleep):
    tm = _tm(store, api, clock, sleep)
    now = clock.time()
    assert tm.is_expiring_soon(make_token(exp=now + 100)) is True
    assert tm.is_expiring_soon(make_token(exp=now + 1000)) is False
    assert tm.is_expiring_soon(make_token(exp=now + 100), buffer_seconds=50) is False
    assert tm.is_expiring_soon("garbage") is True

    tm2 = _tm(store, api, clock, sleep, cfg=TokenConfig(expiry_buffer_seconds=30))
    assert tm2.is_expiring_soon(make_token(exp=now + 100)) is False


@pytest.mark.asyncio
async def test_refresh_without_refresh_token_returns_false(store, api, clock, sleep):
    tm = _tm(store, api, clock, sleep)
    assert await tm.refresh() is False
    assert api.calls.get("refresh", 0) == 0


@pytest.mark.asyncio
async def test_refresh_persists_new_tokens(store, api, clock, sleep, secure_backend, plain_backend):
    await store.set(SessionKey.refresh_token, "r1")
    api.refresh_results.append({"access_token": "a2", "refresh_token": "r2"})
    tm = _tm(store, api, clock, sleep)
    assert await tm.refresh() is True
    assert plain_backend.data["accessToken"] == "a2"
    assert secure_backend.data["refreshToken"] == "r2"


@pytest.mark.asyncio
async def test_refresh_accepts_short_field_names(store, api, clock, sleep, plain_backend, secure_backend):
    await store.set(SessionKey.refresh_token, "r1")
    api.refresh_results.append({"access": "a3"})
    assert await _tm(store, api, clock, sleep).refresh() is True
    assert plain_backend.data["accessToken"] == "a3"
    assert secure_backend.data["refreshToken"] == "r1"


@pytest.mark.asyncio
async def test_refresh_rejected_is_not_retried(store, api, clock, sleep):
    await store.set(SessionKey.refresh_token, "r1")
    assert await _tm(store, api, clock, sleep).refresh() is False
    assert api.calls["refresh"] == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_refresh_network_errors_are_retried_then_fail(store, api, clock, sleep, plain_backend):
    await store.set(SessionKey.refresh_token, "r1")
    api.refresh_results.extend([NetworkError(), NetworkError(), NetworkError()])
    assert await _tm(store, api, clock, sleep).refresh() is False
    assert api.calls["refresh"] == 3
    assert sleep.delays == [1.0, 2.0]
    assert "accessToken" not in plain_backend.data


@pytest.mark.asyncio
async def test_refresh_response_without_access_token_fails(store, api, clock, sleep):
    await store.set(SessionKey.refresh_token, "r1")
    api.refresh_results.append({"detail": "ok?"})
    assert await _tm(store, api, clock, sleep).refresh() is False


@pytest.mark.asyncio
async def test_cancelled_refresh_raises_and_persists_nothing(store, api, clock, sleep, plain_backend):
    await store.set(SessionKey.refresh_token, "r1")
    api.refresh_results.append({"access_token": "late"})
    token = CancellationToken()
    token.cancel("logout")
    with pytest.raises(OperationCancelledError):
        await _tm(store, api, clock, sleep).refresh(token)
    assert "accessToken" not in plain_backend.data
