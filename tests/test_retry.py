from __future__ import annotations

import asyncio

import pytest

from seller_session.core.errors import ApiError, NetworkError, OperationCancelledError
from seller_session.core.retry import CancellationToken, RetryConfig, RetryExecutor, backoff_delay_ms

from .helpers.fakes import BlockingSleep, FakeClock, RecordingSleep


class Flaky:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def test_backoff_delay_doubles():
    assert [backoff_delay_ms(i, 1000) for i in range(4)] == [0, 1000, 2000, 4000]


@pytest.mark.asyncio
async def test_success_first_try_records_metric():
    clock = FakeClock()
    metrics = []
    ex = RetryExecutor(sleep=RecordingSleep(), clock=clock.time, on_metric=lambda *a: metrics.append(a))
    assert await ex.perform_with_retry(Flaky([]), name="profile_fetch") == "ok"
    assert ex.retry_count == 0
    assert len(metrics) == 1
    name, elapsed_ms, at = metrics[0]
    assert name == "profile_fetch" and elapsed_ms >= 0 and at == clock.time()


@pytest.mark.asyncio
async def test_retry_count_tracks_failed_attempts_and_resets():
    sleep = RecordingSleep()
    counts = []
    ex = RetryExecutor(sleep=sleep, on_retry_count=counts.append)
    op = Flaky([NetworkError(), NetworkError()])
    assert await ex.perform_with_retry(op) == "ok"
    assert op.calls == 3
    assert sleep.delays == [1.0, 2.0]
    assert counts == [1, 2, 0]
    assert ex.retry_count == 0


@pytest.mark.asyncio
async def test_exhaustion_reraises_last_error_and_sets_max():
    sleep = RecordingSleep()
    counts = []
    ex = RetryExecutor(sleep=sleep, on_retry_count=counts.append)
    last = NetworkError("third")
    with pytest.raises(NetworkError) as ei:
        await ex.perform_with_retry(Flaky([NetworkError("first"), NetworkError("second"), last]))
    assert ei.value is last
    assert ex.retry_count == 3
    assert counts[-1] == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_custom_attempts_and_delay():
    sleep = RecordingSleep()
    ex = RetryExecutor(RetryConfig(max_retries=5, initial_delay_ms=100), sleep=sleep)
    with pytest.raises(RuntimeError):
        await ex.perform_with_retry(Flaky([RuntimeError("x")] * 4 + [RuntimeError("y")]), max_retries=4)
    assert sleep.delays == [0.1, 0.2, 0.4]
    assert ex.retry_count == 4


@pytest.mark.asyncio
async def test_non_recoverable_error_is_not_retried():
    sleep = RecordingSleep()
    ex = RetryExecutor(sleep=sleep)
    op = Flaky([ApiError("bad request", status_code=400)])
    with pytest.raises(ApiError):
        await ex.perform_with_retry(op)
    assert op.calls == 1
    assert sleep.delays == []
    assert ex.retry_count == 1


@pytest.mark.asyncio
async def test_server_errors_are_retried():
    ex = RetryExecutor(sleep=RecordingSleep())
    op = Flaky([ApiError("oops", status_code=503)])
    assert await ex.perform_with_retry(op) == "ok"
    assert op.calls == 2


@pytest.mark.asyncio
async def test_zero_attempts_rejected():
    with pytest.raises(ValueError):
        await RetryExecutor(sleep=RecordingSleep()).perform_with_retry(Flaky([]), max_retries=0)


@pytest.mark.asyncio
async def test_cancel_aborts_backoff():
    sleep = BlockingSleep()
    ex = RetryExecutor(sleep=sleep)
    token = CancellationToken()
    op = Flaky([NetworkError()] * 3)
    task = asyncio.ensure_future(ex.perform_with_retry(op, cancel=token))
    await sleep.entered.wait()
    token.cancel("logout")
    with pytest.raises(OperationCancelledError) as ei:
        await task
    assert ei.value.context["reason"] == "logout"
    assert op.calls == 1


@pytest.mark.asyncio
async def test_cancel_aborts_in_flight_attempt():
    started = asyncio.Event()
    aborted = []

    async def hang():
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            aborted.append(True)
            raise

    token = CancellationToken()
    task = asyncio.ensure_future(RetryExecutor(sleep=RecordingSleep()).perform_with_retry(hang, cancel=token))
    await started.wait()
    token.cancel()
    with pytest.raises(OperationCancelledError):
        await task
    assert aborted == [True]


@pytest.mark.asyncio
async def test_already_cancelled_token_never_runs_operation():
    token = CancellationToken()
    token.cancel()
    op = Flaky([])
    with pytest.raises(OperationCancelledError):
        await RetryExecutor(sleep=RecordingSleep()).perform_with_retry(op, cancel=token)
    assert op.calls == 0
