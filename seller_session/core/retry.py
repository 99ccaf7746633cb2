from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from seller_session.core.errors import OperationCancelledError

T = TypeVar("T")


class RetryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    max_retries: int = Field(default=3, ge=1, le=10)
    initial_delay_ms: int = Field(default=1000, ge=0, le=60_000)


class CancellationToken:
    """
    One-shot cancellation flag shared by every retried operation of a session.
    """

    def __init__(self, reason: str = "cancelled"):
        self._event = asyncio.Event()
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        if reason:
            self.reason = str(reason)
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(reason=self.reason)


def backoff_delay_ms(attempt: int, initial_delay_ms: int) -> int:
    """Delay before zero-indexed attempt `attempt` (no delay before the first)."""
    if attempt <= 0:
        return 0
    return int(initial_delay_ms) * (2 ** (attempt - 1))


class RetryExecutor:
    """
    Exponential-backoff wrapper for fallible async operations.

    The retry counter is shared by every operation run through one executor: it holds the number
    of failed attempts of the most recent operation, resets to 0 on success and equals
    `max_retries` after exhaustion.
    """

    def __init__(
        self,
        cfg: Optional[RetryConfig] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        on_retry_count: Optional[Callable[[int], None]] = None,
        on_metric: Optional[Callable[[str, float, float], None]] = None,
        logger=None,
    ):
        self.cfg = cfg or RetryConfig()
        self._sleep = sleep
        self._clock = clock
        self.on_retry_count = on_retry_count
        self.on_metric = on_metric
        self.logger = logger
        self._retry_count = 0

    @property
    def retry_count(self) -> int:
        return self._retry_count

    async def perform_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        initial_delay_ms: Optional[int] = None,
        *,
        name: str = "operation",
        cancel: Optional[CancellationToken] = None,
    ) -> T:
        attempts = int(max_retries if max_retries is not None else self.cfg.max_retries)
        delay0 = int(initial_delay_ms if initial_delay_ms is not None else self.cfg.initial_delay_ms)
        if attempts < 1:
            raise ValueError("max_retries must be >= 1")

        t0 = time.perf_counter()
        last_error: Optional[BaseException] = None
        for attempt in range(attempts):
            if attempt > 0:
                await self._backoff(backoff_delay_ms(attempt, delay0) / 1000.0, cancel)
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                result = await self._run(operation, cancel)
            except OperationCancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                last_error = e
                self._set_retry_count(attempt + 1)
                if self.logger:
                    self.logger.warning(f"{name} attempt {attempt + 1}/{attempts} failed: {e}")
                if not bool(getattr(e, "recoverable", True)):
                    raise
                continue
            self._set_retry_count(0)
            elapsed_ms = (time.perf_counter() - t0) * 1000.0
            if self.on_metric is not None:
                self.on_metric(name, elapsed_ms, self._clock())
            return result

        self._set_retry_count(attempts)
        if self.logger:
            self.logger.error(f"{name} failed after {attempts} attempts: {last_error}")
        if last_error is None:
            raise RuntimeError(f"{name} made no attempts")
        raise last_error

    # ---- internals ----
    def _set_retry_count(self, n: int) -> None:
        self._retry_count = int(n)
        if self.on_retry_count is not None:
            self.on_retry_count(self._retry_count)

    async def _backoff(self, seconds: float, cancel: Optional[CancellationToken]) -> None:
        if cancel is None:
            await self._sleep(seconds)
            return
        await self._race(self._sleep(seconds), cancel)

    async def _run(self, operation: Callable[[], Awaitable[T]], cancel: Optional[CancellationToken]) -> T:
        if cancel is None:
            return await operation()
        return await self._race(operation(), cancel)

    async def _race(self, aw: Awaitable[T], cancel: CancellationToken) -> T:
        work = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if not work.done():
            work.cancel()
            try:
                await work
            except (asyncio.CancelledError, Exception):  # noqa: BLE001
                pass
            cancel.raise_if_cancelled()
        return work.result()
