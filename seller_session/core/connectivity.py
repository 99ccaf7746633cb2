from __future__ import annotations

from typing import Awaitable, Callable, Optional

from seller_session.core.errors import NetworkError, OperationCancelledError
from seller_session.core.models import ConnectionStatus, NetworkState
from seller_session.core.platform import ConnectivitySource, Unsubscribe
from seller_session.core.retry import CancellationToken, RetryExecutor

ChangeListener = Callable[[NetworkState, ConnectionStatus, ConnectionStatus], None]


def status_for(state: NetworkState) -> ConnectionStatus:
    return ConnectionStatus.online if state.is_online() else ConnectionStatus.offline


class ConnectivityMonitor:
    """
    Tracks device reachability from a platform connectivity source.

    The listener receives (network_state, new_status, previous_status) on every platform event,
    and on the transient `checking` status around `test_connection()`.
    """

    def __init__(self, *, source: ConnectivitySource, executor: RetryExecutor, listener: Optional[ChangeListener] = None, logger=None):
        self.source = source
        self.executor = executor
        self.logger = logger
        self._state = NetworkState()
        self._status = ConnectionStatus.offline
        self._known = False
        self._listener = listener
        self._unsubscribe: Optional[Unsubscribe] = None

    @property
    def network_state(self) -> NetworkState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._unsubscribe is not None

    def start(self, listener: Optional[ChangeListener] = None) -> None:
        if listener is not None:
            self._listener = listener
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.source.subscribe(self.handle_change)

    def stop(self) -> None:
        if self._unsubscribe is None:
            return
        try:
            self._unsubscribe()
        finally:
            self._unsubscribe = None

    async def refresh(self) -> NetworkState:
        state = await self.source.fetch()
        self.handle_change(state)
        return state

    def handle_change(self, state: NetworkState) -> None:
        self._state = state
        self._known = True
        self._set_status(status_for(state))

    async def test_connection(self, probe: Callable[[], Awaitable[bool]], *, cancel: Optional[CancellationToken] = None) -> bool:
        if not self._known:
            try:
                await self.refresh()
            except Exception as e:  # noqa: BLE001
                if self.logger:
                    self.logger.warning(f"Network state fetch failed: {e}")
        if not self._state.is_online():
            self._set_status(ConnectionStatus.offline)
            return False

        async def _probe() -> bool:
            if not await probe():
                raise NetworkError("Server did not respond.")
            return True

        self._set_status(ConnectionStatus.checking)
        try:
            await self.executor.perform_with_retry(_probe, name="connection_test", cancel=cancel)
        except OperationCancelledError:
            self._set_status(status_for(self._state))
            raise
        except Exception as e:  # noqa: BLE001
            if self.logger:
                self.logger.warning(f"Connection test failed: {e}")
            self._set_status(ConnectionStatus.offline)
            return False
        self._set_status(ConnectionStatus.online)
        return True

    def _set_status(self, status: ConnectionStatus) -> None:
        previous = self._status
        self._status = status
        if self.logger and previous != status:
            self.logger.info(f"Connection status: {previous.value} -> {status.value} ({self._state.type})")
        if self._listener is not None:
            self._listener(self._state, status, previous)
