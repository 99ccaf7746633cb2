from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set

from pydantic import ValidationError

from seller_session.core.biometric import BiometricConfig, BiometricGate
from seller_session.core.connectivity import ConnectivityMonitor
from seller_session.core.errors import (
    BiometricUnavailableError,
    ErrorKind,
    LoginPayloadInvalidError,
    NetworkError,
    OperationCancelledError,
    RefreshFailedError,
    StorageError,
    kind_of,
    user_message_of,
)
from seller_session.core.events.audit import SecurityAuditLogger
from seller_session.core.events.bus import EventBus
from seller_session.core.events.models import EventSeverity, SessionEvent, SourceSubsystem
from seller_session.core.lifecycle import LifecycleCoordinator
from seller_session.core.models import (
    USER_TYPE_SELLER,
    AuthPhase,
    AuthState,
    AuthStatus,
    ConnectionStatus,
    CriticalSnapshot,
    LoginResponse,
    NetworkState,
    SellerProfile,
    Session,
    iso_from_ts,
)
from seller_session.core.platform import (
    AppStateSource,
    BiometricPlatform,
    ConnectivitySource,
    ManualAppStateSource,
    ManualConnectivitySource,
    UnsupportedBiometricPlatform,
)
from seller_session.core.retry import CancellationToken, RetryConfig, RetryExecutor
from seller_session.core.storage.session_store import ALL_SESSION_KEYS, SessionKey, SessionStore
from seller_session.core.tokens import TokenConfig, TokenManager

STATE_EVENT = "auth.state"
SIGNED_OUT_MESSAGE = "Please log in again to continue."


class SellerApi(Protocol):
    def test_connection(self) -> Awaitable[bool]: ...

    def refresh_access_token(self, refresh_token: str) -> Awaitable[Dict[str, Any]]: ...

    def get_profile(self) -> Awaitable[Dict[str, Any]]: ...

    def update_profile(self, changes: Dict[str, Any]) -> Awaitable[Dict[str, Any]]: ...

    def login(self, phone: str, password: str) -> Awaitable[Dict[str, Any]]: ...


def _seller_payload(data: Any) -> Dict[str, Any]:
    if isinstance(data, dict) and isinstance(data.get("seller"), dict):
        return data["seller"]
    return data if isinstance(data, dict) else {}


class AuthController:
    """
    Owns the seller session: state machine, persistence and the reactive AuthState.

    Entry points that change the session (check_auth_status, login, logout, refresh_token,
    handle_unauthorized) run one at a time behind `_gate`; internal paths use the `_locked`
    variants. check_auth_status is single-flight: concurrent callers share one pass.
    Every retried network call carries the session cancellation token, which logout and stop
    fire before taking the gate.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        api: SellerApi,
        connectivity_source: Optional[ConnectivitySource] = None,
        app_state_source: Optional[AppStateSource] = None,
        biometric_platform: Optional[BiometricPlatform] = None,
        retry_cfg: Optional[RetryConfig] = None,
        token_cfg: Optional[TokenConfig] = None,
        biometric_cfg: Optional[BiometricConfig] = None,
        bus: Optional[EventBus] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        logger=None,
        audit: Optional[SecurityAuditLogger] = None,
    ):
        self.store = store
        self.api = api
        self.bus = bus or EventBus(logger=logger)
        self.clock = clock
        self.logger = logger
        self.audit = audit

        self._state = AuthState()
        self._gate = asyncio.Lock()
        self._cancel = CancellationToken("session")
        self._check_task: Optional[asyncio.Task] = None
        self._probe_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: Dict[Callable[[AuthState], None], Callable[[SessionEvent], None]] = {}

        self.executor = RetryExecutor(retry_cfg, sleep=sleep, clock=clock, on_retry_count=self._on_retry_count, on_metric=self._on_metric, logger=logger)
        self.tokens = TokenManager(store=store, api=api, executor=self.executor, cfg=token_cfg, clock=clock, logger=logger, audit=audit)
        self.connectivity = ConnectivityMonitor(source=connectivity_source or ManualConnectivitySource(), executor=self.executor, listener=self._on_network, logger=logger)
        self.biometric = BiometricGate(platform=biometric_platform or UnsupportedBiometricPlatform(), store=store, cfg=biometric_cfg, logger=logger, audit=audit)
        self.lifecycle = LifecycleCoordinator(source=app_state_source or ManualAppStateSource(), target=self, store=store, clock=clock, logger=logger)

    # ---------- state ----------
    @property
    def state(self) -> AuthState:
        return self._state

    def subscribe(self, handler: Callable[[AuthState], None]) -> Callable[[], None]:
        def _deliver(_ev: SessionEvent) -> None:
            handler(self._state)

        self.unsubscribe(handler)
        self._listeners[handler] = _deliver
        self.bus.subscribe(STATE_EVENT, _deliver)
        return lambda: self.unsubscribe(handler)

    def unsubscribe(self, handler: Callable[[AuthState], None]) -> bool:
        deliver = self._listeners.pop(handler, None)
        if deliver is None:
            return False
        return self.bus.unsubscribe(deliver) > 0

    def clear_auth_error(self) -> None:
        self._update(auth_error=None, auth_error_kind=None)

    def critical_snapshot(self, at: float) -> CriticalSnapshot:
        seller = self._state.seller
        return CriticalSnapshot(last_active_time=float(at), seller_id=str(seller.id) if seller else None, auth_status=self._state.status)

    # ---------- lifetime ----------
    async def start(self) -> AuthState:
        self.connectivity.start()
        self.lifecycle.start()
        support = await self.biometric.check_support()
        self._update(biometric_supported=support.supported)
        await self.check_auth_status()
        return self._state

    async def stop(self) -> None:
        self._cancel.cancel("stopped")
        self.connectivity.stop()
        self.lifecycle.stop()
        await self.drain()
        self._cancel = CancellationToken("session")

    async def __aenter__(self) -> "AuthController":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def drain(self) -> None:
        """Wait for scheduled re-checks, lifecycle reactions and in-flight probes."""
        while True:
            await self.lifecycle.drain()
            pending = [t for t in (self._check_task, self._probe_task, *self._tasks) if t is not None and not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ---------- gated entry points ----------
    async def check_auth_status(self) -> bool:
        if self._check_task is None or self._check_task.done():
            self._check_task = asyncio.ensure_future(self._gated_check())
        return await asyncio.shield(self._check_task)

    async def login(self, response: Any) -> bool:
        async with self._gate:
            return await self._login_locked(response)

    async def logout(self) -> None:
        """Clear every persisted session key; raises StorageError if any key could not be removed."""
        self._cancel.cancel("logout")
        async with self._gate:
            try:
                await self._logout_locked()
            finally:
                self._cancel = CancellationToken("session")

    async def refresh_token(self) -> bool:
        async with self._gate:
            return await self._refresh_locked()

    async def handle_unauthorized(self) -> bool:
        """Re-validate after the server rejected the access token; logs out if refresh fails."""
        async with self._gate:
            if not self._state.is_authenticated:
                return False
            self._emit("auth.unauthorized", {}, EventSeverity.WARN)
            return await self._refresh_locked()

    # ---------- other operations ----------
    async def login_with_credentials(self, phone: str, password: str) -> bool:
        self._update(is_loading=True, auth_error=None, auth_error_kind=None)
        try:
            response = await self.api.login(phone, password)
        except Exception as e:  # noqa: BLE001
            if self.logger:
                self.logger.warning(f"Login request failed: {e}")
            self._audit("auth.login", "rejected", {"error": user_message_of(e)})
            self._update(is_loading=False, auth_error=user_message_of(e, "Login failed"), auth_error_kind=kind_of(e, ErrorKind.validation))
            return False
        return await self.login(response)

    async def test_connection(self) -> bool:
        if self._probe_task is None or self._probe_task.done():
            self._probe_task = asyncio.ensure_future(self.connectivity.test_connection(self.api.test_connection, cancel=self._cancel))
        try:
            return await asyncio.shield(self._probe_task)
        except OperationCancelledError:
            return False

    async def refresh_user_data(self) -> bool:
        seller = self._state.seller
        if not self._state.is_authenticated or seller is None:
            self._update(auth_error=SIGNED_OUT_MESSAGE, auth_error_kind=ErrorKind.validation)
            return False
        cancel = self._cancel
        try:
            data = await self.executor.perform_with_retry(self.api.get_profile, name="profile_fetch", cancel=cancel)
        except OperationCancelledError:
            return False
        except Exception as e:  # noqa: BLE001
            self._fail("Profile refresh failed", e)
            return False
        if cancel.cancelled:
            return False
        try:
            refreshed = seller.merged(_seller_payload(data))
        except ValidationError as e:
            self._fail("Profile refresh rejected", e, ErrorKind.validation)
            return False
        return await self._apply_seller(refreshed)

    async def update_seller_profile(self, changes: Dict[str, Any]) -> bool:
        seller = self._state.seller
        if not self._state.is_authenticated or seller is None:
            self._update(auth_error=SIGNED_OUT_MESSAGE, auth_error_kind=ErrorKind.validation)
            return False
        if not isinstance(changes, dict) or not changes:
            self._update(auth_error="No profile changes to save.", auth_error_kind=ErrorKind.validation)
            return False
        cancel = self._cancel
        try:
            data = await self.executor.perform_with_retry(lambda: self.api.update_profile(changes), name="profile_update", cancel=cancel)
        except OperationCancelledError:
            return False
        except Exception as e:  # noqa: BLE001
            self._fail("Profile update failed", e)
            return False
        if cancel.cancelled:
            return False
        try:
            updated = seller.merged(changes).merged(_seller_payload(data))
        except ValidationError as e:
            self._fail("Profile update rejected", e, ErrorKind.validation)
            return False
        return await self._apply_seller(updated)

    async def authenticate_with_biometrics(self) -> bool:
        try:
            ok = await self.biometric.authenticate()
        except BiometricUnavailableError as e:
            self._update(auth_error=e.user_message, auth_error_kind=e.kind)
            return False
        if not ok:
            self._update(auth_error="Biometric authentication failed.", auth_error_kind=ErrorKind.biometric)
        return ok

    async def toggle_biometric(self, enabled: bool) -> bool:
        ok = await self.biometric.toggle(bool(enabled))
        if ok:
            self._update(biometric_enabled=bool(enabled))
        elif enabled:
            self._update(auth_error="Could not enable biometric login.", auth_error_kind=ErrorKind.biometric)
        else:
            self._update(auth_error="Could not save the biometric setting.", auth_error_kind=ErrorKind.storage)
        return ok

    async def get_auth_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = await self._access_token()
        if token and self.tokens.cfg.proactive_refresh and self.tokens.is_expiring_soon(token):
            async with self._gate:
                if self.tokens.is_expired(token):
                    await self._refresh_locked()
                else:
                    await self._proactive_refresh_locked(self._cancel)
            token = await self._access_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    # ---------- locked internals ----------
    async def _gated_check(self) -> bool:
        async with self._gate:
            return await self._check_locked()

    async def _check_locked(self) -> bool:
        cancel = self._cancel
        if self._state.is_authenticated:
            # re-check of a live session: status stays authenticated until the outcome is known
            self._update(is_loading=True)
        else:
            self._update(status=AuthStatus.checking, is_loading=True)
        try:
            _, values = await asyncio.gather(self._refresh_network(), self.store.get_many(ALL_SESSION_KEYS))
            session = Session(
                access_token=values.get(SessionKey.access_token.value),
                refresh_token=values.get(SessionKey.refresh_token.value),
                api_token=values.get(SessionKey.api_token.value),
                seller_id=values.get(SessionKey.seller_id.value),
                user_type=values.get(SessionKey.user_type.value),
            )
            biometric_enabled = values.get(SessionKey.biometric_enabled.value) == "true"
            if not session.is_complete():
                self._update(
                    status=AuthStatus.unauthenticated,
                    phase=None,
                    is_authenticated=False,
                    seller=None,
                    connection_status=ConnectionStatus.offline,
                    biometric_enabled=biometric_enabled,
                )
                return False

            seller = self._stored_seller(values.get(SessionKey.seller_data.value), session.seller_id)
            if self.tokens.is_expired(session.access_token):
                self._update(status=AuthStatus.authenticated, phase=AuthPhase.refreshing, is_authenticated=True, seller=seller)
                try:
                    refreshed = await self.tokens.refresh(cancel)
                except OperationCancelledError:
                    return False
                if not refreshed:
                    await self._expire_session()
                    return False
            elif self.tokens.cfg.proactive_refresh and self.tokens.is_expiring_soon(session.access_token):
                if not await self._proactive_refresh_locked(cancel) and cancel.cancelled:
                    return False

            self._update(
                status=AuthStatus.authenticated,
                phase=AuthPhase.valid,
                is_authenticated=True,
                seller=seller,
                auth_error=None,
                auth_error_kind=None,
                biometric_enabled=biometric_enabled,
            )
            if self.connectivity.network_state.is_online():
                reachable = await self.test_connection()
                if cancel.cancelled:
                    return False
                if not reachable:
                    self._update(auth_error=NetworkError().user_message, auth_error_kind=ErrorKind.network)
            return True
        except Exception as e:  # noqa: BLE001
            self._fail("Auth status check failed", e)
            return False
        finally:
            self._update(is_loading=False)

    async def _login_locked(self, response: Any) -> bool:
        now = iso_from_ts(float(self.clock()))
        try:
            payload = LoginResponse.model_validate(response if isinstance(response, dict) else {})
            seller = SellerProfile.model_validate({**payload.seller.model_dump(), "last_login": now})
        except ValidationError as e:
            err = LoginPayloadInvalidError(errors=e.error_count())
            if self.logger:
                self.logger.warning(f"Rejected login payload: {e.error_count()} validation error(s)")
            self._audit("auth.login", "invalid_payload")
            self._update(is_loading=False, auth_error=err.user_message, auth_error_kind=err.kind)
            return False

        pairs: Dict[str, str] = {
            SessionKey.access_token.value: payload.access_token,
            SessionKey.user_type.value: USER_TYPE_SELLER,
            SessionKey.seller_id.value: str(seller.id),
            SessionKey.seller_data.value: seller.model_dump_json(),
            SessionKey.last_login.value: now,
            SessionKey.is_first_time.value: "false",
        }
        if seller.phone:
            pairs[SessionKey.user_phone.value] = seller.phone
        stale = []
        for key, value in ((SessionKey.refresh_token, payload.refresh_token), (SessionKey.api_token, payload.api_token)):
            if value:
                pairs[key.value] = value
            else:
                stale.append(key.value)

        written = await self.store.multi_set(pairs)
        if stale:
            await self.store.multi_remove(stale)
        if not written.ok and self.logger:
            self.logger.warning(f"Login persisted partially; failed keys: {written.failed_keys}")

        self._update(
            status=AuthStatus.authenticated,
            phase=AuthPhase.valid,
            is_authenticated=True,
            is_loading=False,
            seller=seller,
            auth_error=None,
            auth_error_kind=None,
            retry_count=0,
        )
        if self.logger:
            self.logger.info(f"Seller {seller.id} logged in.")
        self._audit("auth.login", "ok", {"seller_id": str(seller.id), "degraded_keys": written.degraded_keys})
        self._emit("auth.login", {"seller_id": str(seller.id)})
        return True

    async def _logout_locked(self) -> None:
        removed = await self.store.multi_remove(ALL_SESSION_KEYS)
        self._update(
            status=AuthStatus.unauthenticated,
            phase=None,
            is_authenticated=False,
            is_loading=False,
            seller=None,
            auth_error=None,
            auth_error_kind=None,
            retry_count=0,
            biometric_enabled=False,
        )
        self._audit("auth.logout", "ok" if removed.ok else "partial", {"failed_keys": removed.failed_keys})
        self._emit("auth.logout", {"failed_keys": removed.failed_keys})
        if not removed.ok:
            raise StorageError("Unable to clear session data.", failed_keys=removed.failed_keys)

    async def _refresh_locked(self) -> bool:
        cancel = self._cancel
        if self._state.is_authenticated:
            self._update(phase=AuthPhase.refreshing)
        try:
            ok = await self.tokens.refresh(cancel)
        except OperationCancelledError:
            return False
        if not ok:
            await self._expire_session()
            return False
        if self._state.is_authenticated:
            self._update(phase=AuthPhase.valid)
        return True

    async def _proactive_refresh_locked(self, cancel: CancellationToken) -> bool:
        """Refresh a still-valid token; failure is logged and not fatal."""
        try:
            ok = await self.tokens.refresh(cancel)
        except OperationCancelledError:
            return False
        if not ok and self.logger:
            self.logger.info("Proactive token refresh failed; current token is still valid.")
        return ok

    async def _expire_session(self) -> None:
        try:
            await self._logout_locked()
        except StorageError as e:
            if self.logger:
                self.logger.error(f"Forced logout could not clear storage: {e.context.get('failed_keys')}")
        err = RefreshFailedError()
        self._update(auth_error=err.user_message, auth_error_kind=err.kind)
        self._emit("auth.refresh_failed", {}, EventSeverity.WARN)

    # ---------- helpers ----------
    async def _refresh_network(self) -> Optional[NetworkState]:
        try:
            return await self.connectivity.refresh()
        except Exception as e:  # noqa: BLE001
            if self.logger:
                self.logger.warning(f"Network state fetch failed: {e}")
            return None

    async def _access_token(self) -> Optional[str]:
        res = await self.store.get(SessionKey.access_token)
        return res.value if res.ok else None

    def _stored_seller(self, raw: Optional[str], seller_id: Optional[str]) -> SellerProfile:
        if raw:
            try:
                return SellerProfile.model_validate(json.loads(raw))
            except (ValueError, ValidationError) as e:
                if self.logger:
                    self.logger.warning(f"Stored seller data unreadable; using minimal profile: {e}")
        return SellerProfile(id=seller_id or "")

    async def _apply_seller(self, seller: SellerProfile) -> bool:
        res = await self.store.set(SessionKey.seller_data, seller.model_dump_json())
        if not res.ok and self.logger:
            self.logger.warning("Updated seller profile kept in memory only.")
        self._update(seller=seller, auth_error=None, auth_error_kind=None)
        return True

    def _fail(self, what: str, err: BaseException, kind: ErrorKind = ErrorKind.network) -> None:
        if self.logger:
            self.logger.warning(f"{what}: {err}")
        self._update(auth_error=user_message_of(err, what), auth_error_kind=kind_of(err, kind))

    def _on_network(self, network: NetworkState, status: ConnectionStatus, previous: ConnectionStatus) -> None:
        self._update(network_state=network, connection_status=status)
        if previous == ConnectionStatus.offline and status == ConnectionStatus.online and self._state.is_authenticated:
            self._schedule(self.check_auth_status())

    def _on_retry_count(self, n: int) -> None:
        self._update(retry_count=n)

    def _on_metric(self, name: str, elapsed_ms: float, at: float) -> None:
        self._update(performance_metrics=self._state.performance_metrics.with_duration(name, elapsed_ms, at))

    def _schedule(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _update(self, **changes: Any) -> None:
        self._state = self._state.model_copy(update=changes)
        self._emit(STATE_EVENT, self._state.model_dump(mode="json"))

    def _emit(self, event_type: str, payload: Dict[str, Any], severity: EventSeverity = EventSeverity.INFO) -> None:
        self.bus.emit(event_type, SourceSubsystem.controller, payload, severity=severity, trace_id="session")

    def _audit(self, event: str, outcome: str, details: Optional[Dict[str, Any]] = None) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log(trace_id="session", severity="INFO" if outcome == "ok" else "WARN", event=event, outcome=outcome, details=details)
        except Exception:
            pass
