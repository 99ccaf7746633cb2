from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from seller_session.core.errors import BiometricUnavailableError
from seller_session.core.events.audit import SecurityAuditLogger
from seller_session.core.platform import BiometricPlatform
from seller_session.core.storage.session_store import SessionKey, SessionStore


class BiometricConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    prompt_message: str = "Authenticate to access your store"
    cancel_label: str = "Cancel"
    fallback_label: str = "Use passcode"
    disable_device_fallback: bool = False

    def prompt_options(self) -> Dict[str, Any]:
        return self.model_dump()


@dataclass(frozen=True)
class BiometricSupport:
    hardware_present: bool
    enrolled: bool

    @property
    def supported(self) -> bool:
        return self.hardware_present and self.enrolled


class BiometricGate:
    def __init__(
        self,
        *,
        platform: BiometricPlatform,
        store: SessionStore,
        cfg: Optional[BiometricConfig] = None,
        logger=None,
        audit: Optional[SecurityAuditLogger] = None,
    ):
        self.platform = platform
        self.store = store
        self.cfg = cfg or BiometricConfig()
        self.logger = logger
        self.audit = audit
        self._support: Optional[BiometricSupport] = None

    async def check_support(self) -> BiometricSupport:
        """Probe hardware and enrollment once; later calls return the cached answer."""
        if self._support is not None:
            return self._support
        try:
            hardware = bool(await self.platform.has_hardware())
            enrolled = bool(await self.platform.is_enrolled()) if hardware else False
        except Exception as e:  # noqa: BLE001
            if self.logger:
                self.logger.warning(f"Biometric support probe failed: {e}")
            hardware, enrolled = False, False
        self._support = BiometricSupport(hardware_present=hardware, enrolled=enrolled)
        return self._support

    async def authenticate(self) -> bool:
        support = await self.check_support()
        if not support.supported:
            raise BiometricUnavailableError(hardware_present=support.hardware_present, enrolled=support.enrolled)
        try:
            result = await self.platform.prompt(self.cfg.prompt_options())
        except Exception as e:  # noqa: BLE001
            if self.logger:
                self.logger.warning(f"Biometric prompt failed: {e}")
            self._audit("biometric.prompt", "error")
            return False
        ok = bool((result or {}).get("success"))
        self._audit("biometric.prompt", "ok" if ok else "denied")
        return ok

    async def toggle(self, enabled: bool) -> bool:
        """
        Enabling requires a successful prompt first; nothing is persisted when it fails.
        Disabling is persisted straight away.
        """
        if enabled:
            try:
                if not await self.authenticate():
                    return False
            except BiometricUnavailableError:
                if self.logger:
                    self.logger.info("Biometric enable refused: not supported on this device.")
                return False
        res = await self.store.set(SessionKey.biometric_enabled, "true" if enabled else "false")
        self._audit("biometric.toggle", "ok" if res.ok else "storage_failed", {"enabled": bool(enabled)})
        return res.ok

    async def load_preference(self) -> bool:
        res = await self.store.get(SessionKey.biometric_enabled)
        return bool(res.ok and res.value == "true")

    def _audit(self, event: str, outcome: str, details: Optional[Dict[str, Any]] = None) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log(trace_id="biometric", severity="INFO", event=event, outcome=outcome, details=details)
        except Exception:
            pass
