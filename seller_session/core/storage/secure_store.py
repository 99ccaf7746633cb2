from __future__ import annotations

import os
import shutil
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from seller_session.core.crypto import DeviceKeyMissingError, device_key_fingerprint, read_device_key, restrict_to_owner, seal_json, unseal_json
from seller_session.core.events.audit import SecurityAuditLogger
from seller_session.core.storage.io import atomic_write_json, read_json_file

VAULT_VERSION = 1


class SecureStoreMode(str, Enum):
    READY = "READY"
    KEY_MISSING = "KEY_MISSING"
    STORE_MISSING = "STORE_MISSING"
    STORE_CORRUPT = "STORE_CORRUPT"
    KEY_MISMATCH = "KEY_MISMATCH"
    READ_ONLY = "READ_ONLY"


# modes in which nothing can be read or written
_UNUSABLE = frozenset({SecureStoreMode.KEY_MISSING, SecureStoreMode.KEY_MISMATCH, SecureStoreMode.STORE_CORRUPT})


class SecretUnavailable(RuntimeError):
    pass


class SecureStoreStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")
    mode: SecureStoreMode
    detail: str
    key_fingerprint: Optional[str] = None
    vault_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.mode not in _UNUSABLE


class _Vault(BaseModel):
    model_config = ConfigDict(extra="forbid")
    version: int = Field(default=VAULT_VERSION, ge=1)
    vault_id: str
    key_fingerprint: str
    created_at: float
    updated_at: float
    secrets: Dict[str, str] = Field(default_factory=dict)


@dataclass
class SecureCredentialStore:
    """
    Secure tier for refresh and API tokens: one AES-GCM sealed vault file under a device key.

    Next to `store_path` live a plaintext `.meta.json` (vault id and key fingerprint, no secrets)
    and a `.lkg` copy of the last good vault. Accessors raise SecretUnavailable whenever the vault
    cannot be used; SessionStore answers that with its plain-tier fallback.
    """

    device_key_path: str
    store_path: str
    max_bytes: int = 65536
    read_only: bool = False
    audit_path: Optional[str] = None
    aad: bytes = b"seller_session.vault.v1"

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._audit = SecurityAuditLogger(path=self.audit_path) if self.audit_path else None

    @property
    def meta_path(self) -> str:
        return self.store_path + ".meta.json"

    @property
    def last_known_good_path(self) -> str:
        return self.store_path + ".lkg"

    def status(self) -> SecureStoreStatus:
        with self._lock:
            return self._inspect_locked()[0]

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            _, vault = self._open_locked()
        return vault.secrets.get(key)

    def set_item(self, key: str, value: str) -> None:
        value = str(value)
        if len(value.encode("utf-8")) > int(self.max_bytes):
            raise ValueError(f"Secret for {key} exceeds {self.max_bytes} bytes.")
        self._write(key, value)

    def delete_item(self, key: str) -> None:
        if not os.path.exists(self.store_path):
            return
        self._write(key, None)

    def list_keys(self, prefix: Optional[str] = None) -> List[str]:
        with self._lock:
            _, vault = self._open_locked()
        return sorted(k for k in vault.secrets if not prefix or k.startswith(prefix))

    # ---------- internal ----------
    def _write(self, key: str, value: Optional[str]) -> None:
        """Store `value` under `key`; None deletes."""
        if self.read_only:
            self._log("secure.write_blocked", "read_only", {"item": key})
            raise SecretUnavailable("Secure store is read-only.")
        with self._lock:
            device_key, vault = self._open_locked()
            secrets = dict(vault.secrets)
            if value is None:
                if secrets.pop(key, None) is None:
                    return
            else:
                secrets[key] = value
            self._seal_locked(device_key, vault.model_copy(update={"secrets": secrets, "updated_at": time.time()}))
        self._log("secure.delete" if value is None else "secure.set", "ok", {"item": key})

    def _inspect_locked(self) -> Tuple[SecureStoreStatus, Optional[_Vault]]:
        try:
            device_key = read_device_key(self.device_key_path)
        except (DeviceKeyMissingError, ValueError) as e:
            return SecureStoreStatus(mode=SecureStoreMode.KEY_MISSING, detail="Device key not available.", error=str(e)), None
        fp = device_key_fingerprint(device_key)

        if not os.path.exists(self.store_path):
            return SecureStoreStatus(mode=SecureStoreMode.STORE_MISSING, detail="No vault yet.", key_fingerprint=fp), None

        meta = read_json_file(self.meta_path)
        if meta.ok and meta.data.get("key_fingerprint") not in (None, fp):
            return (
                SecureStoreStatus(mode=SecureStoreMode.KEY_MISMATCH, detail="Vault was sealed under another device key.", key_fingerprint=fp, vault_id=meta.data.get("vault_id")),
                None,
            )

        try:
            vault = self._unseal_locked(device_key)
        except Exception as e:  # noqa: BLE001
            return SecureStoreStatus(mode=SecureStoreMode.STORE_CORRUPT, detail="Vault cannot be decrypted.", key_fingerprint=fp, error=str(e)[:200]), None
        if vault.key_fingerprint != fp:
            return SecureStoreStatus(mode=SecureStoreMode.KEY_MISMATCH, detail="Vault fingerprint does not match the device key.", key_fingerprint=fp, vault_id=vault.vault_id), None

        mode = SecureStoreMode.READ_ONLY if self.read_only else SecureStoreMode.READY
        return SecureStoreStatus(mode=mode, detail="Vault open.", key_fingerprint=fp, vault_id=vault.vault_id), vault

    def _open_locked(self) -> Tuple[bytes, _Vault]:
        st, vault = self._inspect_locked()
        if not st.usable:
            self._log("secure.unavailable", st.mode.value, {"error": st.error})
            raise SecretUnavailable(st.detail)
        device_key = read_device_key(self.device_key_path)
        if vault is None:
            now = time.time()
            vault = _Vault(vault_id=uuid.uuid4().hex, key_fingerprint=str(st.key_fingerprint), created_at=now, updated_at=now)
        return device_key, vault

    def _unseal_locked(self, device_key: bytes) -> _Vault:
        rr = read_json_file(self.store_path)
        if not rr.ok:
            raise ValueError(f"vault unreadable: {rr.error}")
        try:
            return _Vault.model_validate(unseal_json(device_key, rr.data, self.aad))
        except ValidationError as e:
            raise ValueError(f"vault malformed: {e.error_count()} error(s)") from e

    def _seal_locked(self, device_key: bytes, vault: _Vault) -> None:
        blob = seal_json(device_key, vault.model_dump(), self.aad)
        atomic_write_json(self.store_path, blob)
        restrict_to_owner(self.store_path)
        atomic_write_json(self.meta_path, {"version": vault.version, "vault_id": vault.vault_id, "key_fingerprint": vault.key_fingerprint, "updated_at": vault.updated_at})
        try:
            shutil.copy2(self.store_path, self.last_known_good_path)
        except OSError:
            pass

    def _log(self, event: str, outcome: str, details: Dict[str, Any]) -> None:
        if self._audit is None:
            return
        try:
            self._audit.log(trace_id="secure", severity="INFO" if outcome == "ok" else "WARN", event=event, outcome=outcome, details=details)
        except Exception:
            pass
