"""
Device key handling and AES-GCM sealing for the secure credential tier.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
import secrets
from typing import Any, Dict

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

DEVICE_KEY_BYTES = 32
NONCE_BYTES = 12
SEAL_VERSION = 1
SEAL_ALG = "AES-256-GCM"


class DeviceKeyMissingError(RuntimeError):
    pass


def generate_device_key_bytes() -> bytes:
    return secrets.token_bytes(DEVICE_KEY_BYTES)


def device_key_fingerprint(key: bytes) -> str:
    """Short non-secret id used to detect a store sealed under another device key."""
    return hashlib.sha256(b"seller_session.device_key:" + key).hexdigest()[:16]


def write_device_key(path: str, key_bytes: bytes, *, overwrite: bool = False) -> None:
    if len(key_bytes) != DEVICE_KEY_BYTES:
        raise ValueError(f"Device key must be {DEVICE_KEY_BYTES} bytes.")
    if os.path.exists(path) and not overwrite:
        raise FileExistsError(f"Device key already exists at {path!r}")
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(key_bytes)
    restrict_to_owner(path)


def read_device_key(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            key = f.read()
    except FileNotFoundError as e:
        raise DeviceKeyMissingError(f"Device key not found at {path!r}") from e
    if len(key) != DEVICE_KEY_BYTES:
        raise ValueError(f"Device key at {path!r} is {len(key)} bytes; expected {DEVICE_KEY_BYTES}.")
    return key


def restrict_to_owner(path: str) -> None:
    # no-op on Windows
    if os.name == "nt":
        return
    try:
        os.chmod(path, 0o600)
    except OSError:
        return


def seal(key: bytes, plaintext: bytes, aad: bytes = b"") -> Dict[str, Any]:
    nonce = secrets.token_bytes(NONCE_BYTES)
    ct = AESGCM(key).encrypt(nonce, plaintext, aad or None)
    return {
        "v": SEAL_VERSION,
        "alg": SEAL_ALG,
        "nonce": base64.b64encode(nonce).decode("ascii"),
        "ct": base64.b64encode(ct).decode("ascii"),
    }


def unseal(key: bytes, blob: Dict[str, Any], aad: bytes = b"") -> bytes:
    """Raises ValueError for unknown blob versions and cryptography's InvalidTag on tampering."""
    if not isinstance(blob, dict) or blob.get("v") != SEAL_VERSION or blob.get("alg") != SEAL_ALG:
        raise ValueError("Unsupported sealed blob.")
    nonce = base64.b64decode(str(blob.get("nonce", "")))
    ct = base64.b64decode(str(blob.get("ct", "")))
    return AESGCM(key).decrypt(nonce, ct, aad or None)


def seal_json(key: bytes, obj: Any, aad: bytes = b"") -> Dict[str, Any]:
    return seal(key, json.dumps(obj, ensure_ascii=False, sort_keys=True).encode("utf-8"), aad)


def unseal_json(key: bytes, blob: Dict[str, Any], aad: bytes = b"") -> Any:
    return json.loads(unseal(key, blob, aad).decode("utf-8"))
