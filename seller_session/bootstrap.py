from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from seller_session.api.client import SellerApiClient
from seller_session.core.config import ConfigFsPaths, ConfigManager, SessionConfig
from seller_session.core.controller import AuthController
from seller_session.core.events.audit import SecurityAuditLogger
from seller_session.core.events.bus import EventBus
from seller_session.core.logger import setup_logging
from seller_session.core.storage import PlainStore, SecureCredentialStore, SessionKey, SessionStore


@dataclass
class SessionRuntime:
    cfg: SessionConfig
    fs: ConfigFsPaths
    store: SessionStore
    secure: SecureCredentialStore
    api: SellerApiClient
    controller: AuthController
    logger: Any

    async def aclose(self) -> None:
        await self.controller.stop()
        await self.api.drain()
        await self.api.aclose()


def build_runtime(
    root: str = ".",
    *,
    cfg: Optional[SessionConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    logger=None,
    **controller_kwargs: Any,
) -> SessionRuntime:
    """
    Wire config, storage tiers, the HTTP client and the controller.

    The API client reads the access token straight from the store; going through
    `AuthController.get_auth_headers()` there would re-enter the session gate.
    """
    fs = ConfigFsPaths(root)
    if cfg is None:
        cfg = ConfigManager(fs=fs, logger=logger).load_all()
    if logger is None:
        logger = setup_logging(fs.resolve(cfg.logging.log_dir), level=cfg.logging.level)
    audit = SecurityAuditLogger(path=fs.resolve(cfg.logging.audit_path)) if cfg.logging.audit_enabled else None

    secure = SecureCredentialStore(
        device_key_path=fs.resolve(cfg.storage.device_key_path),
        store_path=fs.resolve(cfg.storage.secure_store_path),
        max_bytes=int(cfg.storage.secure_store_max_bytes),
        read_only=bool(cfg.storage.secure_store_read_only),
        audit_path=audit.path if audit else None,
    )
    plain = PlainStore(path=fs.resolve(cfg.storage.plain_store_path), logger=logger)
    store = SessionStore(secure=secure, plain=plain, fallback_namespace=cfg.storage.fallback_namespace, logger=logger, audit=audit)

    async def _token() -> Optional[str]:
        res = await store.get(SessionKey.access_token)
        return res.value if res.ok else None

    api = SellerApiClient.from_config(cfg.api, token_provider=_token, transport=transport, logger=logger)
    controller = AuthController(
        store=store,
        api=api,
        retry_cfg=cfg.retry,
        token_cfg=cfg.tokens,
        biometric_cfg=cfg.biometric,
        bus=EventBus(cfg=cfg.events, logger=logger),
        logger=logger,
        audit=audit,
        **controller_kwargs,
    )
    api.on_unauthorized = controller.handle_unauthorized
    return SessionRuntime(cfg=cfg, fs=fs, store=store, secure=secure, api=api, controller=controller, logger=logger)
