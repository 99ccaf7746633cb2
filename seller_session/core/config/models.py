from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from seller_session.api.client import ApiConfig
from seller_session.core.biometric import BiometricConfig
from seller_session.core.events.bus import EventBusConfig
from seller_session.core.retry import RetryConfig
from seller_session.core.tokens import TokenConfig


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    plain_store_path: str = "data/session_store.json"
    secure_store_path: str = "secure/session_store.enc"
    device_key_path: str = "secure/device.key"
    secure_store_max_bytes: int = Field(default=65536, ge=1024)
    secure_store_read_only: bool = False
    fallback_namespace: str = Field(default="secure_fallback.", min_length=1)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    log_dir: str = "logs"
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    audit_enabled: bool = True
    audit_path: str = "logs/security.jsonl"


class SessionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    config_version: int = Field(default=1, ge=1)
    api: ApiConfig = Field(default_factory=ApiConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    tokens: TokenConfig = Field(default_factory=TokenConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    biometric: BiometricConfig = Field(default_factory=BiometricConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    events: EventBusConfig = Field(default_factory=EventBusConfig)
