from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import ValidationError

from seller_session.core.config.models import SessionConfig
from seller_session.core.config.paths import ConfigFsPaths
from seller_session.core.storage.io import (
    ReadStatus,
    atomic_write_json,
    ensure_dirs,
    read_json_file,
    recover_from_corrupt,
    snapshot_last_known_good,
)


class ConfigError(RuntimeError):
    pass


def default_config_dict() -> Dict[str, Any]:
    return SessionConfig().model_dump(mode="json")


class ConfigManager:
    """
    Loads `config/session.json`.

    A missing file is created from defaults. A corrupt file is moved aside and restored from the
    last-known-good copy. A file that fails validation is left in place and defaults are used.
    """

    def __init__(self, *, fs: Optional[ConfigFsPaths] = None, logger=None, read_only: bool = False):
        self.fs = fs or ConfigFsPaths(".")
        self.logger = logger
        self.read_only = read_only
        self._cfg: Optional[SessionConfig] = None
        self.recovered = False

    # ---------- public API ----------
    def load_all(self) -> SessionConfig:
        ensure_dirs(self.fs.config_dir)
        raw = self._load_raw()
        try:
            cfg = SessionConfig.model_validate(raw)
        except ValidationError as e:
            if self.logger:
                self.logger.warning(f"Invalid config {self.fs.session}; using defaults: {e.error_count()} error(s)")
            cfg = SessionConfig()
        else:
            if not self.read_only:
                snapshot_last_known_good(self.fs.session, self.fs.session_last_known_good)
        self._cfg = cfg
        return cfg

    def get(self) -> SessionConfig:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg

    def save(self, cfg: SessionConfig) -> None:
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        data = SessionConfig.model_validate(cfg.model_dump()).model_dump(mode="json")
        atomic_write_json(self.fs.session, data)
        snapshot_last_known_good(self.fs.session, self.fs.session_last_known_good)
        self._cfg = SessionConfig.model_validate(data)

    # ---------- internal ----------
    def _load_raw(self) -> Dict[str, Any]:
        path = self.fs.session
        rr = read_json_file(path)
        if rr.ok:
            return rr.data
        if rr.status is ReadStatus.MISSING:
            data = default_config_dict()
            if not self.read_only:
                atomic_write_json(path, data)
                if self.logger:
                    self.logger.info(f"Created default config at {path}")
            return data
        if self.read_only:
            backup = read_json_file(self.fs.session_last_known_good)
            data, recovered = (backup.data, True) if backup.ok else ({}, False)
        else:
            data, recovered = recover_from_corrupt(path, self.fs.session_last_known_good)
        self.recovered = recovered
        if self.logger:
            self.logger.warning(f"Corrupt config {path} ({rr.error}) -> recovered={recovered}")
        return data
