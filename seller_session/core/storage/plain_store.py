from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from seller_session.core.storage.io import atomic_write_json, read_json_file, recover_from_corrupt, snapshot_last_known_good


@dataclass
class PlainStore:
    """
    Unencrypted string key/value store persisted as one JSON object.

    Corrupt files are moved aside and replaced by the last-known-good copy (or an empty store).
    """

    path: str
    logger: object = None

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._cache: Optional[Dict[str, str]] = None

    @property
    def last_known_good_path(self) -> str:
        return self.path + ".lkg"

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load_locked().get(str(key))

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = dict(self._load_locked())
            data[str(key)] = str(value)
            self._write_locked(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._load_locked()
            if str(key) not in data:
                return
            data = dict(data)
            del data[str(key)]
            self._write_locked(data)

    def keys(self, prefix: Optional[str] = None) -> List[str]:
        with self._lock:
            keys = sorted(self._load_locked().keys())
        if prefix:
            keys = [k for k in keys if k.startswith(prefix)]
        return keys

    def clear(self) -> None:
        with self._lock:
            self._write_locked({})

    # ---------- internal ----------
    def _load_locked(self) -> Dict[str, str]:
        if self._cache is not None:
            return self._cache
        rr = read_json_file(self.path)
        if rr.ok:
            data = rr.data
        elif rr.corrupt:
            data, recovered = recover_from_corrupt(self.path, self.last_known_good_path)
            if self.logger:
                self.logger.warning(f"Corrupt plain store {os.path.basename(self.path)} -> recovered={recovered}")
        else:
            data = {}
        self._cache = {str(k): str(v) for k, v in data.items() if v is not None}
        return self._cache

    def _write_locked(self, data: Dict[str, str]) -> None:
        atomic_write_json(self.path, data)
        self._cache = data
        snapshot_last_known_good(self.path, self.last_known_good_path)
