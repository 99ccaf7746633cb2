"""
JSON file helpers shared by the plain session tier, the secure vault and the config layer.

Writes go through a temp file in the target directory and are swapped in with `os.replace`, so a
reader sees either the old document or the new one. Each writer keeps a last-known-good copy that
`recover_from_corrupt` restores from.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ReadStatus(str, Enum):
    OK = "ok"
    MISSING = "missing"
    CORRUPT = "corrupt"
    UNREADABLE = "unreadable"


@dataclass(frozen=True)
class ReadResult:
    status: ReadStatus
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ReadStatus.OK

    @property
    def corrupt(self) -> bool:
        return self.status is ReadStatus.CORRUPT


def ensure_dirs(*dirs: str) -> None:
    for d in filter(None, dirs):
        os.makedirs(d, exist_ok=True)


def read_json_file(path: str) -> ReadResult:
    """Top-level value must be an object; anything else counts as corrupt."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except FileNotFoundError:
        return ReadResult(ReadStatus.MISSING, error="missing")
    except OSError as e:
        return ReadResult(ReadStatus.UNREADABLE, error=f"{type(e).__name__}: {e}")
    try:
        obj = json.loads(raw)
    except ValueError as e:
        return ReadResult(ReadStatus.CORRUPT, error=f"invalid json: {e}")
    if not isinstance(obj, dict):
        return ReadResult(ReadStatus.CORRUPT, error=f"expected object, got {type(obj).__name__}")
    return ReadResult(ReadStatus.OK, data=obj)


def atomic_write_json(path: str, data: Dict[str, Any]) -> None:
    folder = os.path.dirname(path) or "."
    ensure_dirs(folder)
    text = json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True) + "\n"
    tmp = tempfile.NamedTemporaryFile("w", encoding="utf-8", dir=folder, prefix=".tmp_", suffix=".json", delete=False)
    try:
        with tmp:
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, path)
    except BaseException:
        try:
            os.remove(tmp.name)
        except OSError:
            pass
        raise


def snapshot_last_known_good(path: str, last_known_good_path: str) -> bool:
    """Copy `path` over its backup. A failed copy only costs the backup."""
    if not os.path.exists(path):
        return False
    try:
        ensure_dirs(os.path.dirname(last_known_good_path))
        shutil.copyfile(path, last_known_good_path)
    except OSError:
        return False
    return True


def quarantine(path: str) -> Optional[str]:
    """Move a bad file aside as <path>.<utc stamp>.corrupt; returns the new name."""
    target = f"{path}.{time.strftime('%Y%m%d_%H%M%S', time.gmtime())}.corrupt"
    try:
        os.replace(path, target)
    except OSError:
        return None
    return target


def recover_from_corrupt(path: str, last_known_good_path: str) -> Tuple[Dict[str, Any], bool]:
    """Quarantine `path` and put the backup back in its place. Returns (data, recovered)."""
    if os.path.exists(path):
        quarantine(path)
    backup = read_json_file(last_known_good_path)
    if not backup.ok:
        return {}, False
    atomic_write_json(path, backup.data)
    return backup.data, True
