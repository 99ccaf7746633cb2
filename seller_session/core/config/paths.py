from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ConfigFsPaths:
    root: str = "."

    @property
    def config_dir(self) -> str:
        return os.path.join(self.root, "config")

    @property
    def session(self) -> str:
        return os.path.join(self.config_dir, "session.json")

    @property
    def session_last_known_good(self) -> str:
        return os.path.join(self.config_dir, "backups", "session.lkg.json")

    def resolve(self, path: str) -> str:
        """Relative config paths are taken from the root, absolute ones are kept."""
        return path if os.path.isabs(path) else os.path.join(self.root, path)
