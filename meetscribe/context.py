"""Runtime paths shared by the stores, services and routers.

Services receive the directories they need from this object rather than
building paths themselves.  Logs stay next to the working directory; all
persisted documents live under ``data_dir``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

_PACKAGE_DIR = os.path.dirname(__file__)


@dataclass(frozen=True)
class AppContext:
    cwd: str
    data_dir: str
    config_path: str

    @classmethod
    def from_cwd(cls, cwd: str) -> "AppContext":
        data_dir = os.path.join(cwd, "data")
        return cls(cwd=cwd, data_dir=data_dir, config_path=os.path.join(data_dir, "config.json"))

    # ── Document stores ────────────────────────────────────────────────

    @property
    def meetings_dir(self) -> str:
        return os.path.join(self.data_dir, "meetings")

    @property
    def users_dir(self) -> str:
        return os.path.join(self.data_dir, "users")

    @property
    def usage_dir(self) -> str:
        return os.path.join(self.data_dir, "usage")

    # ── Package resources ──────────────────────────────────────────────

    @property
    def prompts_dir(self) -> str:
        return os.path.join(_PACKAGE_DIR, "prompts")

    @property
    def logs_dir(self) -> str:
        return os.path.join(self.cwd, "logs")

    def ensure_dirs(self) -> None:
        for path in (self.meetings_dir, self.users_dir, self.usage_dir, self.logs_dir):
            os.makedirs(path, exist_ok=True)
