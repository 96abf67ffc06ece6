from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

APP_DIR_NAME = "MeetingDesk"


@dataclass(frozen=True)
class MeetingDeskPaths:
    home: Path
    logs_dir: Path
    config_dir: Path

    @property
    def frontend_config_path(self) -> Path:
        return self.config_dir / "frontend.json"

    @property
    def log_path(self) -> Path:
        return self.logs_dir / "frontend.log"


def _platform_home(env: Mapping[str, str]) -> Path:
    if sys.platform.startswith("win"):
        base = env.get("LOCALAPPDATA") or env.get("APPDATA")
        if base:
            return Path(base) / APP_DIR_NAME
        return Path.home() / "AppData" / "Local" / APP_DIR_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    xdg = env.get("XDG_DATA_HOME")
    return (Path(xdg) if xdg else Path.home() / ".local" / "share") / APP_DIR_NAME.lower()


def resolve_meetingdesk_home(environ: Mapping[str, str] | None = None) -> Path:
    """Where the front end keeps its config file and logs.

    ``MEETINGDESK_HOME`` wins; relative values are anchored at the user's home,
    never the working directory. Otherwise a per-platform data directory is used.
    """

    env = os.environ if environ is None else environ
    raw = (env.get("MEETINGDESK_HOME") or "").strip()
    if not raw:
        return _platform_home(env).resolve()
    candidate = Path(raw).expanduser()
    if not candidate.is_absolute():
        candidate = Path.home() / candidate
    return candidate.resolve()


def ensure_meetingdesk_layout(home: Path) -> MeetingDeskPaths:
    paths = MeetingDeskPaths(home=home, logs_dir=home / "logs", config_dir=home / "config")
    for path in (paths.home, paths.logs_dir, paths.config_dir):
        path.mkdir(parents=True, exist_ok=True)
    return paths
