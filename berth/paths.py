"""Default filesystem locations for berth state."""

from __future__ import annotations

import os
import sys
from pathlib import Path

HOME_ENV = "BERTH_HOME"
APP_CONFIG_FILENAME = ".berth.yml"


def _split_path_parts(raw: str) -> list[str]:
    normalized = raw.replace("\\", "/")
    return [part for part in normalized.split("/") if part]


def user_conf_root() -> Path:
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    if sys.platform == "win32":
        local = os.environ.get("LOCALAPPDATA")
        if local:
            return Path(local) / "Berth"
    return Path.home() / ".berth"


def default_log_dir() -> Path:
    return user_conf_root() / "logs"


def default_config_path() -> Path:
    return user_conf_root() / "config.yml"


def parent_dirs(start: Path) -> list[Path]:
    """Return ``start`` followed by each of its parents, nearest first."""

    resolved = Path(start).resolve()
    return [resolved, *resolved.parents]


def find_app_config(start: Path, filename: str = APP_CONFIG_FILENAME) -> Path | None:
    for directory in parent_dirs(start):
        candidate = directory / filename
        if candidate.is_file():
            return candidate
    return None


def display_path(path: Path) -> str:
    parts = _split_path_parts(str(path))
    home = _split_path_parts(str(Path.home()))
    if parts[: len(home)] == home and home:
        return "/".join(["~", *parts[len(home) :]])
    return str(path)
