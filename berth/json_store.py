"""Persistence helpers for small JSON documents."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

from .fs_utils import atomic_write_text


def read_json(path: Path, default: Any = None) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return default


def write_json(path: Path, value: Any) -> None:
    atomic_write_text(path, _safe_json(value))


def update_json(path: Path, updater: Callable[[Any], Any], default: Any = None) -> Any:
    current = read_json(path, default)
    updated = updater(current)
    if updated is None:
        updated = current
    write_json(path, updated)
    return updated


def _safe_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2)
