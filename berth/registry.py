"""Durable name -> directory index of known apps."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .cache import MISSING, Cache
from .json_store import read_json, update_json
from .logging_utils import get_logger

REGISTRY_CACHE_KEY = "app-registry"


@dataclass(frozen=True)
class RegistryEntry:
    name: str
    dir: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "dir": self.dir}


class Registry:
    def __init__(self, path: Path, cache: Cache | None = None) -> None:
        self._path = Path(path)
        self._cache = cache
        self._log = get_logger("registry")

    @property
    def path(self) -> Path:
        return self._path

    def register(self, name: str, dir: Path | str) -> RegistryEntry:
        entry = RegistryEntry(name=name, dir=str(Path(dir)))

        def _apply(current: Any) -> list[dict[str, str]]:
            entries = _coerce_entries(current)
            if entry not in entries:
                entries.append(entry)
            return [item.to_dict() for item in entries]

        update_json(self._path, _apply, default=[])
        self._invalidate()
        self._log.debug("Registered app {} at {}", entry.name, entry.dir)
        return entry

    def remove(self, name: str) -> int:
        removed = 0

        def _apply(current: Any) -> list[dict[str, str]]:
            nonlocal removed
            entries = _coerce_entries(current)
            kept = [item for item in entries if item.name != name]
            removed = len(entries) - len(kept)
            return [item.to_dict() for item in kept]

        update_json(self._path, _apply, default=[])
        self._invalidate()
        self._log.debug("Removed {} registry entries for {}", removed, name)
        return removed

    def get_apps(self, *, use_cache: bool = True) -> list[RegistryEntry]:
        if use_cache and self._cache is not None:
            cached = self._cache.get(REGISTRY_CACHE_KEY)
            if cached is not MISSING:
                return _coerce_entries(cached)
        entries = []
        for entry in _coerce_entries(read_json(self._path, [])):
            if not Path(entry.dir).is_dir():
                self._log.debug("Skipping app {}; {} no longer exists", entry.name, entry.dir)
                continue
            entries.append(entry)
        if self._cache is not None:
            self._cache.set(REGISTRY_CACHE_KEY, [item.to_dict() for item in entries])
        return entries

    def _invalidate(self) -> None:
        if self._cache is not None:
            self._cache.remove(REGISTRY_CACHE_KEY)


def _coerce_entries(raw: Any) -> list[RegistryEntry]:
    if not isinstance(raw, list):
        return []
    entries: list[RegistryEntry] = []
    for item in raw:
        if isinstance(item, dict) and item.get("name") and item.get("dir"):
            entries.append(RegistryEntry(name=str(item["name"]), dir=str(item["dir"])))
    return entries
