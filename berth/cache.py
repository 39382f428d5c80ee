"""Two-tier key/value cache: process memory backed by JSON files on disk."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from .errors import InvalidCacheKeyError
from .fs_utils import safe_unlink
from .json_store import read_json, write_json
from .logging_utils import get_logger

_KEY_PATTERNS = (
    re.compile(r"[\x00-\x1f\x80-\x9f]"),
    re.compile(r'[/?<>\\:*|"]'),
    re.compile(r"^\.+$"),
    re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE),
    re.compile(r"[. ]+$"),
)


class _Missing:
    """Sentinel returned by :meth:`Cache.get` on a miss."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def is_valid_key(key: str) -> bool:
    if not isinstance(key, str) or not key:
        return False
    return not any(pattern.search(key) for pattern in _KEY_PATTERNS)


def validate_key(key: str) -> str:
    if not is_valid_key(key):
        raise InvalidCacheKeyError(str(key))
    return key


@dataclass
class _MemoryEntry:
    value: Any
    expires_at: float | None


class Cache:
    def __init__(self, cache_dir: Path, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._cache_dir = Path(cache_dir)
        self._clock = clock
        self._memory: dict[str, _MemoryEntry] = {}
        self._log = get_logger("cache")

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def set(self, key: str, value: Any, *, persist: bool = False, ttl: float = 0) -> None:
        """Store ``value``; ``ttl`` is in seconds and 0 means no expiry."""

        validate_key(key)
        expires_at = self._clock() + ttl if ttl and ttl > 0 else None
        self._memory[key] = _MemoryEntry(value=value, expires_at=expires_at)
        self._log.debug("Cached key {} (persist={}, ttl={})", key, persist, ttl)
        if persist:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
            write_json(self._path(key), value)

    def get(self, key: str) -> Any:
        if not is_valid_key(key):
            return MISSING
        entry = self._memory.get(key)
        if entry is not None:
            if entry.expires_at is None or entry.expires_at > self._clock():
                self._log.debug("Retrieved key {} from memory", key)
                return entry.value
            del self._memory[key]
        value = read_json(self._path(key), MISSING)
        if value is MISSING:
            self._log.debug("Cache miss for key {}", key)
        return value

    def remove(self, key: str) -> None:
        if not is_valid_key(key):
            return
        if self._memory.pop(key, None) is not None:
            self._log.debug("Removed key {} from memory", key)
        if not safe_unlink(self._path(key)):
            self._log.debug("No file cache with key {}", key)

    def clear_memory(self) -> None:
        self._memory.clear()

    def _path(self, key: str) -> Path:
        return self._cache_dir / key
