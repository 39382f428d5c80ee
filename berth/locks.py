"""Per-app mutual exclusion for lifecycle operations."""

from __future__ import annotations

import asyncio
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from .errors import LockTimeoutError
from .fs_utils import release_lock_file, safe_unlink, try_acquire_lock_file
from .logging_utils import get_logger


def _holder_is_dead(path: Path) -> bool:
    if os.name == "nt":
        return False
    try:
        pid = int(path.read_text(encoding="ascii").strip() or "0")
    except (OSError, ValueError):
        return False
    if pid <= 0 or pid == os.getpid():
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    except PermissionError:
        return False
    return False


class AppLocks:
    """Serialize operations on the same app.

    An ``asyncio.Lock`` per key covers tasks inside this process; a lock file
    under ``lock_dir`` covers other berth processes.
    """

    def __init__(
        self,
        lock_dir: Path,
        *,
        use_files: bool = True,
        timeout_s: float = 300.0,
        poll_interval_s: float = 0.1,
    ) -> None:
        self._lock_dir = Path(lock_dir)
        self._use_files = use_files
        self._timeout_s = timeout_s
        self._poll_interval_s = poll_interval_s
        self._locks: dict[str, asyncio.Lock] = {}
        self._log = get_logger("locks")

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if not self._use_files:
                yield
                return
            path = self._lock_dir / f"{key}.lock"
            fd = await self._acquire_file(path)
            try:
                yield
            finally:
                release_lock_file(path, fd)

    async def _acquire_file(self, path: Path) -> int:
        deadline = time.monotonic() + self._timeout_s
        while True:
            fd = try_acquire_lock_file(path)
            if fd is not None:
                return fd
            if _holder_is_dead(path):
                self._log.warning("Removing stale lock {}", path)
                safe_unlink(path)
                continue
            if time.monotonic() >= deadline:
                raise LockTimeoutError(f"Timed out waiting for lock {path}")
            await asyncio.sleep(self._poll_interval_s)
