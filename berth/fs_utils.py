"""Filesystem helpers for atomic writes and lock files."""

from __future__ import annotations

import errno
import os
import shutil
import time
import uuid
from pathlib import Path


def fsync_file(path: Path) -> None:
    mode = "r+b" if os.name == "nt" else "rb"
    try:
        with path.open(mode) as handle:
            os.fsync(handle.fileno())
    except FileNotFoundError:
        return
    except OSError as exc:
        # Windows refuses fsync on some handle types.
        if os.name == "nt" and getattr(exc, "errno", None) in (9, 22, 13):
            return
        raise


def fsync_dir(path: Path) -> None:
    if os.name == "nt":
        return
    fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def safe_unlink(path: Path, retries: int = 5, backoff_s: float = 0.05) -> bool:
    """Remove ``path``; return False when it did not exist."""

    for attempt in range(retries):
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except PermissionError:
            if attempt == retries - 1:
                raise
            time.sleep(backoff_s * (2**attempt))
    return False


def safe_replace(source: Path, destination: Path) -> None:
    try:
        os.replace(source, destination)
        return
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
    _copy_atomic(source, destination)
    safe_unlink(source)


def _copy_atomic(source: Path, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    temp_path = destination.with_name(f".tmp-{destination.name}-{uuid.uuid4().hex}")
    try:
        with source.open("rb") as src, temp_path.open("wb") as dst:
            shutil.copyfileobj(src, dst, length=1024 * 1024)
            dst.flush()
            os.fsync(dst.fileno())
        os.replace(temp_path, destination)
        fsync_dir(destination.parent)
    finally:
        if temp_path.exists():
            safe_unlink(temp_path)


def atomic_write_text(path: Path, payload: str) -> None:
    """Write ``payload`` so readers never observe a partial file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".tmp-{path.name}-{uuid.uuid4().hex}")
    try:
        tmp_path.write_text(payload, encoding="utf-8")
        fsync_file(tmp_path)
        safe_replace(tmp_path, path)
        fsync_dir(path.parent)
    finally:
        if tmp_path.exists():
            safe_unlink(tmp_path)


def try_acquire_lock_file(path: Path) -> int | None:
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_RDWR)
    except FileExistsError:
        return None
    os.write(fd, str(os.getpid()).encode("ascii"))
    return fd


def release_lock_file(path: Path, fd: int) -> None:
    os.close(fd)
    safe_unlink(path)
