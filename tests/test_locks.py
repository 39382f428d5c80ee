from __future__ import annotations

import asyncio

import pytest

from berth.errors import LockTimeoutError
from berth.locks import AppLocks


@pytest.mark.anyio
async def test_held_lock_blocks_other_process_until_timeout(tmp_path) -> None:
    lock_dir = tmp_path / "locks"
    ours = AppLocks(lock_dir, timeout_s=0.2, poll_interval_s=0.01)
    theirs = AppLocks(lock_dir, timeout_s=0.05, poll_interval_s=0.01)

    async with ours.hold("demo"):
        with pytest.raises(LockTimeoutError):
            async with theirs.hold("demo"):
                pass

    async with theirs.hold("demo"):
        assert (lock_dir / "demo.lock").exists()
    assert not (lock_dir / "demo.lock").exists()


@pytest.mark.anyio
async def test_stale_lock_from_dead_process_is_taken_over(tmp_path, monkeypatch) -> None:
    lock_dir = tmp_path / "locks"
    lock_dir.mkdir()
    (lock_dir / "demo.lock").write_text("999999", encoding="ascii")
    monkeypatch.setattr("berth.locks._holder_is_dead", lambda _path: True)
    locks = AppLocks(lock_dir, timeout_s=0.5, poll_interval_s=0.01)

    async with locks.hold("demo"):
        assert locks.locked("demo")

    assert not locks.locked("demo")


@pytest.mark.anyio
async def test_different_apps_do_not_block_each_other(tmp_path) -> None:
    locks = AppLocks(tmp_path / "locks", use_files=False)
    entered: list[str] = []

    async def work(key: str) -> None:
        async with locks.hold(key):
            entered.append(key)
            await asyncio.sleep(0.01)

    await asyncio.gather(work("one"), work("two"))

    assert sorted(entered) == ["one", "two"]
