from __future__ import annotations

import asyncio

import httpx
import pytest

from berth.cache import MISSING
from berth.config import BERTH_VERSION
from berth.engine import RESTART_ALWAYS
from berth.errors import EngineError, HookError
from berth.events import Hook

TRACKED = [
    Hook.PRE_DESTROY,
    Hook.PRE_STOP,
    Hook.POST_STOP,
    Hook.PRE_UNINSTALL,
    Hook.POST_UNINSTALL,
    Hook.POST_DESTROY,
    Hook.PRE_START,
    Hook.POST_START,
    Hook.PRE_REBUILD,
    Hook.POST_REBUILD,
]


def _track(app) -> list[str]:
    fired: list[str] = []
    for hook in TRACKED:
        app.events.on(hook, lambda _app, name=hook.value: fired.append(name))
    return fired


@pytest.mark.anyio
async def test_is_running_false_when_engine_down(make_runtime, write_app, fake_engine) -> None:
    runtime = make_runtime()
    app = await runtime.get_app(cwd=write_app("demo"))
    fake_engine.add_container("c1", app="demo", running=True)
    fake_engine.up = False

    assert await runtime.lifecycle.is_running(app) is False
    assert "is_running" not in fake_engine.actions()


@pytest.mark.anyio
async def test_is_running_ignores_always_restarting_containers(make_runtime, write_app, fake_engine) -> None:
    runtime = make_runtime()
    app = await runtime.get_app(cwd=write_app("demo"))
    fake_engine.add_container("c1", app="demo", running=True, restart_policy=RESTART_ALWAYS)

    assert await runtime.lifecycle.is_running(app) is False

    fake_engine.add_container("c2", app="demo", service="db", running=True)
    assert await runtime.lifecycle.is_running(app) is True


@pytest.mark.anyio
async def test_destroy_fires_hooks_in_order_and_forgets_app(make_runtime, write_app, fake_engine) -> None:
    runtime = make_runtime()
    app = await runtime.get_app(cwd=write_app("demo"))
    fake_engine.add_container("c1", app="demo", running=True)
    runtime.cache.set(app.meta_cache_key, {"builtAgainst": BERTH_VERSION}, persist=True)
    fired = _track(app)

    await runtime.lifecycle.destroy(app)

    assert fired == [
        "pre-destroy",
        "pre-stop",
        "post-stop",
        "pre-uninstall",
        "post-uninstall",
        "post-destroy",
    ]
    assert "demo" not in [entry.name for entry in runtime.registry.get_apps(use_cache=False)]
    assert runtime.cache.get(app.meta_cache_key) is MISSING
    assert not (runtime.cache.cache_dir / app.meta_cache_key).exists()
    assert app.opts["purge"] is True
    assert ("destroy", "demo", True) in fake_engine.calls


@pytest.mark.anyio
async def test_start_sequence_and_build_metadata(make_runtime, write_app, fake_engine) -> None:
    runtime = make_runtime()
    app = await runtime.get_app(cwd=write_app("demo"))
    fired = _track(app)

    await runtime.lifecycle.start(app)

    assert fired == ["pre-start", "post-start"]
    assert app.initialized is True
    assert app.services == ["web"]
    assert app.compose == [{"services": {"web": {}}}]
    assert "BERTH_INFO" in app.env
    assert ("start", "demo") in fake_engine.calls
    assert runtime.cache.get(app.meta_cache_key) == {"builtAgainst": BERTH_VERSION}
    assert app.warnings == []


@pytest.mark.anyio
async def test_rebuild_sequence(make_runtime, write_app, fake_engine) -> None:
    runtime = make_runtime()
    app = await runtime.get_app(cwd=write_app("demo"))
    fired = _track(app)

    await runtime.lifecycle.rebuild(app)

    assert fired == [
        "pre-stop",
        "post-stop",
        "pre-rebuild",
        "pre-uninstall",
        "post-uninstall",
        "post-rebuild",
        "pre-start",
        "post-start",
    ]
    engine_actions = [a for a in fake_engine.actions() if a in {"stop", "destroy", "build", "start"}]
    assert engine_actions == ["stop", "destroy", "build", "start"]


@pytest.mark.anyio
async def test_old_build_warns_after_start(make_runtime, write_app) -> None:
    runtime = make_runtime()
    root = write_app("demo")
    runtime.cache.set("demo.meta.cache", {"builtAgainst": "0.1.0"}, persist=True)
    app = await runtime.get_app(cwd=root)

    await runtime.lifecycle.start(app)

    assert app.meta.built_against == "0.1.0"
    assert [warning.command for warning in app.warnings] == ["berth rebuild"]


@pytest.mark.anyio
async def test_existing_containers_without_meta_mark_unknown_build(make_runtime, write_app, fake_engine) -> None:
    runtime = make_runtime()
    app = await runtime.get_app(cwd=write_app("demo"))
    fake_engine.add_container("c1", app="demo", running=False)

    await runtime.lifecycle.start(app)

    assert runtime.cache.get(app.meta_cache_key) == {"builtAgainst": "unknown"}
    assert len(app.warnings) == 1


@pytest.mark.anyio
async def test_hook_failure_aborts_sequence(make_runtime, write_app, fake_engine) -> None:
    runtime = make_runtime()
    app = await runtime.get_app(cwd=write_app("demo"))
    fired = _track(app)

    def refuse(_app) -> None:
        raise RuntimeError("blocked")

    app.events.on(Hook.PRE_START, refuse, priority=1)

    with pytest.raises(HookError):
        await runtime.lifecycle.start(app)
    assert "start" not in fake_engine.actions()
    assert fired == []


@pytest.mark.anyio
async def test_engine_failure_is_wrapped_and_aborts(make_runtime, write_app, fake_engine) -> None:
    runtime = make_runtime()
    app = await runtime.get_app(cwd=write_app("demo"))
    fired = _track(app)
    fake_engine.failures["start"] = OSError("socket gone")

    with pytest.raises(EngineError) as excinfo:
        await runtime.lifecycle.start(app)

    assert excinfo.value.action == "start"
    assert isinstance(excinfo.value.__cause__, OSError)
    assert fired == ["pre-start"]


@pytest.mark.anyio
async def test_metrics_failure_never_fails_operation(make_config, make_runtime, write_app, fake_engine) -> None:
    def reject(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    config = make_config(stats={"report": True, "url": "http://stats.test/report"})
    runtime = make_runtime(config, http_transport=httpx.MockTransport(reject))
    app = await runtime.get_app(cwd=write_app("demo"))

    await runtime.lifecycle.stop(app)

    assert ("stop", "demo") in fake_engine.calls


@pytest.mark.anyio
async def test_cleanup_removes_orphaned_app_containers(make_runtime, write_app, fake_engine) -> None:
    runtime = make_runtime()
    await runtime.get_app(cwd=write_app("demo"))
    fake_engine.add_container("c1", app="demo")
    fake_engine.add_container("orphan", app="gone")
    fake_engine.add_container("proxy", app="gone", kind="service")

    removed = await runtime.lifecycle.cleanup()

    assert [ref.id for ref in removed] == ["orphan"]
    assert ("stop", ("orphan",)) in fake_engine.calls
    assert ("destroy", ("orphan",), False) in fake_engine.calls
    assert {ref.id for ref in fake_engine.containers} == {"c1", "proxy"}


@pytest.mark.anyio
async def test_stop_resets_service_info(make_runtime, write_app) -> None:
    runtime = make_runtime()
    app = await runtime.get_app(cwd=write_app("demo"))
    await runtime.lifecycle.init(app)
    app.info["web"].urls.append("http://localhost:8080")

    await runtime.lifecycle.stop(app)

    assert app.info["web"].urls == []


@pytest.mark.anyio
async def test_info_emits_pre_info(make_runtime, write_app) -> None:
    runtime = make_runtime()
    app = await runtime.get_app(cwd=write_app("demo", {"web": {"type": "compose", "healthcheck": "true"}}))
    seen: list[str] = []
    app.events.on(Hook.PRE_INFO, lambda _app: seen.append("pre-info"))

    info = await runtime.lifecycle.info(app)

    assert seen == ["pre-info"]
    assert info["web"].type == "compose"
    assert info["web"].healthcheck == "true"


@pytest.mark.anyio
async def test_operations_on_one_app_are_serialized(make_runtime, write_app, fake_engine) -> None:
    runtime = make_runtime()
    app = await runtime.get_app(cwd=write_app("demo"))
    gate = asyncio.Event()
    order: list[str] = []

    async def slow_start(_app) -> None:
        order.append("start-begin")
        await gate.wait()
        order.append("start-end")

    app.events.on(Hook.PRE_START, slow_start)
    app.events.on(Hook.PRE_STOP, lambda _app: order.append("stop"))

    start = asyncio.ensure_future(runtime.lifecycle.start(app))
    while "start-begin" not in order:
        await asyncio.sleep(0)
    stop = asyncio.ensure_future(runtime.lifecycle.stop(app))
    for _ in range(5):
        await asyncio.sleep(0)
    assert runtime.locks.locked(app.docker_name)
    assert order == ["start-begin"]

    gate.set()
    await asyncio.gather(start, stop)

    assert order == ["start-begin", "start-end", "stop"]
    assert not (runtime.config.lock_dir / "demo.lock").exists()
