"""Lifecycle operations for apps.

Each operation is a fixed sequence of action report, orphan cleanup, a
``pre-*`` hook, one engine call and a ``post-*`` hook. Steps run strictly one
after another and the first failing hook or engine call aborts the rest of
the sequence. Action reports never fail an operation.

Public operations reset ``app.warnings``, hold the app's lock for their whole
duration and initialize the app (builders then ``post-init``) on first use.
Composite operations (restart, destroy, rebuild) call the private step
functions so the lock is only taken once.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

from .app import Application, ServiceInfo, docker_name_for
from .builders import BuilderRegistry
from .cache import Cache
from .engine import KIND_APP, RESTART_ALWAYS, ContainerRef, Engine
from .errors import EngineError
from .events import Hook
from .instantiator import AppManager
from .locks import AppLocks
from .logging_utils import get_logger
from .observability.metrics import (
    lifecycle_operation_failures_total,
    lifecycle_operation_seconds,
    lifecycle_operations_total,
    orphan_containers_removed_total,
)
from .observability.reporter import ActionReporter
from .registry import Registry


class LifecycleController:
    def __init__(
        self,
        *,
        engine: Engine,
        registry: Registry,
        cache: Cache,
        apps: AppManager,
        reporter: ActionReporter,
        builders: BuilderRegistry,
        locks: AppLocks,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._cache = cache
        self._apps = apps
        self._reporter = reporter
        self._builders = builders
        self._locks = locks
        self._log = get_logger("lifecycle")

    async def init(self, app: Application) -> Application:
        async with self._operation("init", app):
            pass
        return app

    async def start(self, app: Application) -> None:
        async with self._operation("start", app):
            await self._start(app)

    async def stop(self, app: Application) -> None:
        async with self._operation("stop", app):
            await self._stop(app)

    async def restart(self, app: Application) -> None:
        async with self._operation("restart", app):
            await app.status(f"Restarting {app.name}")
            await self._stop(app)
            await self._start(app)

    async def uninstall(self, app: Application, *, purge: bool = False) -> None:
        async with self._operation("uninstall", app):
            await self._uninstall(app, purge=purge)

    async def destroy(self, app: Application) -> None:
        async with self._operation("destroy", app):
            await self._destroy(app)

    async def rebuild(self, app: Application) -> None:
        async with self._operation("rebuild", app):
            await self._rebuild(app)

    async def info(self, app: Application) -> dict[str, ServiceInfo]:
        async with self._operation("info", app):
            await app.events.emit(Hook.PRE_INFO, app)
        return app.info

    async def cleanup(self, app: Application | None = None) -> list[ContainerRef]:
        """Stop and remove app containers that no registered app owns."""

        if app is not None:
            await app.status("Cleaning up app registry and containers")
        known = {docker_name_for(entry.name) for entry in self._apps.list(use_cache=False)}
        containers = await self._engine_call("list", self._engine.list_containers)
        orphans = [
            container
            for container in containers
            if container.kind == KIND_APP and container.app not in known
        ]
        if orphans:
            self._log.info("Removing {} orphaned container(s)", len(orphans))
            await self._engine_call("stop", self._engine.stop, orphans)
            await self._engine_call("destroy", self._engine.destroy, orphans)
            orphan_containers_removed_total.inc(len(orphans))
        return orphans

    async def is_running(self, app: Application) -> bool:
        if not await self._engine_call("is_up", self._engine.is_up):
            return False
        containers = await self._engine_call("list", self._engine.list_containers, app.project)
        for container in containers:
            details = await self._engine_call("inspect", self._engine.inspect, container)
            # Auto-restarting containers report running regardless of app state.
            if details.restart_policy == RESTART_ALWAYS:
                continue
            if await self._engine_call("is_running", self._engine.is_running, container.id):
                return True
        return False

    @asynccontextmanager
    async def _operation(self, action: str, app: Application) -> AsyncIterator[None]:
        lifecycle_operations_total.labels(action).inc()
        started = time.monotonic()
        async with self._locks.hold(app.docker_name):
            app.warnings.clear()
            try:
                if not app.initialized:
                    await self._init(app)
                yield
            except Exception:
                lifecycle_operation_failures_total.labels(action).inc()
                raise
            finally:
                lifecycle_operation_seconds.labels(action).observe(time.monotonic() - started)

    async def _init(self, app: Application) -> None:
        defaults: dict[str, ServiceInfo] = {}
        app.compose.clear()
        app.services.clear()
        for name, declaration in app.config.services.items():
            specs = self._builders.build(name, declaration)
            app.compose.append(specs.compose_fragment())
            produced = list(specs.services) or [name]
            for service in produced:
                if service not in app.services:
                    app.services.append(service)
            extra = dict(specs.info)
            defaults[name] = ServiceInfo(
                service=name,
                type=str(extra.pop("type", declaration.type)),
                healthcheck=extra.pop("healthcheck", declaration.healthcheck),
                meta=extra,
            )
            for service in produced:
                if service != name:
                    defaults.setdefault(
                        service,
                        ServiceInfo(service=service, type=declaration.type, meta={"managed": True}),
                    )
        app.set_info_defaults(defaults)
        await app.events.emit(Hook.POST_INIT, app)
        app.initialized = True
        self._log.debug("App {} initialized with services {}", app.name, app.services)

    async def _start(self, app: Application) -> None:
        await app.status(f"Starting {app.name}")
        await self._reporter.report_action("start", app=app)
        await self.cleanup(app)
        await app.events.emit(Hook.PRE_START, app)
        await self._engine_call("start", self._engine.start, app)
        await app.events.emit(Hook.POST_START, app)

    async def _stop(self, app: Application) -> None:
        await app.status(f"Stopping {app.name}")
        await self._reporter.report_action("stop", app=app)
        await self.cleanup(app)
        await app.events.emit(Hook.PRE_STOP, app)
        await self._engine_call("stop", self._engine.stop, app)
        await app.events.emit(Hook.POST_STOP, app)

    async def _uninstall(self, app: Application, *, purge: bool) -> None:
        await app.status(f"Uninstalling {app.name}")
        await self._reporter.report_action("uninstall", app=app)
        await app.events.emit(Hook.PRE_UNINSTALL, app)
        await self._engine_call("destroy", self._engine.destroy, app, purge=purge)
        await app.events.emit(Hook.POST_UNINSTALL, app)

    async def _destroy(self, app: Application) -> None:
        await app.status(f"Destroying {app.name}")
        await app.events.emit(Hook.PRE_DESTROY, app)
        await self._stop(app)
        app.opts["purge"] = True
        await self._uninstall(app, purge=True)
        self._registry.remove(app.name)
        self._cache.remove(app.meta_cache_key)
        await app.events.emit(Hook.POST_DESTROY, app)

    async def _rebuild(self, app: Application) -> None:
        await app.status(f"Rebuilding {app.name}")
        await self._stop(app)
        await app.events.emit(Hook.PRE_REBUILD, app)
        await self._uninstall(app, purge=False)
        await self._engine_call("build", self._engine.build, app)
        await app.events.emit(Hook.POST_REBUILD, app)
        await self._start(app)

    async def _engine_call(
        self, action: str, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> Any:
        try:
            return await fn(*args, **kwargs)
        except EngineError:
            raise
        except Exception as exc:
            raise EngineError(action, str(exc) or type(exc).__name__) from exc
