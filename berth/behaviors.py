"""Core per-app behaviors wired onto lifecycle hooks."""

from __future__ import annotations

import json
from typing import Any, Iterable

from .app import AppMeta, Application
from .cache import Cache
from .config import BerthConfig
from .engine import Engine, ScanResult
from .events import EventBus, Hook
from .logging_utils import get_logger
from .readiness import ReadinessCoordinator

HTTP_PORTS_LABEL = "io.berth.http-ports"
SOURCE_LABEL = "io.berth.src"
DEFAULT_HTTP_PORTS = "80,443"
INFO_ENV_PRIORITY = 10
UNKNOWN_BUILD = "unknown"

_LOCAL_ADDRESSES = frozenset({"", "0.0.0.0", "127.0.0.1", "::"})


def http_ports(scan: ScanResult) -> list[str]:
    raw = scan.labels.get(HTTP_PORTS_LABEL, DEFAULT_HTTP_PORTS)
    return [port.strip() for port in raw.split(",") if port.strip()]


def urls_from_scan(
    scan: ScanResult,
    ports: Iterable[str] | None = None,
    bind_address: str = "127.0.0.1",
) -> list[str]:
    """Build service URLs from the host bindings of its published http ports.

    Port 443 maps to ``https``; everything else is ``http``. Bindings on a
    wildcard or loopback address (or the configured bind address) are
    reported as ``localhost``.
    """

    urls: list[str] = []
    for port in ports if ports is not None else http_ports(scan):
        scheme = "https" if port == "443" else "http"
        for binding in scan.ports.get(f"{port}/tcp", []):
            if not binding.host_port:
                continue
            host = binding.host_ip
            if host in _LOCAL_ADDRESSES or host == bind_address:
                host = "localhost"
            url = f"{scheme}://{host}:{binding.host_port}"
            if url not in urls:
                urls.append(url)
    return urls


def load_keys_value(keys: Any) -> str:
    if isinstance(keys, (list, tuple)):
        return " ".join(str(key) for key in keys)
    return str(bool(keys)).lower()


class CoreBehaviors:
    """Hooks every app gets: URL discovery, build metadata and defaults."""

    def __init__(
        self,
        *,
        config: BerthConfig,
        engine: Engine,
        cache: Cache,
        readiness: ReadinessCoordinator,
    ) -> None:
        self._config = config
        self._engine = engine
        self._cache = cache
        self._readiness = readiness
        self._log = get_logger("behaviors")

    def register(self, events: EventBus) -> None:
        events.on(Hook.POST_INSTANTIATE_APP, self.on_instantiated)

    async def on_instantiated(self, app: Application) -> None:
        self.apply_defaults(app)
        self.attach(app)

    def apply_defaults(self, app: Application) -> None:
        app.env.setdefault("BERTH_APP_NAME", app.name)
        app.env.setdefault("BERTH_APP_PROJECT", app.project)
        app.env.setdefault("BERTH_APP_ROOT", str(app.root))
        app.env.setdefault("BERTH_WEBROOT", str(app.webroot))
        app.env.setdefault("BERTH_LOAD_KEYS", load_keys_value(app.config.keys))
        app.labels.setdefault(SOURCE_LABEL, ",".join(str(path) for path in app.config_files))
        app.labels.setdefault(HTTP_PORTS_LABEL, DEFAULT_HTTP_PORTS)

    def attach(self, app: Application) -> None:
        events = app.events
        events.on(Hook.POST_INIT, self.discover_urls)
        events.on(Hook.POST_INIT, self.set_info_env, priority=INFO_ENV_PRIORITY)
        events.on(Hook.PRE_START, self.mark_existing_build)
        events.on(Hook.POST_START, self.discover_urls)
        events.on(Hook.POST_START, self.check_built_against)
        events.on(Hook.POST_STOP, self.reset_info)
        events.on(Hook.POST_REBUILD, self.record_build)
        events.on(Hook.POST_UNINSTALL, self.forget_meta)
        self._readiness.attach(app)

    async def discover_urls(self, app: Application) -> None:
        for container in await self._engine.list_containers(app.project):
            if container.service not in app.services:
                continue
            if not await self._engine.is_running(container.id):
                continue
            scan = await self._engine.scan(container)
            info = app.info.get(scan.service)
            if info is None:
                continue
            info.urls = urls_from_scan(scan, bind_address=self._config.bind_address)

    async def set_info_env(self, app: Application) -> None:
        info = {name: value.to_dict() for name, value in app.info.items()}
        app.env["BERTH_INFO"] = json.dumps(info, sort_keys=True)

    async def mark_existing_build(self, app: Application) -> None:
        # Containers from before build tracking existed.
        if app.meta.built_against is not None:
            return
        if await self._engine.list_containers(app.project, all=True):
            self._persist_meta(app, UNKNOWN_BUILD)

    async def check_built_against(self, app: Application) -> None:
        if app.meta.built_against is None:
            self._persist_meta(app, self._config.version)
        if app.meta.built_against != self._config.version:
            app.add_warning(
                "This app was built on a different version of berth.",
                [
                    "While it may not be necessary, we highly recommend you update the app.",
                    "This ensures your app is up to date with your current berth version.",
                    "You can do this with the command below:",
                ],
                command="berth rebuild",
            )

    async def reset_info(self, app: Application) -> None:
        app.reset_info()

    async def record_build(self, app: Application) -> None:
        self._persist_meta(app, self._config.version)

    async def forget_meta(self, app: Application) -> None:
        self._cache.remove(app.meta_cache_key)
        app.meta = AppMeta()

    def _persist_meta(self, app: Application, version: str) -> None:
        app.meta = AppMeta(built_against=version)
        self._cache.set(app.meta_cache_key, app.meta.to_raw(), persist=True)
        self._log.debug("App {} built against {}", app.name, version)
