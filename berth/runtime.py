"""Process-wide service handles wired together."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx

from .app import Application
from .behaviors import CoreBehaviors
from .builders import BuilderRegistry, default_builders
from .cache import Cache
from .config import BerthConfig, load_config
from .engine import Engine
from .errors import ConfigError, PluginLoadError
from .events import EventBus, HookScope
from .instantiator import AppInstantiator, AppManager
from .lifecycle import LifecycleController
from .locks import AppLocks
from .logging_utils import get_logger
from .observability.reporter import ActionReporter
from .plugins import PluginLoader, load_entrypoint
from .readiness import ReadinessCoordinator
from .registry import Registry
from .retry import Sleep
from .updates import UpdateManager

_LOG = get_logger("runtime")


def create_engine(config: BerthConfig) -> Engine:
    """Build the engine named by ``engine.factory`` (``module:callable``)."""

    factory_ref = config.engine.factory
    if not factory_ref:
        raise ConfigError("No container engine configured; set engine.factory")
    try:
        factory = load_entrypoint(factory_ref)
    except (ImportError, PluginLoadError) as exc:
        raise ConfigError(f"Cannot load engine factory {factory_ref}: {exc}") from exc
    engine = factory(config)
    if not isinstance(engine, Engine):
        raise ConfigError(f"Engine factory {factory_ref} returned {type(engine).__name__}")
    return engine


class BerthRuntime:
    """Owns every shared handle; apps and controllers receive them explicitly."""

    def __init__(
        self,
        config: BerthConfig | None = None,
        *,
        engine: Engine | None = None,
        builders: BuilderRegistry | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config or load_config()
        self.cache = Cache(self.config.resolved_cache_dir)
        self.registry = Registry(self.config.registry_path, cache=self.cache)
        self.events = EventBus(HookScope.GLOBAL, label="global")
        self.builders = builders or default_builders()
        self.engine = engine if engine is not None else create_engine(self.config)
        self.reporter = ActionReporter(self.config, transport=http_transport)
        self.readiness = ReadinessCoordinator(
            engine=self.engine,
            config=self.config.readiness,
            transport=http_transport,
            sleep=sleep,
        )
        self.behaviors = CoreBehaviors(
            config=self.config,
            engine=self.engine,
            cache=self.cache,
            readiness=self.readiness,
        )
        self.behaviors.register(self.events)
        self.plugins = PluginLoader(
            config=self.config,
            engine=self.engine,
            cache=self.cache,
            registry=self.registry,
            builders=self.builders,
        )
        self.instantiator = AppInstantiator(
            config=self.config,
            global_events=self.events,
            registry=self.registry,
            cache=self.cache,
            plugin_loader=self.plugins,
        )
        self.apps = AppManager(
            config=self.config,
            registry=self.registry,
            instantiator=self.instantiator,
        )
        self.locks = AppLocks(
            self.config.lock_dir,
            use_files=self.config.locks.enabled,
            timeout_s=self.config.locks.timeout_s,
            poll_interval_s=self.config.locks.poll_interval_s,
        )
        self.lifecycle = LifecycleController(
            engine=self.engine,
            registry=self.registry,
            cache=self.cache,
            apps=self.apps,
            reporter=self.reporter,
            builders=self.builders,
            locks=self.locks,
        )
        self.updates = UpdateManager(
            self.config.updates, cache=self.cache, transport=http_transport
        )
        _LOG.debug("Runtime ready (conf root {})", self.config.user_conf_root)

    async def get_app(self, name: str | None = None, *, cwd: Path | None = None) -> Application | None:
        return await self.apps.get(name, cwd=cwd)
