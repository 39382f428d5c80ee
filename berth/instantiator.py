"""Turn discovered app declarations into runtime Application objects."""

from __future__ import annotations

from collections import defaultdict
from pathlib import Path

from .app import AppMeta, Application, docker_name_for
from .cache import MISSING, Cache
from .config import AppDeclaration, BerthConfig, load_app_config
from .errors import ConfigError, DuplicateAppError
from .events import EventBus, Hook
from .logging_utils import get_logger
from .paths import find_app_config
from .plugins import PluginLoader
from .registry import Registry, RegistryEntry


class AppInstantiator:
    """Build an :class:`Application` through the instantiation hook sequence.

    ``pre-instantiate-app`` and ``post-instantiate-app`` fire on the global bus,
    the app is registered, its declared plugins are loaded, and finally
    ``app-ready`` fires on the app's own bus. Any hook or registry failure
    aborts instantiation.
    """

    def __init__(
        self,
        *,
        config: BerthConfig,
        global_events: EventBus,
        registry: Registry,
        cache: Cache,
        plugin_loader: PluginLoader,
    ) -> None:
        self._config = config
        self._events = global_events
        self._registry = registry
        self._cache = cache
        self._plugins = plugin_loader
        self._log = get_logger("instantiator")

    async def instantiate(
        self,
        name: str | None,
        root: Path | str,
        declaration: AppDeclaration,
        *,
        config_file: Path | None = None,
    ) -> Application:
        self._log.debug("Getting app {} from {}", name, root)
        await self._events.emit(Hook.PRE_INSTANTIATE_APP, declaration)

        app_name = declaration.name or name
        if not app_name:
            raise ConfigError(f"App at {root} has no name")
        app = Application(
            app_name,
            root,
            declaration,
            meta_cache_template=self._config.meta_cache_template,
        )
        if config_file is not None:
            app.config_files.append(Path(config_file))
        cached_meta = self._cache.get(app.meta_cache_key)
        if cached_meta is not MISSING:
            app.meta = AppMeta.from_raw(cached_meta)

        await self._events.emit(Hook.POST_INSTANTIATE_APP, app)
        self._registry.register(app.name, app.root)
        loaded = await self._plugins.load_all(app)
        if loaded:
            self._log.debug("App {} loaded plugins {}", app.name, loaded)
        await app.events.emit(Hook.APP_READY, app)
        self._log.info("App {} is ready!", app.name)
        return app


class AppManager:
    """Discover apps through the registry and the filesystem."""

    def __init__(
        self,
        *,
        config: BerthConfig,
        registry: Registry,
        instantiator: AppInstantiator,
    ) -> None:
        self._config = config
        self._registry = registry
        self._instantiator = instantiator
        self._log = get_logger("apps")

    def list(self, *, use_cache: bool = True) -> list[RegistryEntry]:
        apps = self._registry.get_apps(use_cache=use_cache)
        groups: dict[str, list[RegistryEntry]] = defaultdict(list)
        for entry in apps:
            groups[entry.name].append(entry)
        for app_name, group in groups.items():
            if len(group) != 1:
                raise DuplicateAppError(app_name, [entry.dir for entry in group])
        return apps

    def find(self, name: str) -> RegistryEntry | None:
        for entry in self.list():
            if entry.name == name or docker_name_for(entry.name) == name:
                return entry
        return None

    async def get(self, name: str | None = None, *, cwd: Path | None = None) -> Application | None:
        """Return a fully instantiated app, or ``None`` when none is found.

        A named app is looked up in the registry. An unknown or missing name
        falls back to ``cwd``. Discovery then walks up through parent
        directories until an app config file turns up.
        """

        entry = self.find(name) if name else None
        if entry is not None:
            start = Path(entry.dir)
        else:
            if name:
                self._log.info("No registered app named {}, checking the current directory", name)
            start = Path(cwd) if cwd is not None else Path.cwd()
        config_file = find_app_config(start, self._config.app_config_filename)
        if config_file is None:
            self._log.debug("No {} found from {}", self._config.app_config_filename, start)
            return None
        declaration = load_app_config(config_file)
        return await self._instantiator.instantiate(
            declaration.name or config_file.parent.name,
            config_file.parent,
            declaration,
            config_file=config_file,
        )

    async def exists(self, name: str, *, cwd: Path | None = None) -> bool:
        return await self.get(name, cwd=cwd) is not None
