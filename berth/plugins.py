"""Loading of plugins declared in an app's ``plugins`` list.

A plugin reference is one of:

* ``package.module:callable`` - an importable entrypoint,
* ``package.module`` - a module exposing ``register``,
* a path (relative to the app root) to a ``.py`` file, or to a directory
  holding ``plugin.py``, exposing ``register``.

``register`` receives a :class:`PluginContext`. It typically subscribes to the
app's hooks; it may also return a mapping with ``env`` and ``labels`` to merge
into the app.
"""

from __future__ import annotations

import hashlib
import importlib
import importlib.util
import inspect
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping

from .errors import PluginLoadError
from .logging_utils import get_logger
from .observability.metrics import plugin_load_failures_total

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .app import Application
    from .builders import BuilderRegistry
    from .cache import Cache
    from .config import BerthConfig
    from .engine import Engine
    from .registry import Registry

REGISTER_ATTR = "register"


@dataclass(frozen=True)
class PluginContext:
    plugin_id: str
    app: "Application"
    config: "BerthConfig"
    engine: "Engine"
    cache: "Cache"
    registry: "Registry"
    builders: "BuilderRegistry"


def load_entrypoint(entrypoint: str) -> Any:
    if not entrypoint:
        raise PluginLoadError(entrypoint, "missing entrypoint")
    module_name, _, attr = entrypoint.partition(":")
    if not module_name or not attr:
        raise PluginLoadError(entrypoint, f"invalid entrypoint '{entrypoint}'")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise PluginLoadError(entrypoint, f"{module_name} has no attribute {attr}") from exc


def _looks_like_path(ref: str) -> bool:
    return ref.startswith((".", "/", "~")) or ref.endswith(".py") or "/" in ref or "\\" in ref


def _load_from_file(ref: str, path: Path) -> Callable[..., Any]:
    if path.is_dir():
        path = path / "plugin.py"
    if not path.is_file():
        raise PluginLoadError(ref, f"{path} does not exist")
    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:12]
    spec = importlib.util.spec_from_file_location(f"berth_plugin_{digest}", path)
    if spec is None or spec.loader is None:
        raise PluginLoadError(ref, f"cannot import {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    register = getattr(module, REGISTER_ATTR, None)
    if not callable(register):
        raise PluginLoadError(ref, f"{path} does not define {REGISTER_ATTR}()")
    return register


def resolve_plugin(ref: str, root: Path) -> Callable[..., Any]:
    if _looks_like_path(ref):
        path = Path(ref).expanduser()
        if not path.is_absolute():
            path = root / path
        return _load_from_file(ref, path)
    if ":" in ref:
        target = load_entrypoint(ref)
    else:
        module = importlib.import_module(ref)
        target = getattr(module, REGISTER_ATTR, None)
    if not callable(target):
        raise PluginLoadError(ref, "entrypoint is not callable")
    return target


class PluginLoader:
    def __init__(
        self,
        *,
        config: "BerthConfig",
        engine: "Engine",
        cache: "Cache",
        registry: "Registry",
        builders: "BuilderRegistry",
    ) -> None:
        self._config = config
        self._engine = engine
        self._cache = cache
        self._registry = registry
        self._builders = builders
        self._log = get_logger("plugins")

    @property
    def strict(self) -> bool:
        return self._config.plugins.strict

    async def load_all(self, app: "Application") -> list[str]:
        loaded: list[str] = []
        for ref in app.config.plugins:
            try:
                await self.load(ref, app)
            except Exception as exc:
                plugin_load_failures_total.inc()
                if self.strict:
                    if isinstance(exc, PluginLoadError):
                        raise
                    raise PluginLoadError(ref, str(exc)) from exc
                self._log.warning("Plugin {} failed to load for {}: {}", ref, app.name, exc)
                continue
            loaded.append(ref)
        return loaded

    async def load(self, ref: str, app: "Application") -> None:
        register = resolve_plugin(ref, app.root)
        context = PluginContext(
            plugin_id=ref,
            app=app,
            config=self._config,
            engine=self._engine,
            cache=self._cache,
            registry=self._registry,
            builders=self._builders,
        )
        result = register(context)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, Mapping):
            app.env.update({str(k): str(v) for k, v in (result.get("env") or {}).items()})
            app.labels.update({str(k): str(v) for k, v in (result.get("labels") or {}).items()})
        self._log.debug("Loaded plugin {} for {}", ref, app.name)
