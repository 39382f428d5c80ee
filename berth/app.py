"""Runtime application object."""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

from .config import AppDeclaration
from .events import EventBus, Hook, HookScope
from .logging_utils import get_logger

DEFAULT_META_CACHE_TEMPLATE = "{docker_name}.meta.cache"


def docker_name_for(name: str) -> str:
    return name.replace("-", "")


@dataclass
class UrlStatus:
    url: str
    status: bool
    assumed: bool = False


@dataclass
class ServiceInfo:
    service: str
    type: str = "compose"
    urls: list[str] = field(default_factory=list)
    healthcheck: Optional[str] = None
    healthy: Optional[bool] = None
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AppWarning:
    title: str
    detail: list[str] = field(default_factory=list)
    command: Optional[str] = None
    url: Optional[str] = None


@dataclass
class AppMeta:
    built_against: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Any) -> "AppMeta":
        if not isinstance(raw, dict):
            return cls()
        value = raw.get("builtAgainst")
        return cls(built_against=str(value) if value is not None else None)

    def to_raw(self) -> dict[str, Any]:
        if self.built_against is None:
            return {}
        return {"builtAgainst": self.built_against}


class Application:
    def __init__(
        self,
        name: str,
        root: Path | str,
        config: AppDeclaration,
        *,
        meta_cache_template: str = DEFAULT_META_CACHE_TEMPLATE,
    ) -> None:
        self.name = name
        self.docker_name = docker_name_for(name)
        self._root = Path(root).resolve()
        self.config = config
        self.events = EventBus(HookScope.APP, label=f"app.{self.docker_name}")
        self.services: list[str] = []
        self.info: dict[str, ServiceInfo] = {}
        self.env: dict[str, str] = {}
        self.labels: dict[str, str] = {}
        self.compose: list[dict[str, Any]] = []
        self.warnings: list[AppWarning] = []
        self.urls: list[UrlStatus] = []
        self.meta = AppMeta()
        self.opts: dict[str, Any] = {}
        self.config_files: list[Path] = []
        self.initialized = False
        self._info_defaults: dict[str, ServiceInfo] = {}
        self._meta_cache_key = meta_cache_template.format(
            name=self.name, docker_name=self.docker_name
        )
        self._log = get_logger(f"app.{self.docker_name}")

    def __repr__(self) -> str:
        return f"Application(name={self.name!r}, root={str(self._root)!r})"

    @property
    def root(self) -> Path:
        return self._root

    @property
    def project(self) -> str:
        return self.docker_name

    @property
    def webroot(self) -> Path:
        return self._root / (self.config.webroot or ".")

    @property
    def meta_cache_key(self) -> str:
        return self._meta_cache_key

    async def status(self, message: str) -> None:
        self._log.info(message)
        await self.events.emit(Hook.STATUS, self, message, tolerant=True)

    def add_warning(
        self,
        title: str,
        detail: list[str] | None = None,
        *,
        command: str | None = None,
        url: str | None = None,
    ) -> AppWarning:
        warning = AppWarning(title=title, detail=list(detail or []), command=command, url=url)
        self.warnings.append(warning)
        return warning

    def set_info_defaults(self, defaults: dict[str, ServiceInfo]) -> None:
        self._info_defaults = {key: copy.deepcopy(value) for key, value in defaults.items()}
        self.reset_info()

    def reset_info(self) -> None:
        """Restore service info to what the builders declared."""

        self.info = {key: copy.deepcopy(value) for key, value in self._info_defaults.items()}

    def scannable(self, scan: bool = True) -> list[ServiceInfo]:
        selected = []
        for service, info in self.info.items():
            declaration = self.config.services.get(service)
            enabled = declaration.scanner if declaration is not None else True
            if enabled == scan:
                selected.append(info)
        return selected

    def summary(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "project": self.project,
            "root": str(self._root),
            "services": list(self.services),
            "urls": [asdict(item) for item in self.urls],
            "info": {key: value.to_dict() for key, value in self.info.items()},
            "warnings": [asdict(item) for item in self.warnings],
        }
