"""Configuration loading and validation using Pydantic models."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .paths import APP_CONFIG_FILENAME, default_config_path, user_conf_root

BERTH_VERSION = "0.4.0"
CONFIG_ENV = "BERTH_CONFIG"


class StatsConfig(BaseModel):
    report: bool = Field(False, description="Send anonymous action reports.")
    url: str = Field("https://stats.berth.dev/v1/report")
    timeout_s: float = Field(
        10.0, gt=0, description="Reports slower than this are abandoned."
    )


class ReadinessConfig(BaseModel):
    scan_max_attempts: int = Field(16, ge=1)
    scan_backoff_s: float = Field(0.5, ge=0)
    wait_codes: list[int] = Field(
        default_factory=lambda: [400, 502],
        description="HTTP codes that mean the URL is not ready yet.",
    )
    probe_timeout_s: float = Field(5.0, gt=0)
    healthcheck_max_attempts: int = Field(25, ge=1)
    healthcheck_backoff_s: float = Field(0.5, ge=0)


class PluginsConfig(BaseModel):
    strict: bool = Field(
        False,
        description="Abort instantiation when an app-declared plugin fails to load.",
    )


class EngineConfig(BaseModel):
    factory: Optional[str] = Field(
        None,
        description="Entrypoint 'module:callable' returning an Engine for a BerthConfig.",
    )


class LockConfig(BaseModel):
    enabled: bool = True
    timeout_s: float = Field(300.0, gt=0)
    poll_interval_s: float = Field(0.1, gt=0)


class UpdatesConfig(BaseModel):
    enabled: bool = True
    releases_url: str = Field("https://api.github.com/repos/berth-dev/berth/releases")
    ttl_s: int = Field(86400, ge=60)


class BerthConfig(BaseModel):
    version: str = BERTH_VERSION
    user_conf_root: Path = Field(default_factory=user_conf_root)
    cache_dir: Optional[Path] = None
    log_dir: Optional[Path] = None
    log_level: str = "INFO"
    app_config_filename: str = APP_CONFIG_FILENAME
    meta_cache_template: str = Field(
        "{docker_name}.meta.cache",
        description="Cache key holding an app's persisted meta record.",
    )
    bind_address: str = "127.0.0.1"
    stats: StatsConfig = StatsConfig()
    readiness: ReadinessConfig = ReadinessConfig()
    plugins: PluginsConfig = PluginsConfig()
    engine: EngineConfig = EngineConfig()
    locks: LockConfig = LockConfig()
    updates: UpdatesConfig = UpdatesConfig()

    @property
    def resolved_cache_dir(self) -> Path:
        return Path(self.cache_dir or self.user_conf_root / "cache")

    @property
    def resolved_log_dir(self) -> Path:
        return Path(self.log_dir or self.user_conf_root / "logs")

    @property
    def registry_path(self) -> Path:
        return self.user_conf_root / "registry.json"

    @property
    def lock_dir(self) -> Path:
        return self.user_conf_root / "locks"


class ServiceDeclaration(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = Field("compose", description="Builder used to produce container specs.")
    scanner: bool = Field(True, description="Probe this service's URLs after start.")
    healthcheck: Optional[str] = None
    services: dict[str, Any] = Field(
        default_factory=dict,
        description="Raw compose service definitions for the compose builder.",
    )


class AppDeclaration(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    services: dict[str, ServiceDeclaration] = Field(default_factory=dict)
    plugins: list[str] = Field(default_factory=list)
    webroot: str = "."
    tasks: dict[str, Any] = Field(default_factory=dict)
    keys: Union[bool, list[str]] = True

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("app name must not be empty")
        return value

    @field_validator("services", mode="before")
    @classmethod
    def _none_services(cls, value: Any) -> Any:
        return {} if value is None else value


def load_config(path: Path | str | None = None) -> BerthConfig:
    """Load process configuration; a missing file yields defaults."""

    if path is None:
        env_path = os.environ.get(CONFIG_ENV)
        path = Path(env_path) if env_path else default_config_path()
    config_path = Path(path)
    if not config_path.exists():
        return BerthConfig()
    data = _read_yaml(config_path)
    try:
        return BerthConfig.model_validate(data or {})
    except ValidationError as exc:
        raise ConfigError(f"Invalid berth config {config_path}: {exc}") from exc


def load_app_config(path: Path | str) -> AppDeclaration:
    """Load an app declaration (``.berth.yml``) from disk."""

    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigError(f"App config not found: {config_path}")
    data = _read_yaml(config_path)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"App config {config_path} must be a mapping")
    try:
        return AppDeclaration.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid app config {config_path}: {exc}") from exc


def _read_yaml(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Problem parsing {path}: {exc}") from exc
