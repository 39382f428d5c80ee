"""Service builders turn service declarations into compose fragments.

Builders are composed rather than subclassed: :class:`CompositeBuilder`
delegates to several builders and deep-merges what they return, so a wrapper
such as a TLS terminator is just another builder in the list.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

from .config import ServiceDeclaration
from .errors import ConfigError


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        elif isinstance(current, list) and isinstance(value, list):
            merged[key] = current + [item for item in value if item not in current]
        else:
            merged[key] = copy.deepcopy(value)
    return merged


@dataclass
class ContainerSpecs:
    services: dict[str, dict[str, Any]] = field(default_factory=dict)
    networks: dict[str, Any] = field(default_factory=dict)
    volumes: dict[str, Any] = field(default_factory=dict)
    info: dict[str, Any] = field(default_factory=dict)

    def merge(self, other: "ContainerSpecs") -> "ContainerSpecs":
        return ContainerSpecs(
            services=deep_merge(self.services, other.services),
            networks=deep_merge(self.networks, other.networks),
            volumes=deep_merge(self.volumes, other.volumes),
            info=deep_merge(self.info, other.info),
        )

    def compose_fragment(self) -> dict[str, Any]:
        fragment: dict[str, Any] = {"services": copy.deepcopy(self.services)}
        if self.networks:
            fragment["networks"] = copy.deepcopy(self.networks)
        if self.volumes:
            fragment["volumes"] = copy.deepcopy(self.volumes)
        return fragment


@runtime_checkable
class ServiceBuilder(Protocol):
    def services(self, name: str, config: ServiceDeclaration) -> dict[str, dict[str, Any]]: ...

    def networks(self) -> dict[str, Any]: ...

    def volumes(self) -> dict[str, Any]: ...

    def info(self, name: str, config: ServiceDeclaration) -> dict[str, Any]: ...


def build_specs(builder: ServiceBuilder, name: str, config: ServiceDeclaration) -> ContainerSpecs:
    return ContainerSpecs(
        services=builder.services(name, config),
        networks=builder.networks(),
        volumes=builder.volumes(),
        info=builder.info(name, config),
    )


class ComposeBuilder:
    """Pass raw compose service definitions through unchanged."""

    def services(self, name: str, config: ServiceDeclaration) -> dict[str, dict[str, Any]]:
        return {name: copy.deepcopy(config.services)}

    def networks(self) -> dict[str, Any]:
        return {}

    def volumes(self) -> dict[str, Any]:
        return {}

    def info(self, name: str, config: ServiceDeclaration) -> dict[str, Any]:
        info: dict[str, Any] = {"type": config.type}
        if config.healthcheck:
            info["healthcheck"] = config.healthcheck
        return info


class CompositeBuilder:
    def __init__(self, builders: Iterable[ServiceBuilder]) -> None:
        self._builders = list(builders)
        if not self._builders:
            raise ValueError("CompositeBuilder needs at least one builder")

    def specs(self, name: str, config: ServiceDeclaration) -> ContainerSpecs:
        merged = ContainerSpecs()
        for builder in self._builders:
            merged = merged.merge(build_specs(builder, name, config))
        return merged

    def services(self, name: str, config: ServiceDeclaration) -> dict[str, dict[str, Any]]:
        return self.specs(name, config).services

    def networks(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for builder in self._builders:
            merged = deep_merge(merged, builder.networks())
        return merged

    def volumes(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for builder in self._builders:
            merged = deep_merge(merged, builder.volumes())
        return merged

    def info(self, name: str, config: ServiceDeclaration) -> dict[str, Any]:
        return self.specs(name, config).info


class BuilderRegistry:
    def __init__(self) -> None:
        self._builders: dict[str, ServiceBuilder] = {}

    def register(self, service_type: str, builder: ServiceBuilder) -> None:
        self._builders[service_type] = builder

    def get(self, service_type: str) -> ServiceBuilder:
        builder = self._builders.get(service_type)
        if builder is None:
            raise ConfigError(f"No builder for service type '{service_type}'")
        return builder

    def types(self) -> list[str]:
        return sorted(self._builders)

    def build(self, name: str, config: ServiceDeclaration) -> ContainerSpecs:
        return build_specs(self.get(config.type), name, config)


def default_builders() -> BuilderRegistry:
    registry = BuilderRegistry()
    registry.register("compose", ComposeBuilder())
    return registry
