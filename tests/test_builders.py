from __future__ import annotations

from typing import Any

import pytest

from berth.builders import (
    BuilderRegistry,
    ComposeBuilder,
    CompositeBuilder,
    ServiceBuilder,
    deep_merge,
    default_builders,
)
from berth.config import ServiceDeclaration
from berth.errors import ConfigError


class TlsBuilder:
    """Adds a certificate volume and port 443 to whatever it wraps."""

    def services(self, name: str, config: ServiceDeclaration) -> dict[str, dict[str, Any]]:
        return {name: {"ports": ["443"], "volumes": ["certs:/certs"]}}

    def networks(self) -> dict[str, Any]:
        return {}

    def volumes(self) -> dict[str, Any]:
        return {"certs": {}}

    def info(self, name: str, config: ServiceDeclaration) -> dict[str, Any]:
        return {"tls": True}


def test_deep_merge_combines_nested_maps_and_lists() -> None:
    base = {"web": {"ports": ["80"], "environment": {"A": "1"}}}
    override = {"web": {"ports": ["80", "443"], "environment": {"B": "2"}}}

    merged = deep_merge(base, override)

    assert merged == {"web": {"ports": ["80", "443"], "environment": {"A": "1", "B": "2"}}}
    assert base["web"]["ports"] == ["80"]


def test_compose_builder_passes_definition_through() -> None:
    declaration = ServiceDeclaration(services={"image": "nginx:1.25"}, healthcheck="curl -f localhost")

    specs = default_builders().build("web", declaration)

    assert specs.services == {"web": {"image": "nginx:1.25"}}
    assert specs.info == {"type": "compose", "healthcheck": "curl -f localhost"}
    assert specs.compose_fragment() == {"services": {"web": {"image": "nginx:1.25"}}}


def test_composite_builder_merges_delegates() -> None:
    composite = CompositeBuilder([ComposeBuilder(), TlsBuilder()])
    declaration = ServiceDeclaration(type="nginx-tls", services={"image": "nginx", "ports": ["80"]})

    registry = BuilderRegistry()
    registry.register("nginx-tls", composite)
    specs = registry.build("edge", declaration)

    assert isinstance(composite, ServiceBuilder)
    assert specs.services["edge"]["ports"] == ["80", "443"]
    assert specs.services["edge"]["volumes"] == ["certs:/certs"]
    assert specs.volumes == {"certs": {}}
    assert specs.info == {"type": "nginx-tls", "tls": True}
    assert specs.compose_fragment()["volumes"] == {"certs": {}}


def test_unknown_service_type_is_config_error() -> None:
    with pytest.raises(ConfigError):
        default_builders().build("db", ServiceDeclaration(type="oracle"))
    assert default_builders().types() == ["compose"]


def test_composite_needs_builders() -> None:
    with pytest.raises(ValueError):
        CompositeBuilder([])
