"""Container engine interface consumed by the lifecycle core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, Sequence, Union, runtime_checkable

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .app import Application

RESTART_ALWAYS = "always"
KIND_APP = "app"


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str = ""
    kind: str = KIND_APP
    app: str | None = None
    service: str | None = None


@dataclass(frozen=True)
class ContainerInfo:
    id: str
    restart_policy: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    running: bool = False


@dataclass(frozen=True)
class PortBinding:
    host_ip: str
    host_port: str


@dataclass(frozen=True)
class ScanResult:
    service: str
    ports: dict[str, list[PortBinding]] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RunOptions:
    services: tuple[str, ...] = ()
    user: str = "root"
    mode: str = "attach"
    detach: bool = False
    cstdio: str = "inherit"
    silent: bool = False
    no_tty: bool = False


@dataclass(frozen=True)
class RunSpec:
    id: str
    cmd: str
    project: str
    compose: tuple[Any, ...] = ()
    opts: RunOptions = RunOptions()


StopTarget = Union["Application", Sequence[ContainerRef]]


@runtime_checkable
class Engine(Protocol):
    async def is_up(self) -> bool: ...

    async def list_containers(
        self, project: str | None = None, *, all: bool = False
    ) -> list[ContainerRef]: ...

    async def inspect(self, ref: ContainerRef) -> ContainerInfo: ...

    async def is_running(self, container_id: str) -> bool: ...

    async def start(self, app: "Application") -> None: ...

    async def stop(self, target: StopTarget) -> None: ...

    async def destroy(self, target: StopTarget, *, purge: bool = False) -> None: ...

    async def build(self, app: "Application") -> None: ...

    async def run(self, spec: RunSpec) -> Any: ...

    async def scan(self, ref: ContainerRef) -> ScanResult: ...
