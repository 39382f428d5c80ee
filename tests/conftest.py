from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from berth.config import BerthConfig  # noqa: E402
from berth.engine import ContainerInfo, ContainerRef, RunSpec, ScanResult  # noqa: E402
from berth.runtime import BerthRuntime  # noqa: E402


class FakeEngine:
    """In-memory engine that records every call."""

    def __init__(self) -> None:
        self.up = True
        self.containers: list[ContainerRef] = []
        self.details: dict[str, ContainerInfo] = {}
        self.running: set[str] = set()
        self.scans: dict[str, ScanResult] = {}
        self.failures: dict[str, Exception] = {}
        self.run_handler: Callable[[RunSpec], Any] | None = None
        self.calls: list[tuple[Any, ...]] = []

    def add_container(
        self,
        container_id: str,
        *,
        app: str,
        service: str = "web",
        running: bool = True,
        restart_policy: str = "",
        kind: str = "app",
    ) -> ContainerRef:
        ref = ContainerRef(id=container_id, name=f"{app}_{service}_1", kind=kind, app=app, service=service)
        self.containers.append(ref)
        self.details[container_id] = ContainerInfo(
            id=container_id, restart_policy=restart_policy, running=running
        )
        if running:
            self.running.add(container_id)
        return ref

    def _record(self, action: str, *args: Any) -> None:
        self.calls.append((action, *args))
        failure = self.failures.get(action)
        if failure is not None:
            raise failure

    def actions(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def is_up(self) -> bool:
        self._record("is_up")
        return self.up

    async def list_containers(self, project: str | None = None, *, all: bool = False) -> list[ContainerRef]:
        self._record("list", project, all)
        return [ref for ref in self.containers if project is None or ref.app == project]

    async def inspect(self, ref: ContainerRef) -> ContainerInfo:
        self._record("inspect", ref.id)
        return self.details.get(ref.id, ContainerInfo(id=ref.id))

    async def is_running(self, container_id: str) -> bool:
        self._record("is_running", container_id)
        return container_id in self.running

    async def start(self, app: Any) -> None:
        self._record("start", app.project)

    async def stop(self, target: Any) -> None:
        self._record("stop", _target_label(target))
        for ref in _target_refs(self, target):
            self.running.discard(ref.id)

    async def destroy(self, target: Any, *, purge: bool = False) -> None:
        self._record("destroy", _target_label(target), purge)
        doomed = {ref.id for ref in _target_refs(self, target)}
        self.containers = [ref for ref in self.containers if ref.id not in doomed]

    async def build(self, app: Any) -> None:
        self._record("build", app.project)

    async def run(self, spec: RunSpec) -> Any:
        self._record("run", spec.id)
        if self.run_handler is not None:
            return self.run_handler(spec)
        return ""

    async def scan(self, ref: ContainerRef) -> ScanResult:
        self._record("scan", ref.id)
        return self.scans.get(ref.id, ScanResult(service=ref.service or ""))


def _target_label(target: Any) -> Any:
    if isinstance(target, list):
        return tuple(ref.id for ref in target)
    return target.project


def _target_refs(engine: FakeEngine, target: Any) -> list[ContainerRef]:
    if isinstance(target, list):
        return list(target)
    return [ref for ref in engine.containers if ref.app == target.project]


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def berth_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "berth-home"
    monkeypatch.setenv("BERTH_HOME", str(home))
    return home


@pytest.fixture
def make_config(berth_home: Path):
    def _factory(**overrides: Any) -> BerthConfig:
        return BerthConfig(user_conf_root=berth_home, **overrides)

    return _factory


@pytest.fixture
def make_runtime(make_config, fake_engine: FakeEngine):
    def _factory(config: BerthConfig | None = None, **kwargs: Any) -> BerthRuntime:
        kwargs.setdefault("sleep", no_sleep)
        return BerthRuntime(config or make_config(), engine=fake_engine, **kwargs)

    return _factory


@pytest.fixture
def write_app(tmp_path: Path):
    def _factory(name: str, services: dict[str, Any] | None = None, **extra: Any) -> Path:
        root = tmp_path / "apps" / name
        root.mkdir(parents=True, exist_ok=True)
        data: dict[str, Any] = {"name": name, "services": services or {"web": {"type": "compose"}}}
        data.update(extra)
        (root / ".berth.yml").write_text(yaml.safe_dump(data), encoding="utf-8")
        return root

    return _factory
