"""Anonymous, best-effort reporting of lifecycle actions."""

from __future__ import annotations

import asyncio
import platform
import sys
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from ..config import BerthConfig
from ..errors import MetricsError
from ..fs_utils import atomic_write_text
from ..logging_utils import get_logger
from .metrics import metrics_report_failures_total

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from ..app import Application

INSTANCE_ID_FILENAME = ".instance.id"


class ActionReporter:
    def __init__(
        self,
        config: BerthConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._stats = config.stats
        self._transport = transport
        self._log = get_logger("metrics.reporter")

    @property
    def enabled(self) -> bool:
        return self._stats.report

    def instance_id(self) -> str:
        path = Path(self._config.user_conf_root) / INSTANCE_ID_FILENAME
        try:
            existing = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            existing = ""
        if existing:
            return existing
        new_id = str(uuid.uuid4())
        atomic_write_text(path, new_id)
        return new_id

    async def report_action(self, action: str, *, app: "Application | None" = None) -> bool:
        data: dict[str, Any] = {"action": action}
        if app is not None:
            data["services"] = sorted({svc.type for svc in app.config.services.values()})
        return await self.report(data)

    async def report(self, data: dict[str, Any]) -> bool:
        """Send ``data``; never raises, returns whether the report landed."""

        if not self.enabled:
            return False
        try:
            await asyncio.wait_for(self._send(dict(data)), timeout=self._stats.timeout_s)
        except Exception as exc:
            metrics_report_failures_total.inc()
            self._log.warning("METRICS ERROR: {}", exc or type(exc).__name__)
            return False
        return True

    async def _send(self, data: dict[str, Any]) -> None:
        data.update(
            {
                "instance": self.instance_id(),
                "version": self._config.version,
                "os": sys.platform,
                "python": platform.python_version(),
            }
        )
        async with httpx.AsyncClient(
            transport=self._transport, timeout=self._stats.timeout_s
        ) as client:
            response = await client.post(self._stats.url, json=data)
        if response.status_code >= 400:
            raise MetricsError(f"report rejected with HTTP {response.status_code}")
        self._log.debug("Reported {}", data)
