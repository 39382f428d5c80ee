"""Post-start readiness: healthchecks and URL availability scans.

Nothing here fails a start. Exhausted healthchecks and unreachable URLs are
recorded on the app (``info[...].healthy``, ``urls``, ``warnings``) instead.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Sequence

import httpx

from .app import Application, ServiceInfo, UrlStatus
from .config import ReadinessConfig
from .engine import Engine, RunOptions, RunSpec
from .errors import RetryExhaustedError
from .events import Hook
from .logging_utils import get_logger
from .observability.metrics import healthcheck_failures_total, url_scan_failures_total
from .retry import RetryPolicy, Sleep, retry_async

READINESS_PRIORITY = 900
DEFAULT_SCAN_ATTEMPTS = 7


class UrlNotReady(Exception):
    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"{url} not yet ready with code {status_code}")
        self.url = url
        self.status_code = status_code


class ReadinessCoordinator:
    def __init__(
        self,
        *,
        engine: Engine,
        config: ReadinessConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._config = config or ReadinessConfig()
        self._transport = transport
        self._sleep = sleep
        self._log = get_logger("readiness")

    def attach(self, app: Application) -> None:
        app.events.on(Hook.POST_START, self.on_post_start, priority=READINESS_PRIORITY)

    async def on_post_start(self, app: Application) -> None:
        await self.run_healthchecks(app)
        app.urls = await self.scan_app_urls(app)

    async def scan_app_urls(self, app: Application) -> list[UrlStatus]:
        candidates = [url for info in app.scannable(True) for url in info.urls]
        results = await self.scan_urls(candidates, max_attempts=self._config.scan_max_attempts)
        for info in app.scannable(False):
            results.extend(UrlStatus(url=url, status=True, assumed=True) for url in info.urls)
        return results

    async def scan_urls(
        self,
        urls: Sequence[str],
        *,
        max_attempts: int = DEFAULT_SCAN_ATTEMPTS,
        wait_codes: Iterable[int] | None = None,
        backoff_s: float | None = None,
    ) -> list[UrlStatus]:
        if not urls:
            return []
        codes = frozenset(self._config.wait_codes if wait_codes is None else wait_codes)
        policy = RetryPolicy(
            max_attempts=max_attempts,
            backoff_s=self._config.scan_backoff_s if backoff_s is None else backoff_s,
        )
        self._log.debug("Starting url scan of {} with {} wait codes {}", list(urls), policy, sorted(codes))
        async with httpx.AsyncClient(
            verify=False,
            transport=self._transport,
            timeout=self._config.probe_timeout_s,
        ) as client:
            results = await asyncio.gather(
                *(self._scan_one(client, url, policy, codes) for url in urls)
            )
        self._log.debug("URL scan results {}", results)
        return list(results)

    async def _scan_one(
        self,
        client: httpx.AsyncClient,
        url: str,
        policy: RetryPolicy,
        wait_codes: frozenset[int],
    ) -> UrlStatus:
        async def _probe(attempt: int) -> UrlStatus:
            self._log.debug("Checking to see if {} is ready (attempt {})", url, attempt)
            response = await client.get(url)
            if response.status_code in wait_codes:
                raise UrlNotReady(url, response.status_code)
            self._log.debug("{} is now ready", url)
            return UrlStatus(url=url, status=True)

        try:
            return await retry_async(_probe, policy=policy, sleep=self._sleep)
        except RetryExhaustedError as exc:
            url_scan_failures_total.inc()
            self._log.info("{} is not accessible: {}", url, exc.last_error)
            return UrlStatus(url=url, status=False)

    async def run_healthchecks(self, app: Application) -> dict[str, bool]:
        targets = [info for info in app.info.values() if info.healthcheck]
        outcomes = await asyncio.gather(*(self._healthcheck(app, info) for info in targets))
        return {info.service: ok for info, ok in zip(targets, outcomes)}

    async def _healthcheck(self, app: Application, info: ServiceInfo) -> bool:
        spec = RunSpec(
            id=f"{app.project}_{info.service}_1",
            cmd=str(info.healthcheck),
            project=app.project,
            compose=tuple(app.compose),
            opts=RunOptions(
                services=(info.service,),
                user="root",
                cstdio="pipe",
                silent=True,
                no_tty=True,
            ),
        )
        policy = RetryPolicy(
            max_attempts=self._config.healthcheck_max_attempts,
            backoff_s=self._config.healthcheck_backoff_s,
        )

        async def _attempt(attempt: int) -> object:
            try:
                return await self._engine.run(spec)
            except Exception as exc:
                if attempt == 1:
                    self._log.info("Waiting until {} service is ready...", info.service)
                self._log.debug(
                    "Healthcheck {} for {} failed on attempt {}: {}",
                    info.healthcheck,
                    info.service,
                    attempt,
                    exc,
                )
                raise

        try:
            await retry_async(_attempt, policy=policy, sleep=self._sleep)
        except RetryExhaustedError:
            self._log.info("Service {} is unhealthy", info.service)
            healthcheck_failures_total.labels(info.service).inc()
            info.healthy = False
            app.add_warning(
                f'The service "{info.service}" failed its healthcheck',
                ["This may be ok but we recommend you run the command below to investigate:"],
                command=f"berth logs -s {info.service}",
            )
            return False
        info.healthy = True
        return True
