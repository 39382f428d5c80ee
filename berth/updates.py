"""Check a release feed for newer berth versions."""

from __future__ import annotations

import time
from typing import Any, Callable

import httpx
from packaging.version import InvalidVersion, Version

from .cache import MISSING, Cache
from .config import UpdatesConfig
from .logging_utils import get_logger

UPDATES_CACHE_KEY = "updates"


def _strip_v(version: str) -> str:
    return version[1:] if version.startswith("v") else version


class UpdateManager:
    def __init__(
        self,
        config: UpdatesConfig | None = None,
        *,
        cache: Cache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or UpdatesConfig()
        self._cache = cache
        self._transport = transport
        self._clock = clock
        self._log = get_logger("updates")

    @staticmethod
    def update_available(current: str, latest: str) -> bool:
        try:
            return Version(_strip_v(current)) < Version(_strip_v(latest))
        except InvalidVersion:
            return False

    def should_fetch(self, cached: dict[str, Any] | None) -> bool:
        """Return True when ``cached`` is absent or past its expiry."""

        if not cached:
            return True
        try:
            return float(cached.get("expires", 0)) < self._clock()
        except (TypeError, ValueError):
            return True

    async def refresh(self, current: str) -> dict[str, Any]:
        """Fetch the newest stable release; falls back to ``current`` on any error."""

        expires = self._clock() + self._config.ttl_s
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=10.0) as client:
                response = await client.get(
                    self._config.releases_url, params={"page": 1, "per_page": 10}
                )
                response.raise_for_status()
                releases = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._log.debug("Could not fetch releases: {}", exc)
            return {"version": _strip_v(current), "url": "", "expires": expires}

        candidates = releases if isinstance(releases, list) else []
        latest = next(
            (
                release
                for release in candidates
                if isinstance(release, dict)
                and release.get("draft") is False
                and release.get("prerelease") is False
            ),
            None,
        )
        if latest is None:
            return {"version": _strip_v(current), "url": "", "expires": expires}
        return {
            "version": _strip_v(str(latest.get("tag_name") or current)),
            "url": str(latest.get("html_url") or ""),
            "expires": expires,
        }

    async def check(self, current: str) -> dict[str, Any]:
        """Return cached update data, refreshing it once expired."""

        cached = self._cache.get(UPDATES_CACHE_KEY) if self._cache is not None else MISSING
        data = cached if isinstance(cached, dict) else None
        if self.should_fetch(data):
            data = await self.refresh(current)
            if self._cache is not None:
                self._cache.set(UPDATES_CACHE_KEY, data, persist=True)
        result = dict(data or {})
        result["available"] = self.update_available(current, str(result.get("version", current)))
        return result
