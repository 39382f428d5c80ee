"""Error taxonomy for berth."""

from __future__ import annotations

from typing import Any


class BerthError(RuntimeError):
    """Base error for berth."""


class ConfigError(BerthError):
    """Malformed or missing application configuration."""


class DuplicateAppError(BerthError):
    """Two registry entries share an app name."""

    def __init__(self, name: str, dirs: list[str]) -> None:
        super().__init__(f"Duplicate app names exist: {name} in {', '.join(dirs)}")
        self.name = name
        self.dirs = list(dirs)


class InvalidCacheKeyError(BerthError, ValueError):
    """Cache key contains illegal or reserved characters."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Invalid cache key: {key!r}")
        self.key = key


class HookError(BerthError):
    """A hook handler failed during emission."""

    def __init__(self, hook: str, handler: str, cause: BaseException) -> None:
        super().__init__(f"Hook '{hook}' handler {handler} failed: {cause}")
        self.hook = hook
        self.handler = handler
        self.cause = cause


class EngineError(BerthError):
    """The container engine failed to carry out a call."""

    def __init__(self, action: str, message: str) -> None:
        super().__init__(f"Engine {action} failed: {message}")
        self.action = action


class RetryExhaustedError(BerthError):
    """A bounded retry ran out of attempts."""

    def __init__(self, last_error: BaseException, policy: Any, attempts: int) -> None:
        super().__init__(f"Failed after {attempts} attempts ({policy}): {last_error}")
        self.last_error = last_error
        self.policy = policy
        self.attempts = attempts


class MetricsError(BerthError):
    """Metrics reporting failed. Always swallowed by callers."""


class PluginLoadError(BerthError):
    """An app-declared plugin could not be loaded."""

    def __init__(self, plugin: str, message: str) -> None:
        super().__init__(f"Plugin '{plugin}' failed to load: {message}")
        self.plugin = plugin


class LockTimeoutError(BerthError, TimeoutError):
    """Timed out waiting for an app operation lock."""
