"""Priority ordered asynchronous hook bus.

Two scopes exist. The global bus lives for the whole process and carries the
instantiation hooks shared by every app. Each :class:`~berth.app.Application`
owns an app-scoped bus for its lifecycle hooks.

Handlers for one emission run strictly one after another in ascending priority
(registration order breaks ties). A handler may be a plain callable or return
an awaitable; either way it finishes before the next handler starts.
"""

from __future__ import annotations

import inspect
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from .errors import HookError
from .logging_utils import get_logger
from .observability.metrics import hook_failures_total

DEFAULT_PRIORITY = 5


class HookScope(str, Enum):
    GLOBAL = "global"
    APP = "app"


class Hook(str, Enum):
    """Every hook berth emits.

    Payloads: ``pre-instantiate-app`` receives the mutable
    :class:`~berth.config.AppDeclaration`; ``status`` receives the app and a
    message; every other hook receives the :class:`~berth.app.Application`.
    """

    PRE_INSTANTIATE_APP = "pre-instantiate-app"
    POST_INSTANTIATE_APP = "post-instantiate-app"
    APP_READY = "app-ready"
    POST_INIT = "post-init"
    PRE_INFO = "pre-info"
    STATUS = "status"
    PRE_START = "pre-start"
    POST_START = "post-start"
    PRE_STOP = "pre-stop"
    POST_STOP = "post-stop"
    PRE_UNINSTALL = "pre-uninstall"
    POST_UNINSTALL = "post-uninstall"
    PRE_DESTROY = "pre-destroy"
    POST_DESTROY = "post-destroy"
    PRE_REBUILD = "pre-rebuild"
    POST_REBUILD = "post-rebuild"

    @property
    def scope(self) -> HookScope:
        if self in GLOBAL_HOOKS:
            return HookScope.GLOBAL
        return HookScope.APP


GLOBAL_HOOKS = frozenset({Hook.PRE_INSTANTIATE_APP, Hook.POST_INSTANTIATE_APP})

Handler = Callable[..., Any]


@dataclass(frozen=True)
class HookRegistration:
    hook: Hook
    priority: int
    handler: Handler = field(compare=False)
    seq: int = 0

    @property
    def name(self) -> str:
        return getattr(self.handler, "__qualname__", None) or repr(self.handler)


class EventBus:
    def __init__(self, scope: HookScope, *, label: str | None = None) -> None:
        self._scope = HookScope(scope)
        self._handlers: dict[Hook, list[HookRegistration]] = {}
        self._counter = itertools.count()
        self._log = get_logger(f"events.{label or self._scope.value}")

    @property
    def scope(self) -> HookScope:
        return self._scope

    def on(
        self, hook: Hook | str, handler: Handler, priority: int = DEFAULT_PRIORITY
    ) -> HookRegistration:
        if not callable(handler):
            raise TypeError(f"Hook handler for {hook} must be callable")
        key = self._coerce(hook)
        registration = HookRegistration(
            hook=key, priority=int(priority), handler=handler, seq=next(self._counter)
        )
        bucket = self._handlers.setdefault(key, [])
        bucket.append(registration)
        bucket.sort(key=lambda item: (item.priority, item.seq))
        self._log.debug("Registered {} on {} at priority {}", registration.name, key.value, priority)
        return registration

    def off(self, registration: HookRegistration) -> bool:
        bucket = self._handlers.get(registration.hook, [])
        for index, item in enumerate(bucket):
            if item.seq == registration.seq:
                del bucket[index]
                return True
        return False

    def handlers(self, hook: Hook | str) -> list[HookRegistration]:
        return list(self._handlers.get(self._coerce(hook), ()))

    async def emit(self, hook: Hook | str, *args: Any, tolerant: bool = False) -> None:
        key = self._coerce(hook)
        # Snapshot so handlers registered during emission wait for the next one.
        registrations = list(self._handlers.get(key, ()))
        self._log.debug("Emitting {} to {} handler(s)", key.value, len(registrations))
        for registration in registrations:
            try:
                result = registration.handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                hook_failures_total.labels(key.value).inc()
                if tolerant:
                    self._log.warning(
                        "Handler {} for {} failed: {}", registration.name, key.value, exc
                    )
                    continue
                raise HookError(key.value, registration.name, exc) from exc

    def _coerce(self, hook: Hook | str) -> Hook:
        try:
            key = Hook(hook)
        except ValueError as exc:
            raise ValueError(f"Unknown hook: {hook!r}") from exc
        if key.scope is not self._scope:
            raise ValueError(
                f"Hook '{key.value}' belongs to the {key.scope.value} bus, not {self._scope.value}"
            )
        return key
