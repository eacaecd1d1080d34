"""Named, cancellable timers for session services."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
import logging
from typing import Protocol

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler(Protocol):
    """Owns one-shot timers addressed by name.

    Scheduling a name that is already pending replaces the earlier timer, so a
    service never holds two handles for the same purpose.
    """

    def call_later(self, name: str, delay_seconds: float, callback: Callable[[], None]) -> None: ...

    def cancel(self, name: str) -> bool: ...

    def cancel_all(self) -> None: ...

    def is_scheduled(self, name: str) -> bool: ...


class AsyncioScheduler:
    """Scheduler backed by ``loop.call_later`` on the running event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._handles: dict[str, asyncio.TimerHandle] = {}

    def call_later(self, name: str, delay_seconds: float, callback: Callable[[], None]) -> None:
        self.cancel(name)
        loop = self._loop or asyncio.get_running_loop()

        def fire() -> None:
            self._handles.pop(name, None)
            callback()

        self._handles[name] = loop.call_later(max(0.0, delay_seconds), fire)

    def cancel(self, name: str) -> bool:
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        for name in list(self._handles):
            self.cancel(name)
        logger.debug("All session timers cancelled")

    def is_scheduled(self, name: str) -> bool:
        return name in self._handles

    def pending_names(self) -> list[str]:
        return sorted(self._handles)
