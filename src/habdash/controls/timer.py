"""Cancellable one-shot timer on the running asyncio event loop."""

from __future__ import annotations

import asyncio
from collections.abc import Callable


class CancellableTimer:
    """Run *callback* once, *delay* seconds after the last (re)start.

    ``restart()`` cancels any pending run and schedules a fresh one, which
    is what debouncing needs: the callback fires only after a quiet period.
    """

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        """Schedule the callback unless a run is already pending."""
        if self._handle is None:
            self._schedule()

    def restart(self) -> None:
        self.cancel()
        self._schedule()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self) -> None:
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self._callback()
