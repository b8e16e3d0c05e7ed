"""
Debounce Timer

A restartable one-shot timer on the running asyncio loop. Starting it again
before it fires replaces the pending callback, so only the last start wins.

Scheduling is synchronous: start() and cancel() never await. The callback
itself runs as a plain loop callback; anything that needs to await must
spawn its own task.
"""

import asyncio
from typing import Callable, Optional


class DebounceTimer:
    """Per-purpose timer with an explicit start / cancel / is_pending contract."""

    def __init__(self, delay: float, callback: Callable[[], None]):
        if delay < 0:
            raise ValueError(f"Timer delay cannot be negative, got {delay}")
        self.delay = delay
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def is_pending(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        """(Re)start the timer. A previously pending fire is discarded."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> bool:
        """
        Cancel a pending fire.

        Returns:
            True if a fire was pending
        """
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def fire_now(self) -> bool:
        """Run a pending callback immediately instead of waiting for the delay."""
        if not self.cancel():
            return False
        self._callback()
        return True

    def _fire(self) -> None:
        self._handle = None
        self._callback()
