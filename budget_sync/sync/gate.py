"""
Load Gate

Pushes must not run until the initial pull has finished and the caller has
applied the pulled data. Otherwise an empty or default local state could
overwrite genuine remote data while the app is still booting.

The gate has three states (not_started -> loading -> ready) plus a
startup-window flag. `can_sync()` is true only when the state is ready AND
the startup window has been closed explicitly.
"""

from enum import Enum

import structlog


logger = structlog.get_logger("budget_sync.sync.gate")


class GateState(str, Enum):
    NOT_STARTED = "not_started"
    LOADING = "loading"
    READY = "ready"


class LoadGate:
    """Startup ordering guard owned by the sync engine."""

    def __init__(self):
        self._state = GateState.NOT_STARTED
        self._in_startup_window = True

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def in_startup_window(self) -> bool:
        return self._in_startup_window

    def begin_loading(self) -> None:
        """Close the gate for a (re)load. The startup window reopens too."""
        self._state = GateState.LOADING
        self._in_startup_window = True
        logger.debug("Load gate closed for loading")

    def mark_loaded(self) -> None:
        """The pull finished, successfully or with a handled failure."""
        if self._state != GateState.LOADING:
            raise RuntimeError(f"Cannot mark loaded from state {self._state.value}")
        self._state = GateState.READY

    def end_startup_window(self) -> None:
        """Pulled data has been applied; pushes may follow from here on."""
        self._in_startup_window = False
        if self._state == GateState.READY:
            logger.debug("Load gate open")

    def reset(self) -> None:
        self._state = GateState.NOT_STARTED
        self._in_startup_window = True

    def can_sync(self) -> bool:
        return self._state == GateState.READY and not self._in_startup_window
