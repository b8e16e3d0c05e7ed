"""
Connectivity Monitor

Holds the online/offline signal provided by the host environment. The sync
engine observes it; nothing here polls the network.
"""

from typing import Callable

import structlog


logger = structlog.get_logger("budget_sync.sync.connectivity")

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Observable boolean. Listeners hear about transitions only."""

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[ConnectivityListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed", online=online)
        for listener in list(self._listeners):
            listener(online)

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """
        Register a transition listener.

        Returns:
            A function that removes the listener (safe to call twice)
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
