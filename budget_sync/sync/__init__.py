"""Synchronization package: sync engine, change notifier and their helpers."""

from budget_sync.sync.connectivity import ConnectivityMonitor
from budget_sync.sync.engine import PullResult, SyncEngine, records_key, settings_key
from budget_sync.sync.gate import GateState, LoadGate
from budget_sync.sync.notifier import ChangeNotifier
from budget_sync.sync.timers import DebounceTimer

__all__ = [
    "ChangeNotifier",
    "ConnectivityMonitor",
    "DebounceTimer",
    "GateState",
    "LoadGate",
    "PullResult",
    "SyncEngine",
    "records_key",
    "settings_key",
]
