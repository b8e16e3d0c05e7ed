"""
Budget Sync - Source Package

Offline-first core of a personal budgeting tool: recurring expenses and
payment settings live in a local embedded store and converge across
devices through a shared remote store.

DESIGN PRINCIPLES:
1. The local store is what the user sees - no network round-trip gates a read
2. Sync failures never break an edit; they surface as a transient status
3. Last full push wins - the remote collection is replaced, never merged
4. Nothing is pushed before the startup load has finished
5. Undo/redo goes through exactly the same path as ordinary edits
"""

__version__ = "1.0.0"
__author__ = "Budget Sync Team"
