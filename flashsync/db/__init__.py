"""Database package for flashsync.

Only SyncStateStore is exported as the public API.
"""

from .state_store import SyncStateStore

__all__ = ["SyncStateStore"]
