"""Utility helpers for lock monitoring."""

from .common import LockMonitorError, LockState, format_name
from .locks import Lock, LockDestroyedError, LockUsageError, MapLock

__all__ = [
    "Lock",
    "LockDestroyedError",
    "LockMonitorError",
    "LockState",
    "LockUsageError",
    "MapLock",
    "format_name",
]
