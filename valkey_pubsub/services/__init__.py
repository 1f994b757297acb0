"""
Services built on the store connections: events, cache and locks.
"""

from .events import EventRouter
from .cache import CacheFacade
from .lock_manager import LockManager, LockRelease

__all__ = [
    "EventRouter",
    "CacheFacade",
    "LockManager",
    "LockRelease",
]
