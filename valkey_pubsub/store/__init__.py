"""
Store connection layer.

This module contains the Valkey connection configuration and the
role-separated client holder used by the event router, cache and locks.
"""

from .config import ValkeyConfig
from .client import StoreClients, ROLES

__all__ = [
    "ValkeyConfig",
    "StoreClients",
    "ROLES",
]
