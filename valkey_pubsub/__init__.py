"""
valkey-pubsub: namespaced events, JSON cache and distributed locks on Valkey.

Three facilities share one store and one namespace prefix:
1. An event bus mapping local event names to pub/sub channels
2. A JSON cache with pattern deletion
3. Blocking mutual-exclusion locks with store-enforced expiry
"""

from .exceptions import (
    PubSubError,
    StoreConnectionError,
    SerializationError,
    MessageDecodeError,
    CacheDecodeError,
    LockTimeoutError,
)
from .store import ValkeyConfig, StoreClients
from .services import EventRouter, CacheFacade, LockManager, LockRelease
from .utils import ChannelNamespacer, BusConfig, load_config, configure_logging
from .pubsub import PubSub

__version__ = "0.1.0"

__all__ = [
    # Composition root
    "PubSub",

    # Services
    "EventRouter",
    "CacheFacade",
    "LockManager",
    "LockRelease",

    # Store
    "ValkeyConfig",
    "StoreClients",

    # Utilities
    "ChannelNamespacer",
    "BusConfig",
    "load_config",
    "configure_logging",

    # Errors
    "PubSubError",
    "StoreConnectionError",
    "SerializationError",
    "MessageDecodeError",
    "CacheDecodeError",
    "LockTimeoutError",
]
