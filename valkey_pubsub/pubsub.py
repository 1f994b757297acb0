"""
Composition root for the event bus, cache and lock services.

One PubSub instance owns the four role connections and hands each
service the connection for its responsibility. The services share one
namespace prefix but are otherwise independent.
"""

import logging
from typing import Any, Callable, Optional

from .store.client import StoreClients
from .services.events import EventRouter
from .services.cache import CacheFacade
from .services.lock_manager import LockManager, LockRelease
from .utils.config import BusConfig
from .utils.namespace import ChannelNamespacer

logger = logging.getLogger(__name__)


class PubSub:
    """
    Namespaced pub/sub events, JSON cache and distributed locks.

    Usage:
        async with PubSub.from_config(load_config()) as bus:
            bus.on("user.created", handle_user)
            await bus.emit("user.created", {"id": 1})

            await bus.set("settings", {"theme": "dark"})
            release = await bus.lock("nightly-report")
            try:
                ...
            finally:
                await release()
    """

    def __init__(
        self,
        prefix: str,
        store: StoreClients,
        lock_timeout: int = 5000,
        lock_retry_delay: int = 50,
        poll_timeout: float = 1.0
    ):
        """
        Wire the services to their role connections.

        Listeners may be registered before start(); their subscriptions are
        applied once the router runs.

        Args:
            prefix: Namespace prefix for every channel and key
            store: Role connections, verified by start()
            lock_timeout: Default lock TTL in milliseconds
            lock_retry_delay: Milliseconds between lock attempts
            poll_timeout: Seconds the subscriber blocks per read
        """
        self.namespacer = ChannelNamespacer(prefix)
        self.store = store
        self.events = EventRouter(
            store.pub, store.sub, self.namespacer, poll_timeout=poll_timeout
        )
        self.cache = CacheFacade(store.cache, self.namespacer)
        self.locks = LockManager(
            store.lock,
            self.namespacer,
            default_timeout=lock_timeout,
            retry_delay=lock_retry_delay,
        )

    @classmethod
    def from_config(cls, config: BusConfig) -> "PubSub":
        return cls(
            config.prefix,
            StoreClients(config.valkey()),
            lock_timeout=config.lock_timeout_ms,
            lock_retry_delay=config.lock_retry_delay_ms,
            poll_timeout=config.listener_poll_timeout,
        )

    @property
    def prefix(self) -> str:
        return self.namespacer.prefix

    async def start(self) -> None:
        """Verify the store connections and start routing events."""
        await self.store.connect()
        await self.events.start()
        logger.info(f"PubSub started with prefix '{self.prefix}'")

    async def close(self) -> None:
        """Stop the event router and close the store connections."""
        await self.events.stop()
        await self.store.disconnect()
        logger.info("PubSub closed")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ------------------------------------------------------------------
    # Events

    def on(self, event: str, callback: Callable) -> None:
        self.events.on(event, callback)

    def off(self, event: str, callback: Callable) -> None:
        self.events.off(event, callback)

    def once(self, event: str, callback: Callable) -> Callable:
        return self.events.once(event, callback)

    async def emit(self, event: str, *args: Any) -> int:
        return await self.events.emit(event, *args)

    async def flush(self) -> None:
        """Wait for queued subscription changes to reach the store."""
        await self.events.flush()

    # ------------------------------------------------------------------
    # Cache

    async def get(self, key: str) -> Any:
        return await self.cache.get(key)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return await self.cache.set(key, value, ttl=ttl)

    async def delete(self, pattern: str) -> int:
        return await self.cache.delete(pattern)

    del_ = delete

    # ------------------------------------------------------------------
    # Locks

    async def lock(
        self,
        name: str,
        timeout: Optional[int] = None,
        wait_timeout: Optional[float] = None
    ) -> LockRelease:
        return await self.locks.lock(name, timeout, wait_timeout)

    async def force_unlock(self, name: str) -> None:
        await self.locks.force_unlock(name)

    unlock = force_unlock

    def locked(
        self,
        name: str,
        timeout: Optional[int] = None,
        wait_timeout: Optional[float] = None
    ):
        return self.locks.locked(name, timeout, wait_timeout)
