"""
Distributed mutual-exclusion locks.

This module implements named locks with Valkey SET using the NX and PX
options. Acquisition is decided by that single atomic command; the TTL
frees a lock whose holder died without releasing it.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from valkey.exceptions import ValkeyError

from ..exceptions import LockTimeoutError
from ..utils.namespace import ChannelNamespacer

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_MS = 5000
DEFAULT_RETRY_DELAY_MS = 50


class LockRelease:
    """
    Release capability returned by a successful acquisition.

    Awaiting a call deletes the lock record. Calling it again is harmless.
    """

    def __init__(self, client: Any, name: str, key: str, timeout: int):
        self._client = client
        self.name = name
        self.key = key
        self.timeout = timeout
        # Epoch seconds, comparable with the expiry stored in the record
        self.acquired_at = time.time()
        self.released = False

    def held_ms(self) -> float:
        return (time.time() - self.acquired_at) * 1000

    async def __call__(self) -> None:
        await self._client.delete(self.key)
        if not self.released:
            logger.debug(f"Lock released: {self.key} (held: {self.held_ms():.1f}ms)")
        self.released = True

    def __repr__(self) -> str:
        state = "released" if self.released else f"held {self.held_ms():.0f}ms"
        return f"LockRelease(name={self.name!r}, timeout={self.timeout}, {state})"


class LockManager:
    """
    Blocking named locks with bounded expiry.

    Features:
    - Atomic acquisition with SET NX PX
    - Store-enforced TTL as crash safety
    - Fixed-delay retry until acquired, with an optional wait bound
    - Context manager for scoped locking
    """

    def __init__(
        self,
        client: Any,
        namespacer: ChannelNamespacer,
        default_timeout: int = DEFAULT_LOCK_TIMEOUT_MS,
        retry_delay: int = DEFAULT_RETRY_DELAY_MS
    ):
        """
        Initialize the lock manager.

        Args:
            client: Async client dedicated to lock commands
            namespacer: Builds lock keys ("<prefix>.lock.<name>")
            default_timeout: Lock TTL in milliseconds when lock() gets none
            retry_delay: Milliseconds to wait between attempts
        """
        self._client = client
        self._ns = namespacer
        self.default_timeout = default_timeout
        self.retry_delay = retry_delay

    async def _try_acquire(self, key: str, timeout: int) -> bool:
        # The stored value is informational; the PX expiry is authoritative
        expires_at = int(time.time() * 1000) + timeout + 1
        result = await self._client.set(key, expires_at, px=timeout, nx=True)
        return bool(result)

    async def lock(
        self,
        name: str,
        timeout: Optional[int] = None,
        wait_timeout: Optional[float] = None
    ) -> LockRelease:
        """
        Acquire a lock, waiting until it is free.

        Contention and store errors both lead to another attempt after
        retry_delay. Without wait_timeout the call never gives up.

        Args:
            name: Lock name
            timeout: Lock TTL in milliseconds
            wait_timeout: Optional bound in seconds on the total wait

        Returns:
            LockRelease: awaitable callable that releases the lock

        Raises:
            ValueError: If timeout is not a positive number of milliseconds
            LockTimeoutError: If wait_timeout elapses first
        """
        if timeout is None:
            timeout = self.default_timeout
        if timeout <= 0:
            raise ValueError(f"Lock timeout must be positive, got {timeout}")
        key = self._ns.lock_key(name)
        delay = self.retry_delay / 1000

        start_time = time.monotonic()
        attempts = 0

        while True:
            attempts += 1
            try:
                if await self._try_acquire(key, timeout):
                    wait_time_ms = (time.monotonic() - start_time) * 1000
                    logger.debug(f"Lock acquired: {key} (attempts: {attempts}, wait: {wait_time_ms:.1f}ms)")
                    return LockRelease(self._client, name, key, timeout)
                logger.debug(f"Lock busy: {key} (attempt {attempts})")
            except (ValkeyError, OSError) as e:
                logger.warning(f"Error acquiring lock {key}: {e}")

            waited = time.monotonic() - start_time
            if wait_timeout is not None and waited + delay > wait_timeout:
                logger.warning(f"Gave up on lock: {key} (attempts: {attempts}, wait: {waited * 1000:.1f}ms)")
                raise LockTimeoutError(name, waited)

            await asyncio.sleep(delay)

    async def force_unlock(self, name: str) -> None:
        """
        Delete a lock record without checking who holds it.

        For administrative cleanup only; holders should use the
        LockRelease returned by lock().
        """
        key = self._ns.lock_key(name)
        await self._client.delete(key)
        logger.info(f"Lock force-unlocked: {key}")

    unlock = force_unlock

    async def is_locked(self, name: str) -> bool:
        return bool(await self._client.exists(self._ns.lock_key(name)))

    @asynccontextmanager
    async def locked(
        self,
        name: str,
        timeout: Optional[int] = None,
        wait_timeout: Optional[float] = None
    ):
        """
        Context manager for automatic lock acquisition and release.

        Usage:
            async with lock_manager.locked("invoice:42", timeout=2000):
                # Protected section
                pass
        """
        release = await self.lock(name, timeout, wait_timeout)
        try:
            yield release
        finally:
            await release()
