"""
Role-separated Valkey connections.

A subscribe-mode connection cannot issue regular commands, and a slow
cache scan should not delay a lock attempt, so every responsibility gets
its own client: publishing, subscribing, locking and caching.
"""

import asyncio
import logging
from typing import Optional, Any, Dict

import valkey.asyncio as valkey
from valkey.exceptions import ConnectionError, TimeoutError

from .config import ValkeyConfig
from ..exceptions import StoreConnectionError

logger = logging.getLogger(__name__)

ROLES = ("pub", "sub", "lock", "cache")


class StoreClients:
    """
    Owner of the four role connections to one backing store.

    Clients are created up front; valkey opens their sockets on the first
    command, so services can be wired before connect() verifies them.

    Features:
    - One independent client per role (pub, sub, lock, cache)
    - Connection verification with exponential backoff
    - Per-role health checks
    - Injection of pre-built clients for tests and custom setups
    """

    def __init__(self, config: Optional[ValkeyConfig] = None, clients: Optional[Dict[str, Any]] = None):
        """
        Initialize the role clients.

        Args:
            config: ValkeyConfig instance, defaults to environment-based config
            clients: Pre-built clients keyed by role; the caller keeps ownership
        """
        self.config = config or ValkeyConfig.from_env()
        self._owns_clients = clients is None
        self._clients: Dict[str, Any] = dict(clients) if clients else self._build_clients()
        self._is_connected = False
        self._is_closed = False
        self._connection_attempts = 0
        self._max_connection_attempts = 5
        self._reconnect_delay = 1.0  # Start with 1 second delay
        self._max_reconnect_delay = 30.0  # Max 30 seconds between attempts

        missing = [role for role in ROLES if role not in self._clients]
        if missing:
            raise ValueError(f"Missing store clients for roles: {missing}")

        logger.info(f"Initializing store clients: {self.config}")

    @classmethod
    def from_clients(cls, pub: Any, sub: Any, lock: Any, cache: Any) -> "StoreClients":
        """Wrap already constructed async clients. disconnect() will not close them."""
        return cls(ValkeyConfig(), clients={"pub": pub, "sub": sub, "lock": lock, "cache": cache})

    def _build_clients(self) -> Dict[str, Any]:
        kwargs = self.config.to_connection_kwargs()
        return {role: valkey.Valkey(client_name=f"pubsub-{role}", **kwargs) for role in ROLES}

    async def connect(self) -> None:
        """
        Verify every role connection with retry logic.

        Raises:
            StoreConnectionError: If the store is unreachable after max attempts
        """
        if self._is_closed:
            raise StoreConnectionError("Store clients were closed. Create a new StoreClients.")
        if self._is_connected:
            return

        self._connection_attempts = 0

        while self._connection_attempts < self._max_connection_attempts:
            try:
                self._connection_attempts += 1
                logger.info(f"Attempting store connection (attempt {self._connection_attempts})")

                for role in ROLES:
                    await self._ping(role)

                self._is_connected = True
                self._connection_attempts = 0

                logger.info("Successfully connected all store clients")
                return

            except (ConnectionError, TimeoutError, OSError) as e:
                logger.warning(
                    f"Store connection attempt {self._connection_attempts} failed: {e}"
                )

                if self._connection_attempts >= self._max_connection_attempts:
                    error_msg = (
                        f"Failed to connect to store after {self._max_connection_attempts} attempts. "
                        f"Last error: {e}"
                    )
                    logger.error(error_msg)
                    raise StoreConnectionError(error_msg) from e

                # Exponential backoff
                delay = min(self._reconnect_delay * (2 ** (self._connection_attempts - 1)),
                            self._max_reconnect_delay)
                logger.info(f"Retrying connection in {delay:.1f} seconds...")
                await asyncio.sleep(delay)

    async def disconnect(self) -> None:
        """Close every owned role client."""
        if self._owns_clients and not self._is_closed:
            for role, client in self._clients.items():
                try:
                    await client.aclose()
                except (ConnectionError, OSError) as e:
                    logger.warning(f"Error closing {role} client: {e}")
        self._is_connected = False
        self._is_closed = True
        logger.info("Disconnected store clients")

    async def _ping(self, role: str) -> None:
        result = await self._clients[role].ping()
        if not result:
            raise ConnectionError(f"Ping on {role} client returned {result!r}")

    async def health_check(self) -> Dict[str, bool]:
        """
        Ping every role connection.

        Returns:
            Dict[str, bool]: Health per role
        """
        status = {}
        for role in ROLES:
            try:
                await self._ping(role)
                status[role] = True
            except (ConnectionError, TimeoutError, OSError) as e:
                logger.warning(f"Health check failed for {role} client: {e}")
                status[role] = False
        return status

    @property
    def is_connected(self) -> bool:
        """Check if the role clients are verified and open."""
        return self._is_connected

    def role(self, name: str) -> Any:
        """
        Get the client for a role.

        Raises:
            StoreConnectionError: If the clients were closed
        """
        if self._is_closed:
            raise StoreConnectionError(f"Store client '{name}' is closed")
        return self._clients[name]

    @property
    def pub(self) -> Any:
        return self.role("pub")

    @property
    def sub(self) -> Any:
        return self.role("sub")

    @property
    def lock(self) -> Any:
        return self.role("lock")

    @property
    def cache(self) -> Any:
        return self.role("cache")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()
