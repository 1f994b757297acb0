"""
JSON cache facade over the store key space.

Values are stored as JSON text under prefix-qualified keys. Unlike a
read-through cache this facade does not hide store errors: a failed
command propagates to the caller.
"""

import asyncio
import logging
from typing import Any, List, Optional

from ..exceptions import CacheDecodeError
from ..utils.namespace import ChannelNamespacer
from ..utils.serialization import to_json, from_json

logger = logging.getLogger(__name__)


class CacheFacade:
    """
    get/set/delete with transparent JSON encoding.

    Usage:
        await cache.set("user:1", {"name": "Ada"})
        await cache.get("user:1")      # {"name": "Ada"}
        await cache.delete("user:*")   # removes every user entry
    """

    def __init__(self, client: Any, namespacer: ChannelNamespacer):
        """
        Args:
            client: Async client dedicated to cache commands
            namespacer: Qualifies keys with the prefix
        """
        self._client = client
        self._ns = namespacer

    async def get(self, key: str) -> Any:
        """
        Get and decode a cached value.

        Returns:
            The decoded value, or None when the key is absent

        Raises:
            CacheDecodeError: If the stored text is not valid JSON
        """
        cache_key = self._ns.to_external(key)
        raw = await self._client.get(cache_key)
        if raw is None:
            logger.debug(f"Cache miss: {cache_key}")
            return None

        try:
            return from_json(raw)
        except (TypeError, ValueError) as e:
            raise CacheDecodeError(cache_key, e) from e

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Encode and store a value, overwriting any previous one.

        Args:
            key: Local cache key
            value: JSON-serializable value
            ttl: Optional expiry in milliseconds; entries never expire by default

        Raises:
            ValueError: If ttl is given but not a positive integer
            SerializationError: If the value is not JSON serializable
        """
        if ttl is not None and (isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0):
            raise ValueError(f"ttl must be a positive number of milliseconds, got {ttl!r}")

        cache_key = self._ns.to_external(key)
        payload = to_json(value)
        if ttl is not None:
            await self._client.set(cache_key, payload, px=ttl)
        else:
            await self._client.set(cache_key, payload)
        logger.debug(f"Cache set: {cache_key}")
        return True

    async def keys(self, pattern: str) -> List[str]:
        """External keys matching a local glob pattern."""
        match = self._ns.pattern(pattern)
        return [key async for key in self._client.scan_iter(match=match)]

    async def delete(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern, then the literal key.

        Matches are deleted concurrently. The final delete of the literal
        key covers exact keys containing glob metacharacters. Deletions
        already done are kept if a later one fails.

        Returns:
            Number of keys removed
        """
        matches = await self.keys(pattern)
        results = await asyncio.gather(*(self._client.delete(key) for key in matches))
        removed = sum(results)

        removed += await self._client.delete(self._ns.to_external(pattern))
        logger.debug(f"Cache delete {self._ns.pattern(pattern)}: {removed} key(s) removed")
        return removed

    # "del" is a keyword; keep the original operation name reachable
    del_ = delete
