"""
Shared fixtures: an in-memory stand-in for the async Valkey client.

The fake implements only the commands this package issues. All role
clients created from one FakeServer share its keys and channels, so
pub/sub self-delivery and key expiry behave as against a real server.
"""

import asyncio
import fnmatch
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from valkey.exceptions import ConnectionError

from valkey_pubsub import PubSub, StoreClients


class FakeServer:
    """Keyspace and channel registry shared by every FakeValkey."""

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.expiry: Dict[str, float] = {}
        self.channels: Dict[str, List["FakePubSub"]] = defaultdict(list)
        self.failures: Dict[str, int] = {}
        self.commands: List[tuple] = []

    def fail(self, command: str, times: int = 1) -> None:
        """Make the next `times` calls of a command raise ConnectionError."""
        self.failures[command] = times

    def check(self, command: str, *args: Any) -> None:
        self.commands.append((command,) + args)
        remaining = self.failures.get(command, 0)
        if remaining:
            self.failures[command] = remaining - 1
            raise ConnectionError(f"simulated {command} failure")

    def alive(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    def subscribers(self, channel: str) -> int:
        return len(self.channels.get(channel, ()))


class FakePubSub:
    def __init__(self, server: FakeServer):
        self._server = server
        self._queue: asyncio.Queue = asyncio.Queue()
        self.channels: Dict[str, None] = {}
        self.closed = False
        # Raised by the next get_message call
        self.error: Optional[BaseException] = None

    @property
    def subscribed(self) -> bool:
        return bool(self.channels)

    async def subscribe(self, *channels: str) -> None:
        for channel in channels:
            self._server.check("subscribe", channel)
            if channel not in self.channels:
                self.channels[channel] = None
                self._server.channels[channel].append(self)
            await self._queue.put({"type": "subscribe", "channel": channel, "data": 1})

    async def unsubscribe(self, *channels: str) -> None:
        for channel in channels:
            self._server.check("unsubscribe", channel)
            if channel in self.channels:
                del self.channels[channel]
                self._server.channels[channel].remove(self)
            await self._queue.put({"type": "unsubscribe", "channel": channel, "data": 0})

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout: float = 0.0):
        if self.error is not None:
            error, self.error = self.error, None
            raise error

        # asyncio.wait never absorbs a cancellation of the caller
        getter = asyncio.ensure_future(self._queue.get())
        try:
            done, _ = await asyncio.wait({getter}, timeout=timeout)
        finally:
            if not getter.done():
                getter.cancel()
        if getter not in done:
            return None
        message = getter.result()
        if ignore_subscribe_messages and message["type"] != "message":
            return None
        return message

    def deliver(self, channel: str, data: str) -> None:
        self._queue.put_nowait({"type": "message", "pattern": None, "channel": channel, "data": data})

    async def aclose(self) -> None:
        for channel in list(self.channels):
            self._server.channels[channel].remove(self)
        self.channels.clear()
        self.closed = True


class FakeValkey:
    """Async client double with decode_responses=True semantics."""

    def __init__(self, server: FakeServer):
        self._server = server
        self.closed = False
        self.pubsubs: List[FakePubSub] = []

    async def ping(self) -> bool:
        self._server.check("ping")
        return True

    async def get(self, key: str) -> Optional[str]:
        self._server.check("get", key)
        return self._server.data[key] if self._server.alive(key) else None

    async def set(self, key: str, value: Any, px: Optional[int] = None, nx: bool = False) -> Optional[bool]:
        self._server.check("set", key, value)
        if nx and self._server.alive(key):
            return None
        self._server.data[key] = str(value)
        self._server.expiry.pop(key, None)
        if px:
            self._server.expiry[key] = time.monotonic() + px / 1000
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._server.check("delete", key)
            if self._server.alive(key):
                del self._server.data[key]
                self._server.expiry.pop(key, None)
                removed += 1
        return removed

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if self._server.alive(key))

    async def scan_iter(self, match: Optional[str] = None, count: Optional[int] = None):
        self._server.check("scan", match)
        for key in list(self._server.data):
            if self._server.alive(key) and (match is None or fnmatch.fnmatchcase(key, match)):
                yield key

    async def publish(self, channel: str, message: str) -> int:
        self._server.check("publish", channel, message)
        receivers = list(self._server.channels.get(channel, ()))
        for pubsub in receivers:
            pubsub.deliver(channel, message)
        return len(receivers)

    def pubsub(self) -> FakePubSub:
        pubsub = FakePubSub(self._server)
        self.pubsubs.append(pubsub)
        return pubsub

    async def aclose(self) -> None:
        self.closed = True


async def wait_until(predicate, timeout: float = 1.0, interval: float = 0.01) -> bool:
    """Poll a predicate until it holds or the timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def server():
    """Fresh in-memory store."""
    return FakeServer()


@pytest.fixture
def store(server):
    """Role clients backed by the fake server."""
    return StoreClients.from_clients(
        pub=FakeValkey(server),
        sub=FakeValkey(server),
        lock=FakeValkey(server),
        cache=FakeValkey(server),
    )


@pytest_asyncio.fixture
async def bus(store):
    """Started PubSub with prefix 'app' over the fake server."""
    pubsub = PubSub("app", store, poll_timeout=0.05)
    await pubsub.start()
    yield pubsub
    await pubsub.close()
