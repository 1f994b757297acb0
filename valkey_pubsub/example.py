"""
Example usage of the pub/sub, cache and lock layer.

Requires a running Valkey server and VALKEY_PREFIX (or DOMAIN) in the
environment or a .env file. Run with:

    python -m valkey_pubsub.example
"""

import asyncio
import logging
from datetime import datetime

from . import PubSub, load_config, configure_logging

logger = logging.getLogger(__name__)


async def event_demo(bus: PubSub) -> None:
    """Publish an event and receive it back through the store."""
    print("\n=== Events ===")

    received = asyncio.Event()

    def on_login(user_id, meta):
        print(f"user.login -> user_id={user_id} meta={meta}")
        received.set()

    bus.on("user.login", on_login)
    await bus.flush()

    receivers = await bus.emit("user.login", 123, {"at": datetime.now().isoformat()})
    print(f"Delivered to {receivers} subscriber(s)")

    await asyncio.wait_for(received.wait(), timeout=5)
    bus.off("user.login", on_login)


async def cache_demo(bus: PubSub) -> None:
    """Store, read and pattern-delete cached values."""
    print("\n=== Cache ===")

    for user_id in (1, 2, 3):
        await bus.set(f"user:{user_id}", {"id": user_id, "name": f"User {user_id}"})

    print(f"user:2 -> {await bus.get('user:2')}")
    print(f"missing -> {await bus.get('user:404')}")

    removed = await bus.delete("user:*")
    print(f"Removed {removed} key(s); user:1 -> {await bus.get('user:1')}")


async def lock_demo(bus: PubSub) -> None:
    """Two workers contend for one lock."""
    print("\n=== Locks ===")

    async def worker(name: str) -> None:
        async with bus.locked("report", timeout=2000):
            print(f"{name} holds the lock")
            await asyncio.sleep(0.2)
        print(f"{name} released the lock")

    await asyncio.gather(worker("first"), worker("second"))


async def main() -> None:
    """Run all examples."""
    config = load_config()
    configure_logging(config.log_level)

    print("Valkey pub/sub examples")
    print("=" * 40)

    async with PubSub.from_config(config) as bus:
        try:
            await event_demo(bus)
            await cache_demo(bus)
            await lock_demo(bus)
        except Exception as e:
            logger.error(f"Example failed: {e}")
            raise

    print("\n=== Examples completed ===")


if __name__ == "__main__":
    asyncio.run(main())
