"""
Test suite for distributed locking.

Timing assertions use generous tolerances; lock TTLs are kept short so the
suite stays fast.
"""

import asyncio
import logging
import time
import pytest

from valkey_pubsub import ChannelNamespacer, LockManager, LockRelease, LockTimeoutError

from conftest import FakeValkey


@pytest.fixture
def locks(server):
    return LockManager(FakeValkey(server), ChannelNamespacer("app"))


class TestAcquire:
    """Test acquisition and the lock record."""

    @pytest.mark.asyncio
    async def test_lock_returns_release_capability(self, locks, server):
        release = await locks.lock("x", 1000)

        assert isinstance(release, LockRelease)
        assert release.key == "app.lock.x"
        assert release.timeout == 1000
        assert not release.released
        assert "app.lock.x" in server.data

    @pytest.mark.asyncio
    async def test_record_holds_expiry_timestamp(self, locks, server):
        before = int(time.time() * 1000)
        await locks.lock("x", 1000)
        after = int(time.time() * 1000)

        stored = int(server.data["app.lock.x"])
        assert before + 1001 <= stored <= after + 1001

    @pytest.mark.asyncio
    async def test_set_uses_nx_with_ttl(self, locks, server):
        await locks.lock("x", 1000)
        remaining = server.expiry["app.lock.x"] - time.monotonic()
        assert 0.5 < remaining <= 1.0

    @pytest.mark.asyncio
    async def test_default_timeout(self, server):
        locks = LockManager(FakeValkey(server), ChannelNamespacer("app"), default_timeout=300)
        release = await locks.lock("x")
        assert release.timeout == 300

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout", [0, -100])
    async def test_non_positive_timeout_rejected(self, locks, server, timeout):
        """Test a zero or negative TTL is an error, not the default TTL."""
        with pytest.raises(ValueError):
            await locks.lock("x", timeout)
        assert "app.lock.x" not in server.data

    @pytest.mark.asyncio
    async def test_release_records_acquisition_time(self, locks):
        before = time.time()
        release = await locks.lock("x", 1000)
        assert before <= release.acquired_at <= time.time()
        assert "held" in repr(release)
        await release()
        assert "released" in repr(release)

    @pytest.mark.asyncio
    async def test_is_locked(self, locks):
        assert not await locks.is_locked("x")
        release = await locks.lock("x")
        assert await locks.is_locked("x")
        await release()
        assert not await locks.is_locked("x")


class TestContention:
    """Test mutual exclusion between concurrent callers."""

    @pytest.mark.asyncio
    async def test_second_caller_waits_for_release(self, locks):
        first = await locks.lock("x", 1000)
        second = asyncio.create_task(locks.lock("x", 1000))

        await asyncio.sleep(0.2)
        assert not second.done()

        await first()
        release = await asyncio.wait_for(second, timeout=1)
        assert isinstance(release, LockRelease)
        await release()

    @pytest.mark.asyncio
    async def test_only_one_of_many_holds_the_lock(self, locks):
        holders = 0
        max_holders = 0

        async def worker():
            nonlocal holders, max_holders
            async with locks.locked("shared", 1000):
                holders += 1
                max_holders = max(max_holders, holders)
                await asyncio.sleep(0.02)
                holders -= 1

        await asyncio.wait_for(asyncio.gather(*(worker() for _ in range(5))), timeout=5)
        assert max_holders == 1

    @pytest.mark.asyncio
    async def test_released_lock_is_free_immediately(self, locks):
        release = await locks.lock("x", 1000)
        await release()

        # wait_timeout=0 allows no retry: the first attempt must win
        again = await locks.lock("x", 1000, wait_timeout=0)
        assert again.name == "x"

    @pytest.mark.asyncio
    async def test_expired_lock_is_acquirable(self, locks):
        """Test a lock never released frees itself after its TTL."""
        await locks.lock("x", 100)

        start = time.monotonic()
        release = await locks.lock("x", 1000, wait_timeout=2)
        waited = time.monotonic() - start

        assert 0.05 <= waited < 1.0
        await release()

    @pytest.mark.asyncio
    async def test_store_error_is_retried(self, locks, server, caplog):
        server.fail("set", times=2)
        with caplog.at_level(logging.WARNING, logger="valkey_pubsub.services.lock_manager"):
            release = await asyncio.wait_for(locks.lock("x", 1000), timeout=1)

        assert isinstance(release, LockRelease)
        assert caplog.text.count("Error acquiring lock app.lock.x") == 2

    @pytest.mark.asyncio
    async def test_wait_timeout(self, locks):
        await locks.lock("x", 5000)
        with pytest.raises(LockTimeoutError) as exc_info:
            await locks.lock("x", 5000, wait_timeout=0.2)
        assert exc_info.value.name == "x"

    @pytest.mark.asyncio
    async def test_retry_delay(self, server):
        locks = LockManager(FakeValkey(server), ChannelNamespacer("app"), retry_delay=10)
        await locks.lock("x", 5000)
        attempts_before = len([c for c in server.commands if c[0] == "set"])

        with pytest.raises(LockTimeoutError):
            await locks.lock("x", 5000, wait_timeout=0.2)

        attempts = len([c for c in server.commands if c[0] == "set"]) - attempts_before
        assert attempts > 5


class TestRelease:
    """Test the release capability and forced unlock."""

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, locks, server):
        release = await locks.lock("x")
        await release()
        await release()
        assert release.released
        assert "app.lock.x" not in server.data

    @pytest.mark.asyncio
    async def test_force_unlock_ignores_ownership(self, locks):
        await locks.lock("x", 5000)
        await locks.force_unlock("x")
        assert not await locks.is_locked("x")

    @pytest.mark.asyncio
    async def test_unlock_alias(self, locks):
        await locks.lock("x", 5000)
        await locks.unlock("x")
        release = await locks.lock("x", 5000, wait_timeout=0)
        assert release.name == "x"

    @pytest.mark.asyncio
    async def test_locked_context_releases_on_error(self, locks):
        with pytest.raises(RuntimeError):
            async with locks.locked("x", 5000) as release:
                assert isinstance(release, LockRelease)
                raise RuntimeError("inside")
        assert not await locks.is_locked("x")
