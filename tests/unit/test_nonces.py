"""Unit tests for the nonce replay cache."""

from __future__ import annotations

import asyncio

import pytest

from remotectl.transport.nonces import NonceCache, NonceError, nonce_key

RETENTION_MS = 180_000


@pytest.fixture
def cache():
    return NonceCache(retention_seconds=180)


class TestTryInsert:
    @pytest.mark.asyncio
    async def test_first_insert_is_fresh_and_repeat_is_replay(self, cache):
        key = nonce_key("N1", "jim")
        assert await cache.try_insert(key, 1_000 + RETENTION_MS, now_ms=1_000)
        assert not await cache.try_insert(key, 2_000 + RETENTION_MS, now_ms=2_000)
        assert not await cache.try_insert(key, 5_000 + RETENTION_MS, now_ms=5_000)

    @pytest.mark.asyncio
    async def test_key_is_scoped_by_client_id(self, cache):
        assert nonce_key("N1", "jim") == "N1.jim"
        assert await cache.try_insert(nonce_key("N1", "jim"), 10_000, now_ms=0)
        assert await cache.try_insert(nonce_key("N1", "bob"), 10_000, now_ms=0)

    @pytest.mark.asyncio
    async def test_expired_entry_is_overwritten_without_sweep(self, cache):
        key = nonce_key("N1", "jim")
        assert await cache.try_insert(key, 5_000, now_ms=0)
        assert await cache.try_insert(key, 20_000, now_ms=5_000)
        assert not await cache.try_insert(key, 30_000, now_ms=6_000)

    @pytest.mark.asyncio
    async def test_concurrent_inserts_admit_exactly_one(self, cache):
        key = nonce_key("race", "jim")
        results = await asyncio.gather(
            *(cache.try_insert(key, 10_000, now_ms=0) for _ in range(20))
        )
        assert results.count(True) == 1


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired_entries(self, cache):
        await cache.try_insert("old", 1_000, now_ms=0)
        await cache.try_insert("new", 9_000, now_ms=0)

        removed = await cache.sweep(now_ms=1_000)

        assert removed == 1
        assert "old" not in cache
        assert "new" in cache
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_pair_is_accepted_again_after_retention_and_sweep(self, cache):
        key = nonce_key("N1", "jim")
        assert await cache.try_insert(key, RETENTION_MS, now_ms=0)
        assert not await cache.try_insert(key, RETENTION_MS + 10, now_ms=10)

        await cache.sweep(now_ms=RETENTION_MS + 1)

        assert key not in cache
        assert await cache.try_insert(key, 2 * RETENTION_MS + 2, now_ms=RETENTION_MS + 2)


class TestAssertFresh:
    @pytest.mark.asyncio
    async def test_raises_on_reuse(self, cache):
        await cache.assert_fresh("N1.jim")
        with pytest.raises(NonceError, match="already seen"):
            await cache.assert_fresh("N1.jim")

    @pytest.mark.asyncio
    async def test_raises_on_missing_key(self, cache):
        with pytest.raises(NonceError, match="missing"):
            await cache.assert_fresh("")


class TestSweeper:
    @pytest.mark.asyncio
    async def test_background_sweeper_evicts_expired_entries(self, cache):
        await cache.try_insert("gone", 0, now_ms=0)
        cache.start_sweeper(0.01, "test-sweeper")
        try:
            for _ in range(100):
                if "gone" not in cache:
                    break
                await asyncio.sleep(0.01)
        finally:
            await cache.stop_sweeper()
        assert "gone" not in cache

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, cache):
        cache.start_sweeper(60, "test-sweeper")
        first = cache._sweeper
        cache.start_sweeper(60, "test-sweeper")
        assert cache._sweeper is first

        await cache.stop_sweeper()
        await cache.stop_sweeper()

        assert cache._sweeper is None
        assert first.done()

    @pytest.mark.asyncio
    async def test_stop_without_start_is_a_no_op(self, cache):
        await cache.stop_sweeper()
