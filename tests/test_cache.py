"""
Unit tests for the query cache
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from marketplace_chat.core.cache import QueryCache


@pytest.mark.asyncio
class TestQueryCache:
    """Tests for read-through caching and invalidation"""

    async def test_fresh_entry_not_refetched(self):
        cache = QueryCache()
        fetcher = AsyncMock(return_value=[1])
        assert await cache.get(("k",), fetcher) == [1]
        assert await cache.get(("k",), fetcher) == [1]
        assert fetcher.await_count == 1

    async def test_invalidate_prefix_marks_stale_and_notifies(self):
        cache = QueryCache()
        listener = MagicMock()
        cache.subscribe(listener)
        await cache.get(("conversations", "buyer", "u_1"), AsyncMock(return_value=[]))
        await cache.get(("messages", "c_1"), AsyncMock(return_value=[]))

        keys = cache.invalidate("conversations")

        assert keys == [("conversations", "buyer", "u_1")]
        assert not cache.is_fresh(("conversations", "buyer", "u_1"))
        assert cache.is_fresh(("messages", "c_1"))
        listener.assert_called_once_with(("conversations", "buyer", "u_1"))

    async def test_failed_fetch_keeps_previous_value(self):
        cache = QueryCache()
        await cache.get(("k",), AsyncMock(return_value="old"))
        with pytest.raises(RuntimeError):
            await cache.get(("k",), AsyncMock(side_effect=RuntimeError("down")), force=True)
        assert cache.peek(("k",)) == "old"

    async def test_concurrent_reads_share_one_request(self):
        cache = QueryCache()
        gate = asyncio.Event()
        calls = 0

        async def fetcher():
            nonlocal calls
            calls += 1
            await gate.wait()
            return "value"

        first = asyncio.create_task(cache.get(("k",), fetcher))
        second = asyncio.create_task(cache.get(("k",), fetcher, force=True))
        await asyncio.sleep(0)
        gate.set()

        assert await first == "value"
        assert await second == "value"
        assert calls == 1

    async def test_joined_reader_sees_failure(self):
        cache = QueryCache()
        gate = asyncio.Event()

        async def fetcher():
            await gate.wait()
            raise RuntimeError("down")

        first = asyncio.create_task(cache.get(("k",), fetcher))
        second = asyncio.create_task(cache.get(("k",), fetcher))
        await asyncio.sleep(0)
        gate.set()

        with pytest.raises(RuntimeError):
            await first
        with pytest.raises(RuntimeError):
            await second


    async def test_clear(self):
        cache = QueryCache()
        await cache.get(("a", 1), AsyncMock(return_value=1))
        cache.clear()
        assert cache.peek(("a", 1)) is None


@pytest.mark.asyncio
class TestInvalidationDuringFetch:
    """Tests for invalidations that land while a read is in flight"""

    async def test_fetch_started_before_invalidation_is_stored_stale(self):
        cache = QueryCache()
        gate = asyncio.Event()
        rows = ["old"]

        async def fetcher():
            snapshot = list(rows)
            await gate.wait()
            return snapshot

        pending = asyncio.create_task(cache.get(("conversations", "admin", "all"), fetcher))
        await asyncio.sleep(0)
        rows.append("new")
        assert cache.invalidate("conversations") == [("conversations", "admin", "all")]
        gate.set()

        assert await pending == ["old"]
        assert not cache.is_fresh(("conversations", "admin", "all"))
        assert await cache.get(("conversations", "admin", "all"), fetcher) == ["old", "new"]
        assert cache.is_fresh(("conversations", "admin", "all"))

    async def test_forced_read_after_invalidation_does_not_join_older_request(self):
        cache = QueryCache()
        old_gate = asyncio.Event()
        calls = []

        async def slow_fetcher():
            calls.append("slow")
            await old_gate.wait()
            return "before"

        async def fetcher():
            calls.append("fast")
            return "after"

        slow = asyncio.create_task(cache.get(("messages", "c_1"), slow_fetcher, force=True))
        await asyncio.sleep(0)
        cache.invalidate("messages", "c_1")

        assert await cache.get(("messages", "c_1"), fetcher, force=True) == "after"
        old_gate.set()
        assert await slow == "before"

        assert calls == ["slow", "fast"]
        assert cache.peek(("messages", "c_1")) == "after"
        assert cache.is_fresh(("messages", "c_1"))
