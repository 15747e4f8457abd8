"""
Tests for the background prune loop.
"""

import asyncio
from unittest.mock import AsyncMock, patch

from bookmark_analytics.main import periodic_prune


class TestPeriodicPrune:
    async def test_keeps_running_after_unexpected_error(self, memory_backend, caplog):
        failing = AsyncMock(side_effect=ValueError("Invalid isoformat string: 'yesterday'"))
        with patch("bookmark_analytics.main.prune_expired", failing):
            task = asyncio.create_task(periodic_prune(memory_backend, interval=0))
            for _ in range(5):
                await asyncio.sleep(0)

            assert not task.done()
            assert failing.await_count >= 2
            task.cancel()
            await task

        assert task.exception() is None
        assert "Analytics prune error" in caplog.text

    async def test_stops_on_cancel(self, memory_backend):
        task = asyncio.create_task(periodic_prune(memory_backend, interval=3600))
        await asyncio.sleep(0)
        task.cancel()
        await task
        assert task.done()
