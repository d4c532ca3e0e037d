"""Tests for job dispatchers."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from mpintel.core.queue import ArqDispatcher, LocalDispatcher
from mpintel.exceptions import DispatchError


class TestLocalDispatcher:
    async def test_runs_job_with_context(self):
        received = []

        async def record_job(ctx, value):
            received.append((ctx["name"], value))

        dispatcher = LocalDispatcher([record_job], ctx={"name": "local"})
        assert await dispatcher.enqueue("record_job", 7) is True
        await dispatcher.drain()

        assert received == [("local", 7)]
        assert dispatcher.ctx["dispatcher"] is dispatcher
        assert dispatcher.submitted == [("record_job", (7,))]

    async def test_duplicate_job_id_skipped(self):
        calls = []

        async def record_job(ctx, value):
            calls.append(value)

        dispatcher = LocalDispatcher([record_job])
        assert await dispatcher.enqueue("record_job", 1, job_id="job:1") is True
        assert await dispatcher.enqueue("record_job", 1, job_id="job:1") is False
        await dispatcher.drain()

        assert calls == [1]

    async def test_drain_waits_for_chained_jobs(self):
        order = []

        async def second(ctx):
            await asyncio.sleep(0)
            order.append("second")

        async def first(ctx):
            order.append("first")
            await ctx["dispatcher"].enqueue("second")

        dispatcher = LocalDispatcher([first, second])
        await dispatcher.enqueue("first")
        await dispatcher.drain()

        assert order == ["first", "second"]

    async def test_failing_job_does_not_break_drain(self):
        async def broken(ctx):
            raise RuntimeError("boom")

        dispatcher = LocalDispatcher([broken])
        await dispatcher.enqueue("broken")
        await dispatcher.drain()

    async def test_unknown_function(self):
        dispatcher = LocalDispatcher([])

        with pytest.raises(DispatchError, match="Unknown job function"):
            await dispatcher.enqueue("missing_job")


class TestArqDispatcher:
    async def test_enqueue(self):
        pool = MagicMock()
        pool.enqueue_job = AsyncMock(return_value=MagicMock(job_id="extract:1"))

        dispatcher = ArqDispatcher(pool=pool)
        assert await dispatcher.enqueue("process_document_job", "1", job_id="extract:1")

        pool.enqueue_job.assert_awaited_once_with(
            "process_document_job", "1", _job_id="extract:1"
        )

    async def test_duplicate_returns_false(self):
        pool = MagicMock()
        pool.enqueue_job = AsyncMock(return_value=None)

        dispatcher = ArqDispatcher(pool=pool)
        assert await dispatcher.enqueue("process_document_job", "1", job_id="extract:1") is False

    @pytest.mark.parametrize("error", [OSError("unreachable"), RedisConnectionError("down")])
    async def test_connection_failure(self, error):
        pool = MagicMock()
        pool.enqueue_job = AsyncMock(side_effect=error)

        dispatcher = ArqDispatcher(pool=pool)
        with pytest.raises(DispatchError, match="Failed to enqueue normalize_quote_job"):
            await dispatcher.enqueue("normalize_quote_job", "q")

    async def test_close_releases_pool(self):
        pool = MagicMock()
        pool.aclose = AsyncMock()

        dispatcher = ArqDispatcher(pool=pool)
        await dispatcher.close()
        await dispatcher.close()

        pool.aclose.assert_awaited_once()
