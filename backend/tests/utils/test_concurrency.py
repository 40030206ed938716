import asyncio

import pytest

from playergraph.utils.concurrency import gather_or_cancel


class TestGatherOrCancel:
    @pytest.mark.asyncio
    async def test_results_keep_argument_order(self):
        async def value(v, delay):
            await asyncio.sleep(delay)
            return v

        assert await gather_or_cancel(value(1, 0.02), value(2, 0.0)) == [1, 2]

    @pytest.mark.asyncio
    async def test_failure_cancels_siblings(self):
        cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        async def boom():
            await asyncio.sleep(0)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await gather_or_cancel(slow(), boom())

        assert cancelled.is_set()
