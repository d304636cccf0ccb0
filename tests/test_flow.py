"""Tests for the cooperative control flow."""

import asyncio
import time

import pytest

from eyes_playwright.flow import ControlFlow


@pytest.mark.asyncio
class TestControlFlow:
    """Ordering, results and nesting of units of work."""

    async def test_units_run_in_fifo_order(self):
        flow = ControlFlow()
        order = []

        async def slow():
            await asyncio.sleep(0.02)
            order.append("slow")

        first = flow.execute(slow, "slow")
        second = flow.execute(lambda: order.append("fast"), "fast")
        await asyncio.gather(first, second)

        assert order == ["slow", "fast"]

    async def test_future_resolves_with_return_value(self):
        flow = ControlFlow()

        async def compute():
            return 42

        assert await flow.execute(compute) == 42
        assert await flow.execute(lambda: "sync") == "sync"

    async def test_failed_unit_does_not_stop_queue(self):
        flow = ControlFlow()

        def boom():
            raise RuntimeError("boom")

        failing = flow.execute(boom, "boom")
        following = flow.execute(lambda: "after", "after")

        with pytest.raises(RuntimeError, match="boom"):
            await failing
        assert await following == "after"

    async def test_nested_execute_runs_inside_current_unit(self):
        flow = ControlFlow()
        order = []

        async def outer():
            order.append("outer-start")
            await flow.execute(lambda: order.append("nested"), "nested")
            order.append("outer-end")

        first = flow.execute(outer, "outer")
        second = flow.execute(lambda: order.append("next"), "next")
        await asyncio.gather(first, second)

        assert order == ["outer-start", "nested", "outer-end", "next"]

    async def test_in_unit_only_inside_running_unit(self):
        flow = ControlFlow()
        assert flow.in_unit is False
        assert await flow.execute(lambda: flow.in_unit) is True

    async def test_in_unit_is_per_flow(self):
        flow = ControlFlow()
        other = ControlFlow()
        assert await flow.execute(lambda: other.in_unit) is False

    async def test_timeout_delays_following_units(self):
        flow = ControlFlow()
        start = time.monotonic()
        flow.timeout(30)
        finished_at = await flow.execute(time.monotonic)
        assert finished_at - start >= 0.03

    async def test_idle_waits_for_scheduled_units(self):
        flow = ControlFlow()
        done = []

        async def work():
            await asyncio.sleep(0.01)
            done.append(True)

        flow.execute(work)
        flow.execute(work)
        await flow.idle()
        assert done == [True, True]

    async def test_pending_counts_queued_units(self):
        flow = ControlFlow()
        first = flow.execute(lambda: None)
        second = flow.execute(lambda: None)
        # The worker has not run yet
        assert flow.pending == 2
        await asyncio.gather(first, second)
        assert flow.pending == 0

    async def test_flow_restarts_after_draining(self):
        flow = ControlFlow()
        assert await flow.execute(lambda: 1) == 1
        await asyncio.sleep(0)
        assert await flow.execute(lambda: 2) == 2
