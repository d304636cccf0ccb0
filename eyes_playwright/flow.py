"""Cooperative task queue shared by the driver and the visual checkpoints.

Every operation a test issues (page actions as well as checkpoints) becomes
one unit of work on a single FIFO queue, so a checkpoint always observes the
page state produced by the actions scheduled before it.
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

# The flow whose unit of work is currently running in this context, if any.
_active_flow: contextvars.ContextVar["ControlFlow | None"] = contextvars.ContextVar(
    "eyes_active_flow", default=None,
)


@dataclass
class _Unit:
    fn: Callable[[], Any]
    future: asyncio.Future
    description: str


async def _invoke(fn: Callable[[], Any]) -> Any:
    result = fn()
    if inspect.isawaitable(result):
        result = await result
    return result


class ControlFlow:
    """Single-consumer FIFO of units of work on the running event loop."""

    def __init__(self) -> None:
        self._queue: deque[_Unit] = deque()
        self._worker: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def in_unit(self) -> bool:
        """True when called from code running inside one of this flow's units."""
        return _active_flow.get() is self

    def execute(self, fn: Callable[[], Any], description: str = "") -> asyncio.Future:
        """Schedule ``fn`` and return a future for its result.

        ``fn`` may be a plain callable or return an awaitable. Called from
        inside a running unit, ``fn`` runs right away as part of that unit
        instead of waiting behind the rest of the queue.
        """
        if self.in_unit:
            logger.debug("Running nested task: %s", description or fn)
            return asyncio.ensure_future(_invoke(fn))

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._queue.append(_Unit(fn=fn, future=future, description=description))
        logger.debug("Scheduled task: %s (%d pending)", description or fn, len(self._queue))
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())
        return future

    def timeout(self, ms: int) -> asyncio.Future:
        """Schedule a pause of ``ms`` milliseconds."""
        return self.execute(lambda: asyncio.sleep(ms / 1000), f"timeout({ms}ms)")

    def idle(self) -> asyncio.Future:
        """Resolve once every unit scheduled so far has finished."""
        return self.execute(lambda: None, "idle")

    async def _drain(self) -> None:
        _active_flow.set(self)
        while self._queue:
            unit = self._queue.popleft()
            logger.debug("Executing task: %s", unit.description or unit.fn)
            try:
                result = await _invoke(unit.fn)
            except Exception as e:
                logger.debug("Task failed: %s (%s)", unit.description or unit.fn, e)
                if not unit.future.done():
                    unit.future.set_exception(e)
            else:
                if not unit.future.done():
                    unit.future.set_result(result)
