"""Bounded worker pool for async tasks.

The pool does not run anything itself, it only bounds how many units of work
hold a slot at once:

    pool = WorkerPool(5)
    for url in urls:
        await pool.slot()             # wait for an open slot
        asyncio.create_task(work(url))  # work() calls pool.free() when done
    await pool.wait()                 # every slot released, pool is done
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from core.errors import ConfigurationError, PoolClosedError, PoolError

logger = logging.getLogger(__name__)


class WorkerPool:
    """Counting semaphore with an explicit completion barrier."""

    def __init__(self, size: int, name: str = "pool"):
        if not isinstance(size, int) or size < 1:
            raise ConfigurationError(f"{name} size must be a positive integer, got {size!r}")

        self.size = size
        self.name = name
        self._semaphore = asyncio.Semaphore(size)
        self._active = 0
        self._done = False

    @property
    def active(self) -> int:
        """Number of slots currently held."""
        return self._active

    @property
    def done(self) -> bool:
        return self._done

    async def slot(self) -> None:
        """Block until a slot is free, then hold it."""
        if self._done:
            raise PoolClosedError(f"slot() called on completed {self.name}")

        await self._semaphore.acquire()
        if self._done:
            self._semaphore.release()
            raise PoolClosedError(f"slot() called on completed {self.name}")
        self._active += 1

    def free(self) -> None:
        """Release a slot taken by slot()."""
        if self._done:
            raise PoolClosedError(f"free() called on completed {self.name}")
        if self._active < 1:
            raise PoolError(f"free() called on {self.name} without a matching slot()")

        self._active -= 1
        self._semaphore.release()

    async def wait(self) -> None:
        """Block until every slot has been freed, then mark the pool done."""
        if self._done:
            raise PoolClosedError(f"wait() called on completed {self.name}")

        for _ in range(self.size):
            await self._semaphore.acquire()

        self._done = True
        logger.debug(f"{self.name} drained ({self.size} slots)")

    @asynccontextmanager
    async def hold(self):
        """Hold one slot for the duration of the block.

        Usage:
            async with pool.hold():
                await do_network_call()
        """
        await self.slot()
        try:
            yield
        finally:
            self.free()
