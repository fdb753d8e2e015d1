import asyncio

import pytest

from core.errors import ConfigurationError, PoolClosedError, PoolError
from core.pool import WorkerPool
from core.timer import Timer


def test_timer_end_once():
    timer = Timer()
    result = timer.end()

    assert result.milli >= 0
    assert result.seconds == result.milli // 1000
    assert timer.result is result
    with pytest.raises(RuntimeError):
        timer.end()


def test_pool_rejects_non_positive_size():
    with pytest.raises(ConfigurationError):
        WorkerPool(0)


@pytest.mark.asyncio
async def test_pool_bounds_concurrency():
    pool = WorkerPool(2, name="test pool")
    running = 0
    peak = 0

    async def work():
        nonlocal running, peak
        try:
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
        finally:
            running -= 1
            pool.free()

    tasks = []
    for _ in range(6):
        await pool.slot()
        tasks.append(asyncio.create_task(work()))

    await pool.wait()
    await asyncio.gather(*tasks)

    assert peak == 2
    assert pool.done
    assert pool.active == 0


@pytest.mark.asyncio
async def test_pool_misuse():
    pool = WorkerPool(1)
    with pytest.raises(PoolError):
        pool.free()

    await pool.wait()

    with pytest.raises(PoolClosedError):
        await pool.slot()
    with pytest.raises(PoolClosedError):
        pool.free()
    with pytest.raises(PoolClosedError):
        await pool.wait()


@pytest.mark.asyncio
async def test_pool_hold_releases_on_error():
    pool = WorkerPool(1)

    with pytest.raises(ValueError):
        async with pool.hold():
            assert pool.active == 1
            raise ValueError("boom")

    assert pool.active == 0
    await pool.wait()
