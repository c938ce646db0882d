import asyncio

import pytest
from pytest_assume.plugin import assume

from app.helpers.cache import get_scheduler, lru_acache


@pytest.mark.asyncio(loop_scope="session")
async def test_lru_acache(random_text: str) -> None:
    """
    Test values are computed once per arguments, and evicted when the cache is full.
    """
    calls: list[str] = []

    @lru_acache(maxsize=2)
    async def _compute(value: str) -> str:
        calls.append(value)
        return value.upper()

    assume(await _compute(random_text) == random_text.upper())
    assume(await _compute(random_text) == random_text.upper())
    assume(calls == [random_text])

    # Fill the cache, first value is evicted
    await _compute("a")
    await _compute("b")
    await _compute(random_text)
    assume(calls == [random_text, "a", "b", random_text])


@pytest.mark.asyncio(loop_scope="session")
async def test_scheduler_limit() -> None:
    """
    Test the scheduler never runs more jobs than its limit.
    """
    running = 0
    peak = 0

    async def _job() -> None:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    async with get_scheduler(limit=3) as scheduler:
        jobs = [await scheduler.spawn(_job()) for _ in range(10)]
        await asyncio.gather(*[job.wait() for job in jobs])

    assume(peak == 3)
