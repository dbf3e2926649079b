import asyncio

import pytest

from services.quiz_completion.dispatcher import SideEffectDispatcher


@pytest.mark.asyncio
async def test_effects_run_in_background() -> None:
    d = SideEffectDispatcher(workers=2, max_queue=10)
    d.start()
    done = []

    async def effect(n):
        done.append(n)

    for n in range(3):
        assert d.dispatch(f"e{n}", lambda n=n: effect(n), {"user_id": "u1"})
    await d.join()
    assert sorted(done) == [0, 1, 2]
    await d.stop()


@pytest.mark.asyncio
async def test_dispatch_before_start_is_dropped() -> None:
    d = SideEffectDispatcher()
    ran = []

    async def effect():
        ran.append(1)

    assert d.dispatch("early", effect) is False
    assert d.pending() == 0
    assert not d.running


@pytest.mark.asyncio
async def test_full_queue_drops_without_blocking() -> None:
    d = SideEffectDispatcher(workers=1, max_queue=1)
    d.start()

    async def effect():
        return None

    assert d.dispatch("first", effect) is True
    assert d.dispatch("second", effect) is False
    await d.stop()


@pytest.mark.asyncio
async def test_failures_and_timeouts_are_contained() -> None:
    d = SideEffectDispatcher(workers=1, max_queue=10)
    d.start()
    after = []

    async def boom():
        raise RuntimeError("db down")

    async def slow():
        await asyncio.sleep(5)

    async def ok():
        after.append("ok")

    d.dispatch("boom", boom)
    d.dispatch("slow", slow, timeout=0.01)
    d.dispatch("ok", ok)
    await d.join()
    assert after == ["ok"]
    await d.stop()


@pytest.mark.asyncio
async def test_stop_drains_queue_then_rejects() -> None:
    d = SideEffectDispatcher(workers=1, max_queue=10)
    d.start()
    done = []

    async def effect(n):
        await asyncio.sleep(0)
        done.append(n)

    for n in range(5):
        d.dispatch("drain", lambda n=n: effect(n))
    await d.stop(drain_timeout=5)
    assert done == [0, 1, 2, 3, 4]
    assert d.dispatch("late", lambda: effect(99)) is False
