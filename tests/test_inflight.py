import asyncio

import pytest

from app.services.inflight import ActionInProgress, InFlightGuard


@pytest.mark.asyncio
async def test_second_trigger_rejected_until_first_finishes():
    guard = InFlightGuard()
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow():
        async with guard.hold("protocols", 7):
            started.set()
            await release.wait()
            return "done"

    task = asyncio.create_task(slow())
    await started.wait()
    assert guard.is_running("protocols", 7)
    with pytest.raises(ActionInProgress):
        async with guard.hold("protocols", 7):
            pass
    async with guard.hold("protocols", 8):
        assert guard.is_running("protocols", 8)
    release.set()
    assert await task == "done"
    assert not guard.is_running("protocols", 7)


@pytest.mark.asyncio
async def test_slot_released_on_error():
    guard = InFlightGuard()
    with pytest.raises(RuntimeError):
        async with guard.hold("excel", 1):
            raise RuntimeError("boom")
    assert not guard.is_running("excel", 1)
