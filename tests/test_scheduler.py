import os
import sys
import asyncio
import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from scheduler import AsyncioIdleScheduler, SynchronousScheduler, default_scheduler


def test_synchronous_scheduler_runs_immediately():
    ran = []
    scheduler = SynchronousScheduler()
    handle = scheduler.run_when_idle(lambda: ran.append(1))
    assert ran == [1]
    assert handle.done
    scheduler.cancel(handle)
    assert not handle.cancelled


def test_default_scheduler_without_loop_is_synchronous():
    assert isinstance(default_scheduler(), SynchronousScheduler)


@pytest.mark.asyncio
async def test_asyncio_scheduler_defers_until_loop_yields():
    ran = []
    scheduler = default_scheduler()
    assert isinstance(scheduler, AsyncioIdleScheduler)
    handle = scheduler.run_when_idle(lambda: ran.append("idle"))
    ran.append("sync")
    await asyncio.sleep(0)
    assert ran == ["sync", "idle"]
    assert handle.done


@pytest.mark.asyncio
async def test_asyncio_scheduler_cancel():
    ran = []
    scheduler = AsyncioIdleScheduler(idle_delay=0.01)
    handle = scheduler.run_when_idle(lambda: ran.append(1))
    scheduler.cancel(handle)
    await asyncio.sleep(0.05)
    assert ran == []
    assert handle.cancelled
    assert not handle.done
