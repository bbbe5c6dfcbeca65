from __future__ import annotations

import asyncio
import logging

import pytest

from wxbridge.util.asyncio import cancel_and_wait, ensure_task


@pytest.mark.asyncio
async def test_cancel_and_wait_stops_a_running_task() -> None:
    task = ensure_task(asyncio.sleep(60), name="sleeper")
    await asyncio.sleep(0)

    await cancel_and_wait(task)
    assert task.cancelled()


@pytest.mark.asyncio
async def test_cancel_and_wait_ignores_missing_task() -> None:
    await cancel_and_wait(None)


@pytest.mark.asyncio
async def test_cancel_and_wait_logs_a_task_that_already_failed(caplog) -> None:
    async def broken() -> None:
        raise RuntimeError("boom")

    task = ensure_task(broken(), name="broken")
    await asyncio.wait([task])

    with caplog.at_level(logging.ERROR, logger="wxbridge.tasks"):
        await cancel_and_wait(task)
    assert "task broken had failed" in caplog.text


@pytest.mark.asyncio
async def test_cancel_and_wait_from_inside_the_task_is_a_no_op() -> None:
    async def self_stop() -> str:
        await cancel_and_wait(asyncio.current_task())
        return "still running"

    assert await ensure_task(self_stop()) == "still running"
