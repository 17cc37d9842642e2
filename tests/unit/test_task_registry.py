"""Tests for StageTaskRegistry."""

import asyncio

from finsight.orchestrator.task_registry import StageTaskRegistry


async def test_finished_tasks_remove_themselves():
    registry = StageTaskRegistry()

    async def work():
        return 42

    task = registry.start("p1", work())
    assert await task == 42
    await asyncio.sleep(0)
    assert registry.get("p1") is None
    assert len(registry) == 0


async def test_second_stage_waits_for_first():
    registry = StageTaskRegistry()
    order = []
    gate = asyncio.Event()

    async def first():
        await gate.wait()
        order.append("first")

    async def second():
        order.append("second")

    registry.start("p1", first())
    follow_up = registry.start("p1", second())
    await asyncio.sleep(0.01)
    assert order == []

    gate.set()
    await follow_up
    assert order == ["first", "second"]


async def test_cancel_running_task():
    registry = StageTaskRegistry()
    task = registry.start("p1", asyncio.sleep(60))
    await asyncio.sleep(0)
    assert registry.is_running("p1")
    assert registry.cancel("p1") is True
    await asyncio.wait({task})
    assert task.cancelled()
    assert registry.cancel("p1") is False


async def test_shutdown_cancels_everything():
    registry = StageTaskRegistry()
    tasks = [registry.start(f"p{i}", asyncio.sleep(60)) for i in range(3)]
    await registry.shutdown(timeout=1)
    assert all(task.cancelled() for task in tasks)


async def test_crashed_task_is_logged_not_raised(caplog):
    registry = StageTaskRegistry()

    async def boom():
        raise RuntimeError("stage crashed")

    task = registry.start("p1", boom())
    await asyncio.wait({task})
    await asyncio.sleep(0)
    assert "stage crashed" in caplog.text
