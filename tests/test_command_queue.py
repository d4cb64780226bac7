import asyncio

import pytest

from command_queue import CommandQueue


class Handler:
    def __init__(self, fail=()):
        self.log = []
        self.fail = set(fail)

    async def __call__(self, control_id, value):
        loop = asyncio.get_running_loop()
        self.log.append(("start", control_id, loop.time()))
        await asyncio.sleep(0.01)
        self.log.append(("end", control_id, loop.time()))
        if control_id in self.fail:
            raise RuntimeError(f"{control_id} rejected")
        return value


async def test_commands_run_in_order_without_interleaving():
    handler = Handler()
    queue = CommandQueue(handler, 0.05)

    futures = [queue.enqueue("onoff.ep1", True), queue.enqueue("dim.ep2", 0.4)]
    results = await asyncio.gather(*futures)

    assert results == [True, 0.4]
    assert [(step, control) for step, control, _ in handler.log] == [
        ("start", "onoff.ep1"),
        ("end", "onoff.ep1"),
        ("start", "dim.ep2"),
        ("end", "dim.ep2"),
    ]
    first_end = handler.log[1][2]
    second_start = handler.log[2][2]
    assert second_start - first_end >= 0.045


async def test_fifo_across_many_commands():
    handler = Handler()
    queue = CommandQueue(handler, 0.001)

    ids = [f"onoff.ep{i}" for i in range(1, 6)]
    await asyncio.gather(*(queue.enqueue(i, True) for i in ids))

    assert [c for step, c, _ in handler.log if step == "start"] == ids
    assert not queue.is_processing
    assert len(queue) == 0


async def test_failure_only_reaches_its_caller():
    handler = Handler(fail={"dim.ep1"})
    queue = CommandQueue(handler, 0.001)

    bad = queue.enqueue("dim.ep1", 0.5)
    good = queue.enqueue("onoff.ep2", False)

    with pytest.raises(RuntimeError, match="rejected"):
        await bad
    assert await good is False


async def test_enqueue_after_drain_restarts_processing():
    handler = Handler()
    queue = CommandQueue(handler, 0.001)

    await queue.enqueue("onoff.ep1", True)
    assert await queue.enqueue("onoff.ep1", False) is False


async def test_close_cancels_waiting_commands():
    handler = Handler()
    queue = CommandQueue(handler, 1.0)

    first = queue.enqueue("onoff.ep1", True)
    second = queue.enqueue("onoff.ep2", True)
    await first
    await queue.close()

    assert second.cancelled()
    assert len(queue) == 0


async def test_command_from_another_caller_joins_the_tail():
    handler = Handler()
    queue = CommandQueue(handler, 0.05)

    async def late_caller():
        # lands while the drain loop waits between the first two commands
        await asyncio.sleep(0.03)
        assert queue.is_processing
        return await queue.enqueue("onoff.ep3", True)

    first = queue.enqueue("onoff.ep1", True)
    second = queue.enqueue("dim.ep2", 0.4)
    results = await asyncio.gather(first, second, late_caller())

    assert results == [True, 0.4, True]
    starts = [(c, t) for step, c, t in handler.log if step == "start"]
    ends = [t for step, c, t in handler.log if step == "end"]
    assert [c for c, _ in starts] == ["onoff.ep1", "dim.ep2", "onoff.ep3"]
    assert starts[1][1] - ends[0] >= 0.045
    assert starts[2][1] - ends[1] >= 0.045
