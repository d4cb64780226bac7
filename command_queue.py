"""Serialized outbound command queue with a fixed gap between commands."""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional

from models import QueuedCommand

logger = logging.getLogger(__name__)


class CommandQueue:
    """
    Global FIFO across all controls. A single drain loop applies one command at
    a time and sleeps ``delay`` seconds before the next one while work remains.
    """

    def __init__(self, handler: Callable[[str, Any], Awaitable[Any]], delay: float):
        self._handler = handler
        self.delay = delay
        self._queue: Deque[QueuedCommand] = deque()
        self._drain_task: Optional["asyncio.Task[None]"] = None

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def enqueue(self, control_id: str, value: Any) -> "asyncio.Future[Any]":
        """Queue ``value`` for ``control_id``; the future resolves with the command's outcome."""
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[Any]" = loop.create_future()
        self._queue.append(QueuedCommand(
            control_id=control_id,
            value=value,
            enqueued_at=time.monotonic(),
            future=future,
        ))
        if not self.is_processing:
            self._drain_task = loop.create_task(self._process())
        return future

    async def _process(self) -> None:
        while self._queue:
            command = self._queue.popleft()
            try:
                logger.info(f"[QUEUE] Processing command: {command.control_id} = {command.value}")
                result = await self._handler(command.control_id, command.value)
            except asyncio.CancelledError:
                if not command.future.done():
                    command.future.cancel()
                raise
            except Exception as e:
                logger.error(f"[QUEUE] Failed to execute command: {command.control_id} - {e}")
                if not command.future.done():
                    command.future.set_exception(e)
            else:
                if not command.future.done():
                    command.future.set_result(result)

            if self._queue:
                await asyncio.sleep(self.delay)

    async def close(self) -> None:
        """Stop draining and cancel every command still waiting."""
        task, self._drain_task = self._drain_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        while self._queue:
            command = self._queue.popleft()
            if not command.future.done():
                command.future.cancel()
