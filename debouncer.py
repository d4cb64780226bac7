"""Coalesce endpoint-less root reports into one bulk resync per endpoint type."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from models import EndpointType

logger = logging.getLogger(__name__)


class RootReportDebouncer:
    """
    One cancel-and-restart timer per endpoint type. When a timer survives the
    quiet window, the resync callback runs for that type only.
    """

    def __init__(self, resync: Callable[[EndpointType], Awaitable[None]], quiet_window: float,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self._resync = resync
        self.quiet_window = quiet_window
        self._loop = loop
        self._timers: Dict[EndpointType, asyncio.TimerHandle] = {}
        self._pending_tasks: Set["asyncio.Task[Any]"] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def is_pending(self, endpoint_type: EndpointType) -> bool:
        return endpoint_type in self._timers

    def report(self, endpoint_type: EndpointType) -> None:
        """Register a root report for ``endpoint_type``, restarting its quiet window."""
        timer = self._timers.pop(endpoint_type, None)
        if timer is not None:
            timer.cancel()
        self._timers[endpoint_type] = self._get_loop().call_later(
            self.quiet_window, self._fire, endpoint_type
        )

    def _fire(self, endpoint_type: EndpointType) -> None:
        self._timers.pop(endpoint_type, None)
        logger.info(
            f"[REPORT] Root {endpoint_type.value} report detected, no endpoint report received, "
            f"syncing all {endpoint_type.value} endpoints"
        )
        task = self._get_loop().create_task(self._run(endpoint_type))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _run(self, endpoint_type: EndpointType) -> None:
        try:
            await self._resync(endpoint_type)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"[REPORT] Failed to sync {endpoint_type.value} endpoints after root report: {e}",
                exc_info=True,
            )

    def cancel(self) -> None:
        """Drop all pending timers and in-flight resyncs."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in list(self._pending_tasks):
            task.cancel()
        self._pending_tasks.clear()
