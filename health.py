"""Periodic watchdog that rediscovers endpoints when the registry was lost."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from controls import ControlHost
from registry import EndpointRegistry

logger = logging.getLogger(__name__)


class HealthMonitor:
    """
    Only one desync shape is handled: controls exist but the registry has no
    classified endpoint. Anything else is left alone.
    """

    def __init__(self, registry: EndpointRegistry, host: ControlHost,
                 rediscover: Callable[[], Awaitable[None]], interval: float):
        self._registry = registry
        self._host = host
        self._rediscover = rediscover
        self.interval = interval
        self._task: Optional["asyncio.Task[Any]"] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._periodic_check_task())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _periodic_check_task(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.check()

    def is_desynced(self) -> bool:
        return not self._registry.classified_ids() and self._host.endpoint_control_count() > 0

    async def check(self) -> bool:
        """Run one health check; returns True when rediscovery was attempted."""
        if not self.is_desynced():
            return False

        logger.warning("[HEALTH] Endpoint types lost, attempting rediscovery")
        try:
            await self._rediscover()
        except Exception as e:
            logger.error(f"[HEALTH] Rediscovery failed: {e}", exc_info=True)
        return True
