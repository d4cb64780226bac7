"""One managed multi-channel node: owns its registry, controls, timers and queue."""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional, Set

from command_queue import CommandQueue
from constants import (
    COMMAND_DELAY_MS,
    HEALTH_CHECK_INTERVAL,
    LABEL_SETTING_PREFIX,
    MAX_DIM_VALUE,
    MULTILEVEL_ON_RESTORE,
    SWITCH_BINARY_CC,
    SWITCH_MULTILEVEL_CC,
    SYNC_DEBOUNCE_MS,
)
from controls import ControlCatalog, ControlHost, ControlPublisher, parse_control_id
from debouncer import RootReportDebouncer
from discovery import DiscoveryEngine
from errors import CapabilityMissingError, StorageError
from flows import FlowCards, FlowTriggers
from health import HealthMonitor
from labels import LabelResolver, blank_labels
from models import EndpointType, ProtocolAdapter, Subscription
from projector import CapabilityProjector
from registry import EndpointRegistry
from storage import NodeStore
from synchronizer import StateSynchronizer
from zwave_helpers import REPORT_CLASS_TYPES

logger = logging.getLogger(__name__)


class MultiChannelDevice:
    """Discovery, sync, debouncing, command queue and health loop for a single node."""

    def __init__(
        self,
        node_id: int,
        adapter: ProtocolAdapter,
        store: NodeStore,
        catalog: Optional[ControlCatalog] = None,
        publisher: Optional[ControlPublisher] = None,
        *,
        default_settings: Optional[Dict[str, Any]] = None,
        debounce: float = SYNC_DEBOUNCE_MS / 1000,
        command_delay: float = COMMAND_DELAY_MS / 1000,
        health_interval: float = HEALTH_CHECK_INTERVAL,
    ):
        self.node_id = node_id
        self.adapter = adapter
        self.store = store
        self.catalog = catalog or ControlCatalog()
        self._default_settings = dict(default_settings or {})
        self._settings: Dict[str, Any] = dict(self._default_settings)

        self.registry = EndpointRegistry(store)
        self.host = ControlHost(node_id, store, publisher)
        self.labels = LabelResolver(self.registry, self.catalog, self.get_settings)
        self.projector = CapabilityProjector(self.host, self.registry, self.catalog, self.labels)
        self.triggers = FlowTriggers(self.labels)
        self.synchronizer = StateSynchronizer(
            node_id, adapter, self.registry, self.projector, self.host, self.triggers
        )
        self.discovery = DiscoveryEngine(self.registry, self.projector, on_reset=self._blank_labels)
        self.debouncer = RootReportDebouncer(self.synchronizer.sync_by_type, debounce)
        self.commands = CommandQueue(self._apply_command, command_delay)
        self.health = HealthMonitor(self.registry, self.host, self._rediscover, health_interval)
        self.flows = FlowCards(self.registry, self.host, self.labels, self.enqueue_command)

        self._subscription: Optional[Subscription] = None
        self._pending_tasks: Set["asyncio.Task[Any]"] = set()

    @property
    def lpfx(self) -> str:
        return f"[NODE {self.node_id}]"

    def get_settings(self) -> Dict[str, Any]:
        return dict(self._settings)

    async def async_init(self) -> None:
        """Restore state, discover, sync, sweep orphans, label, then start the health loop."""
        await self.store.load()
        self.registry.load()
        self.host.load()
        self._settings = {**self._default_settings, **self.store.load_settings()}

        try:
            topology = await self.adapter.topology(self.node_id)

            self._close_subscription()
            self._subscription = self.adapter.subscribe(self.node_id, self._handle_report)

            await self.discovery.discover_all(topology)
            await self.synchronizer.sync_all(topology)
            await self.projector.sweep_orphans()
            await self.projector.apply_titles(self._settings)
            await self.registry.persist()

            self.health.start()
            logger.info(f"{self.lpfx} Initialization finished successfully.")
        except Exception as e:
            logger.error(f"{self.lpfx} Initialization failed: {e}")
            raise

    async def async_teardown(self) -> None:
        """Release the report subscription and stop every timer, task and queue."""
        self._close_subscription()
        await self.health.stop()
        self.debouncer.cancel()
        await self.commands.close()
        for task in list(self._pending_tasks):
            task.cancel()
        self._pending_tasks.clear()
        logger.info(f"{self.lpfx} Torn down")

    def _close_subscription(self) -> None:
        if self._subscription is not None:
            logger.debug(f"{self.lpfx} Releasing report subscription")
            self._subscription.close()
            self._subscription = None

    def _handle_report(self, command_class: int, endpoint_id: Optional[int], report: Dict[str, Any]) -> None:
        endpoint_type = REPORT_CLASS_TYPES.get(command_class)
        if endpoint_type is None:
            return
        if endpoint_id is None:
            self.debouncer.report(endpoint_type)
            return
        task = asyncio.get_running_loop().create_task(
            self.synchronizer.apply_report(command_class, endpoint_id, report)
        )
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _rediscover(self) -> None:
        topology = await self.adapter.topology(self.node_id)
        await self.discovery.discover_all(topology)
        await self.registry.persist()

    async def _blank_labels(self) -> None:
        self._settings.update(blank_labels(self.catalog))
        await self._save_settings()

    async def _save_settings(self) -> None:
        try:
            await self.store.save_settings(self._settings)
        except StorageError as e:
            logger.error(f"{self.lpfx} Failed to persist settings: {e}")

    async def async_update_settings(self, new_settings: Dict[str, Any],
                                    changed_keys: Optional[Iterable[str]] = None) -> None:
        """Store new settings and re-apply labels when any label_ep* key changed."""
        old_settings = self._settings
        self._settings = {**old_settings, **new_settings}
        if changed_keys is None:
            changed_keys = [k for k, v in new_settings.items() if old_settings.get(k) != v]
        await self._save_settings()

        if any(k.startswith(LABEL_SETTING_PREFIX) for k in changed_keys):
            await self.projector.apply_titles(self._settings)

    def enqueue_command(self, control_id: str, value: Any) -> "asyncio.Future[Any]":
        """Action entry point: the command is applied after everything queued before it."""
        return self.commands.enqueue(control_id, value)

    async def _apply_command(self, control_id: str, value: Any) -> None:
        parsed = parse_control_id(control_id)
        if parsed is None or not self.host.has(control_id):
            raise CapabilityMissingError(f"Node {self.node_id} does not have a {control_id} capability")
        kind, endpoint_id = parsed
        endpoint_type = self.registry.get(endpoint_id)

        if endpoint_type is EndpointType.DIMMER and kind == "dim":
            level = max(0.0, min(1.0, float(value)))
            await self.adapter.set(self.node_id, endpoint_id, SWITCH_MULTILEVEL_CC,
                                   round(level * MAX_DIM_VALUE))
            await self.synchronizer.apply_dim(endpoint_id, level)
            await self.synchronizer.apply_onoff(endpoint_id, level > 0)
        elif endpoint_type is EndpointType.DIMMER and kind == "onoff":
            await self.adapter.set(self.node_id, endpoint_id, SWITCH_MULTILEVEL_CC,
                                   MULTILEVEL_ON_RESTORE if value else 0)
            await self.synchronizer.apply_onoff(endpoint_id, bool(value))
        elif endpoint_type is EndpointType.SWITCH and kind == "onoff":
            await self.adapter.set(self.node_id, endpoint_id, SWITCH_BINARY_CC, bool(value))
            await self.synchronizer.apply_onoff(endpoint_id, bool(value))
        else:
            raise CapabilityMissingError(
                f"Endpoint {endpoint_id} does not have a {kind} capability for type {endpoint_type}"
            )
