"""Per-endpoint state reads with change-gated application and demotion on hard failures."""

import logging
from typing import Any, Dict, Optional

from constants import SWITCH_BINARY_CC, SWITCH_MULTILEVEL_CC
from controls import ControlHost, dim_control_id, onoff_control_id
from errors import EndpointTimeout, ProtocolError
from flows import FlowTriggers
from models import EndpointDescriptor, EndpointType, ProtocolAdapter
from projector import CapabilityProjector
from registry import EndpointRegistry
from zwave_helpers import parse_binary_report, parse_multilevel_report

logger = logging.getLogger(__name__)


class StateSynchronizer:
    """Read endpoint state over the protocol adapter and mirror it onto controls."""

    def __init__(self, node_id: int, adapter: ProtocolAdapter, registry: EndpointRegistry,
                 projector: CapabilityProjector, host: ControlHost, triggers: FlowTriggers):
        self.node_id = node_id
        self._adapter = adapter
        self._registry = registry
        self._projector = projector
        self._host = host
        self._triggers = triggers

    async def sync_all(self, topology: Dict[int, EndpointDescriptor]) -> None:
        endpoint_ids = self._registry.ids()
        logger.info(f"[SYNC] Syncing state for {len(endpoint_ids)} endpoint(s)")
        for endpoint_id in endpoint_ids:
            await self.sync_one(endpoint_id, topology.get(endpoint_id))

    async def sync_by_type(self, endpoint_type: EndpointType) -> None:
        endpoint_ids = self._registry.ids_of_type(endpoint_type)
        if not endpoint_ids:
            logger.info(f"[SYNC] No {endpoint_type.value} endpoints to sync")
            return

        topology = await self._adapter.topology(self.node_id)
        logger.info(
            f"[SYNC] Syncing {len(endpoint_ids)} {endpoint_type.value} endpoint(s): {endpoint_ids}"
        )
        for endpoint_id in endpoint_ids:
            await self.sync_one(endpoint_id, topology.get(endpoint_id))

    async def sync_one(self, endpoint_id: int, descriptor: Optional[EndpointDescriptor]) -> None:
        if descriptor is None:
            logger.info(f"[ENDPOINT {endpoint_id}] No longer available, removing capabilities")
            await self._projector.unproject(endpoint_id)
            if self._registry.get(endpoint_id) is not None:
                self._registry.forget(endpoint_id)
                await self._registry.persist()
            return

        endpoint_type = self._registry.get(endpoint_id)
        if endpoint_type is None or not endpoint_type.is_classified:
            return

        try:
            if endpoint_type is EndpointType.DIMMER:
                await self._sync_dimmer(endpoint_id, descriptor)
            else:
                await self._sync_switch(endpoint_id, descriptor)
        except EndpointTimeout as e:
            logger.info(
                f"[SYNC] EP{endpoint_id} timeout - device may be busy or out of range, "
                f"will retry on next update ({e})"
            )
        except Exception as e:
            logger.warning(f"[SYNC] EP{endpoint_id} sync failed: {e}")
            logger.info(f"[SYNC] Marking EP{endpoint_id} as unsupported and removing capabilities")
            self._registry.demote(endpoint_id)
            await self._projector.unproject(endpoint_id)
            await self._registry.persist()

    async def _sync_dimmer(self, endpoint_id: int, descriptor: EndpointDescriptor) -> None:
        await self._projector.project(endpoint_id, EndpointType.DIMMER)
        if not descriptor.supports(SWITCH_MULTILEVEL_CC):
            raise ProtocolError(f"EP{endpoint_id} SWITCH_MULTILEVEL not available")

        report = await self._adapter.get(self.node_id, endpoint_id, SWITCH_MULTILEVEL_CC)
        is_on, dim = parse_multilevel_report(report)
        logger.info(f"[SYNC] EP{endpoint_id} dimmer: {report['currentValue']}")
        await self.apply_onoff(endpoint_id, is_on)
        await self.apply_dim(endpoint_id, dim)

    async def _sync_switch(self, endpoint_id: int, descriptor: EndpointDescriptor) -> None:
        await self._projector.project(endpoint_id, EndpointType.SWITCH)
        if not descriptor.supports(SWITCH_BINARY_CC):
            raise ProtocolError(f"EP{endpoint_id} SWITCH_BINARY not available")

        report = await self._adapter.get(self.node_id, endpoint_id, SWITCH_BINARY_CC)
        is_on = parse_binary_report(report)
        logger.info(f"[SYNC] EP{endpoint_id} switch: {is_on}")
        await self.apply_onoff(endpoint_id, is_on)

    async def apply_report(self, command_class: int, endpoint_id: int, report: Dict[str, Any]) -> None:
        """Apply an unsolicited per-endpoint report. Malformed reports are only logged."""
        endpoint_type = self._registry.get(endpoint_id)
        try:
            if command_class == SWITCH_MULTILEVEL_CC and endpoint_type is EndpointType.DIMMER:
                is_on, dim = parse_multilevel_report(report)
                await self.apply_onoff(endpoint_id, is_on)
                await self.apply_dim(endpoint_id, dim)
            elif command_class == SWITCH_BINARY_CC and endpoint_type is EndpointType.SWITCH:
                await self.apply_onoff(endpoint_id, parse_binary_report(report))
            else:
                logger.debug(f"[REPORT] Ignoring CC {command_class} report for EP{endpoint_id} ({endpoint_type})")
        except ProtocolError as e:
            logger.warning(f"[REPORT] EP{endpoint_id} unusable report: {e}")

    async def apply_onoff(self, endpoint_id: int, value: Any) -> None:
        cap = onoff_control_id(endpoint_id)
        if not self._host.has(cap):
            return

        new_value = bool(value)
        if self._host.get_value(cap) == new_value:
            return
        await self._host.set_value(cap, new_value)

        if new_value:
            await self._triggers.turned_on(endpoint_id)
        else:
            await self._triggers.turned_off(endpoint_id)
        await self._triggers.state_changed(endpoint_id, new_value)

    async def apply_dim(self, endpoint_id: int, value: Any) -> None:
        cap = dim_control_id(endpoint_id)
        if not self._host.has(cap):
            return

        try:
            normalized = max(0.0, min(1.0, float(value)))
        except (ValueError, TypeError):
            normalized = 0.0
        if self._host.get_value(cap) == normalized:
            return
        await self._host.set_value(cap, normalized)
        await self._triggers.dim_changed(endpoint_id, normalized)
