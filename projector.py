"""Projects registry entries onto host controls and sweeps stale ones."""

import logging
from typing import Any, Dict

from controls import ControlCatalog, ControlHost, dim_control_id, onoff_control_id
from labels import LabelResolver
from models import EndpointType
from registry import EndpointRegistry

logger = logging.getLogger(__name__)


class CapabilityProjector:
    """Create/remove the onoff and dim controls that match an endpoint's type."""

    def __init__(self, host: ControlHost, registry: EndpointRegistry,
                 catalog: ControlCatalog, labels: LabelResolver):
        self.host = host
        self._registry = registry
        self._catalog = catalog
        self._labels = labels

    async def project(self, endpoint_id: int, endpoint_type: EndpointType) -> None:
        """Ensure the controls required for ``endpoint_type`` are present."""
        onoff_cap = onoff_control_id(endpoint_id)
        dim_cap = dim_control_id(endpoint_id)

        if endpoint_type is EndpointType.DIMMER:
            title = self._labels.label_for(endpoint_id, is_dimmer=True)
            await self.host.add(onoff_cap, title)
            await self.host.add(dim_cap, title)
        elif endpoint_type is EndpointType.SWITCH:
            await self.host.remove(dim_cap)
            await self.host.add(onoff_cap, self._labels.label_for(endpoint_id, is_dimmer=False))
        else:
            raise ValueError(f"Cannot project EP{endpoint_id} as {endpoint_type}")

        logger.debug(f"[CAPABILITY] EP{endpoint_id} capabilities ensured as {endpoint_type.value}")

    async def unproject(self, endpoint_id: int) -> None:
        """Ensure neither control exists for ``endpoint_id``."""
        await self.host.remove(dim_control_id(endpoint_id))
        await self.host.remove(onoff_control_id(endpoint_id))

    async def sweep_orphans(self) -> None:
        """Remove controls of every endpoint that is not classified in the registry."""
        logger.info("[CLEANUP] Checking for orphaned endpoint capabilities")
        candidates = set(self._catalog.endpoint_ids()) | set(self.host.endpoint_ids())
        for endpoint_id in sorted(candidates):
            if self._registry.is_classified(endpoint_id):
                continue
            if self.host.has(onoff_control_id(endpoint_id)) or self.host.has(dim_control_id(endpoint_id)):
                logger.info(f"[CLEANUP] EP{endpoint_id} is orphaned or unsupported, removing capabilities")
                await self.unproject(endpoint_id)

    async def remove_all(self) -> None:
        """Drop every endpoint control, both catalogued and leftover."""
        for control_id in sorted(set(self._catalog.control_ids()) | set(self.host.control_ids())):
            await self.host.remove(control_id)

    async def apply_titles(self, settings: Dict[str, Any]) -> None:
        """Push resolved labels onto the controls of every supported endpoint."""
        for endpoint_id in self._registry.classified_ids():
            onoff_cap = onoff_control_id(endpoint_id)
            dim_cap = dim_control_id(endpoint_id)
            is_dimmer = self.host.has(dim_cap)
            title = self._labels.label_for(endpoint_id, settings, is_dimmer=is_dimmer)
            await self.host.set_title(onoff_cap, title)
            if is_dimmer:
                await self.host.set_title(dim_cap, title)
