"""Endpoint discovery: classify the topology snapshot and reconcile the registry."""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from errors import ConfigurationError, EndpointTimeout
from models import EndpointDescriptor, EndpointType
from projector import CapabilityProjector
from registry import EndpointRegistry
from zwave_helpers import classify_endpoint

logger = logging.getLogger(__name__)


class DiscoveryEngine:
    """Walk the topology in ascending id order, one endpoint at a time."""

    def __init__(self, registry: EndpointRegistry, projector: CapabilityProjector,
                 on_reset: Optional[Callable[[], Awaitable[None]]] = None):
        self._registry = registry
        self._projector = projector
        self._on_reset = on_reset

    async def discover_all(self, topology: Dict[Any, Optional[EndpointDescriptor]]) -> None:
        if not topology:
            logger.info("[DISCOVERY] No endpoints found, cleaning up all capabilities")
            await self._cleanup_all_endpoints()
            return

        logger.info(f"[DISCOVERY] Starting discovery for {len(topology)} endpoint(s)")

        valid: Dict[int, Optional[EndpointDescriptor]] = {}
        for key, descriptor in topology.items():
            try:
                valid[self._endpoint_id(key)] = descriptor
            except ConfigurationError as e:
                logger.error(f"[DISCOVERY] {e}")

        for endpoint_id in sorted(valid):
            await self._discover_one(endpoint_id, valid[endpoint_id])

        for endpoint_id in self._registry.ids():
            if endpoint_id not in valid:
                logger.info(f"[DISCOVERY] EP{endpoint_id} vanished from topology, forgetting it")
                self._registry.forget(endpoint_id)
                await self._projector.unproject(endpoint_id)
                await self._registry.persist()

    @staticmethod
    def _endpoint_id(key: Any) -> int:
        try:
            endpoint_id = int(key)
        except (ValueError, TypeError):
            raise ConfigurationError(f"Invalid endpoint ID: {key!r}")
        if endpoint_id < 1:
            raise ConfigurationError(f"Invalid endpoint ID: {key!r}")
        return endpoint_id

    async def _discover_one(self, endpoint_id: int, descriptor: Optional[EndpointDescriptor]) -> None:
        if descriptor is None:
            logger.error(f"[ENDPOINT {endpoint_id}] Missing endpoint descriptor, skipping")
            return

        known = self._registry.get(endpoint_id)
        if known is not None and known.is_classified:
            await self._ensure_known(endpoint_id, known, descriptor)
            return

        endpoint_type = classify_endpoint(descriptor)
        if endpoint_type is EndpointType.UNSUPPORTED:
            logger.info(
                f"[ENDPOINT {endpoint_id}] Type \"{descriptor.generic_class}\" not supported, removing capabilities"
            )
            self._registry.set(endpoint_id, EndpointType.UNSUPPORTED)
            await self._projector.unproject(endpoint_id)
            await self._registry.persist()
            return

        logger.info(f"[ENDPOINT {endpoint_id}] Discovered as {endpoint_type.value}")
        try:
            await self._projector.project(endpoint_id, endpoint_type)
        except EndpointTimeout:
            logger.info(f"[ENDPOINT {endpoint_id}] Registered as {endpoint_type.value} (initial state will sync later)")
        except Exception as e:
            logger.error(f"[ENDPOINT {endpoint_id}] Registration failed: {e}")
            return

        self._registry.set(endpoint_id, endpoint_type)
        await self._registry.persist()

    async def _ensure_known(self, endpoint_id: int, known: EndpointType,
                            descriptor: EndpointDescriptor) -> None:
        fresh = classify_endpoint(descriptor)
        if fresh is not known:
            logger.warning(
                f"[ENDPOINT {endpoint_id}] Already known as {known.value} but now looks like "
                f"{fresh.value}, keeping {known.value} until the next sync demotes it"
            )
        logger.debug(f"[ENDPOINT {endpoint_id}] Already known as {known.value}, ensuring capabilities")
        try:
            await self._projector.project(endpoint_id, known)
        except EndpointTimeout:
            pass
        except Exception as e:
            logger.info(f"[ENDPOINT {endpoint_id}] Capability registration note: {e}")

    async def _cleanup_all_endpoints(self) -> None:
        self._registry.clear()
        await self._registry.persist()
        await self._projector.remove_all()
        if self._on_reset is not None:
            await self._on_reset()
