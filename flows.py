"""Automation surface: endpoint triggers, conditions, actions and autocomplete."""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from constants import (
    DIM_EQUAL_TOLERANCE,
    TRIGGER_DIM_CHANGED,
    TRIGGER_STATE_CHANGED,
    TRIGGER_TURNED_OFF,
    TRIGGER_TURNED_ON,
)
from controls import ControlHost, dim_control_id, onoff_control_id
from errors import CapabilityMissingError
from labels import LabelResolver
from models import EndpointEvent, EndpointType, Subscription
from registry import EndpointRegistry

logger = logging.getLogger(__name__)

EventListener = Callable[[EndpointEvent], Union[None, Awaitable[None]]]
Enqueue = Callable[[str, Any], "asyncio.Future[Any]"]


class FlowTriggers:
    """Fan endpoint events out to subscribed listeners."""

    def __init__(self, labels: LabelResolver):
        self._labels = labels
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener) -> Subscription:
        self._listeners.append(listener)

        def _release() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(_release)

    async def trigger(self, name: str, endpoint_id: int, **tokens: Any) -> None:
        event = EndpointEvent(
            name=name,
            endpoint_id=endpoint_id,
            label=self._labels.label_for(endpoint_id),
            tokens=tokens,
        )
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[FLOW] Failed to trigger '{name}' for EP{endpoint_id}: {e}", exc_info=True)
        logger.info(f"[FLOW] Triggered '{name}' for EP{endpoint_id}")

    async def turned_on(self, endpoint_id: int) -> None:
        await self.trigger(TRIGGER_TURNED_ON, endpoint_id)

    async def turned_off(self, endpoint_id: int) -> None:
        await self.trigger(TRIGGER_TURNED_OFF, endpoint_id)

    async def dim_changed(self, endpoint_id: int, dim_value: float) -> None:
        await self.trigger(TRIGGER_DIM_CHANGED, endpoint_id, dim_value=dim_value)

    async def state_changed(self, endpoint_id: int, state: bool) -> None:
        await self.trigger(TRIGGER_STATE_CHANGED, endpoint_id, state=state)


class FlowCards:
    """Condition evaluators, action runners and endpoint autocomplete."""

    def __init__(self, registry: EndpointRegistry, host: ControlHost,
                 labels: LabelResolver, enqueue: Enqueue):
        self._registry = registry
        self._host = host
        self._labels = labels
        self._enqueue = enqueue

    def list_endpoints(self, query: str = "", dimmers_only: bool = False) -> List[Dict[str, Any]]:
        """Autocomplete list of supported endpoints, ordered by id."""
        items = []
        needle = (query or "").lower()
        for endpoint_id in self._registry.classified_ids():
            is_dimmer = self._registry.get(endpoint_id) is EndpointType.DIMMER
            if dimmers_only and not is_dimmer:
                continue
            name = self._labels.label_for(endpoint_id, is_dimmer=is_dimmer)
            if needle in name.lower():
                items.append({"id": endpoint_id, "name": name})
        return items

    def _known(self, endpoint_id: Optional[int]) -> bool:
        if not endpoint_id:
            logger.error("[FLOW] Invalid endpoint in condition")
            return False
        if not self._registry.is_classified(endpoint_id):
            logger.error(f"[FLOW] Endpoint {endpoint_id} not found or unsupported")
            return False
        return True

    def is_on(self, endpoint_id: Optional[int]) -> bool:
        if not self._known(endpoint_id):
            return False
        cap = onoff_control_id(endpoint_id)
        if not self._host.has(cap):
            return False
        return bool(self._host.get_value(cap))

    def dim_compare(self, endpoint_id: Optional[int], comparison: str, level: Any) -> bool:
        if not self._known(endpoint_id):
            return False
        cap = dim_control_id(endpoint_id)
        if not self._host.has(cap):
            return False

        current = self._host.get_value(cap) or 0
        try:
            target = float(level)
        except (ValueError, TypeError):
            target = 0.0

        if comparison == "greater_than":
            return current > target
        if comparison == "less_than":
            return current < target
        if comparison == "equal_to":
            return abs(current - target) < DIM_EQUAL_TOLERANCE
        return False

    def _require(self, cap: str, endpoint_id: int, article: str, kind: str) -> None:
        if not self._host.has(cap):
            raise CapabilityMissingError(f"Endpoint {endpoint_id} does not have {article} {kind} capability")

    async def turn_on(self, endpoint_id: int) -> None:
        cap = onoff_control_id(endpoint_id)
        self._require(cap, endpoint_id, "an", "onoff")
        await self._enqueue(cap, True)

    async def turn_off(self, endpoint_id: int) -> None:
        cap = onoff_control_id(endpoint_id)
        self._require(cap, endpoint_id, "an", "onoff")
        await self._enqueue(cap, False)

    async def toggle(self, endpoint_id: int) -> None:
        cap = onoff_control_id(endpoint_id)
        self._require(cap, endpoint_id, "an", "onoff")
        await self._enqueue(cap, not self._host.get_value(cap))

    async def set_dim(self, endpoint_id: int, level: float) -> None:
        dim_cap = dim_control_id(endpoint_id)
        onoff_cap = onoff_control_id(endpoint_id)
        self._require(dim_cap, endpoint_id, "a", "dim")

        await self._enqueue(dim_cap, level)
        if self._host.has(onoff_cap):
            await self._enqueue(onoff_cap, level > 0)
