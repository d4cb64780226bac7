"""Host-visible controls ("onoff.epN" / "dim.epN") and the static control catalog."""

import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Tuple

from constants import DEFAULT_MAX_ENDPOINTS, DIM_CONTROL_PREFIX, ONOFF_CONTROL_PREFIX
from errors import StorageError
from models import Control
from storage import NodeStore

logger = logging.getLogger(__name__)

_CONTROL_ID_RE = re.compile(r"^(onoff|dim)\.ep(\d+)$")


def onoff_control_id(endpoint_id: int) -> str:
    return f"{ONOFF_CONTROL_PREFIX}.ep{endpoint_id}"


def dim_control_id(endpoint_id: int) -> str:
    return f"{DIM_CONTROL_PREFIX}.ep{endpoint_id}"


def parse_control_id(control_id: str) -> Optional[Tuple[str, int]]:
    """
    Control ids look like "dim.ep3".
    Returns (kind, endpoint) or None when the id is not an endpoint control.
    """
    match = _CONTROL_ID_RE.match(control_id or "")
    if not match:
        return None
    endpoint_id = int(match.group(2))
    if endpoint_id < 1:
        return None
    return match.group(1), endpoint_id


class ControlPublisher(Protocol):
    """Outbound side of the host: where control changes become visible."""

    def publish_control(self, node_id: int, control: Control) -> None: ...

    def remove_control(self, node_id: int, control: Control) -> None: ...

    def publish_value(self, node_id: int, control: Control) -> None: ...


class ControlCatalog:
    """Static catalog of controls a node may expose, with default titles."""

    def __init__(self, max_endpoints: int = DEFAULT_MAX_ENDPOINTS,
                 default_titles: Optional[Dict[str, str]] = None):
        self.max_endpoints = max_endpoints
        self.default_titles = dict(default_titles or {})

    def endpoint_ids(self) -> List[int]:
        return list(range(1, self.max_endpoints + 1))

    def control_ids(self) -> List[str]:
        ids: List[str] = []
        for endpoint_id in self.endpoint_ids():
            ids.append(onoff_control_id(endpoint_id))
            ids.append(dim_control_id(endpoint_id))
        return ids

    def default_title(self, control_id: str) -> Optional[str]:
        return self.default_titles.get(control_id)


class ControlHost:
    """
    The set of controls a node currently exposes, with their last observed
    values. Every change is persisted and pushed to the publisher.
    """

    def __init__(self, node_id: int, store: NodeStore, publisher: Optional[ControlPublisher] = None):
        self.node_id = node_id
        self._store = store
        self._publisher = publisher
        self._controls: Dict[str, Control] = {}

    def load(self) -> None:
        """Restore controls from the store and re-announce them."""
        self._controls = {}
        for control_id, data in self._store.load_controls().items():
            parsed = parse_control_id(control_id)
            if parsed is None:
                logger.error(f"[CONTROL] Ignoring invalid stored control: {control_id!r}")
                continue
            kind, endpoint_id = parsed
            data = data or {}
            self._controls[control_id] = Control(
                control_id=control_id,
                endpoint=endpoint_id,
                kind=kind,
                title=data.get("title"),
                value=data.get("value"),
            )
        if self._publisher is not None:
            for control in self._controls.values():
                self._publisher.publish_control(self.node_id, control)
                if control.value is not None:
                    self._publisher.publish_value(self.node_id, control)

    async def _persist(self) -> None:
        try:
            await self._store.save_controls(
                {control_id: c.to_dict() for control_id, c in self._controls.items()}
            )
        except StorageError as e:
            logger.error(f"[CONTROL] Failed to persist controls: {e}")

    def has(self, control_id: str) -> bool:
        return control_id in self._controls

    def get(self, control_id: str) -> Optional[Control]:
        return self._controls.get(control_id)

    def get_value(self, control_id: str) -> Any:
        control = self._controls.get(control_id)
        return control.value if control else None

    def control_ids(self) -> List[str]:
        return sorted(self._controls)

    def endpoint_ids(self) -> List[int]:
        return sorted({c.endpoint for c in self._controls.values()})

    def endpoint_control_count(self) -> int:
        return len(self._controls)

    async def add(self, control_id: str, title: Optional[str] = None) -> bool:
        """Add ``control_id`` if absent. Returns True when it was created."""
        if control_id in self._controls:
            return False
        parsed = parse_control_id(control_id)
        if parsed is None:
            raise ValueError(f"Not an endpoint control id: {control_id!r}")
        kind, endpoint_id = parsed
        control = Control(control_id=control_id, endpoint=endpoint_id, kind=kind, title=title)
        self._controls[control_id] = control
        logger.info(f"[CAPABILITY] Added {control_id}")
        if self._publisher is not None:
            self._publisher.publish_control(self.node_id, control)
        await self._persist()
        return True

    async def remove(self, control_id: str) -> bool:
        """Remove ``control_id`` if present. Returns True when it was removed."""
        control = self._controls.pop(control_id, None)
        if control is None:
            return False
        logger.info(f"[CAPABILITY] Removed {control_id}")
        if self._publisher is not None:
            self._publisher.remove_control(self.node_id, control)
        await self._persist()
        return True

    async def set_value(self, control_id: str, value: Any) -> None:
        control = self._controls.get(control_id)
        if control is None:
            return
        control.value = value
        if self._publisher is not None:
            self._publisher.publish_value(self.node_id, control)
        await self._persist()

    async def set_title(self, control_id: str, title: str) -> None:
        control = self._controls.get(control_id)
        if control is None or control.title == title:
            return
        control.title = title
        if self._publisher is not None:
            self._publisher.publish_control(self.node_id, control)
        await self._persist()
