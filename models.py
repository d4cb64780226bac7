"""Data models and dataclasses."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional, Protocol


class EndpointType(Enum):
    """Classification of a multi-channel endpoint."""
    DIMMER = "dimmer"
    SWITCH = "switch"
    UNSUPPORTED = "unsupported"

    @property
    def is_classified(self) -> bool:
        return self is not EndpointType.UNSUPPORTED


@dataclass(frozen=True)
class EndpointDescriptor:
    """Topology entry for one endpoint: generic device class + command classes."""
    endpoint: int
    generic_class: Optional[int]
    command_classes: FrozenSet[int] = frozenset()

    def supports(self, command_class: int) -> bool:
        return command_class in self.command_classes


@dataclass
class Control:
    """A host-visible control projected from an endpoint."""
    control_id: str
    endpoint: int
    kind: str  # "onoff" | "dim"
    title: Optional[str] = None
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "value": self.value}


@dataclass
class QueuedCommand:
    """Command waiting in the outbound queue."""
    control_id: str
    value: Any
    enqueued_at: float
    future: "asyncio.Future[Any]"


@dataclass
class EndpointEvent:
    """Flow trigger fired when an endpoint's state changes."""
    name: str
    endpoint_id: int
    label: str
    tokens: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "event": self.name,
            "endpoint_id": self.endpoint_id,
            "endpoint_label": self.label,
        }
        payload.update(self.tokens)
        return payload


class Subscription:
    """Listener registration that is released exactly once, on close() or on leaving a with-block."""

    def __init__(self, release: Callable[[], None]):
        self._release: Optional[Callable[[], None]] = release

    @property
    def active(self) -> bool:
        return self._release is not None

    def close(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


@dataclass
class MqttCommand:
    """Command received from MQTT."""
    node_id: int
    control_id: str
    action: str  # "set" | "toggle"
    value: Any = None


@dataclass
class SettingsUpdate:
    """Settings change received from MQTT."""
    node_id: int
    settings: Dict[str, Any]


ReportListener = Callable[[int, Optional[int], Dict[str, Any]], None]


class ProtocolAdapter(Protocol):
    """Per-node GET/SET access to endpoint command classes plus unsolicited reports."""

    async def topology(self, node_id: int) -> Dict[int, EndpointDescriptor]: ...

    async def get(self, node_id: int, endpoint_id: int, command_class: int) -> Any: ...

    async def set(self, node_id: int, endpoint_id: int, command_class: int, value: Any) -> None: ...

    def subscribe(self, node_id: int, listener: ReportListener) -> Subscription: ...
