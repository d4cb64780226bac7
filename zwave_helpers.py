"""Helper functions for parsing Z-Wave JS node dumps and reports."""

import math
from typing import Any, Dict, Optional, Tuple

from constants import (
    BINARY_ON_TOKENS,
    GENERIC_TYPE_SWITCH_BINARY,
    GENERIC_TYPE_SWITCH_MULTILEVEL,
    MAX_DIM_VALUE,
    REPORT_CURRENT_VALUE,
    SWITCH_BINARY_CC,
    SWITCH_MULTILEVEL_CC,
)
from errors import ProtocolError
from models import EndpointDescriptor, EndpointType

# Command class carried by root reports -> endpoint type to resync
REPORT_CLASS_TYPES: Dict[int, EndpointType] = {
    SWITCH_MULTILEVEL_CC: EndpointType.DIMMER,
    SWITCH_BINARY_CC: EndpointType.SWITCH,
}


def _generic_key(endpoint: Dict[str, Any]) -> Optional[int]:
    device_class = endpoint.get("deviceClass") or {}
    generic = device_class.get("generic")
    if isinstance(generic, dict):
        generic = generic.get("key")
    try:
        return int(generic) if generic is not None else None
    except (ValueError, TypeError):
        return None


def extract_topology_from_node(node: Dict[str, Any]) -> Dict[int, EndpointDescriptor]:
    """
    Given one node dict from the start_listening state, build the multi-channel
    topology. Endpoint 0 is the root device and is not part of it.
    """
    topology: Dict[int, EndpointDescriptor] = {}
    for endpoint in node.get("endpoints", []) or []:
        try:
            index = int(endpoint.get("index"))
        except (ValueError, TypeError):
            continue
        if index < 1:
            continue
        command_classes = set()
        for cc in endpoint.get("commandClasses", []) or []:
            cc_id = cc.get("id") if isinstance(cc, dict) else cc
            try:
                command_classes.add(int(cc_id))
            except (ValueError, TypeError):
                pass
        topology[index] = EndpointDescriptor(
            endpoint=index,
            generic_class=_generic_key(endpoint),
            command_classes=frozenset(command_classes),
        )
    return topology


def classify_endpoint(descriptor: EndpointDescriptor) -> EndpointType:
    """Resolve the endpoint type from its generic class and command classes."""
    if (descriptor.generic_class == GENERIC_TYPE_SWITCH_MULTILEVEL
            and descriptor.supports(SWITCH_MULTILEVEL_CC)):
        return EndpointType.DIMMER
    if (descriptor.generic_class == GENERIC_TYPE_SWITCH_BINARY
            and descriptor.supports(SWITCH_BINARY_CC)):
        return EndpointType.SWITCH
    return EndpointType.UNSUPPORTED


def parse_multilevel_report(report: Any) -> Tuple[bool, float]:
    """
    Return (on, dim) from a multilevel switch report.
    Raises ProtocolError when the current value is missing or not a level in 0..99.
    """
    if not isinstance(report, dict) or REPORT_CURRENT_VALUE not in report:
        raise ProtocolError(f"Invalid or missing multilevel report: {report!r}")
    raw = report[REPORT_CURRENT_VALUE]
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or not math.isfinite(raw):
        raise ProtocolError(f"Multilevel current value is not a level: {raw!r}")
    if not 0 <= raw <= MAX_DIM_VALUE:
        raise ProtocolError(f"Multilevel current value {raw!r} outside 0..{MAX_DIM_VALUE}")
    return raw > 0, raw / MAX_DIM_VALUE


def parse_binary_report(report: Any) -> bool:
    """Return the on/off state from a binary switch report."""
    if not isinstance(report, dict) or REPORT_CURRENT_VALUE not in report:
        raise ProtocolError(f"Invalid or missing binary report: {report!r}")
    value = report[REPORT_CURRENT_VALUE]
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in BINARY_ON_TOKENS
    return value == 1


def parse_value_updated(event: Dict[str, Any]) -> Optional[Tuple[int, Optional[int], Dict[str, Any]]]:
    """
    Turn a "value updated" node event into (command_class, endpoint, report).
    Endpoint 0 (or no endpoint) is the root device and comes back as None.
    Returns None for values this bridge does not track.
    """
    args = event.get("args") or {}
    try:
        command_class = int(args.get("commandClass"))
    except (ValueError, TypeError):
        return None
    if command_class not in REPORT_CLASS_TYPES:
        return None
    if args.get("property") != REPORT_CURRENT_VALUE:
        return None
    endpoint = args.get("endpoint") or None
    return command_class, endpoint, {REPORT_CURRENT_VALUE: args.get("newValue")}
