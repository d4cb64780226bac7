"""Topic utilities for MQTT."""

from constants import (
    DEFAULT_TOPIC_PREFIX,
    HA_DIM_COMPONENT,
    HA_DISCOVERY_PREFIX,
    HA_ONOFF_COMPONENT,
    SETTINGS_TOPIC_SEGMENT,
)


def control_slug(control_id: str) -> str:
    """Turn "dim.ep3" into "dim_ep3" for topic levels and unique ids."""
    return control_id.replace(".", "_")


def topic_state(node_id: int, control_id: str, prefix: str = DEFAULT_TOPIC_PREFIX) -> str:
    """Get MQTT topic for control state."""
    return f"{prefix}/{node_id}/{control_id}/state"


def topic_set(node_id: int, control_id: str, prefix: str = DEFAULT_TOPIC_PREFIX) -> str:
    """Get MQTT topic for control commands."""
    return f"{prefix}/{node_id}/{control_id}/set"


def topic_event(node_id: int, prefix: str = DEFAULT_TOPIC_PREFIX) -> str:
    """Get MQTT topic for endpoint flow events."""
    return f"{prefix}/{node_id}/event"


def topic_settings(node_id: int, prefix: str = DEFAULT_TOPIC_PREFIX) -> str:
    """Get MQTT topic for settings updates."""
    return f"{prefix}/{node_id}/{SETTINGS_TOPIC_SEGMENT}/set"


def command_topic_pattern(prefix: str = DEFAULT_TOPIC_PREFIX) -> str:
    """Subscription covering control commands and settings updates."""
    return f"{prefix}/+/+/set"


def ha_component(kind: str) -> str:
    return HA_DIM_COMPONENT if kind == "dim" else HA_ONOFF_COMPONENT


def ha_discovery_topic(node_id: int, control_id: str, kind: str) -> str:
    """Get Home Assistant discovery topic for a control."""
    return f"{HA_DISCOVERY_PREFIX}/{ha_component(kind)}/mc2mqtt_{node_id}_{control_slug(control_id)}/config"
