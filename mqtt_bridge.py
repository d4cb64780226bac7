"""MQTT bridge implementation."""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Union

import paho.mqtt.client as mqtt

from constants import (
    DEFAULT_TOPIC_PREFIX,
    MQTT_KEEPALIVE,
    MQTT_PAYLOAD_OFF,
    MQTT_PAYLOAD_ON,
    MQTT_PAYLOAD_TOGGLE,
    MQTT_QOS,
    SETTINGS_TOPIC_SEGMENT,
)
from controls import parse_control_id
from models import Control, EndpointEvent, MqttCommand, SettingsUpdate
from topics import (
    command_topic_pattern,
    control_slug,
    ha_discovery_topic,
    topic_event,
    topic_set,
    topic_state,
)

logger = logging.getLogger(__name__)

Inbound = Union[MqttCommand, SettingsUpdate]


def parse_message(topic: str, payload: bytes, prefix: str = DEFAULT_TOPIC_PREFIX) -> Optional[Inbound]:
    """
    Turn "<prefix>/<node>/<control>/set" into an MqttCommand and
    "<prefix>/<node>/settings/set" into a SettingsUpdate. Anything else is None.
    """
    parts = topic.split("/")
    if len(parts) != 4 or parts[0] != prefix or parts[3] != "set":
        logger.debug(f"Ignoring malformed topic: {topic}")
        return None
    try:
        node_id = int(parts[1])
    except ValueError:
        logger.debug(f"Ignoring topic with invalid node id: {topic}")
        return None

    text = (payload or b"").decode("utf-8", errors="replace").strip()

    if parts[2] == SETTINGS_TOPIC_SEGMENT:
        try:
            settings = json.loads(text)
        except ValueError:
            logger.warning(f"Invalid settings payload '{text}' on {topic}")
            return None
        if not isinstance(settings, dict):
            logger.warning(f"Settings payload on {topic} is not an object")
            return None
        return SettingsUpdate(node_id=node_id, settings=settings)

    control_id = parts[2]
    parsed = parse_control_id(control_id)
    if parsed is None:
        logger.warning(f"Unknown control '{control_id}' on {topic}")
        return None
    kind, _ = parsed

    upper = text.upper()
    if kind == "onoff":
        if upper in (MQTT_PAYLOAD_ON, "1", "TRUE"):
            return MqttCommand(node_id=node_id, control_id=control_id, action="set", value=True)
        if upper in (MQTT_PAYLOAD_OFF, "0", "FALSE"):
            return MqttCommand(node_id=node_id, control_id=control_id, action="set", value=False)
        if upper == MQTT_PAYLOAD_TOGGLE:
            return MqttCommand(node_id=node_id, control_id=control_id, action="toggle")
    else:
        try:
            level = float(text)
        except ValueError:
            level = None
        if level is not None and 0.0 <= level <= 1.0:
            return MqttCommand(node_id=node_id, control_id=control_id, action="set", value=level)

    logger.warning(f"Unknown payload '{text}' on {topic}")
    return None


class MqttBridge:
    """Bridge between MQTT and asyncio event loop; publishes node controls for Home Assistant."""

    def __init__(self, loop: asyncio.AbstractEventLoop, inbox: "asyncio.Queue[Inbound]",
                 host: str = "localhost", port: int = 1883, *,
                 username: Optional[str] = None, password: Optional[str] = None,
                 prefix: str = DEFAULT_TOPIC_PREFIX):
        self.loop = loop
        self.inbox = inbox
        self.host = host
        self.port = port
        self.prefix = prefix
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        if username:
            self.client.username_pw_set(username, password)

        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message

    def connect(self):
        """Connect to MQTT broker."""
        try:
            self.client.connect(self.host, self.port, keepalive=MQTT_KEEPALIVE)
            self.client.loop_start()
            logger.info(f"Connected to MQTT broker at {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            raise

    def close(self):
        """Close MQTT connection."""
        try:
            self.client.loop_stop()
        finally:
            self.client.disconnect()

    def publish_retained(self, topic: str, payload: str):
        """Publish a retained message."""
        self.client.publish(topic, payload=payload, qos=MQTT_QOS, retain=True)
        logger.debug(f"Published to {topic}: {payload}")

    def discovery_payload(self, node_id: int, control: Control) -> Dict[str, Any]:
        """Home Assistant discovery config for one control."""
        payload: Dict[str, Any] = {
            "name": control.title or control.control_id,
            "state_topic": topic_state(node_id, control.control_id, self.prefix),
            "command_topic": topic_set(node_id, control.control_id, self.prefix),
            "unique_id": f"mc2mqtt_{node_id}_{control_slug(control.control_id)}",
            "device": {
                "identifiers": [f"mc2mqtt_node_{node_id}"],
                "name": f"Multi-channel Node {node_id}",
                "manufacturer": "Z-Wave",
                "model": "Multi-channel Device",
            },
        }
        if control.kind == "dim":
            payload.update({"min": 0, "max": 1, "step": 0.01, "mode": "slider"})
        else:
            payload.update({"payload_on": MQTT_PAYLOAD_ON, "payload_off": MQTT_PAYLOAD_OFF})
        return payload

    def publish_control(self, node_id: int, control: Control) -> None:
        self.publish_retained(
            ha_discovery_topic(node_id, control.control_id, control.kind),
            json.dumps(self.discovery_payload(node_id, control)),
        )
        logger.debug(f"Home Assistant discovery published for node {node_id} control {control.control_id}")

    def remove_control(self, node_id: int, control: Control) -> None:
        # empty retained payloads make Home Assistant drop the entity
        self.publish_retained(ha_discovery_topic(node_id, control.control_id, control.kind), "")
        self.publish_retained(topic_state(node_id, control.control_id, self.prefix), "")

    def publish_value(self, node_id: int, control: Control) -> None:
        if control.kind == "onoff":
            payload = MQTT_PAYLOAD_ON if control.value else MQTT_PAYLOAD_OFF
        else:
            payload = json.dumps(control.value)
        self.publish_retained(topic_state(node_id, control.control_id, self.prefix), payload)

    def publish_event(self, node_id: int, event: EndpointEvent) -> None:
        self.client.publish(topic_event(node_id, self.prefix), payload=json.dumps(event.to_payload()), qos=MQTT_QOS)
        logger.debug(f"Published event {event.name} for node {node_id} EP{event.endpoint_id}")

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """Handle MQTT connection."""
        if reason_code == 0:
            logger.info("Connected to MQTT broker successfully")
        else:
            logger.warning(f"Connected to MQTT broker with code {reason_code}")
        pattern = command_topic_pattern(self.prefix)
        client.subscribe(pattern, qos=MQTT_QOS)
        logger.info(f"Subscribed to: {pattern}")

    def _on_message(self, client, userdata, msg):
        """Handle incoming MQTT message."""
        try:
            inbound = parse_message(msg.topic, msg.payload, self.prefix)
            if inbound is None:
                return
            logger.info(f"Received from MQTT: {inbound}")
            # push into asyncio loop safely from MQTT thread
            self.loop.call_soon_threadsafe(self.inbox.put_nowait, inbound)
        except Exception as e:
            logger.error(f"Error handling MQTT message: {e}", exc_info=True)
