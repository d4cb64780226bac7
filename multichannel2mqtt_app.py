"""Main Multichannel2MQTT bridge application."""

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

import yaml

from constants import (
    COMMAND_DELAY_MS,
    DEFAULT_CONFIG_EXAMPLE_FILE,
    DEFAULT_CONFIG_FILE,
    DEFAULT_MAX_ENDPOINTS,
    DEFAULT_STORAGE_PATH,
    DEFAULT_TOPIC_PREFIX,
    HEALTH_CHECK_INTERVAL,
    SYNC_DEBOUNCE_MS,
    ZWAVE_TIMEOUT_ERROR_CODES,
)
from controls import ControlCatalog, parse_control_id
from labels import label_setting_key
from models import EndpointEvent, MqttCommand, SettingsUpdate
from mqtt_bridge import Inbound, MqttBridge
from node_device import MultiChannelDevice
from storage import NodeStore
from zwave_ws import ZWaveWS

logger = logging.getLogger(__name__)


def _load_config(path: str = DEFAULT_CONFIG_FILE) -> Dict[str, Any]:
    """Load and validate configuration file."""
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Configuration file '{path}' not found. "
            f"Please copy '{DEFAULT_CONFIG_EXAMPLE_FILE}' to '{path}' "
            f"and update with your settings."
        )

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in '{path}': {e}")

    if not config:
        raise ValueError(f"'{path}' is empty")

    # Validate required sections
    if 'mqtt' not in config:
        raise ValueError("Missing 'mqtt' section in configuration")
    if 'zwave_ws' not in config:
        raise ValueError("Missing 'zwave_ws' section in configuration")
    if not config.get('nodes'):
        raise ValueError("Missing 'nodes' section in configuration")

    # Validate required keys
    mqtt_config = config.get('mqtt', {})
    if 'host' not in mqtt_config:
        raise ValueError("Missing 'mqtt.host' in configuration")
    if 'port' not in mqtt_config:
        raise ValueError("Missing 'mqtt.port' in configuration")

    zwave_config = config.get('zwave_ws', {})
    if 'url' not in zwave_config:
        raise ValueError("Missing 'zwave_ws.url' in configuration")

    if not isinstance(config['nodes'], list):
        raise ValueError("'nodes' must be a list in configuration")
    for index, node in enumerate(config['nodes']):
        if not isinstance(node, dict) or 'node_id' not in node:
            raise ValueError(f"Missing 'nodes[{index}].node_id' in configuration")

    return config


def _node_defaults(node_config: Dict[str, Any]) -> Dict[str, Any]:
    """Configured labels become the default label_ep* settings."""
    labels = node_config.get('labels') or {}
    return {label_setting_key(int(ep)): str(label) for ep, label in labels.items()}


class Multichannel2MQTT:
    """Main bridge application."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.loop = asyncio.get_running_loop()
        self.inbox: "asyncio.Queue[Inbound]" = asyncio.Queue()

        mqtt_config = config['mqtt']
        self.mqtt = MqttBridge(
            self.loop,
            self.inbox,
            mqtt_config['host'],
            int(mqtt_config['port']),
            username=mqtt_config.get('username'),
            password=mqtt_config.get('password'),
            prefix=mqtt_config.get('topic_prefix', DEFAULT_TOPIC_PREFIX),
        )

        zwave_config = config['zwave_ws']
        self.zwave_ws = ZWaveWS(
            zwave_config['url'],
            zwave_config.get('timeout_error_codes', ZWAVE_TIMEOUT_ERROR_CODES),
        )

        self.devices: Dict[int, MultiChannelDevice] = {}
        self._subscriptions = []
        self._tasks: List["asyncio.Task[Any]"] = []
        self.running = True

    def _build_device(self, node_config: Dict[str, Any]) -> MultiChannelDevice:
        node_id = int(node_config['node_id'])
        timing = self.config.get('timing') or {}
        storage_dir = (self.config.get('storage') or {}).get('path', DEFAULT_STORAGE_PATH)
        catalog = ControlCatalog(
            int(node_config.get('max_endpoints', DEFAULT_MAX_ENDPOINTS)),
            node_config.get('default_titles'),
        )
        return MultiChannelDevice(
            node_id,
            self.zwave_ws,
            NodeStore.for_node(storage_dir, node_id),
            catalog,
            self.mqtt,
            default_settings=_node_defaults(node_config),
            debounce=timing.get('debounce_ms', SYNC_DEBOUNCE_MS) / 1000,
            command_delay=timing.get('command_delay_ms', COMMAND_DELAY_MS) / 1000,
            health_interval=timing.get('health_check_interval_s', HEALTH_CHECK_INTERVAL),
        )

    async def start(self):
        """Start the bridge."""
        self.mqtt.connect()
        logger.info("MQTT bridge connected")

        await self.zwave_ws.connect()

        for node_config in self.config['nodes']:
            await self.add_device(self._build_device(node_config))

        if not self.devices:
            raise RuntimeError("No configured node could be initialized")

        self._tasks = [
            asyncio.create_task(self.command_consumer_task(), name="cmd_consumer"),
        ]

        # Wait until tasks finish (they won't until stopped)
        await asyncio.gather(*self._tasks)

    async def add_device(self, device: MultiChannelDevice) -> bool:
        """Initialize a node and route its events to MQTT. A node that fails init is dropped."""
        try:
            await device.async_init()
        except Exception as e:
            logger.error(f"Node {device.node_id} not available: {e}", exc_info=True)
            await device.async_teardown()
            return False
        self._subscriptions.append(device.triggers.subscribe(self._event_publisher(device.node_id)))
        self.devices[device.node_id] = device
        return True

    async def stop(self):
        """Stop the bridge."""
        if not self.running:
            return
        self.running = False

        for t in self._tasks:
            t.cancel()
        for t in self._tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass

        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()
        for device in self.devices.values():
            await device.async_teardown()

        try:
            self.mqtt.close()
        except Exception as e:
            logger.debug(f"MQTT close failed: {e}")
        try:
            await self.zwave_ws.close()
        except Exception as e:
            logger.debug(f"Z-Wave JS close failed: {e}")

    def _event_publisher(self, node_id: int):
        def _publish(event: EndpointEvent) -> None:
            self.mqtt.publish_event(node_id, event)
        return _publish

    async def command_consumer_task(self):
        """Consume commands and settings from the MQTT inbox."""
        while self.running:
            item = await self.inbox.get()
            try:
                await self.dispatch(item)
            except Exception as e:
                logger.error(f"Failed to process {item}: {e}", exc_info=True)

    async def dispatch(self, item: Inbound) -> Optional["asyncio.Future[Any]"]:
        device = self.devices.get(item.node_id)
        if device is None:
            logger.warning(f"Ignoring message for unmanaged node {item.node_id}")
            return None

        if isinstance(item, SettingsUpdate):
            await device.async_update_settings(item.settings)
            logger.info(f"Updated settings for node {item.node_id}")
            return None

        return self._dispatch_command(device, item)

    def _dispatch_command(self, device: MultiChannelDevice, cmd: MqttCommand) -> Optional["asyncio.Future[Any]"]:
        logger.info(f"Processing MQTT command: node {cmd.node_id} control {cmd.control_id} action {cmd.action}")
        if cmd.action == "toggle":
            parsed = parse_control_id(cmd.control_id)
            if parsed is None:
                return None
            value = not device.flows.is_on(parsed[1])
        else:
            value = cmd.value

        future = device.enqueue_command(cmd.control_id, value)

        def _done(f: "asyncio.Future[Any]") -> None:
            if f.cancelled():
                return
            error = f.exception()
            if error is not None:
                logger.error(f"Failed to apply {cmd.control_id} on node {cmd.node_id}: {error}")
            else:
                logger.info(f"Command applied to node {cmd.node_id} control {cmd.control_id}")

        future.add_done_callback(_done)
        return future
