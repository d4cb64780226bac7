"""Constants for the Multichannel2MQTT bridge."""

# Z-Wave Command Class IDs
SWITCH_BINARY_CC = 37
SWITCH_MULTILEVEL_CC = 38

# Z-Wave generic device class keys
GENERIC_TYPE_SWITCH_BINARY = 0x10
GENERIC_TYPE_SWITCH_MULTILEVEL = 0x11

# Report fields
REPORT_CURRENT_VALUE = "currentValue"

# Multilevel switch range, 0xFF restores the last non-zero level
MAX_DIM_VALUE = 99
MULTILEVEL_ON_RESTORE = 255

# Binary report strings that mean "on" (True and 1 are on as well)
BINARY_ON_TOKENS = ("on/enable", "on")

# Control ids look like "onoff.ep3" / "dim.ep3"
ONOFF_CONTROL_PREFIX = "onoff"
DIM_CONTROL_PREFIX = "dim"
LABEL_SETTING_PREFIX = "label_ep"
MAX_LABEL_LENGTH = 50
DEFAULT_MAX_ENDPOINTS = 8

# Flow triggers
TRIGGER_TURNED_ON = "endpoint_turned_on"
TRIGGER_TURNED_OFF = "endpoint_turned_off"
TRIGGER_DIM_CHANGED = "endpoint_dim_changed"
TRIGGER_STATE_CHANGED = "endpoint_state_changed"

# Dim comparisons
DIM_EQUAL_TOLERANCE = 0.01

# Default configuration paths
DEFAULT_CONFIG_FILE = "multichannel2mqtt.yaml"
DEFAULT_CONFIG_EXAMPLE_FILE = "multichannel2mqtt.yaml.example"
DEFAULT_STORAGE_PATH = "state"

# MQTT Topics and Payloads
DEFAULT_TOPIC_PREFIX = "multichannel"
MQTT_PAYLOAD_ON = "ON"
MQTT_PAYLOAD_OFF = "OFF"
MQTT_PAYLOAD_TOGGLE = "TOGGLE"
SETTINGS_TOPIC_SEGMENT = "settings"

# Home Assistant Discovery
HA_DISCOVERY_PREFIX = "homeassistant"
HA_ONOFF_COMPONENT = "switch"
HA_DIM_COMPONENT = "number"

# Z-Wave JS server
ZWAVE_API_SCHEMA_VERSION = 35
# ZW0200 controller timeout, ZW0201 node timeout, ZW0202 message dropped (no ACK)
ZWAVE_TIMEOUT_ERROR_CODES = (200, 201, 202)

# Timeouts (seconds)
ZWAVE_WS_CONNECT_TIMEOUT = 5.0
ZWAVE_SEND_COMMAND_TIMEOUT = 15.0

# Timing
SYNC_DEBOUNCE_MS = 200
COMMAND_DELAY_MS = 250
HEALTH_CHECK_INTERVAL = 300

# MQTT settings
MQTT_QOS = 1
MQTT_KEEPALIVE = 60
