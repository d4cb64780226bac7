"""Exception types raised at the protocol, storage and flow boundaries."""


class Multichannel2MQTTError(Exception):
    """Base error for the bridge."""


class EndpointTimeout(Multichannel2MQTTError):
    """The node did not answer in time. Transient, never demotes an endpoint."""


class ProtocolError(Multichannel2MQTTError):
    """The exchange was rejected or the report was malformed."""


class ConfigurationError(Multichannel2MQTTError):
    """Invalid endpoint id, missing node or descriptor, or bad configuration."""


class CapabilityMissingError(ConfigurationError):
    """An action targeted a capability the device does not carry."""


class StorageError(Multichannel2MQTTError):
    """Persisting node state failed."""
