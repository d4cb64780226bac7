"""Shared fakes and fixtures."""

import pytest

from constants import (
    GENERIC_TYPE_SWITCH_BINARY,
    GENERIC_TYPE_SWITCH_MULTILEVEL,
    SWITCH_BINARY_CC,
    SWITCH_MULTILEVEL_CC,
)
from controls import ControlCatalog
from errors import ProtocolError
from models import EndpointDescriptor, Subscription
from node_device import MultiChannelDevice
from storage import NodeStore

NODE_ID = 5


def dimmer(endpoint_id):
    return EndpointDescriptor(endpoint_id, GENERIC_TYPE_SWITCH_MULTILEVEL, frozenset({SWITCH_MULTILEVEL_CC}))


def switch(endpoint_id):
    return EndpointDescriptor(endpoint_id, GENERIC_TYPE_SWITCH_BINARY, frozenset({SWITCH_BINARY_CC}))


def sensor(endpoint_id):
    return EndpointDescriptor(endpoint_id, 0x21, frozenset({49}))


class FakeAdapter:
    """Scripted protocol adapter: topology, GET responses (or exceptions) and recorded SETs."""

    def __init__(self, topology=None):
        self.nodes = {NODE_ID: dict(topology or {})}
        self.responses = {}
        self.gets = []
        self.sets = []
        self.set_error = None
        self.listeners = []
        self.topology_calls = 0

    async def topology(self, node_id):
        self.topology_calls += 1
        if node_id not in self.nodes:
            raise ProtocolError(f"Node {node_id} not found")
        return dict(self.nodes[node_id])

    async def get(self, node_id, endpoint_id, command_class):
        self.gets.append((endpoint_id, command_class))
        response = self.responses.get((endpoint_id, command_class))
        if isinstance(response, Exception):
            raise response
        return response

    async def set(self, node_id, endpoint_id, command_class, value):
        if self.set_error is not None:
            raise self.set_error
        self.sets.append((endpoint_id, command_class, value))

    def subscribe(self, node_id, listener):
        self.listeners.append(listener)

        def _release():
            self.listeners.remove(listener)

        return Subscription(_release)

    def emit(self, command_class, endpoint_id, report):
        for listener in list(self.listeners):
            listener(command_class, endpoint_id, report)


class FakePublisher:
    """Records what would have gone out over MQTT."""

    def __init__(self):
        self.calls = []

    def publish_control(self, node_id, control):
        self.calls.append(("control", control.control_id, control.title))

    def remove_control(self, node_id, control):
        self.calls.append(("remove", control.control_id, None))

    def publish_value(self, node_id, control):
        self.calls.append(("value", control.control_id, control.value))

    def of(self, kind):
        return [c for c in self.calls if c[0] == kind]


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def store(tmp_path):
    return NodeStore.for_node(str(tmp_path), NODE_ID)


@pytest.fixture
def catalog():
    return ControlCatalog(4, {"dim.ep1": "Living room"})


@pytest.fixture
async def device(adapter, store, catalog, publisher):
    dev = MultiChannelDevice(
        NODE_ID,
        adapter,
        store,
        catalog,
        publisher,
        debounce=0.05,
        command_delay=0.05,
        health_interval=3600,
    )
    yield dev
    await dev.async_teardown()


@pytest.fixture
def events(device):
    received = []
    subscription = device.triggers.subscribe(received.append)
    yield received
    subscription.close()
