import pytest

from errors import CapabilityMissingError, ConfigurationError
from labels import sanitize_label

from conftest import dimmer, sensor, switch


@pytest.fixture
async def discovered(device):
    await device.discovery.discover_all({1: dimmer(1), 2: switch(2), 3: sensor(3), 4: dimmer(4)})
    await device.host.set_value("onoff.ep1", True)
    await device.host.set_value("dim.ep1", 0.5)


def test_sanitize_label():
    assert sanitize_label("  <b>Kitchen</b>  ") == "bKitchen/b"
    assert sanitize_label("x" * 80) == "x" * 50
    assert sanitize_label(None) == ""


async def test_label_precedence(device, discovered):
    await device.async_update_settings({"label_ep4": "  Porch  "})

    assert device.labels.label_for(4) == "Porch"
    assert device.labels.label_for(1) == "Living room"
    assert device.labels.label_for(2) == "Switch 2"


async def test_list_endpoints(device, discovered):
    assert device.flows.list_endpoints() == [
        {"id": 1, "name": "Living room"},
        {"id": 2, "name": "Switch 2"},
        {"id": 4, "name": "Dimmer 4"},
    ]
    assert device.flows.list_endpoints(query="DIM") == [{"id": 4, "name": "Dimmer 4"}]
    assert [e["id"] for e in device.flows.list_endpoints(dimmers_only=True)] == [1, 4]


async def test_conditions(device, discovered):
    assert device.flows.is_on(1) is True
    assert device.flows.is_on(2) is False
    assert device.flows.is_on(3) is False
    assert device.flows.is_on(None) is False

    assert device.flows.dim_compare(1, "greater_than", 0.4) is True
    assert device.flows.dim_compare(1, "less_than", 0.4) is False
    assert device.flows.dim_compare(1, "equal_to", 0.505) is True
    assert device.flows.dim_compare(1, "sideways", 0.5) is False
    assert device.flows.dim_compare(2, "greater_than", 0.0) is False


async def test_actions_go_through_the_queue(device, adapter, discovered):
    await device.flows.turn_off(1)
    await device.flows.turn_on(2)
    await device.flows.set_dim(4, 0.2)

    assert adapter.sets == [(1, 38, 0), (2, 37, True), (4, 38, 20), (4, 38, 255)]
    assert device.host.get_value("dim.ep4") == pytest.approx(0.2)
    assert device.host.get_value("onoff.ep4") is True


async def test_toggle_flips_current_state(device, adapter, discovered):
    await device.flows.toggle(1)

    assert adapter.sets == [(1, 38, 0)]
    assert device.flows.is_on(1) is False


async def test_actions_on_missing_capability(device, discovered):
    with pytest.raises(CapabilityMissingError, match="Endpoint 2 does not have a dim capability"):
        await device.flows.set_dim(2, 0.5)
    with pytest.raises(CapabilityMissingError, match="Endpoint 3 does not have an onoff capability"):
        await device.flows.turn_on(3)
    assert issubclass(CapabilityMissingError, ConfigurationError)


async def test_failing_listener_does_not_break_others(device, discovered):
    received = []

    def broken(event):
        raise RuntimeError("listener bug")

    async def collecting(event):
        received.append(event.to_payload())

    with device.triggers.subscribe(broken), device.triggers.subscribe(collecting):
        await device.triggers.dim_changed(1, 0.3)

    assert received == [{
        "event": "endpoint_dim_changed",
        "endpoint_id": 1,
        "endpoint_label": "Living room",
        "dim_value": 0.3,
    }]
    await device.triggers.dim_changed(1, 0.4)
    assert len(received) == 1
