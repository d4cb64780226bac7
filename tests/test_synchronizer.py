import pytest

from constants import SWITCH_BINARY_CC, SWITCH_MULTILEVEL_CC
from errors import EndpointTimeout, ProtocolError
from models import EndpointType

from conftest import dimmer, switch


@pytest.fixture
async def discovered(device, adapter):
    topology = {1: dimmer(1), 2: switch(2)}
    adapter.nodes[5] = topology
    await device.discovery.discover_all(topology)
    return topology


async def test_sync_dimmer_sets_onoff_and_dim(device, adapter, discovered, events):
    adapter.responses[(1, SWITCH_MULTILEVEL_CC)] = {"currentValue": 50}

    await device.synchronizer.sync_one(1, discovered[1])

    assert device.host.get_value("onoff.ep1") is True
    assert device.host.get_value("dim.ep1") == pytest.approx(0.505, abs=0.001)
    assert [e.name for e in events] == [
        "endpoint_turned_on",
        "endpoint_state_changed",
        "endpoint_dim_changed",
    ]
    assert events[0].label == "Living room"


async def test_sync_switch_on_token(device, adapter, discovered):
    adapter.responses[(2, SWITCH_BINARY_CC)] = {"currentValue": "on/enable"}

    await device.synchronizer.sync_one(2, discovered[2])

    assert device.host.get_value("onoff.ep2") is True
    assert not device.host.has("dim.ep2")


async def test_sync_is_change_gated(device, adapter, discovered, publisher, events):
    adapter.responses[(1, SWITCH_MULTILEVEL_CC)] = {"currentValue": 30}
    await device.synchronizer.sync_one(1, discovered[1])
    values = publisher.of("value")
    fired = len(events)

    await device.synchronizer.sync_one(1, discovered[1])

    assert publisher.of("value") == values
    assert len(events) == fired


async def test_timeout_never_demotes(device, adapter, discovered):
    adapter.responses[(1, SWITCH_MULTILEVEL_CC)] = EndpointTimeout("node timeout (ZW0201)")

    await device.synchronizer.sync_one(1, discovered[1])

    assert device.registry.get(1) is EndpointType.DIMMER
    assert device.host.has("dim.ep1")


async def test_hard_failure_demotes_and_stays_demoted(device, adapter, discovered):
    adapter.responses[(1, SWITCH_MULTILEVEL_CC)] = ProtocolError("rejected")

    await device.synchronizer.sync_one(1, discovered[1])

    assert device.registry.get(1) is EndpointType.UNSUPPORTED
    assert not device.host.has("onoff.ep1")
    assert device.store.load_registry()["1"] is None

    adapter.responses[(1, SWITCH_MULTILEVEL_CC)] = {"currentValue": 10}
    await device.synchronizer.sync_one(1, discovered[1])
    assert device.registry.get(1) is EndpointType.UNSUPPORTED
    assert not device.host.has("onoff.ep1")


async def test_malformed_report_demotes(device, adapter, discovered):
    adapter.responses[(2, SWITCH_BINARY_CC)] = {"unexpected": 1}

    await device.synchronizer.sync_one(2, discovered[2])

    assert device.registry.get(2) is EndpointType.UNSUPPORTED


async def test_missing_descriptor_forgets_endpoint(device, discovered):
    await device.synchronizer.sync_one(2, None)

    assert device.registry.get(2) is None
    assert not device.host.has("onoff.ep2")


async def test_sync_by_type_only_reads_that_type(device, adapter, discovered):
    adapter.responses[(1, SWITCH_MULTILEVEL_CC)] = {"currentValue": 0}
    adapter.responses[(2, SWITCH_BINARY_CC)] = {"currentValue": True}

    await device.synchronizer.sync_by_type(EndpointType.SWITCH)

    assert adapter.gets == [(2, SWITCH_BINARY_CC)]


async def test_unsolicited_report_applies_directly(device, discovered, events):
    await device.synchronizer.apply_report(SWITCH_BINARY_CC, 2, {"currentValue": True})

    assert device.host.get_value("onoff.ep2") is True
    assert events[-1].to_payload()["state"] is True


async def test_unsolicited_malformed_report_is_ignored(device, discovered):
    await device.synchronizer.apply_report(SWITCH_MULTILEVEL_CC, 1, {"currentValue": "bogus"})

    assert device.registry.get(1) is EndpointType.DIMMER
    assert device.host.get_value("dim.ep1") is None


async def test_out_of_range_level_demotes(device, adapter, discovered):
    adapter.responses[(1, SWITCH_MULTILEVEL_CC)] = {"currentValue": 255}

    await device.synchronizer.sync_one(1, discovered[1])

    assert device.registry.get(1) is EndpointType.UNSUPPORTED
    assert not device.host.has("dim.ep1")
