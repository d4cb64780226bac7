import asyncio
import json

import pytest

from errors import ConfigurationError, EndpointTimeout, ProtocolError
from zwave_ws import ZWaveWS


class FakeSocket:
    """Answers every frame through the client's own message handler."""

    def __init__(self, client, answer):
        self.client = client
        self.answer = answer
        self.frames = []

    async def send_str(self, data):
        frame = json.loads(data)
        self.frames.append(frame)
        response = self.answer(frame)
        if response is not None:
            response = {"type": "result", "messageId": frame["messageId"], **response}
            asyncio.get_running_loop().call_soon(self.client.handle_message, response)


NODE = {
    "nodeId": 5,
    "endpoints": [
        {"index": 0, "deviceClass": {"generic": {"key": 0x11}}, "commandClasses": [{"id": 38}]},
        {"index": 1, "deviceClass": {"generic": {"key": 0x11}}, "commandClasses": [{"id": 38}]},
    ],
}


def test_timeout_codes_raise_endpoint_timeout():
    client = ZWaveWS("ws://test")

    with pytest.raises(EndpointTimeout, match="ZW0201"):
        client._raise_for_result("endpoint.invoke_cc_api", {
            "success": False, "errorCode": "zwave_error", "zwaveErrorCode": 201,
            "zwaveErrorMessage": "Node did not respond",
        })


def test_other_failures_raise_protocol_error():
    client = ZWaveWS("ws://test")

    with pytest.raises(ProtocolError):
        client._raise_for_result("endpoint.invoke_cc_api", {"success": False, "zwaveErrorCode": 5})
    with pytest.raises(ProtocolError):
        client._raise_for_result("endpoint.invoke_cc_api", {"success": False, "errorCode": "unknown_command"})
    client._raise_for_result("endpoint.invoke_cc_api", {"success": True})


def test_timeout_codes_are_configurable():
    client = ZWaveWS("ws://test", timeout_error_codes=[5])

    with pytest.raises(EndpointTimeout):
        client._raise_for_result("x", {"success": False, "zwaveErrorCode": 5})
    with pytest.raises(ProtocolError):
        client._raise_for_result("x", {"success": False, "zwaveErrorCode": 201})


async def test_send_command_without_connection():
    with pytest.raises(EndpointTimeout):
        await ZWaveWS("ws://test").send_command("start_listening", {})


async def test_get_invokes_cc_api():
    client = ZWaveWS("ws://test")
    client.ws = FakeSocket(client, lambda frame: {"success": True, "result": {"response": {"currentValue": 42}}})

    report = await client.get(5, 1, 38)

    assert report == {"currentValue": 42}
    frame = client.ws.frames[0]
    assert frame["command"] == "endpoint.invoke_cc_api"
    assert (frame["nodeId"], frame["endpoint"], frame["commandClass"]) == (5, 1, 38)
    assert (frame["methodName"], frame["args"]) == ("get", [])


async def test_set_passes_value():
    client = ZWaveWS("ws://test")
    client.ws = FakeSocket(client, lambda frame: {"success": True, "result": {}})

    await client.set(5, 2, 37, True)

    assert client.ws.frames[0]["methodName"] == "set"
    assert client.ws.frames[0]["args"] == [True]


async def test_unanswered_command_times_out():
    client = ZWaveWS("ws://test", command_timeout=0.05)
    client.ws = FakeSocket(client, lambda frame: None)

    with pytest.raises(EndpointTimeout):
        await client.get(5, 1, 38)
    assert client._pending == {}


async def test_topology_from_snapshot():
    client = ZWaveWS("ws://test")
    client.ws = FakeSocket(client, lambda frame: {"success": True, "result": {"state": {"nodes": [NODE]}}})

    await client.refresh_topology()

    topology = await client.topology(5)
    assert list(topology) == [1]
    with pytest.raises(ConfigurationError):
        await client.topology(6)


async def test_value_updated_events_reach_subscribers():
    client = ZWaveWS("ws://test")
    received = []
    subscription = client.subscribe(5, lambda cc, ep, report: received.append((cc, ep, report)))

    event = {
        "source": "node", "event": "value updated", "nodeId": 5,
        "args": {"commandClass": 38, "endpoint": 0, "property": "currentValue", "newValue": 99},
    }
    client.handle_message({"type": "event", "event": event})
    client.handle_message({"type": "event", "event": {**event, "nodeId": 6}})
    subscription.close()
    client.handle_message({"type": "event", "event": event})

    assert received == [(38, None, {"currentValue": 99})]
    assert not subscription.active
    subscription.close()


def _snapshot_server(client, nodes):
    """Answers start_listening with whatever ``nodes`` holds at that moment."""
    def answer(frame):
        return {"success": True, "result": {"state": {"nodes": json.loads(json.dumps(nodes))}}}
    client.ws = FakeSocket(client, answer)
    return client.ws


async def test_reinterview_refreshes_topology():
    client = ZWaveWS("ws://test")
    node = json.loads(json.dumps(NODE))
    socket = _snapshot_server(client, [node])
    await client.refresh_topology()
    assert list(await client.topology(5)) == [1]

    node["endpoints"].append(
        {"index": 2, "deviceClass": {"generic": {"key": 0x10}}, "commandClasses": [{"id": 37}]}
    )
    client.handle_message({"type": "event", "event": {
        "source": "node", "event": "interview completed", "nodeId": 5,
    }})

    assert sorted(await client.topology(5)) == [1, 2]
    assert [f["command"] for f in socket.frames] == ["start_listening", "start_listening"]
    # no further events, the snapshot is reused
    await client.topology(5)
    assert len(socket.frames) == 2


async def test_ready_event_replaces_node_dump():
    client = ZWaveWS("ws://test")
    socket = _snapshot_server(client, [NODE])
    await client.refresh_topology()

    fresh = {**NODE, "endpoints": NODE["endpoints"][:1]}
    client.handle_message({"type": "event", "event": {
        "source": "node", "event": "ready", "nodeId": 5, "nodeState": fresh,
    }})

    assert await client.topology(5) == {}
    assert len(socket.frames) == 1


async def test_controller_node_events_update_snapshot():
    client = ZWaveWS("ws://test")
    socket = _snapshot_server(client, [])

    client.handle_message({"type": "event", "event": {
        "source": "controller", "event": "node added", "node": {**NODE, "nodeId": 7},
    }})
    assert list(await client.topology(7)) == [1]
    assert socket.frames == []

    client.handle_message({"type": "event", "event": {
        "source": "controller", "event": "node removed", "node": {"nodeId": 7},
    }})
    with pytest.raises(ConfigurationError):
        await client.topology(7)
