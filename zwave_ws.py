"""Z-Wave JS server WebSocket client."""

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

from constants import (
    ZWAVE_API_SCHEMA_VERSION,
    ZWAVE_SEND_COMMAND_TIMEOUT,
    ZWAVE_TIMEOUT_ERROR_CODES,
    ZWAVE_WS_CONNECT_TIMEOUT,
)
from errors import ConfigurationError, EndpointTimeout, ProtocolError
from models import EndpointDescriptor, ReportListener, Subscription
from zwave_helpers import extract_topology_from_node, parse_value_updated

logger = logging.getLogger(__name__)

# Node events after which the endpoint layout may differ from the last snapshot
TOPOLOGY_EVENTS = ("interview completed", "ready")


class ZWaveWS:
    """
    Raw WS client for:
      - version hello + set_api_schema
      - start_listening (node snapshot)
      - endpoint.invoke_cc_api (get/set)
      - "value updated" node events, dispatched to per-node subscriptions
    """

    def __init__(self, url: str, timeout_error_codes: Iterable[int] = ZWAVE_TIMEOUT_ERROR_CODES,
                 command_timeout: float = ZWAVE_SEND_COMMAND_TIMEOUT):
        self.url = url
        self.timeout_error_codes = frozenset(int(code) for code in timeout_error_codes)
        self.command_timeout = command_timeout
        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self.session: Optional[aiohttp.ClientSession] = None
        self._msg_id = 0
        self._pending: Dict[str, "asyncio.Future[Dict[str, Any]]"] = {}
        self._listeners: Dict[int, List[ReportListener]] = {}
        self._nodes: Dict[int, Dict[str, Any]] = {}
        self._topology_stale = False
        self._reader_task: Optional["asyncio.Task[None]"] = None

    def _next_id(self) -> str:
        self._msg_id += 1
        return str(self._msg_id)

    async def connect(self) -> Dict[str, Any]:
        """Connect, negotiate the API schema and take the first node snapshot."""
        try:
            self.session = aiohttp.ClientSession()
            logger.info(f"Connecting to Z-Wave JS WebSocket at {self.url}")
            self.ws = await self.session.ws_connect(self.url)
            hello = await self._recv_json(timeout=ZWAVE_WS_CONNECT_TIMEOUT)
        except Exception as e:
            logger.error(f"Failed to connect to Z-Wave JS WebSocket: {e}")
            await self.close()
            raise

        self._reader_task = asyncio.get_running_loop().create_task(self._reader())
        schema = min(ZWAVE_API_SCHEMA_VERSION, int(hello.get("maxSchemaVersion", ZWAVE_API_SCHEMA_VERSION)))
        await self.send_command("set_api_schema", {"schemaVersion": schema})
        await self.refresh_topology()
        logger.info(
            f"Z-Wave JS WebSocket connection established. server={hello.get('serverVersion')} "
            f"driver={hello.get('driverVersion')} schema={schema}"
        )
        return hello

    async def close(self) -> None:
        """Close WebSocket connection."""
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        self._fail_pending(ConnectionError("WebSocket closed"))
        if self.ws:
            await self.ws.close()
            self.ws = None
        if self.session:
            await self.session.close()
            self.session = None

    async def _recv_json(self, timeout: float) -> Dict[str, Any]:
        """Receive and parse JSON message."""
        if self.ws is None:
            raise RuntimeError("WebSocket not connected")
        msg = await self.ws.receive(timeout=timeout)
        if msg.type == aiohttp.WSMsgType.TEXT:
            return json.loads(msg.data)
        raise RuntimeError(f"Unexpected WebSocket message type: {msg.type}")

    async def _reader(self) -> None:
        ws = self.ws
        if ws is None:
            return
        try:
            async for msg in ws:
                if msg.type != aiohttp.WSMsgType.TEXT:
                    if msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        break
                    continue
                try:
                    self.handle_message(json.loads(msg.data))
                except ValueError as e:
                    logger.warning(f"Unable to decode Z-Wave JS message: {e}")
        finally:
            self._fail_pending(ConnectionError("Z-Wave JS WebSocket disconnected"))

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    def handle_message(self, message: Dict[str, Any]) -> None:
        """Route a result to its waiting command or an event to its subscribers."""
        msg_type = message.get("type")
        if msg_type == "result":
            future = self._pending.pop(str(message.get("messageId")), None)
            if future is not None and not future.done():
                future.set_result(message)
        elif msg_type == "event":
            self._handle_event(message.get("event") or {})

    def _handle_event(self, event: Dict[str, Any]) -> None:
        source = event.get("source")
        name = event.get("event")
        if source == "controller":
            node = event.get("node") or {}
            if name == "node added":
                self._store_node(node)
            elif name == "node removed" and "nodeId" in node:
                self._nodes.pop(int(node["nodeId"]), None)
            return
        if source != "node":
            return
        node_id = event.get("nodeId")
        if name in TOPOLOGY_EVENTS:
            # "ready" carries a fresh dump, "interview completed" only says the endpoints may have changed
            if not self._store_node(event.get("nodeState")):
                logger.debug(f"Node {node_id} {name}, topology will be refreshed on next read")
                self._topology_stale = True
        elif name == "value updated":
            parsed = parse_value_updated(event)
            if parsed is None:
                return
            command_class, endpoint_id, report = parsed
            for listener in list(self._listeners.get(node_id, [])):
                try:
                    listener(command_class, endpoint_id, report)
                except Exception as e:
                    logger.error(f"Report listener for node {node_id} failed: {e}", exc_info=True)
        elif name == "node removed":
            self._nodes.pop(node_id, None)

    def _store_node(self, node: Any) -> bool:
        if not isinstance(node, dict) or "nodeId" not in node or "endpoints" not in node:
            return False
        self._nodes[int(node["nodeId"])] = node
        return True

    def _raise_for_result(self, command: str, result: Dict[str, Any]) -> None:
        if result.get("success", False):
            return
        error_code = result.get("zwaveErrorCode")
        message = result.get("zwaveErrorMessage") or result.get("errorCode") or "unknown error"
        if error_code is not None and int(error_code) in self.timeout_error_codes:
            raise EndpointTimeout(f"{command} timed out: {message} (ZW{int(error_code):04d})")
        raise ProtocolError(f"{command} rejected: {message}")

    async def send_command(self, command: str, args: Dict[str, Any],
                           timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Sends a {"messageId","command",...args} frame and waits for its result.
        Timeouts and a lost connection surface as EndpointTimeout, rejections
        as ProtocolError.
        """
        if self.ws is None:
            raise EndpointTimeout("Z-Wave JS WebSocket not connected")
        message_id = self._next_id()
        future: "asyncio.Future[Dict[str, Any]]" = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future
        frame = {"messageId": message_id, "command": command, **args}
        logger.debug(f"Sending Z-Wave JS command: {command}")
        try:
            await self.ws.send_str(json.dumps(frame))
            result = await asyncio.wait_for(future, timeout=timeout or self.command_timeout)
        except asyncio.TimeoutError:
            raise EndpointTimeout(f"{command} got no answer within {timeout or self.command_timeout}s")
        except (ConnectionError, aiohttp.ClientError) as e:
            raise EndpointTimeout(f"{command} lost the connection: {e}")
        finally:
            self._pending.pop(message_id, None)
        self._raise_for_result(command, result)
        return result.get("result") or {}

    async def refresh_topology(self) -> List[Dict[str, Any]]:
        """Take a fresh node snapshot."""
        result = await self.send_command("start_listening", {})
        nodes = (result.get("state") or {}).get("nodes", [])
        if not isinstance(nodes, list):
            logger.warning("Unexpected response format from Z-Wave JS WebSocket")
            return []
        self._nodes = {int(n["nodeId"]): n for n in nodes if isinstance(n, dict) and "nodeId" in n}
        self._topology_stale = False
        logger.debug(f"Retrieved {len(self._nodes)} nodes from Z-Wave JS")
        return nodes

    async def topology(self, node_id: int) -> Dict[int, EndpointDescriptor]:
        """Endpoint descriptors for ``node_id``, re-fetched after a re-interview or an unknown node."""
        if self._topology_stale or node_id not in self._nodes:
            await self.refresh_topology()
        node = self._nodes.get(node_id)
        if node is None:
            raise ConfigurationError(f"Node {node_id} is not known to the Z-Wave JS server")
        return extract_topology_from_node(node)

    async def _invoke_cc_api(self, node_id: int, endpoint_id: int, command_class: int,
                             method: str, args: List[Any]) -> Any:
        result = await self.send_command("endpoint.invoke_cc_api", {
            "nodeId": node_id,
            "endpoint": endpoint_id,
            "commandClass": command_class,
            "methodName": method,
            "args": args,
        })
        return result.get("response")

    async def get(self, node_id: int, endpoint_id: int, command_class: int) -> Any:
        return await self._invoke_cc_api(node_id, endpoint_id, command_class, "get", [])

    async def set(self, node_id: int, endpoint_id: int, command_class: int, value: Any) -> None:
        await self._invoke_cc_api(node_id, endpoint_id, command_class, "set", [value])

    def subscribe(self, node_id: int, listener: ReportListener) -> Subscription:
        listeners = self._listeners.setdefault(node_id, [])
        listeners.append(listener)

        def _release() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return Subscription(_release)
