"""JSON-RPC 2.0 client for servers that run as child processes.

Example::

    async with StdioClient(ClientConfig("python", ["server.py"])) as client:
        client.subscribe(print)
        total = await client.request("add", {"a": 5, "b": 3})
"""

from collections.abc import Callable
from typing import Any

from stdio_jsonrpc.config import ClientConfig
from stdio_jsonrpc.events import (
    ClientEvent,
    CloseEvent,
    ConnectedEvent,
    DisconnectedEvent,
    ErrorEvent,
    EventChannel,
    LogEvent,
    TransportEvent,
)
from stdio_jsonrpc.logsink import LogSink, default_sink
from stdio_jsonrpc.readiness import ReadinessStrategy
from stdio_jsonrpc.rpc import JsonRpcClient
from stdio_jsonrpc.transport import StdioTransport


class StdioClient:
    """StdioTransport plus request correlation behind one small API."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        sink: LogSink | None = None,
        readiness: ReadinessStrategy | None = None,
    ) -> None:
        self.config = config
        self._sink = sink or default_sink(config.debug)
        self._events: EventChannel[ClientEvent] = EventChannel(self._sink)
        self.transport = StdioTransport(
            config.transport_config(), sink=self._sink, readiness=readiness
        )
        self.rpc = JsonRpcClient(
            self.transport,
            request_timeout_ms=config.request_timeout_ms,
            sink=self._sink,
        )
        # True between ConnectedEvent and the matching DisconnectedEvent.
        self._announced = False
        self.transport.subscribe(self._on_transport_event)
        self.rpc.subscribe(self._events.publish)

    def subscribe(self, handler: Callable[[ClientEvent], None]) -> Callable[[], None]:
        return self._events.subscribe(handler)

    async def connect(self) -> None:
        await self.rpc.connect()
        if self.rpc.is_connected() and not self._announced:
            self._announced = True
            self._events.publish(ConnectedEvent())

    async def disconnect(self) -> None:
        await self.rpc.disconnect()
        self._announce_disconnect(None)

    async def request(self, method: str, params: Any = None, *, timeout_ms: int | None = None) -> Any:
        return await self.rpc.request(method, params, timeout_ms=timeout_ms)

    def notify(self, method: str, params: Any = None) -> None:
        self.rpc.notify(method, params)

    def is_connected(self) -> bool:
        return self.rpc.is_connected()

    def _on_transport_event(self, event: TransportEvent) -> None:
        if isinstance(event, (LogEvent, ErrorEvent)):
            self._events.publish(event)
        elif isinstance(event, CloseEvent):
            self._announce_disconnect(event.error)

    def _announce_disconnect(self, error: Exception | None) -> None:
        if not self._announced:
            return
        self._announced = False
        self._events.publish(DisconnectedEvent(error))

    async def __aenter__(self) -> "StdioClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()
