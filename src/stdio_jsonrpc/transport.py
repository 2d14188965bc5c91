"""Stdio transport: JSON-RPC frames over a child process's stdin/stdout.

The child speaks newline-delimited JSON. This module hands complete
frames to whatever correlation engine sits on top and never parses them
itself.

Example::

    transport = StdioTransport(TransportConfig("python", ["server.py"]))
    transport.subscribe(handle_event)
    await transport.connect()
    transport.send('{"jsonrpc": "2.0", "id": 1, "method": "ping"}')
    ...
    await transport.disconnect()
"""

from collections.abc import Callable

from stdio_jsonrpc.config import TransportConfig
from stdio_jsonrpc.events import EventChannel, TransportEvent
from stdio_jsonrpc.logsink import LogSink, default_sink
from stdio_jsonrpc.process import ConnectionState, ProcessController
from stdio_jsonrpc.readiness import ReadinessStrategy


class StdioTransport:
    """Capability surface a correlation engine needs: connect, send, events."""

    def __init__(
        self,
        config: TransportConfig,
        *,
        sink: LogSink | None = None,
        readiness: ReadinessStrategy | None = None,
    ) -> None:
        self.config = config
        self._sink = sink or default_sink(config.debug)
        self._events: EventChannel[TransportEvent] = EventChannel(self._sink)
        self._controller = ProcessController(
            config, self._events, sink=self._sink, readiness=readiness
        )

    async def connect(self) -> None:
        """Spawn the child and wait until it counts as connected.

        Raises SpawnError, PrematureExitError, ConnectTimeoutError or
        ConnectAbortedError. Calling it while connected does nothing.
        """
        await self._controller.connect()

    async def disconnect(self) -> None:
        await self._controller.disconnect()

    def send(self, message: str) -> None:
        """Queue one frame for the child. Errors arrive as ErrorEvents."""
        self._controller.send(message)

    def is_connected(self) -> bool:
        return self._controller.is_connected()

    def subscribe(self, handler: Callable[[TransportEvent], None]) -> Callable[[], None]:
        return self._events.subscribe(handler)

    @property
    def state(self) -> ConnectionState:
        return self._controller.state

    @property
    def pid(self) -> int | None:
        return self._controller.pid

    async def wait_closed(self) -> None:
        """Wait until every process this transport started has exited."""
        await self._controller.wait_idle()

    async def __aenter__(self) -> "StdioTransport":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()
