"""JSON-RPC 2.0 request/response correlation over a frame transport.

The transport only moves opaque text frames. This module gives each
outgoing request an id, parks a future for it, and resolves that future
when a frame with the same id comes back. Frames carrying a method and
no id are server notifications.
"""

import asyncio
import itertools
import json
from collections.abc import Callable
from typing import Any, Protocol

from stdio_jsonrpc.config import DEFAULT_REQUEST_TIMEOUT_MS
from stdio_jsonrpc.errors import (
    ConnectionClosedError,
    JsonRpcError,
    NotConnectedError,
    ProtocolError,
    RequestTimeoutError,
)
from stdio_jsonrpc.events import (
    ClientEvent,
    CloseEvent,
    ErrorEvent,
    EventChannel,
    MessageEvent,
    NotificationEvent,
    TransportEvent,
)
from stdio_jsonrpc.logsink import LogSink, NullLogSink

METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class Transport(Protocol):
    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def send(self, message: str) -> None: ...

    def is_connected(self) -> bool: ...

    def subscribe(self, handler: Callable[[TransportEvent], None]) -> Callable[[], None]: ...


class JsonRpcClient:
    def __init__(
        self,
        transport: Transport,
        *,
        request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS,
        sink: LogSink | None = None,
    ) -> None:
        self._transport = transport
        self._request_timeout_ms = request_timeout_ms
        self._sink = sink or NullLogSink()
        self._ids = itertools.count(1)
        # request id -> (method, future)
        self._pending: dict[int, tuple[str, asyncio.Future[Any]]] = {}
        self._events: EventChannel[ClientEvent] = EventChannel(self._sink)
        self._unsubscribe = transport.subscribe(self._on_transport_event)

    def subscribe(self, handler: Callable[[ClientEvent], None]) -> Callable[[], None]:
        return self._events.subscribe(handler)

    async def connect(self) -> None:
        if not self._transport.is_connected():
            # Requests left over from a connection that is already gone.
            self._fail_pending(ConnectionClosedError())
        await self._transport.connect()

    async def disconnect(self) -> None:
        await self._transport.disconnect()
        self._fail_pending(ConnectionClosedError("Client disconnected"))

    def is_connected(self) -> bool:
        return self._transport.is_connected()

    @property
    def pending_requests(self) -> int:
        return len(self._pending)

    async def request(
        self, method: str, params: Any = None, *, timeout_ms: int | None = None
    ) -> Any:
        """Send a request and return its ``result``.

        Raises JsonRpcError for an error response, RequestTimeoutError when
        nothing comes back in time and ConnectionClosedError if the
        process goes away first.
        """
        if not self._transport.is_connected():
            raise NotConnectedError("Cannot send request - not connected")

        if timeout_ms is None:
            timeout_ms = self._request_timeout_ms
        request_id = next(self._ids)
        payload: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            payload["params"] = params

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (method, future)
        self._sink.emit("debug", {"event": "request", "id": request_id, "method": method})
        try:
            self._transport.send(json.dumps(payload))
            return await asyncio.wait_for(future, timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(method, timeout_ms) from None
        finally:
            self._pending.pop(request_id, None)

    def notify(self, method: str, params: Any = None) -> None:
        """Fire-and-forget notification; transport errors arrive as events."""
        payload: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            payload["params"] = params
        self._transport.send(json.dumps(payload))

    # -- incoming ----------------------------------------------------------

    def _on_transport_event(self, event: TransportEvent) -> None:
        if isinstance(event, MessageEvent):
            self._handle_frame(event.text)
        elif isinstance(event, CloseEvent):
            self._fail_pending(ConnectionClosedError())

    def _handle_frame(self, frame: str) -> None:
        try:
            payload = json.loads(frame)
        except json.JSONDecodeError as exc:
            self._protocol_error(f"Invalid JSON from server: {exc}", frame)
            return

        messages = payload if isinstance(payload, list) else [payload]
        for message in messages:
            self._dispatch(message, frame)

    def _dispatch(self, message: Any, frame: str) -> None:
        if not isinstance(message, dict):
            self._protocol_error("Expected a JSON-RPC object", frame)
            return

        method = message.get("method")
        if isinstance(method, str):
            if message.get("id") is not None:
                self._reject_server_request(message["id"], method)
            else:
                self._events.publish(NotificationEvent(method, message.get("params")))
            return

        if "id" in message and ("result" in message or "error" in message):
            self._resolve(message)
            return

        self._protocol_error("Not a JSON-RPC request, response or notification", frame)

    def _resolve(self, message: dict[str, Any]) -> None:
        request_id = message["id"]
        entry = self._pending.get(request_id) if isinstance(request_id, int) else None
        if entry is None:
            self._sink.emit("warning", {"event": "unknown_response", "id": request_id})
            return

        _method, future = entry
        if future.done():
            return
        error = message.get("error")
        if error is None:
            future.set_result(message.get("result"))
        elif isinstance(error, dict):
            future.set_exception(
                JsonRpcError(
                    error.get("code", INTERNAL_ERROR),
                    error.get("message", "Unknown error"),
                    error.get("data"),
                )
            )
        else:
            future.set_exception(JsonRpcError(INTERNAL_ERROR, str(error)))

    def _reject_server_request(self, request_id: Any, method: str) -> None:
        """We don't serve requests; tell the server so it doesn't hang."""
        self._transport.send(
            json.dumps(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "error": {
                        "code": METHOD_NOT_FOUND,
                        "message": "Method not found",
                        "data": {"method": method},
                    },
                }
            )
        )

    def _fail_pending(self, error: Exception) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for _method, future in pending:
            if not future.done():
                future.set_exception(error)

    def _protocol_error(self, message: str, frame: str) -> None:
        self._sink.emit("warning", {"event": "protocol_error", "detail": message})
        self._events.publish(ErrorEvent(ProtocolError(message, frame)))
