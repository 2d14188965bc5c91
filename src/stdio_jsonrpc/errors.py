"""Error taxonomy for stdio-jsonrpc.

Connect-time failures are raised out of ``connect()``. Everything that
happens after a connection is established is delivered as an
``ErrorEvent`` or ``CloseEvent`` instead of being raised.
"""

from typing import Any


class StdioTransportError(Exception):
    """Base class for every error raised or published by this package."""


class SpawnError(StdioTransportError):
    """The executable could not be started (missing, not executable, bad cwd)."""

    def __init__(self, command: str, cause: OSError | ValueError) -> None:
        super().__init__(f"Failed to spawn {command!r}: {cause}")
        self.command = command
        self.cause = cause


class PrematureExitError(StdioTransportError):
    """The process exited while the connect race was still open."""

    def __init__(self, code: int | None, signal: str | None) -> None:
        super().__init__(
            f"Process exited during connection with code: {code}, signal: {signal}"
        )
        self.code = code
        self.signal = signal


class ConnectTimeoutError(StdioTransportError):
    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Connection timeout after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class ConnectAbortedError(StdioTransportError):
    """disconnect() was called before the connect race settled."""

    def __init__(self) -> None:
        super().__init__("Connection aborted by disconnect")


class NotConnectedError(StdioTransportError):
    def __init__(self, message: str = "Cannot send - not connected") -> None:
        super().__init__(message)


class WriteError(StdioTransportError):
    """Writing to the child's stdin failed after the connection was up."""

    def __init__(self, cause: BaseException | None = None, message: str | None = None) -> None:
        super().__init__(message or f"Failed to write to process stdin: {cause}")
        self.cause = cause


class UnexpectedExitError(StdioTransportError):
    """The process went away while the connection was established."""

    def __init__(self, code: int | None, signal: str | None, message: str | None = None) -> None:
        super().__init__(
            message or f"Process exited unexpectedly with code: {code}, signal: {signal}"
        )
        self.code = code
        self.signal = signal


class FrameBufferOverflowError(UnexpectedExitError):
    """The process kept writing past the pending-frame byte budget without a newline."""

    def __init__(self, limit: int) -> None:
        super().__init__(
            None,
            None,
            message=f"Pending frame exceeded {limit} bytes without a newline",
        )
        self.limit = limit


# JSON-RPC correlation errors


class JsonRpcError(StdioTransportError):
    """The server answered a request with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"JSON-RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class RequestTimeoutError(StdioTransportError):
    def __init__(self, method: str, timeout_ms: int) -> None:
        super().__init__(f"Request {method!r} timed out after {timeout_ms}ms")
        self.method = method
        self.timeout_ms = timeout_ms


class ConnectionClosedError(StdioTransportError):
    def __init__(self, message: str = "Connection closed before a response arrived") -> None:
        super().__init__(message)


class ProtocolError(StdioTransportError):
    """A frame could not be interpreted as JSON-RPC."""

    def __init__(self, message: str, frame: str) -> None:
        super().__init__(message)
        self.frame = frame
