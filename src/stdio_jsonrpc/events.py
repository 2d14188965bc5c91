"""Notification variants and the channel that delivers them.

Each component owns one ``EventChannel``. A subscriber is a single
callable that receives every event and dispatches on its type.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar, Union

from stdio_jsonrpc.logsink import LogSink, NullLogSink


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class MessageEvent:
    """One complete stdout frame, passed through as opaque text."""

    text: str
    timestamp: str = field(default_factory=_now, compare=False)


@dataclass(frozen=True)
class LogEvent:
    """One non-empty line the child wrote to stderr."""

    text: str
    timestamp: str = field(default_factory=_now, compare=False)


@dataclass(frozen=True)
class ErrorEvent:
    error: Exception
    timestamp: str = field(default_factory=_now, compare=False)


@dataclass(frozen=True)
class CloseEvent:
    """An established process has gone away.

    ``error`` is ``None`` when the close followed ``disconnect()`` and an
    ``UnexpectedExitError`` otherwise.
    """

    code: int | None
    signal: str | None
    pid: int | None = None
    error: Exception | None = None
    timestamp: str = field(default_factory=_now, compare=False)

    @property
    def expected(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ConnectedEvent:
    timestamp: str = field(default_factory=_now, compare=False)


@dataclass(frozen=True)
class DisconnectedEvent:
    error: Exception | None = None
    timestamp: str = field(default_factory=_now, compare=False)


@dataclass(frozen=True)
class NotificationEvent:
    method: str
    params: Any = None
    timestamp: str = field(default_factory=_now, compare=False)


TransportEvent = Union[MessageEvent, CloseEvent, ErrorEvent, LogEvent]
ClientEvent = Union[
    ConnectedEvent, DisconnectedEvent, NotificationEvent, ErrorEvent, LogEvent
]

E = TypeVar("E")


class EventChannel(Generic[E]):
    """Synchronous fan-out of events to subscribers, in subscription order."""

    def __init__(self, sink: LogSink | None = None) -> None:
        self._handlers: list[Callable[[E], None]] = []
        self._sink = sink or NullLogSink()

    def subscribe(self, handler: Callable[[E], None]) -> Callable[[], None]:
        """Register *handler* and return a callable that unregisters it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: E) -> None:
        # Copy so a handler may unsubscribe itself mid-delivery.
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as exc:
                self._sink.emit(
                    "error",
                    {
                        "event": "subscriber_failed",
                        "variant": type(event).__name__,
                        "error": repr(exc),
                    },
                )

    def __len__(self) -> int:
        return len(self._handlers)
