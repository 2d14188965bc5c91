"""Structured diagnostic sinks.

Controllers never print directly. They call ``sink.emit(level, fields)``
on whatever sink they were handed, so two transports in one process can
log to different places (or nowhere).
"""

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from rich.console import Console
from rich.markup import escape

LEVELS = ("debug", "info", "warning", "error")

LEVEL_STYLES = {
    "debug": "dim",
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
}


class LogSink(Protocol):
    def emit(self, level: str, fields: Mapping[str, Any]) -> None: ...


def format_fields(fields: Mapping[str, Any]) -> str:
    """Render fields as ``event key=value ...`` with the event name first."""
    parts = [str(fields["event"])] if "event" in fields else []
    parts.extend(f"{key}={value}" for key, value in fields.items() if key != "event")
    return " ".join(parts)


class NullLogSink:
    def emit(self, level: str, fields: Mapping[str, Any]) -> None:
        return None


class ConsoleLogSink:
    """Prints one dim line per record to stderr through rich."""

    def __init__(self, console: Console | None = None, prefix: str = "stdio-jsonrpc") -> None:
        self.console = console or Console(stderr=True)
        self.prefix = prefix

    def emit(self, level: str, fields: Mapping[str, Any]) -> None:
        style = LEVEL_STYLES.get(level, "white")
        self.console.print(
            f"[{style}]  {escape(f'[{self.prefix}]')} {escape(format_fields(fields))}[/{style}]",
            highlight=False,
        )


class LoggingLogSink:
    """Forwards records to a stdlib logger, keeping the fields on the record."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("stdio_jsonrpc")

    def emit(self, level: str, fields: Mapping[str, Any]) -> None:
        levelno = logging.getLevelName(level.upper())
        if not isinstance(levelno, int):
            levelno = logging.INFO
        self.logger.log(levelno, "%s", format_fields(fields), extra={"fields": dict(fields)})


class RecordingLogSink:
    """Keeps every record in memory; handy for tests and post-mortems."""

    def __init__(self) -> None:
        self.records: list[tuple[str, dict[str, Any]]] = []

    def emit(self, level: str, fields: Mapping[str, Any]) -> None:
        self.records.append((level, dict(fields)))

    def events(self, name: str) -> list[dict[str, Any]]:
        return [fields for _level, fields in self.records if fields.get("event") == name]


def default_sink(debug: bool) -> LogSink:
    return ConsoleLogSink() if debug else NullLogSink()
