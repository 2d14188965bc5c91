"""Connection settings for a stdio child process.

Resolved once when the transport is built and never mutated afterwards.
"""

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from stdio_jsonrpc.framing import DEFAULT_MAX_PENDING

DEFAULT_CONNECTION_TIMEOUT_MS = 10_000
DEFAULT_REQUEST_TIMEOUT_MS = 30_000
DEFAULT_TERMINATE_TIMEOUT = 5.0  # seconds between SIGTERM and SIGKILL


@dataclass(frozen=True)
class TransportConfig:
    command: str
    args: Sequence[str] = ()
    cwd: str = field(default_factory=os.getcwd)
    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    connection_timeout_ms: int = DEFAULT_CONNECTION_TIMEOUT_MS
    debug: bool = False
    max_buffer_size: int | None = DEFAULT_MAX_PENDING
    terminate_timeout: float = DEFAULT_TERMINATE_TIMEOUT

    def __post_init__(self) -> None:
        if not self.command:
            raise ValueError("command must be a non-empty string")
        if isinstance(self.args, str):
            raise ValueError("args must be a sequence of strings, not a string")
        if self.connection_timeout_ms <= 0:
            raise ValueError("connection_timeout_ms must be positive")
        if self.max_buffer_size is not None and self.max_buffer_size <= 0:
            raise ValueError("max_buffer_size must be positive or None")
        if self.terminate_timeout < 0:
            raise ValueError("terminate_timeout must not be negative")
        # Snapshot the caller's containers so later mutation can't leak in.
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


@dataclass(frozen=True)
class ClientConfig(TransportConfig):
    """Transport settings plus the correlation engine's request timeout."""

    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.request_timeout_ms <= 0:
            raise ValueError("request_timeout_ms must be positive")

    def transport_config(self) -> TransportConfig:
        return TransportConfig(
            command=self.command,
            args=self.args,
            cwd=self.cwd,
            env=self.env,
            connection_timeout_ms=self.connection_timeout_ms,
            debug=self.debug,
            max_buffer_size=self.max_buffer_size,
            terminate_timeout=self.terminate_timeout,
        )
