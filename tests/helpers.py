"""Test helpers shared across test modules."""

import asyncio
import os
import sys

from stdio_jsonrpc.config import TransportConfig

FAKE_SERVER = os.path.join(os.path.dirname(__file__), "fake_jsonrpc_server.py")
TIMEOUT = 5.0


class EventRecorder:
    """Subscriber that keeps every event it sees."""

    def __init__(self) -> None:
        self.events: list = []

    def __call__(self, event) -> None:
        self.events.append(event)

    def of(self, kind) -> list:
        return [event for event in self.events if isinstance(event, kind)]

    async def wait_for(self, kind, count: int = 1, timeout: float = TIMEOUT) -> list:
        """Poll until at least *count* events of *kind* have arrived."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while len(self.of(kind)) < count:
            if loop.time() > deadline:
                raise AssertionError(
                    f"expected {count} {kind.__name__}, got {len(self.of(kind))}: {self.events}"
                )
            await asyncio.sleep(0.01)
        return self.of(kind)


async def wait_until(condition, timeout: float = TIMEOUT) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(0.01)


def python_config(code: str, **kwargs) -> TransportConfig:
    """Config that runs an inline Python snippet as the child."""
    return TransportConfig(command=sys.executable, args=["-c", code], **kwargs)


def server_config(**kwargs) -> TransportConfig:
    return TransportConfig(command=sys.executable, args=[FAKE_SERVER], **kwargs)
