#!/usr/bin/env python3
"""stdio-jsonrpc live demo.

Spawns the fake JSON-RPC server from the test suite, talks to it through
StdioClient and shows every event the client publishes along the way.

Usage:
    python demo.py
"""

import asyncio
import json
import os
import sys

from stdio_jsonrpc.client import StdioClient
from stdio_jsonrpc.config import ClientConfig
from stdio_jsonrpc.errors import ConnectionClosedError, JsonRpcError
from stdio_jsonrpc.events import (
    ConnectedEvent,
    DisconnectedEvent,
    ErrorEvent,
    LogEvent,
    NotificationEvent,
)

FAKE_SERVER = os.path.join(os.path.dirname(__file__), "tests", "fake_jsonrpc_server.py")

# ANSI colors for output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
CYAN = "\033[96m"
BOLD = "\033[1m"
DIM = "\033[2m"
RESET = "\033[0m"


def banner(text):
    print(f"\n{BOLD}{CYAN}{'=' * 60}{RESET}")
    print(f"{BOLD}{CYAN}  {text}{RESET}")
    print(f"{BOLD}{CYAN}{'=' * 60}{RESET}\n")


def step(n, text):
    print(f"{BOLD}[{n}]{RESET} {text}")


def received(result):
    print(f"  {GREEN}<< {json.dumps(result)[:120]}{RESET}")


def on_event(event):
    if isinstance(event, ConnectedEvent):
        print(f"  {CYAN}** connected{RESET}")
    elif isinstance(event, DisconnectedEvent):
        reason = f": {event.error}" if event.error else ""
        print(f"  {CYAN}** disconnected{reason}{RESET}")
    elif isinstance(event, NotificationEvent):
        print(f"  {YELLOW}~~ notification {event.method} {json.dumps(event.params)}{RESET}")
    elif isinstance(event, LogEvent):
        print(f"  {DIM}.. {event.text}{RESET}")
    elif isinstance(event, ErrorEvent):
        print(f"  {RED}!! {event.error}{RESET}")


async def run_demo():
    banner("stdio-jsonrpc Live Demo")
    print("Spawning fake JSON-RPC server...\n")

    client = StdioClient(ClientConfig(command=sys.executable, args=[FAKE_SERVER]))
    client.subscribe(on_event)
    await client.connect()

    step(1, "Simple request (add)")
    received(await client.request("add", {"a": 5, "b": 3}))

    step(2, "Echo with nested params")
    received(await client.request("echo", {"text": "Hello from the demo!", "items": [1, 2, 3]}))

    step(3, "Server notification before the response")
    received(await client.request("notify"))

    step(4, "Ten concurrent requests")
    results = await asyncio.gather(*(client.request("add", {"a": i, "b": i}) for i in range(10)))
    received([r["sum"] for r in results])

    step(5, "Error response")
    try:
        await client.request("error")
    except JsonRpcError as exc:
        print(f"  {RED}<< {exc}{RESET}")

    step(6, "Server crash while a request is pending")
    try:
        await client.request("exit", {"code": 3})
    except ConnectionClosedError as exc:
        print(f"  {RED}<< {type(exc).__name__}: {exc}{RESET}")

    step(7, "Reconnect after the crash")
    await client.connect()
    received(await client.request("ping"))

    await client.disconnect()
    await client.transport.wait_closed()
    banner("Done")


def main():
    try:
        asyncio.run(run_demo())
    except KeyboardInterrupt:
        print(f"\n{DIM}Interrupted.{RESET}")


if __name__ == "__main__":
    main()
