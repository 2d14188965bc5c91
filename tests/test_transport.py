"""End-to-end tests for StdioTransport against the fake JSON-RPC server."""

import asyncio
import json
import sys

import pytest

from helpers import python_config, server_config, wait_until
from stdio_jsonrpc.config import TransportConfig
from stdio_jsonrpc.errors import ConnectTimeoutError, NotConnectedError, SpawnError
from stdio_jsonrpc.events import CloseEvent, ErrorEvent, LogEvent, MessageEvent
from stdio_jsonrpc.logsink import RecordingLogSink
from stdio_jsonrpc.process import ConnectionState
from stdio_jsonrpc.transport import StdioTransport

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")


def ping(request_id: int) -> str:
    return json.dumps({"jsonrpc": "2.0", "id": request_id, "method": "ping"})


@pytest.mark.asyncio
async def test_connects_to_server():
    transport = StdioTransport(server_config())
    await transport.connect()
    try:
        assert transport.is_connected()
        assert transport.state is ConnectionState.ESTABLISHED
        assert transport.pid is not None
    finally:
        await transport.disconnect()
        await transport.wait_closed()


@pytest.mark.asyncio
async def test_ping_produces_message_event(recorder):
    async with StdioTransport(server_config()) as transport:
        transport.subscribe(recorder)
        transport.send(ping(1))

        messages = await recorder.wait_for(MessageEvent)
    await transport.wait_closed()

    parsed = json.loads(messages[0].text)
    assert parsed == {"jsonrpc": "2.0", "id": 1, "result": "pong"}


@pytest.mark.asyncio
async def test_multiple_messages_arrive_in_order(recorder):
    async with StdioTransport(server_config()) as transport:
        transport.subscribe(recorder)
        for request_id in (1, 2, 3):
            transport.send(ping(request_id))

        messages = await recorder.wait_for(MessageEvent, count=3)
    await transport.wait_closed()

    assert [json.loads(m.text)["id"] for m in messages] == [1, 2, 3]


@pytest.mark.asyncio
async def test_burst_in_one_write_is_split_into_frames(recorder):
    async with StdioTransport(server_config()) as transport:
        transport.subscribe(recorder)
        transport.send(json.dumps({"jsonrpc": "2.0", "id": 9, "method": "burst", "params": {"count": 5}}))

        messages = await recorder.wait_for(MessageEvent, count=5)
    await transport.wait_closed()

    assert [json.loads(m.text)["result"] for m in messages] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_silent_process_still_connects():
    config = python_config("import time; time.sleep(0.5)", connection_timeout_ms=2000)
    transport = StdioTransport(config)

    await transport.connect()

    assert transport.is_connected()
    await transport.disconnect()
    await transport.wait_closed()


@pytest.mark.asyncio
async def test_connect_twice_is_a_no_op():
    async with StdioTransport(server_config()) as transport:
        pid = transport.pid
        await transport.connect()
        assert transport.pid == pid
        assert transport.is_connected()
    await transport.wait_closed()


@pytest.mark.asyncio
async def test_disconnect_closes_and_reports_close(recorder):
    transport = StdioTransport(server_config())
    transport.subscribe(recorder)
    await transport.connect()

    await transport.disconnect()

    assert not transport.is_connected()
    assert transport.state is ConnectionState.CLOSED
    closes = await recorder.wait_for(CloseEvent)
    assert closes[0].expected
    await transport.wait_closed()


@pytest.mark.asyncio
async def test_disconnect_when_never_connected_is_safe():
    transport = StdioTransport(server_config())
    await transport.disconnect()
    assert transport.state is ConnectionState.IDLE


@pytest.mark.asyncio
async def test_spawn_failure_rejects_connect():
    transport = StdioTransport(TransportConfig(command="nonexistent-command-xyz"))

    with pytest.raises(SpawnError):
        await transport.connect()
    assert not transport.is_connected()


@pytest.mark.asyncio
async def test_timeout_rejects_connect():
    config = python_config("import time; time.sleep(0.5)", connection_timeout_ms=50)
    transport = StdioTransport(config)

    with pytest.raises(ConnectTimeoutError):
        await transport.connect()
    await transport.wait_closed()


@pytest.mark.asyncio
async def test_server_exit_is_reported_as_close(recorder):
    transport = StdioTransport(server_config())
    transport.subscribe(recorder)
    await transport.connect()

    transport.send(json.dumps({"jsonrpc": "2.0", "id": 1, "method": "exit", "params": {"code": 4}}))

    closes = await recorder.wait_for(CloseEvent)
    assert closes[0].code == 4
    assert not closes[0].expected
    await wait_until(lambda: not transport.is_connected())
    await transport.wait_closed()


@pytest.mark.asyncio
async def test_stderr_is_forwarded_as_log(recorder):
    transport = StdioTransport(server_config())
    transport.subscribe(recorder)
    await transport.connect()

    logs = await recorder.wait_for(LogEvent)

    assert "Echo server started" in logs[0].text
    await transport.disconnect()
    await transport.wait_closed()


@pytest.mark.asyncio
async def test_send_while_disconnected_reports_error(recorder):
    transport = StdioTransport(server_config())
    transport.subscribe(recorder)

    transport.send(ping(1))

    errors = recorder.of(ErrorEvent)
    assert isinstance(errors[0].error, NotConnectedError)


@pytest.mark.asyncio
async def test_malformed_frames_pass_through(recorder):
    config = python_config("import time; print('this is not json', flush=True); time.sleep(30)")
    async with StdioTransport(config) as transport:
        transport.subscribe(recorder)
        messages = await recorder.wait_for(MessageEvent)
    await transport.wait_closed()

    assert messages[0].text == "this is not json"
    assert recorder.of(ErrorEvent) == []


@pytest.mark.asyncio
async def test_debug_sink_receives_traffic():
    sink = RecordingLogSink()
    async with StdioTransport(server_config(debug=True), sink=sink) as transport:
        transport.send(ping(1))
        await wait_until(lambda: sink.events("received"))
    await transport.wait_closed()

    assert sink.events("spawn")[0]["command"] == sys.executable
    assert sink.events("send")[0]["text"] == ping(1)


@pytest.mark.asyncio
async def test_independent_transports_run_in_parallel():
    transports = [StdioTransport(server_config()) for _ in range(3)]
    await asyncio.gather(*(t.connect() for t in transports))
    try:
        assert len({t.pid for t in transports}) == 3
        assert all(t.is_connected() for t in transports)
    finally:
        for transport in transports:
            await transport.disconnect()
        await asyncio.gather(*(t.wait_closed() for t in transports))
