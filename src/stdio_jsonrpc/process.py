"""Child process lifecycle: spawn, the connect race, monitoring, shutdown.

Everything here runs on one event loop, so handlers for a given
controller never interleave and no locks are needed. Each ``connect()``
gets its own ``_Session``; readers belonging to a session that has been
torn down keep draining their pipe but publish nothing.
"""

import asyncio
import enum
import signal as signal_module
from dataclasses import dataclass, field

from stdio_jsonrpc.config import TransportConfig
from stdio_jsonrpc.errors import (
    ConnectAbortedError,
    ConnectTimeoutError,
    FrameBufferOverflowError,
    NotConnectedError,
    PrematureExitError,
    SpawnError,
    UnexpectedExitError,
    WriteError,
)
from stdio_jsonrpc.events import (
    CloseEvent,
    ErrorEvent,
    EventChannel,
    LogEvent,
    MessageEvent,
    TransportEvent,
)
from stdio_jsonrpc.framing import LineFramer
from stdio_jsonrpc.logsink import LogSink, default_sink
from stdio_jsonrpc.readiness import ReadinessStrategy, default_readiness
from stdio_jsonrpc.settlement import Settlement

_READ_CHUNK_SIZE = 64 * 1024

# Buffer hint for the stderr StreamReader. Oversized log lines are
# handled by _read_line() below rather than raising.
_STREAM_LIMIT = 1024 * 1024


class ConnectionState(enum.Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    ESTABLISHED = "established"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(eq=False)
class _Session:
    """One spawned process and everything tied to its lifetime."""

    process: asyncio.subprocess.Process
    settlement: Settlement
    established: bool = False
    killed: bool = False
    closed: bool = False
    # Set when the controller itself failed an established session.
    failure: Exception | None = None
    tasks: list[asyncio.Task] = field(default_factory=list)

    @property
    def pid(self) -> int:
        return self.process.pid


def describe_exit(returncode: int | None) -> tuple[int | None, str | None]:
    """Split an asyncio returncode into (exit code, signal name)."""
    if returncode is None or returncode >= 0:
        return returncode, None
    try:
        return None, signal_module.Signals(-returncode).name
    except ValueError:
        return None, str(-returncode)


async def _read_line(reader: asyncio.StreamReader) -> bytes:
    """Read one stderr line of any length; b"" at EOF."""
    parts = []
    while True:
        try:
            parts.append(await reader.readuntil(b"\n"))
        except asyncio.IncompleteReadError as exc:
            parts.append(exc.partial)
        except asyncio.LimitOverrunError as exc:
            # Longer than the reader's limit: take what is buffered and go on.
            parts.append(await reader.read(exc.consumed))
            continue
        return b"".join(parts)


class ProcessController:
    """Owns the child process and decides when it counts as connected."""

    def __init__(
        self,
        config: TransportConfig,
        events: EventChannel[TransportEvent],
        *,
        sink: LogSink | None = None,
        readiness: ReadinessStrategy | None = None,
    ) -> None:
        self._config = config
        self._events = events
        self._sink = sink or default_sink(config.debug)
        self._readiness = readiness or default_readiness()
        self._framer = LineFramer(config.max_buffer_size)
        self._state = ConnectionState.IDLE
        self._session: _Session | None = None
        self._settlement: Settlement | None = None
        self._drain_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._session.pid if self._session else None

    # -- connect -----------------------------------------------------------

    async def connect(self) -> None:
        if self._state is ConnectionState.ESTABLISHED:
            if self.is_connected():
                self._log("debug", "already_connected", pid=self.pid)
                return
            # The process died in the same tick; its close hasn't landed yet.
            self._close_stale()

        if self._state is ConnectionState.SPAWNING and self._settlement is not None:
            await self._settlement
            return

        settlement = Settlement()
        self._settlement = settlement
        self._state = ConnectionState.SPAWNING
        self._framer.reset()
        self._log(
            "debug",
            "spawn",
            command=self._config.command,
            args=" ".join(self._config.args),
            cwd=self._config.cwd,
        )
        settlement.call_later(
            self._config.connection_timeout_ms / 1000,
            lambda: self._on_connect_timeout(settlement),
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *self._config.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._config.cwd,
                env=dict(self._config.env),
                limit=_STREAM_LIMIT,
            )
        except (OSError, ValueError) as exc:
            # ValueError: arguments the OS can't take, e.g. an embedded NUL.
            self._log("error", "spawn_failed", command=self._config.command, error=str(exc))
            if settlement.fail(SpawnError(self._config.command, exc)):
                self._state = ConnectionState.FAILED
            await self._wait(settlement)
            return

        if settlement.settled:
            # Timed out or disconnected while the spawn was in flight.
            self._log("debug", "spawned_after_settle", pid=process.pid)
            orphan = _Session(process, settlement)
            self._kill(orphan)
            self._track(self._drain_pipes(orphan))
            await self._wait(settlement)
            return

        session = _Session(process, settlement)
        self._session = session
        session.tasks = [
            self._track(self._pump_stdout(session)),
            self._track(self._pump_stderr(session)),
        ]
        self._track(self._watch(session))

        grace = self._readiness.grace_period
        if grace is not None:
            settlement.call_later(grace, lambda: self._on_grace(session))

        await self._wait(settlement)

    async def _wait(self, settlement: Settlement) -> None:
        try:
            await settlement
        except asyncio.CancelledError:
            if not settlement.settled:
                self._abort(settlement)
            raise

    def _establish(self, session: _Session, reason: str) -> None:
        if session is not self._session or session.killed:
            return
        if not session.settlement.succeed():
            return
        session.established = True
        self._state = ConnectionState.ESTABLISHED
        self._log("info", "connected", pid=session.pid, reason=reason)

    def _fail_connect(self, session: _Session, error: Exception, *, kill: bool) -> None:
        if session.settlement.settled:
            return
        self._log("error", "connect_failed", pid=session.pid, error=str(error))
        if kill:
            self._kill(session)
        if session is self._session:
            self._teardown(ConnectionState.FAILED)
        session.settlement.fail(error)
        session.settlement.consume()

    def _on_grace(self, session: _Session) -> None:
        if session.settlement.settled:
            return
        returncode = session.process.returncode
        if returncode is not None:
            code, sig = describe_exit(returncode)
            self._fail_connect(session, PrematureExitError(code, sig), kill=False)
            return
        self._establish(session, "grace_period")

    def _on_connect_timeout(self, settlement: Settlement) -> None:
        if settlement.settled:
            return
        error = ConnectTimeoutError(self._config.connection_timeout_ms)
        session = self._session
        if session is not None and session.settlement is settlement:
            self._fail_connect(session, error, kill=True)
            return
        # Still inside create_subprocess_exec; connect() kills the late child.
        self._log("error", "connect_failed", error=str(error))
        self._state = ConnectionState.FAILED
        self._framer.reset()
        settlement.fail(error)
        settlement.consume()

    # -- disconnect --------------------------------------------------------

    async def disconnect(self) -> None:
        """Terminate the child without waiting for it to exit. Idempotent."""
        session = self._session
        if session is None:
            settlement = self._settlement
            if self._state is ConnectionState.SPAWNING and settlement is not None:
                self._abort(settlement)
            return

        self._log("debug", "disconnect", pid=session.pid)
        if not session.settlement.settled:
            self._fail_connect(session, ConnectAbortedError(), kill=True)
            return

        self._state = ConnectionState.CLOSING
        self._kill(session)
        self._teardown(ConnectionState.CLOSED)

    def _abort(self, settlement: Settlement) -> None:
        session = self._session
        if session is not None and session.settlement is settlement:
            self._fail_connect(session, ConnectAbortedError(), kill=True)
            return
        self._state = ConnectionState.FAILED
        self._framer.reset()
        settlement.fail(ConnectAbortedError())
        settlement.consume()

    def _teardown(self, state: ConnectionState) -> None:
        self._session = None
        self._framer.reset()
        self._state = state

    def _kill(self, session: _Session) -> None:
        if session.killed:
            return
        session.killed = True
        if session.process.returncode is not None:
            return
        try:
            session.process.terminate()
        except ProcessLookupError:
            return
        self._track(self._reap(session))

    async def _reap(self, session: _Session) -> None:
        """Escalate to SIGKILL if SIGTERM is ignored for too long."""
        try:
            await asyncio.wait_for(session.process.wait(), timeout=self._config.terminate_timeout)
        except asyncio.TimeoutError:
            self._log("warning", "kill", pid=session.pid)
            try:
                session.process.kill()
            except ProcessLookupError:
                pass

    # -- send --------------------------------------------------------------

    def send(self, text: str) -> None:
        """Write one frame to the child's stdin. Failures become ErrorEvents."""
        session = self._session
        if session is None or not self.is_connected():
            self._publish_error(NotConnectedError())
            return

        stdin = session.process.stdin
        if stdin is None or stdin.is_closing():
            self._publish_error(WriteError(message="Process stdin is closed"))
            return

        try:
            stdin.write((text + "\n").encode("utf-8"))
        except (OSError, RuntimeError) as exc:
            self._publish_error(WriteError(exc))
            return

        self._log("debug", "send", pid=session.pid, text=text)
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = self._track(self._drain(session))

    async def _drain(self, session: _Session) -> None:
        stdin = session.process.stdin
        if stdin is None:
            return
        try:
            await stdin.drain()
        except (ConnectionError, OSError) as exc:
            if session is self._session:
                self._publish_error(WriteError(exc))

    def is_connected(self) -> bool:
        session = self._session
        return (
            self._state is ConnectionState.ESTABLISHED
            and session is not None
            and session.process.returncode is None
            and not session.killed
        )

    # -- monitoring --------------------------------------------------------

    async def _pump_stdout(self, session: _Session) -> None:
        reader = session.process.stdout
        if reader is None:
            return
        while True:
            try:
                chunk = await reader.read(_READ_CHUNK_SIZE)
            except (ConnectionError, OSError):
                return
            if not chunk:
                return
            if session is self._session:
                self._on_stdout(session, chunk)

    def _on_stdout(self, session: _Session, chunk: bytes) -> None:
        frames = self._framer.feed(chunk)
        if not session.settlement.settled and self._readiness.output_signals_ready(frames):
            self._establish(session, "output")

        for frame in frames:
            if session is not self._session:
                # A subscriber disconnected while we were delivering.
                return
            self._log("debug", "received", pid=session.pid, text=frame)
            self._events.publish(MessageEvent(frame))

        if session is self._session and self._framer.overflowed:
            self._on_overflow(session)

    def _on_overflow(self, session: _Session) -> None:
        error = FrameBufferOverflowError(self._config.max_buffer_size or 0)
        if not session.settlement.settled:
            self._fail_connect(session, error, kill=True)
            return
        self._log("error", "buffer_overflow", pid=session.pid, limit=error.limit)
        session.failure = error
        self._kill(session)
        self._teardown(ConnectionState.CLOSED)
        self._publish_error(error)

    async def _pump_stderr(self, session: _Session) -> None:
        reader = session.process.stderr
        if reader is None:
            return
        while True:
            try:
                line = await _read_line(reader)
            except (ConnectionError, OSError):
                return
            if not line:
                return
            if session is not self._session:
                continue
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._log("debug", "stderr", pid=session.pid, text=text)
                self._events.publish(LogEvent(text))

    async def _drain_pipes(self, session: _Session) -> None:
        """Read and discard a killed orphan's output until it exits."""
        for reader in (session.process.stdout, session.process.stderr):
            if reader is None:
                continue
            try:
                while await reader.read(_READ_CHUNK_SIZE):
                    pass
            except (ConnectionError, OSError):
                pass
        returncode = await session.process.wait()
        code, sig = describe_exit(returncode)
        self._log("debug", "process_exit", pid=session.pid, code=code, signal=sig)

    async def _watch(self, session: _Session) -> None:
        """Wait for both output pipes to close and the process to exit."""
        await asyncio.gather(*session.tasks, return_exceptions=True)
        returncode = await session.process.wait()
        code, sig = describe_exit(returncode)
        self._log("debug", "process_exit", pid=session.pid, code=code, signal=sig)
        self._on_close(session, code, sig)

    def _on_close(self, session: _Session, code: int | None, sig: str | None) -> None:
        if not session.settlement.settled:
            self._fail_connect(session, PrematureExitError(code, sig), kill=False)
            return
        if not session.established or session.closed:
            return
        session.closed = True

        if session is self._session:
            error: Exception | None = UnexpectedExitError(code, sig)
            self._log("warning", "unexpected_exit", pid=session.pid, code=code, signal=sig)
            self._teardown(ConnectionState.CLOSED)
        elif session.settlement is not self._settlement:
            # A newer connect() owns the channel now.
            self._log("debug", "superseded_close", pid=session.pid, code=code, signal=sig)
            return
        else:
            error = session.failure
        self._events.publish(CloseEvent(code=code, signal=sig, pid=session.pid, error=error))

    def _close_stale(self) -> None:
        """Report an established process that exited before its watcher noticed."""
        stale = self._session
        self._teardown(ConnectionState.CLOSED)
        if stale is None or stale.closed:
            return
        stale.closed = True
        code, sig = describe_exit(stale.process.returncode)
        self._log("warning", "unexpected_exit", pid=stale.pid, code=code, signal=sig)
        self._events.publish(
            CloseEvent(code=code, signal=sig, pid=stale.pid, error=UnexpectedExitError(code, sig))
        )

    # -- helpers -----------------------------------------------------------

    def _publish_error(self, error: Exception) -> None:
        self._log("error", "error", error=str(error))
        self._events.publish(ErrorEvent(error))

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _log(self, level: str, event: str, **fields) -> None:
        self._sink.emit(level, {"event": event, **fields})

    async def wait_idle(self) -> None:
        """Wait until every reader, watcher and reaper task has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
