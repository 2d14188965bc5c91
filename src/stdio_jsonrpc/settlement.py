"""First-settle-wins resolution of a connect attempt.

Several sources race to decide how ``connect()`` ends: the grace timer,
the connection timeout, first stdout output, a spawn error, the process
closing, and ``disconnect()``. Whichever calls ``succeed`` or ``fail``
first wins; every later call is a no-op and the race timers are
cancelled at the moment of settlement.
"""

import asyncio
from collections.abc import Callable


class Settlement:
    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future[None] = self._loop.create_future()
        self._timers: list[asyncio.TimerHandle] = []
        self.outcome: str | None = None

    @property
    def settled(self) -> bool:
        return self._future.done()

    @property
    def succeeded(self) -> bool:
        return self.outcome == "success"

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle | None:
        """Arm a race timer that is cancelled when the race settles."""
        if self.settled:
            return None
        handle = self._loop.call_later(delay, callback)
        self._timers.append(handle)
        return handle

    def succeed(self) -> bool:
        """Resolve the attempt. Returns False if it had already settled."""
        if self.settled:
            return False
        self.outcome = "success"
        self._cancel_timers()
        self._future.set_result(None)
        return True

    def fail(self, error: BaseException) -> bool:
        """Reject the attempt. Returns False if it had already settled."""
        if self.settled:
            return False
        self.outcome = "failure"
        self._cancel_timers()
        self._future.set_exception(error)
        return True

    def _cancel_timers(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()

    @property
    def pending_timers(self) -> int:
        return sum(1 for handle in self._timers if not handle.cancelled())

    def __await__(self):
        # Shield so one cancelled waiter doesn't cancel the shared outcome.
        return asyncio.shield(self._future).__await__()

    def consume(self) -> None:
        """Mark a failure as observed so asyncio doesn't log it as unretrieved."""
        if self._future.done() and not self._future.cancelled():
            self._future.exception()
