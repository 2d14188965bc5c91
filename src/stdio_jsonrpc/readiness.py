"""Strategies for deciding that a freshly spawned child is up.

A pipe has no handshake of its own, so "connected" is a judgement call.
The default keeps the long-standing behaviour: the child is up if it is
still alive after a short grace period, or as soon as it writes anything
to stdout. Slow starters can swap in ``FirstOutputReadiness`` or a
``HandshakeReadiness`` that waits for a specific frame.
"""

from collections.abc import Callable

DEFAULT_GRACE_PERIOD = 0.1  # seconds


class ReadinessStrategy:
    """Base strategy: ready on first stdout output, no grace timer."""

    #: Seconds after spawn at which a still-running child counts as ready.
    #: ``None`` disables the timer.
    grace_period: float | None = None

    def output_signals_ready(self, frames: list[str]) -> bool:
        """Called for each stdout chunk that arrives before settlement.

        *frames* holds whatever complete frames the chunk produced, which
        may be empty when the chunk ended mid-line.
        """
        return True


class GracePeriodReadiness(ReadinessStrategy):
    def __init__(self, grace_period: float = DEFAULT_GRACE_PERIOD) -> None:
        if grace_period < 0:
            raise ValueError("grace_period must not be negative")
        self.grace_period = grace_period


class FirstOutputReadiness(ReadinessStrategy):
    grace_period = None


class HandshakeReadiness(ReadinessStrategy):
    """Ready once a stdout frame satisfies *predicate*.

    Frames seen before the handshake are still delivered as messages.
    """

    grace_period = None

    def __init__(self, predicate: Callable[[str], bool]) -> None:
        self._predicate = predicate

    def output_signals_ready(self, frames: list[str]) -> bool:
        return any(self._predicate(frame) for frame in frames)


def default_readiness() -> ReadinessStrategy:
    return GracePeriodReadiness()
