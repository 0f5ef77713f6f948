from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class Timer:
    """Single owned one-shot timer, polled against a Clock.

    At most one event is pending at a time. Arming replaces the pending event
    and cancelling clears it, so nothing scheduled earlier can fire afterwards.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._kind: str | None = None
        self._deadline_s: float | None = None

    @property
    def pending(self) -> str | None:
        return self._kind

    @property
    def deadline_s(self) -> float | None:
        return self._deadline_s

    def arm(self, kind: str, delay_s: float, *, base_s: float | None = None) -> None:
        if delay_s < 0.0:
            raise ValueError("delay_s must be >= 0")
        start = self._clock.now() if base_s is None else float(base_s)
        self._kind = str(kind)
        self._deadline_s = start + float(delay_s)

    def cancel(self) -> None:
        self._kind = None
        self._deadline_s = None

    def pop_due(self) -> tuple[str, float] | None:
        """Return (kind, deadline) and disarm if the deadline has passed."""

        if self._kind is None or self._deadline_s is None:
            return None
        if self._clock.now() < self._deadline_s:
            return None
        fired = (self._kind, self._deadline_s)
        self.cancel()
        return fired
