from __future__ import annotations

import math
import random
from collections.abc import Sequence
from enum import Enum
from typing import TypeVar

T = TypeVar("T")


class Phase(str, Enum):
    IDLE = "idle"
    COUNTDOWN = "countdown"
    PLAYING = "playing"
    FEEDBACK = "feedback"
    RESULTS = "results"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.RESULTS, Phase.CANCELLED)


class InvariantViolation(AssertionError):
    """Raised when engine components disagree about trial data.

    These are programming errors (e.g. a lag missing for a trial index), not
    user-facing conditions, and must never be swallowed.
    """


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

    def random(self) -> float:
        return self._rng.random()

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)

    def shuffled(self, seq: Sequence[T]) -> list[T]:
        items = list(seq)
        self._rng.shuffle(items)
        return items


def clamp_int(x: int, lo: int, hi: int) -> int:
    return lo if x <= lo else hi if x >= hi else int(x)


def clamp01(x: float) -> float:
    return 0.0 if x <= 0.0 else 1.0 if x >= 1.0 else float(x)


def round_half_up(x: float) -> int:
    # Matches the client-side rounding the XP values were balanced against.
    return int(math.floor(x + 0.5))
