from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from .cognitive_core import InvariantViolation, SeededRng
from .config import DEFAULT_MATCH_PROBABILITY
from .stimuli import CHANNEL_VALUES, Channel, Stimulus


@dataclass(frozen=True, slots=True)
class GeneratedTrials:
    stimuli: tuple[Stimulus, ...]
    intended_matches: tuple[frozenset[Channel], ...]  # one entry per stimulus

    def __len__(self) -> int:
        return len(self.stimuli)


class TrialGenerator(Protocol):
    """Source of stimuli that honour a per-channel match schedule."""

    def generate(
        self,
        *,
        trial_count: int,
        lag: int,
        channels: Sequence[Channel],
        match_probability: float = DEFAULT_MATCH_PROBABILITY,
    ) -> GeneratedTrials: ...

    def extend(
        self,
        prefix: Sequence[Stimulus],
        *,
        from_index: int,
        count: int,
        lag: int,
        channels: Sequence[Channel],
        match_probability: float = DEFAULT_MATCH_PROBABILITY,
    ) -> GeneratedTrials: ...


class SequenceGenerator:
    """Deterministic n-back stimulus generator.

    Match targets are chosen independently per channel, then trials are walked
    in order: an intended match copies the reference value from ``lag`` trials
    back, and any other active channel is redrawn away from the reference so
    that no unintended match slips in. Inactive channels stay unconstrained.
    """

    def __init__(self, *, seed: int) -> None:
        self._rng = SeededRng(seed)

    def generate(
        self,
        *,
        trial_count: int,
        lag: int,
        channels: Sequence[Channel],
        match_probability: float = DEFAULT_MATCH_PROBABILITY,
    ) -> GeneratedTrials:
        return self.extend(
            (),
            from_index=0,
            count=trial_count,
            lag=lag,
            channels=channels,
            match_probability=match_probability,
        )

    def extend(
        self,
        prefix: Sequence[Stimulus],
        *,
        from_index: int,
        count: int,
        lag: int,
        channels: Sequence[Channel],
        match_probability: float = DEFAULT_MATCH_PROBABILITY,
    ) -> GeneratedTrials:
        if lag < 1:
            raise ValueError("lag must be >= 1")
        if count < 0:
            raise ValueError("count must be >= 0")
        if not (0 <= from_index <= len(prefix)):
            raise ValueError("from_index must lie within the prefix")
        if not (0.0 <= match_probability <= 1.0):
            raise ValueError("match_probability must be in [0.0, 1.0]")

        active = tuple(dict.fromkeys(Channel(c) for c in channels))
        end = from_index + count

        intended: dict[int, set[Channel]] = {i: set() for i in range(from_index, end)}
        for channel in active:
            for i in range(max(from_index, lag), end):
                if self._rng.random() < match_probability:
                    intended[i].add(channel)

        built: list[Stimulus] = list(prefix[:from_index])
        for i in range(from_index, end):
            stim = self._random_stimulus()
            if i >= lag:
                ref = built[i - lag]
                for channel in active:
                    ref_value = ref.value(channel)
                    if channel in intended[i]:
                        stim = stim.with_value(channel, ref_value)
                    elif stim.value(channel) == ref_value:
                        stim = stim.with_value(channel, self._value_excluding(channel, ref_value))
            built.append(stim)

        return GeneratedTrials(
            stimuli=tuple(built[from_index:]),
            intended_matches=tuple(frozenset(intended[i]) for i in range(from_index, end)),
        )

    def _random_stimulus(self) -> Stimulus:
        return Stimulus(
            position=self._rng.choice(CHANNEL_VALUES[Channel.POSITION]),
            color=self._rng.choice(CHANNEL_VALUES[Channel.COLOR]),
            shape=self._rng.choice(CHANNEL_VALUES[Channel.SHAPE]),
            number=self._rng.choice(CHANNEL_VALUES[Channel.NUMBER]),
            audio=self._rng.choice(CHANNEL_VALUES[Channel.AUDIO]),
        )

    def _value_excluding(self, channel: Channel, excluded: object) -> object:
        options = tuple(v for v in CHANNEL_VALUES[channel] if v != excluded)
        return self._rng.choice(options)


def is_match(stimuli: Sequence[Stimulus], index: int, lag: int, channel: Channel) -> bool:
    """True when trial ``index`` repeats trial ``index - lag`` on ``channel``."""

    if lag < 1:
        raise InvariantViolation(f"lag must be >= 1, got {lag}")
    if not (0 <= index < len(stimuli)):
        raise InvariantViolation(f"trial {index} outside sequence of length {len(stimuli)}")
    if index < lag:
        raise InvariantViolation(f"trial {index} has no reference at lag {lag}")
    return stimuli[index].value(channel) == stimuli[index - lag].value(channel)


class StimulusSequence:
    """Owned trial buffer. Grows by whole suffixes only; entries are never edited in place."""

    def __init__(self, trials: GeneratedTrials | None = None) -> None:
        self._stimuli: list[Stimulus] = []
        self._intended: list[frozenset[Channel]] = []
        if trials is not None:
            self.replace_tail(0, trials)

    def __len__(self) -> int:
        return len(self._stimuli)

    def __getitem__(self, index: int) -> Stimulus:
        return self._stimuli[index]

    @property
    def stimuli(self) -> tuple[Stimulus, ...]:
        return tuple(self._stimuli)

    def prefix(self, end: int) -> tuple[Stimulus, ...]:
        return tuple(self._stimuli[:end])

    def intended_matches(self, index: int) -> frozenset[Channel]:
        return self._intended[index]

    def replace_tail(self, from_index: int, trials: GeneratedTrials) -> None:
        if not (0 <= from_index <= len(self._stimuli)):
            raise InvariantViolation(
                f"cannot replace from {from_index} in a sequence of length {len(self._stimuli)}"
            )
        if len(trials.stimuli) != len(trials.intended_matches):
            raise InvariantViolation("generated stimuli and match flags disagree in length")
        del self._stimuli[from_index:]
        del self._intended[from_index:]
        self._stimuli.extend(trials.stimuli)
        self._intended.extend(trials.intended_matches)


@dataclass(frozen=True, slots=True)
class LagBreakpoint:
    from_index: int
    lag: int


class LagSchedule:
    """Lag in effect per trial index, stored as sorted breakpoints."""

    def __init__(self, initial_lag: int) -> None:
        if initial_lag < 1:
            raise ValueError("initial_lag must be >= 1")
        self._breakpoints: list[LagBreakpoint] = [LagBreakpoint(from_index=0, lag=int(initial_lag))]

    @property
    def breakpoints(self) -> tuple[LagBreakpoint, ...]:
        return tuple(self._breakpoints)

    def set_from(self, from_index: int, lag: int) -> None:
        """Apply ``lag`` to every index >= from_index, dropping later breakpoints."""

        if from_index < 0:
            raise ValueError("from_index must be >= 0")
        if lag < 1:
            raise ValueError("lag must be >= 1")
        kept = [bp for bp in self._breakpoints if bp.from_index < from_index]
        kept.append(LagBreakpoint(from_index=int(from_index), lag=int(lag)))
        self._breakpoints = kept

    def lag_at(self, index: int) -> int:
        if index < 0:
            raise InvariantViolation(f"negative trial index {index}")
        lag = self._breakpoints[0].lag
        for bp in self._breakpoints:
            if bp.from_index > index:
                break
            lag = bp.lag
        return lag

    def as_list(self, length: int) -> list[int]:
        return [self.lag_at(i) for i in range(length)]

    @classmethod
    def from_lags(cls, lags: Iterable[int]) -> LagSchedule:
        schedule: LagSchedule | None = None
        prev: int | None = None
        for i, lag in enumerate(lags):
            if schedule is None:
                schedule = cls(lag)
            elif lag != prev:
                schedule.set_from(i, lag)
            prev = lag
        if schedule is None:
            raise ValueError("lags must not be empty")
        return schedule
