from __future__ import annotations

from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum

from .cognitive_core import InvariantViolation
from .sequence import LagSchedule, is_match
from .stimuli import Channel, Stimulus

ResponseRecord = Mapping[int, Collection[Channel]]
LagSpec = int | LagSchedule | Sequence[int]


class Outcome(StrEnum):
    HIT = "hit"
    MISS = "miss"
    FALSE_ALARM = "false_alarm"
    CORRECT_REJECTION = "correct_rejection"

    @property
    def is_error(self) -> bool:
        return self in (Outcome.MISS, Outcome.FALSE_ALARM)


@dataclass(frozen=True, slots=True)
class ChannelResult:
    hits: int = 0
    misses: int = 0
    false_alarms: int = 0

    @property
    def judged(self) -> int:
        """Trials that count toward accuracy (correct rejections excluded)."""
        return self.hits + self.misses + self.false_alarms


def outcome_for(*, matched: bool, signaled: bool) -> Outcome:
    if matched:
        return Outcome.HIT if signaled else Outcome.MISS
    return Outcome.FALSE_ALARM if signaled else Outcome.CORRECT_REJECTION


def lag_for(lag: LagSpec, index: int, length: int) -> int:
    """Resolve the lag in effect for ``index``; fail fast if none is recorded."""

    if isinstance(lag, LagSchedule):
        return lag.lag_at(index)
    if isinstance(lag, int):
        return lag
    if len(lag) < length:
        raise InvariantViolation(f"per-trial lags cover {len(lag)} trials, sequence has {length}")
    return int(lag[index])


def classify_trial(
    stimuli: Sequence[Stimulus],
    responses: ResponseRecord,
    index: int,
    lag: int,
    channels: Sequence[Channel],
) -> dict[Channel, Outcome] | None:
    """Classify one trial per channel. None when the trial has no reference yet."""

    if not (0 <= index < len(stimuli)):
        raise InvariantViolation(f"trial {index} outside sequence of length {len(stimuli)}")
    if lag < 1:
        raise InvariantViolation(f"lag must be >= 1, got {lag}")
    if index < lag:
        return None

    signaled = responses.get(index, ())
    return {
        ch: outcome_for(matched=is_match(stimuli, index, lag, ch), signaled=ch in signaled)
        for ch in channels
    }


def classify(
    stimuli: Sequence[Stimulus],
    responses: ResponseRecord,
    lag: LagSpec,
    channels: Sequence[Channel],
) -> dict[int, dict[Channel, Outcome]]:
    """Per-trial classification of every scorable trial, keyed by trial index."""

    n = len(stimuli)
    out: dict[int, dict[Channel, Outcome]] = {}
    for i in range(n):
        trial = classify_trial(stimuli, responses, i, lag_for(lag, i, n), channels)
        if trial is not None:
            out[i] = trial
    return out


def tally(
    classifications: Mapping[int, Mapping[Channel, Outcome]],
    channels: Sequence[Channel],
) -> dict[Channel, dict[Outcome, int]]:
    counts = {ch: {o: 0 for o in Outcome} for ch in channels}
    for per_channel in classifications.values():
        for ch, outcome in per_channel.items():
            if ch in counts:
                counts[ch][outcome] += 1
    return counts


def aggregate(
    stimuli: Sequence[Stimulus],
    responses: ResponseRecord,
    lag: LagSpec,
    channels: Sequence[Channel],
    *,
    trial_range: range | None = None,
) -> dict[Channel, ChannelResult]:
    """Sum hits, misses and false alarms per channel over scorable trials.

    ``trial_range`` limits the sum to a window (used for adaptive blocks).
    """

    n = len(stimuli)
    indices = range(n) if trial_range is None else trial_range
    totals = {ch: [0, 0, 0] for ch in channels}
    for i in indices:
        trial = classify_trial(stimuli, responses, i, lag_for(lag, i, n), channels)
        if trial is None:
            continue
        for ch, outcome in trial.items():
            if outcome is Outcome.HIT:
                totals[ch][0] += 1
            elif outcome is Outcome.MISS:
                totals[ch][1] += 1
            elif outcome is Outcome.FALSE_ALARM:
                totals[ch][2] += 1
    return {ch: ChannelResult(hits=h, misses=m, false_alarms=f) for ch, (h, m, f) in totals.items()}
