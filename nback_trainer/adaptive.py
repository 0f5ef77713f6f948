from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .cognitive_core import clamp_int
from .evaluator import ResponseRecord, aggregate
from .sequence import LagSchedule, StimulusSequence, TrialGenerator
from .stimuli import Channel

logger = logging.getLogger(__name__)

MIN_LEVEL = 1
MAX_LEVEL = 9
LEVEL_UP_ACCURACY = 0.85
LEVEL_DOWN_ACCURACY = 0.50


@dataclass(frozen=True, slots=True)
class LevelChange:
    trial_index: int
    from_level: int
    to_level: int


@dataclass(frozen=True, slots=True)
class AdaptiveTrace:
    starting_level: int
    ending_level: int
    changes: tuple[LevelChange, ...]


@dataclass(frozen=True, slots=True)
class AdaptiveStep:
    block_closed: bool
    block_accuracy: float | None = None
    change: LevelChange | None = None

    @property
    def level_changed(self) -> bool:
        return self.change is not None


def decide_level(level: int, block_accuracy: float) -> int:
    if block_accuracy >= LEVEL_UP_ACCURACY and level < MAX_LEVEL:
        return level + 1
    if block_accuracy <= LEVEL_DOWN_ACCURACY and level > MIN_LEVEL:
        return level - 1
    return level


class AdaptiveController:
    """Moves the lag up or down on rolling block accuracy.

    A block is as many scorable trials as the current level. When a block
    closes with a level change, everything after the closing trial is
    regenerated at the new level; already played trials are left alone so
    their responses stay valid.
    """

    def __init__(
        self,
        *,
        starting_level: int,
        generator: TrialGenerator,
        channels: Sequence[Channel],
        match_probability: float,
        schedule: LagSchedule | None = None,
    ) -> None:
        self._starting_level = clamp_int(int(starting_level), MIN_LEVEL, MAX_LEVEL)
        self._level = self._starting_level
        self._generator = generator
        self._channels = tuple(channels)
        self._match_probability = float(match_probability)
        self._schedule = schedule if schedule is not None else LagSchedule(self._level)
        self._block_start = 0
        self._changes: list[LevelChange] = []

    @property
    def level(self) -> int:
        return self._level

    @property
    def schedule(self) -> LagSchedule:
        return self._schedule

    @property
    def block_start(self) -> int:
        return self._block_start

    def trace(self) -> AdaptiveTrace:
        return AdaptiveTrace(
            starting_level=self._starting_level,
            ending_level=self._level,
            changes=tuple(self._changes),
        )

    def on_trial_scored(
        self,
        trial_index: int,
        sequence: StimulusSequence,
        responses: ResponseRecord,
    ) -> AdaptiveStep:
        if trial_index < self._schedule.lag_at(trial_index):
            return AdaptiveStep(block_closed=False)

        block = range(self._block_start, trial_index + 1)
        scorable = sum(1 for i in block if i >= self._schedule.lag_at(i))
        if scorable < self._level:
            return AdaptiveStep(block_closed=False)

        stimuli = sequence.stimuli
        results = aggregate(stimuli, responses, self._schedule, self._channels, trial_range=block)
        hits = sum(r.hits for r in results.values())
        judged = sum(r.judged for r in results.values())
        block_accuracy = 1.0 if judged == 0 else hits / judged

        new_level = decide_level(self._level, block_accuracy)
        self._block_start = trial_index + 1
        if new_level == self._level:
            logger.debug(
                "block closed at trial %d: accuracy=%.3f level stays %d",
                trial_index,
                block_accuracy,
                self._level,
            )
            return AdaptiveStep(block_closed=True, block_accuracy=block_accuracy)

        change = LevelChange(trial_index=trial_index, from_level=self._level, to_level=new_level)
        self._changes.append(change)
        self._level = new_level

        tail_start = trial_index + 1
        remaining = len(sequence) - tail_start
        tail = self._generator.extend(
            sequence.prefix(tail_start),
            from_index=tail_start,
            count=remaining,
            lag=new_level,
            channels=self._channels,
            match_probability=self._match_probability,
        )
        sequence.replace_tail(tail_start, tail)
        self._schedule.set_from(tail_start, new_level)

        logger.info(
            "level %d -> %d at trial %d (block accuracy %.3f, %d trials regenerated)",
            change.from_level,
            change.to_level,
            trial_index,
            block_accuracy,
            remaining,
        )
        return AdaptiveStep(block_closed=True, block_accuracy=block_accuracy, change=change)
