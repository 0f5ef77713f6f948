from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from enum import StrEnum
from types import MappingProxyType

from .adaptive import AdaptiveController, AdaptiveTrace, LevelChange
from .clock import Clock, Timer
from .cognitive_core import InvariantViolation, Phase
from .config import NBackConfig, normalize_config
from .evaluator import Outcome, aggregate, classify_trial
from .results import SessionOutput, build_session_output
from .scoring import next_combo, score_session
from .sequence import LagSchedule, SequenceGenerator, StimulusSequence, TrialGenerator
from .stimuli import Channel, Stimulus, parse_channel

logger = logging.getLogger(__name__)


class TimerKind(StrEnum):
    COUNTDOWN_TICK = "countdown_tick"
    CADENCE = "cadence"
    FEEDBACK_DWELL = "feedback_dwell"


@dataclass(frozen=True, slots=True)
class TrialFeedback:
    trial_index: int
    lag: int
    scorable: bool
    outcomes: Mapping[Channel, Outcome]  # empty for unscorable trials
    signaled: frozenset[Channel]
    combo: int
    max_combo: int
    level_change: LevelChange | None = None

    @property
    def has_error(self) -> bool:
        return any(o.is_error for o in self.outcomes.values())


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """View model for the presentation layer (pure data)."""

    phase: Phase
    trial_index: int
    trial_count: int
    countdown_remaining: int
    stimulus: Stimulus | None
    channels: tuple[Channel, ...]
    level: int | None
    combo: int
    max_combo: int
    signaled: frozenset[Channel]
    last_feedback: TrialFeedback | None


class NBackSession:
    """Timer-driven n-back session: idle -> countdown -> playing <-> feedback -> results.

    - Deterministic: the stimulus stream comes from a generator seeded at construction.
    - Time is entirely via the injected Clock; ``update()`` delivers due timer
      events and ``signal()`` delivers input, both on the caller's thread.
    - One Timer handle is the only pending event source. ``cancel()`` clears it,
      so a cancelled session never transitions again.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        seed: int,
        generator: TrialGenerator | None = None,
        on_trial_start: Callable[[int, Stimulus], None] | None = None,
        on_trial_feedback: Callable[[TrialFeedback], None] | None = None,
    ) -> None:
        self._clock = clock
        self._seed = int(seed)
        self._generator: TrialGenerator = generator or SequenceGenerator(seed=self._seed)
        self._on_trial_start = on_trial_start
        self._on_trial_feedback = on_trial_feedback

        self._timer = Timer(clock)
        self._phase = Phase.IDLE
        self._config: NBackConfig | None = None

        self._sequence = StimulusSequence()
        self._schedule: LagSchedule | None = None
        self._controller: AdaptiveController | None = None
        self._responses: dict[int, set[Channel]] = {}

        self._current = 0
        self._countdown = 0
        self._combo = 0
        self._max_combo = 0

        self._events: list[TrialFeedback] = []
        self._output: SessionOutput | None = None

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def config(self) -> NBackConfig | None:
        return self._config

    @property
    def current_trial(self) -> int:
        return self._current

    @property
    def countdown_remaining(self) -> int:
        return self._countdown

    @property
    def combo(self) -> int:
        return self._combo

    @property
    def max_combo(self) -> int:
        return self._max_combo

    @property
    def level(self) -> int | None:
        if self._controller is not None:
            return self._controller.level
        if self._config is not None:
            return self._config.lag
        return None

    @property
    def pending_timer(self) -> str | None:
        return self._timer.pending

    @property
    def sequence(self) -> tuple[Stimulus, ...]:
        return self._sequence.stimuli

    @property
    def trial_lags(self) -> tuple[int, ...]:
        if self._schedule is None:
            return ()
        return tuple(self._schedule.as_list(len(self._sequence)))

    @property
    def current_stimulus(self) -> Stimulus | None:
        if self._phase not in (Phase.PLAYING, Phase.FEEDBACK):
            return None
        return self._sequence[self._current]

    def intended_matches(self, index: int) -> frozenset[Channel]:
        return self._sequence.intended_matches(index)

    def responses(self) -> dict[int, frozenset[Channel]]:
        return {i: frozenset(chs) for i, chs in self._responses.items()}

    def events(self) -> list[TrialFeedback]:
        return list(self._events)

    def adaptive_trace(self) -> AdaptiveTrace | None:
        return None if self._controller is None else self._controller.trace()

    def output(self) -> SessionOutput | None:
        """Finalized output; None unless the session reached RESULTS."""
        return self._output

    def start(self, config: NBackConfig) -> None:
        if self._phase is not Phase.IDLE:
            return
        cfg = normalize_config(config)

        if cfg.adaptive:
            self._controller = AdaptiveController(
                starting_level=cfg.lag,
                generator=self._generator,
                channels=cfg.channels,
                match_probability=cfg.match_probability,
            )
            self._schedule = self._controller.schedule
            # Report the level play actually starts at.
            cfg = replace(cfg, lag=self._controller.level)
            lag = cfg.lag
        else:
            self._schedule = LagSchedule(cfg.lag)
            lag = cfg.lag

        trials = self._generator.generate(
            trial_count=cfg.trial_count,
            lag=lag,
            channels=cfg.channels,
            match_probability=cfg.match_probability,
        )
        if len(trials) != cfg.trial_count:
            raise InvariantViolation(f"generator returned {len(trials)} trials, expected {cfg.trial_count}")

        self._config = cfg
        self._sequence = StimulusSequence(trials)
        self._responses = {}
        self._events = []
        self._combo = 0
        self._max_combo = 0
        self._current = 0
        self._output = None

        logger.debug(
            "session start: lag=%d channels=%s trials=%d adaptive=%s seed=%d",
            lag,
            ",".join(ch.value for ch in cfg.channels),
            cfg.trial_count,
            cfg.adaptive,
            self._seed,
        )

        now = self._clock.now()
        self._countdown = cfg.countdown_ticks
        if self._countdown <= 0:
            self._begin_trial(0, base_s=now)
            return
        self._phase = Phase.COUNTDOWN
        self._timer.arm(TimerKind.COUNTDOWN_TICK, cfg.countdown_tick_s, base_s=now)

    def signal(self, channel: Channel | str) -> bool:
        """Record a match signal for the current trial. Returns True if accepted."""

        if self._phase is not Phase.PLAYING:
            return False
        assert self._config is not None
        ch = parse_channel(channel)
        if ch is None or ch not in self._config.channels:
            return False
        signaled = self._responses.setdefault(self._current, set())
        if ch in signaled:
            return False
        signaled.add(ch)
        return True

    def update(self) -> None:
        """Deliver every timer event that is due, in order."""

        while not self._phase.is_terminal:
            fired = self._timer.pop_due()
            if fired is None:
                return
            kind, deadline_s = fired
            self._dispatch(kind, deadline_s)

    def cancel(self) -> None:
        if self._phase.is_terminal:
            return
        self._timer.cancel()
        previous = self._phase
        self._phase = Phase.CANCELLED
        logger.info("session cancelled during %s at trial %d", previous.value, self._current)

    def snapshot(self) -> SessionSnapshot:
        channels = () if self._config is None else self._config.channels
        signaled = frozenset(self._responses.get(self._current, ()))
        return SessionSnapshot(
            phase=self._phase,
            trial_index=self._current,
            trial_count=len(self._sequence),
            countdown_remaining=self._countdown,
            stimulus=self.current_stimulus,
            channels=channels,
            level=self.level,
            combo=self._combo,
            max_combo=self._max_combo,
            signaled=signaled,
            last_feedback=self._events[-1] if self._events else None,
        )

    def _dispatch(self, kind: str, deadline_s: float) -> None:
        assert self._config is not None
        if kind == TimerKind.COUNTDOWN_TICK and self._phase is Phase.COUNTDOWN:
            self._countdown -= 1
            if self._countdown > 0:
                self._timer.arm(TimerKind.COUNTDOWN_TICK, self._config.countdown_tick_s, base_s=deadline_s)
            else:
                self._begin_trial(0, base_s=deadline_s)
        elif kind == TimerKind.CADENCE and self._phase is Phase.PLAYING:
            self._close_trial(base_s=deadline_s)
        elif kind == TimerKind.FEEDBACK_DWELL and self._phase is Phase.FEEDBACK:
            self._begin_trial(self._current + 1, base_s=deadline_s)
        else:
            raise InvariantViolation(f"timer {kind} fired during {self._phase.value}")

    def _begin_trial(self, index: int, *, base_s: float) -> None:
        assert self._config is not None
        self._current = index
        self._phase = Phase.PLAYING
        self._timer.arm(TimerKind.CADENCE, self._config.interval_s, base_s=base_s)
        if self._on_trial_start is not None:
            self._on_trial_start(index, self._sequence[index])

    def _close_trial(self, *, base_s: float) -> None:
        assert self._config is not None
        assert self._schedule is not None
        cfg = self._config
        index = self._current
        lag = self._schedule.lag_at(index)

        # Leave PLAYING first so nothing can write to the trial being closed.
        self._phase = Phase.FEEDBACK
        outcomes = classify_trial(self._sequence.stimuli, self._responses, index, lag, cfg.channels)
        change: LevelChange | None = None
        if outcomes is not None:
            self._combo = next_combo(self._combo, outcomes.values())
            self._max_combo = max(self._max_combo, self._combo)
            if self._controller is not None:
                change = self._controller.on_trial_scored(index, self._sequence, self._responses).change

        feedback = TrialFeedback(
            trial_index=index,
            lag=lag,
            scorable=outcomes is not None,
            outcomes=MappingProxyType(dict(outcomes or {})),
            signaled=frozenset(self._responses.get(index, ())),
            combo=self._combo,
            max_combo=self._max_combo,
            level_change=change,
        )
        self._events.append(feedback)
        logger.debug("trial %d closed: lag=%d combo=%d", index, lag, self._combo)
        if self._on_trial_feedback is not None:
            self._on_trial_feedback(feedback)
        if self._phase is Phase.CANCELLED:
            # Cancelled from inside the feedback callback.
            return

        if index + 1 >= len(self._sequence):
            self._finalize()
            return
        self._timer.arm(TimerKind.FEEDBACK_DWELL, cfg.feedback_s, base_s=base_s)

    def _finalize(self) -> None:
        assert self._config is not None
        assert self._schedule is not None
        cfg = self._config
        stimuli = self._sequence.stimuli
        lags = tuple(self._schedule.as_list(len(stimuli)))

        results = aggregate(stimuli, self._responses, lags, cfg.channels)
        trace = self.adaptive_trace()
        effective_level = cfg.lag if trace is None else trace.ending_level
        score = score_session(
            results,
            channels=cfg.channels,
            effective_level=effective_level,
            max_combo=self._max_combo,
        )

        self._timer.cancel()
        self._output = build_session_output(
            seed=self._seed,
            config=cfg,
            results=results,
            score=score,
            trial_lags=lags,
            trace=trace,
        )
        self._phase = Phase.RESULTS
        logger.info(
            "session finished: score=%.3f xp=%d max_combo=%d level=%d",
            score.overall_score,
            score.xp,
            score.max_combo,
            effective_level,
        )
