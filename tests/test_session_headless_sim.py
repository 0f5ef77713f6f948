from __future__ import annotations

from dataclasses import dataclass

import pytest

from nback_trainer.cognitive_core import Phase
from nback_trainer.config import ConfigError, NBackConfig
from nback_trainer.evaluator import ChannelResult, Outcome
from nback_trainer.sequence import GeneratedTrials
from nback_trainer.session import NBackSession, TimerKind, TrialFeedback
from nback_trainer.stimuli import Channel, Stimulus


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


class FixedSequenceGenerator:
    """Serves a prescribed stimulus list; for fixed-lag sessions only."""

    def __init__(self, stimuli: tuple[Stimulus, ...]) -> None:
        self._stimuli = stimuli

    def generate(self, *, trial_count, lag, channels, match_probability=0.33) -> GeneratedTrials:
        assert trial_count == len(self._stimuli)
        return GeneratedTrials(
            stimuli=self._stimuli,
            intended_matches=tuple(frozenset() for _ in self._stimuli),
        )

    def extend(self, prefix, **kwargs) -> GeneratedTrials:
        raise AssertionError("fixed sequences are never extended")


INTERVAL = 2.0
DWELL = 0.25


def _pos(p: int) -> Stimulus:
    return Stimulus(position=p, color="red", shape="circle", number=1, audio="B")


def _config(**kw) -> NBackConfig:
    base = dict(
        lag=2,
        channels=(Channel.POSITION,),
        trial_count=5,
        interval_s=INTERVAL,
        countdown_ticks=3,
        countdown_tick_s=1.0,
        feedback_s=DWELL,
    )
    base.update(kw)
    return NBackConfig(**base)


def _finish_countdown(clock: FakeClock, session: NBackSession, ticks: int = 3) -> None:
    for _ in range(ticks):
        assert session.phase is Phase.COUNTDOWN
        clock.advance(1.0)
        session.update()
    assert session.phase is Phase.PLAYING


def _finish_trial(clock: FakeClock, session: NBackSession) -> None:
    clock.advance(INTERVAL)
    session.update()
    if session.phase is Phase.FEEDBACK:
        clock.advance(DWELL)
        session.update()


def test_single_hit_scenario() -> None:
    clock = FakeClock()
    stimuli = (_pos(0), _pos(1), _pos(0), _pos(5), _pos(7))
    session = NBackSession(clock=clock, seed=1, generator=FixedSequenceGenerator(stimuli))

    session.start(_config())
    _finish_countdown(clock, session)

    for trial in range(5):
        assert session.current_trial == trial
        assert session.current_stimulus == stimuli[trial]
        if trial == 2:
            assert session.signal(Channel.POSITION) is True
        _finish_trial(clock, session)

    assert session.phase is Phase.RESULTS
    out = session.output()
    assert out is not None
    assert dict(out.results) == {Channel.POSITION: ChannelResult(hits=1, misses=0, false_alarms=0)}
    assert out.overall_score == pytest.approx(1.0)
    assert out.max_combo >= 1
    assert out.max_combo == 3
    assert out.xp_earned == 26  # 2 * 10 * 1.0 * 1.3
    assert session.pending_timer is None


def test_never_signalling_without_matches_builds_full_combo() -> None:
    clock = FakeClock()
    stimuli = tuple(_pos(p) for p in (0, 1, 2, 3, 4, 5, 6, 7, 8, 0, 1, 2))
    session = NBackSession(clock=clock, seed=1, generator=FixedSequenceGenerator(stimuli))

    session.start(_config(trial_count=12))
    _finish_countdown(clock, session)
    for _ in range(12):
        _finish_trial(clock, session)

    out = session.output()
    assert out is not None
    assert out.results[Channel.POSITION] == ChannelResult()
    assert out.overall_score == 1.0
    assert out.max_combo == 10
    scorable = [e for e in session.events() if e.scorable]
    assert len(scorable) == 10
    assert all(e.outcomes[Channel.POSITION] is Outcome.CORRECT_REJECTION for e in scorable)


def test_error_resets_combo_even_with_hits_on_other_channels() -> None:
    clock = FakeClock()
    same = _pos(4)
    stimuli = (same, same, same, same)
    session = NBackSession(clock=clock, seed=1, generator=FixedSequenceGenerator(stimuli))

    session.start(_config(lag=1, trial_count=4, channels=(Channel.POSITION, Channel.COLOR)))
    _finish_countdown(clock, session)

    _finish_trial(clock, session)  # trial 0: unscorable
    session.signal(Channel.POSITION)
    session.signal(Channel.COLOR)
    _finish_trial(clock, session)  # trial 1: two hits
    session.signal(Channel.POSITION)
    _finish_trial(clock, session)  # trial 2: hit + miss
    session.signal(Channel.POSITION)
    session.signal(Channel.COLOR)
    _finish_trial(clock, session)  # trial 3: two hits

    combos = [e.combo for e in session.events()]
    assert combos == [0, 1, 0, 1]
    assert session.max_combo == 1
    assert session.events()[0].scorable is False


def test_signals_are_write_once_and_filtered() -> None:
    clock = FakeClock()
    session = NBackSession(clock=clock, seed=9)
    session.start(_config(trial_count=6))

    assert session.signal(Channel.POSITION) is False  # countdown
    _finish_countdown(clock, session)

    assert session.signal(Channel.POSITION) is True
    assert session.signal(Channel.POSITION) is False
    assert session.signal("POSITION") is False
    assert session.signal(Channel.AUDIO) is False  # inactive
    assert session.signal("smell") is False
    assert session.responses() == {0: frozenset({Channel.POSITION})}


def test_input_never_advances_trials() -> None:
    clock = FakeClock()
    session = NBackSession(clock=clock, seed=9)
    session.start(_config(trial_count=6, channels=(Channel.POSITION, Channel.COLOR)))
    _finish_countdown(clock, session)

    session.signal(Channel.POSITION)
    session.signal(Channel.COLOR)
    clock.advance(INTERVAL - 0.5)
    session.update()

    assert session.phase is Phase.PLAYING
    assert session.current_trial == 0

    clock.advance(0.5)
    session.update()
    assert session.phase is Phase.FEEDBACK
    assert session.pending_timer == TimerKind.FEEDBACK_DWELL
    assert session.signal(Channel.POSITION) is False


def test_late_update_catches_up_on_cadence() -> None:
    clock = FakeClock()
    session = NBackSession(clock=clock, seed=4)
    session.start(_config(trial_count=4))

    # Countdown (3s) + 4 trials * 2s + 3 dwells * 0.25s, delivered in one update.
    clock.advance(3.0 + 4 * INTERVAL + 3 * DWELL)
    session.update()

    assert session.phase is Phase.RESULTS
    assert len(session.events()) == 4


def test_cancel_clears_timer_and_blocks_late_transitions() -> None:
    clock = FakeClock()
    session = NBackSession(clock=clock, seed=5)
    session.start(_config(trial_count=8))
    _finish_countdown(clock, session)
    _finish_trial(clock, session)

    session.cancel()
    assert session.phase is Phase.CANCELLED
    assert session.pending_timer is None

    clock.advance(100.0)
    session.update()
    assert session.phase is Phase.CANCELLED
    assert session.output() is None
    assert session.signal(Channel.POSITION) is False
    assert len(session.events()) == 1


def test_cancel_during_countdown() -> None:
    clock = FakeClock()
    session = NBackSession(clock=clock, seed=5)
    session.start(_config())
    clock.advance(1.0)
    session.update()

    session.cancel()
    clock.advance(10.0)
    session.update()

    assert session.phase is Phase.CANCELLED
    assert session.countdown_remaining == 2


def test_cancel_from_feedback_callback_stops_the_session() -> None:
    clock = FakeClock()
    holder: list[NBackSession] = []

    def on_feedback(fb: TrialFeedback) -> None:
        if fb.trial_index == 1:
            holder[0].cancel()

    session = NBackSession(clock=clock, seed=6, on_trial_feedback=on_feedback)
    holder.append(session)
    session.start(_config(trial_count=6))
    _finish_countdown(clock, session)
    _finish_trial(clock, session)
    _finish_trial(clock, session)

    assert session.phase is Phase.CANCELLED
    assert session.pending_timer is None


def test_invalid_config_rejected_at_start() -> None:
    session = NBackSession(clock=FakeClock(), seed=1)

    with pytest.raises(ConfigError):
        session.start(_config(lag=0))
    with pytest.raises(ConfigError):
        session.start(_config(channels=()))
    with pytest.raises(ConfigError):
        session.start(_config(trial_count=0))
    with pytest.raises(ConfigError):
        session.start(_config(interval_s=0.0))

    assert session.phase is Phase.IDLE


def test_scripted_perfect_run_with_generated_sequence() -> None:
    clock = FakeClock()
    seen: list[tuple[int, Stimulus]] = []
    session = NBackSession(clock=clock, seed=2024, on_trial_start=lambda i, s: seen.append((i, s)))
    channels = (Channel.POSITION, Channel.AUDIO)
    session.start(_config(lag=2, trial_count=24, channels=channels))
    _finish_countdown(clock, session)

    for trial in range(24):
        for ch in session.intended_matches(trial):
            assert session.signal(ch) is True
        _finish_trial(clock, session)

    out = session.output()
    assert out is not None
    for ch in channels:
        assert out.results[ch].misses == 0
        assert out.results[ch].false_alarms == 0
    assert out.overall_score == 1.0
    assert out.max_combo == 22
    assert out.xp_earned == 40
    assert [i for i, _ in seen] == list(range(24))


def test_adaptive_session_levels_up_and_reports_trace() -> None:
    clock = FakeClock()
    session = NBackSession(clock=clock, seed=77)
    session.start(_config(lag=3, trial_count=20, adaptive=True))
    _finish_countdown(clock, session)

    snapshots: list[tuple[Stimulus, ...]] = []
    for trial in range(20):
        lag = session.trial_lags[trial]
        seq = session.sequence
        if trial >= lag and seq[trial].position == seq[trial - lag].position:
            session.signal(Channel.POSITION)
        snapshots.append(session.sequence)
        _finish_trial(clock, session)

    out = session.output()
    assert out is not None
    assert out.adaptive is True
    assert out.starting_level == 3
    first = out.level_changes[0]
    assert (first.trial_index, first.from_level, first.to_level) == (5, 3, 4)
    assert out.ending_level == out.level_changes[-1].to_level
    assert out.effective_level == out.ending_level
    assert out.trial_lags[6] == 4

    # The played prefix never changes after a regeneration.
    final = session.sequence
    for trial, seq in enumerate(snapshots):
        assert seq[: trial + 1] == final[: trial + 1]

    payload = out.to_payload()
    assert payload["level_changes"][0] == {"trial": 5, "from_level": 3, "to_level": 4}
    assert payload["results"]["position"]["misses"] == 0


def test_signals_from_feedback_callback_cannot_touch_the_closed_trial() -> None:
    clock = FakeClock()
    stimuli = (_pos(0), _pos(1), _pos(2))
    accepted: list[bool] = []
    phases: list[Phase] = []
    holder: list[NBackSession] = []

    def on_feedback(fb: TrialFeedback) -> None:
        phases.append(holder[0].phase)
        accepted.append(holder[0].signal(Channel.POSITION))

    session = NBackSession(
        clock=clock, seed=1, generator=FixedSequenceGenerator(stimuli), on_trial_feedback=on_feedback
    )
    holder.append(session)
    session.start(_config(lag=1, trial_count=3))
    _finish_countdown(clock, session)
    for _ in range(3):
        _finish_trial(clock, session)

    assert accepted == [False, False, False]
    assert phases == [Phase.FEEDBACK] * 3
    assert session.responses() == {}

    out = session.output()
    assert out is not None
    assert out.results[Channel.POSITION] == ChannelResult()
    assert not any(e.has_error for e in session.events())
    assert out.max_combo == 2


def test_adaptive_output_reports_clamped_starting_level() -> None:
    clock = FakeClock()
    session = NBackSession(clock=clock, seed=12)
    session.start(_config(lag=12, trial_count=10, adaptive=True))

    assert session.config is not None
    assert session.config.lag == 9
    clock.advance(1000.0)
    session.update()

    out = session.output()
    assert out is not None
    assert out.lag == 9
    assert out.starting_level == 9
    assert out.to_payload()["n_level"] == 9
    assert out.trial_lags == (9,) * 10
