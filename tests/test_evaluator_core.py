from __future__ import annotations

import pytest

from nback_trainer.cognitive_core import InvariantViolation
from nback_trainer.evaluator import (
    ChannelResult,
    Outcome,
    aggregate,
    classify,
    classify_trial,
    outcome_for,
    tally,
)
from nback_trainer.sequence import LagSchedule, SequenceGenerator
from nback_trainer.stimuli import Channel, Stimulus


def _stim(position: int, color: str = "red") -> Stimulus:
    return Stimulus(position=position, color=color, shape="circle", number=1, audio="B")


def test_outcome_truth_table() -> None:
    assert outcome_for(matched=True, signaled=True) is Outcome.HIT
    assert outcome_for(matched=True, signaled=False) is Outcome.MISS
    assert outcome_for(matched=False, signaled=True) is Outcome.FALSE_ALARM
    assert outcome_for(matched=False, signaled=False) is Outcome.CORRECT_REJECTION


def test_single_hit_scenario_lag_two() -> None:
    # Trial 2 repeats trial 0; trials 3 and 4 differ from their references.
    stimuli = (_stim(0), _stim(1), _stim(0), _stim(5), _stim(7))
    responses = {2: {Channel.POSITION}}

    results = aggregate(stimuli, responses, 2, (Channel.POSITION,))

    assert results == {Channel.POSITION: ChannelResult(hits=1, misses=0, false_alarms=0)}


def test_unscorable_trials_produce_no_classification() -> None:
    stimuli = (_stim(0), _stim(0), _stim(0), _stim(0))
    # Signals on trials below the lag must be ignored entirely.
    responses = {0: {Channel.POSITION}, 1: {Channel.POSITION}}

    assert classify_trial(stimuli, responses, 1, 2, (Channel.POSITION,)) is None
    per_trial = classify(stimuli, responses, 2, (Channel.POSITION,))
    assert sorted(per_trial) == [2, 3]

    results = aggregate(stimuli, responses, 2, (Channel.POSITION,))
    assert results[Channel.POSITION] == ChannelResult(hits=0, misses=2, false_alarms=0)


def test_channels_are_classified_independently() -> None:
    stimuli = (_stim(0, "red"), _stim(3, "red"))
    responses = {1: {Channel.POSITION}}

    outcomes = classify_trial(stimuli, responses, 1, 1, (Channel.POSITION, Channel.COLOR))

    assert outcomes == {Channel.POSITION: Outcome.FALSE_ALARM, Channel.COLOR: Outcome.MISS}


def test_classification_completeness_over_generated_session() -> None:
    channels = (Channel.POSITION, Channel.COLOR, Channel.NUMBER)
    lag = 3
    trials = SequenceGenerator(seed=77).generate(trial_count=40, lag=lag, channels=channels)
    responses = {i: {Channel.POSITION} for i in range(0, 40, 3)}
    responses.update({i: {Channel.COLOR, Channel.NUMBER} for i in range(1, 40, 5)})

    per_trial = classify(trials.stimuli, responses, lag, channels)
    counts = tally(per_trial, channels)
    results = aggregate(trials.stimuli, responses, lag, channels)

    scorable = 40 - lag
    for ch in channels:
        assert sum(counts[ch].values()) == scorable
        r = results[ch]
        assert r.hits == counts[ch][Outcome.HIT]
        assert r.misses == counts[ch][Outcome.MISS]
        assert r.false_alarms == counts[ch][Outcome.FALSE_ALARM]
        assert r.judged + counts[ch][Outcome.CORRECT_REJECTION] == scorable


def test_per_trial_lags_skip_trials_below_their_own_lag() -> None:
    stimuli = tuple(_stim(p) for p in (0, 1, 2, 0, 1, 4, 0))
    lags = [2, 2, 2, 3, 3, 5, 5]

    per_trial = classify(stimuli, {}, lags, (Channel.POSITION,))

    # Trial 5 (lag 5) is scorable, trial 4 (lag 3) is scorable, trials 0-1 are not.
    assert sorted(per_trial) == [2, 3, 4, 5, 6]
    assert per_trial[3][Channel.POSITION] is Outcome.MISS  # 3 vs 0
    assert per_trial[6][Channel.POSITION] is Outcome.CORRECT_REJECTION  # 6 vs 1

    via_schedule = classify(stimuli, {}, LagSchedule.from_lags(lags), (Channel.POSITION,))
    assert via_schedule == per_trial


def test_missing_lag_for_trial_fails_fast() -> None:
    stimuli = tuple(_stim(p) for p in range(5))
    with pytest.raises(InvariantViolation):
        aggregate(stimuli, {}, [1, 1, 1], (Channel.POSITION,))


def test_out_of_range_trial_fails_fast() -> None:
    stimuli = (_stim(0), _stim(1))
    with pytest.raises(InvariantViolation):
        classify_trial(stimuli, {}, 2, 1, (Channel.POSITION,))


def test_evaluation_does_not_mutate_inputs() -> None:
    stimuli = (_stim(0), _stim(0), _stim(1))
    responses = {1: {Channel.POSITION}}
    snapshot = {k: set(v) for k, v in responses.items()}

    aggregate(stimuli, responses, 1, (Channel.POSITION,))

    assert responses == snapshot
