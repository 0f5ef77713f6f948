from __future__ import annotations

from datetime import date

import pytest

from nback_trainer.config import (
    DAILY_LAGS,
    ConfigError,
    NBackConfig,
    daily_challenge,
    daily_seed,
    normalize_config,
)
from nback_trainer.stimuli import Channel


def test_normalize_orders_and_parses_channels() -> None:
    cfg = normalize_config(NBackConfig(channels=("audio", "Position", Channel.COLOR, "color")))

    assert cfg.channels == (Channel.POSITION, Channel.COLOR, Channel.AUDIO)
    assert isinstance(cfg.interval_s, float)


def test_normalize_keeps_valid_values() -> None:
    cfg = NBackConfig(lag=4, trial_count=30, interval_s=1.5, match_probability=0.0, countdown_ticks=0)
    out = normalize_config(cfg)

    assert (out.lag, out.trial_count, out.interval_s) == (4, 30, 1.5)
    assert out.countdown_ticks == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"lag": 0},
        {"lag": -2},
        {"lag": 2.5},
        {"trial_count": 0},
        {"trial_count": -5},
        {"interval_s": 0.0},
        {"interval_s": -1.0},
        {"match_probability": 1.5},
        {"match_probability": -0.1},
        {"channels": ()},
        {"channels": ("position", "smell")},
        {"countdown_ticks": -1},
        {"countdown_tick_s": 0.0},
        {"feedback_s": -0.1},
    ],
)
def test_invalid_configs_are_rejected(kwargs: dict) -> None:
    with pytest.raises(ConfigError):
        normalize_config(NBackConfig(**kwargs))


def test_config_error_is_a_value_error() -> None:
    assert issubclass(ConfigError, ValueError)


def test_daily_challenge_is_deterministic_per_day() -> None:
    day = date(2026, 3, 14)

    assert daily_seed(day) == daily_seed(date(2026, 3, 14))
    assert daily_challenge(day) == daily_challenge(day)
    assert daily_seed(day) != daily_seed(date(2026, 3, 15))


def test_daily_challenge_ranges() -> None:
    for offset in range(1, 29):
        cfg = normalize_config(daily_challenge(date(2026, 2, offset)))

        assert cfg.lag in DAILY_LAGS
        assert 2 <= len(cfg.channels) <= 4
        assert cfg.trial_count == 25
        assert cfg.interval_s == 2.5
        assert not cfg.adaptive
