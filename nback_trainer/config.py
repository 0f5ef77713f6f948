from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date

from .cognitive_core import SeededRng
from .stimuli import Channel, canonical_order, parse_channel

DEFAULT_MATCH_PROBABILITY = 0.33


class ConfigError(ValueError):
    """Raised synchronously when a session configuration is rejected."""


@dataclass(frozen=True, slots=True)
class NBackConfig:
    lag: int = 2
    channels: tuple[Channel, ...] = (Channel.POSITION, Channel.AUDIO)
    trial_count: int = 20
    interval_s: float = 2.5
    adaptive: bool = False
    match_probability: float = DEFAULT_MATCH_PROBABILITY

    # Pre-roll and between-trial pacing.
    countdown_ticks: int = 3
    countdown_tick_s: float = 1.0
    feedback_s: float = 0.3


def _parse_channels(raw: Iterable[object]) -> tuple[Channel, ...]:
    if isinstance(raw, (str, Channel)):
        raw = (raw,)
    parsed: list[Channel] = []
    for item in raw:
        ch = parse_channel(item)
        if ch is None:
            raise ConfigError(f"unknown channel: {item!r}")
        parsed.append(ch)
    return canonical_order(parsed)


def normalize_config(config: NBackConfig) -> NBackConfig:
    """Validate a config and return it with channels in canonical form.

    Invalid values are rejected rather than coerced.
    """

    if isinstance(config.lag, bool) or int(config.lag) != config.lag:
        raise ConfigError("lag must be an integer")
    if config.lag < 1:
        raise ConfigError("lag must be >= 1")
    if isinstance(config.trial_count, bool) or int(config.trial_count) != config.trial_count:
        raise ConfigError("trial_count must be an integer")
    if config.trial_count <= 0:
        raise ConfigError("trial_count must be > 0")
    if config.interval_s <= 0.0:
        raise ConfigError("interval_s must be > 0")
    if not (0.0 <= config.match_probability <= 1.0):
        raise ConfigError("match_probability must be in [0.0, 1.0]")
    if config.countdown_ticks < 0:
        raise ConfigError("countdown_ticks must be >= 0")
    if config.countdown_tick_s <= 0.0:
        raise ConfigError("countdown_tick_s must be > 0")
    if config.feedback_s < 0.0:
        raise ConfigError("feedback_s must be >= 0")

    channels = _parse_channels(config.channels)
    if not channels:
        raise ConfigError("at least one channel must be active")

    return replace(
        config,
        lag=int(config.lag),
        trial_count=int(config.trial_count),
        interval_s=float(config.interval_s),
        channels=channels,
        adaptive=bool(config.adaptive),
        match_probability=float(config.match_probability),
        countdown_ticks=int(config.countdown_ticks),
        countdown_tick_s=float(config.countdown_tick_s),
        feedback_s=float(config.feedback_s),
    )


DAILY_LAGS: tuple[int, ...] = (2, 2, 3, 3, 3, 4, 4, 5)
DAILY_TRIAL_COUNT = 25
DAILY_INTERVAL_S = 2.5


def daily_seed(day: date) -> int:
    seed = 0
    for ch in day.isoformat():
        seed = (seed * 31 + ord(ch)) & 0x7FFFFFFF
    return seed


def daily_challenge(day: date) -> NBackConfig:
    """Deterministic challenge config for a calendar day.

    Everyone playing on the same day gets the same lag and channel set.
    """

    rng = SeededRng(daily_seed(day))
    lag = rng.choice(DAILY_LAGS)
    channel_count = rng.randint(2, 4)
    picked = rng.shuffled(tuple(Channel))[:channel_count]
    return NBackConfig(
        lag=lag,
        channels=canonical_order(picked),
        trial_count=DAILY_TRIAL_COUNT,
        interval_s=DAILY_INTERVAL_S,
    )
