from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from .adaptive import AdaptiveTrace, LevelChange
from .config import NBackConfig
from .evaluator import ChannelResult
from .scoring import ScoreCard
from .stimuli import Channel


@dataclass(frozen=True, slots=True)
class SessionOutput:
    """Immutable summary of a finished session.

    This is everything the persistence collaborator receives; durable records,
    streaks and achievements are derived from it outside the engine.
    """

    seed: int
    lag: int
    channels: tuple[Channel, ...]
    trial_count: int
    interval_s: float
    adaptive: bool

    results: Mapping[Channel, ChannelResult]
    overall_score: float
    xp_earned: int
    max_combo: int
    effective_level: int
    trial_lags: tuple[int, ...]

    starting_level: int | None = None
    ending_level: int | None = None
    level_changes: tuple[LevelChange, ...] = ()

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "seed": int(self.seed),
            "n_level": int(self.lag),
            "active_stimuli": [ch.value for ch in self.channels],
            "trial_count": int(self.trial_count),
            "interval_ms": int(round(self.interval_s * 1000.0)),
            "results": {
                ch.value: {
                    "hits": int(r.hits),
                    "misses": int(r.misses),
                    "false_alarms": int(r.false_alarms),
                }
                for ch, r in self.results.items()
            },
            "overall_score": float(self.overall_score),
            "xp_earned": int(self.xp_earned),
            "max_combo": int(self.max_combo),
            "adaptive": bool(self.adaptive),
        }
        if self.adaptive:
            payload["starting_level"] = self.starting_level
            payload["ending_level"] = self.ending_level
            payload["level_changes"] = [
                {"trial": c.trial_index, "from_level": c.from_level, "to_level": c.to_level}
                for c in self.level_changes
            ]
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), sort_keys=True)


def build_session_output(
    *,
    seed: int,
    config: NBackConfig,
    results: Mapping[Channel, ChannelResult],
    score: ScoreCard,
    trial_lags: tuple[int, ...],
    trace: AdaptiveTrace | None,
) -> SessionOutput:
    """Freeze the finalized session state into a SessionOutput."""

    frozen_results = MappingProxyType({ch: results[ch] for ch in config.channels})
    return SessionOutput(
        seed=int(seed),
        lag=int(config.lag),
        channels=tuple(config.channels),
        trial_count=int(config.trial_count),
        interval_s=float(config.interval_s),
        adaptive=trace is not None,
        results=frozen_results,
        overall_score=float(score.overall_score),
        xp_earned=int(score.xp),
        max_combo=int(score.max_combo),
        effective_level=int(score.effective_level),
        trial_lags=tuple(int(v) for v in trial_lags),
        starting_level=None if trace is None else trace.starting_level,
        ending_level=None if trace is None else trace.ending_level,
        level_changes=() if trace is None else trace.changes,
    )
