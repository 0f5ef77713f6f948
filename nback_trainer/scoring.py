from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from .cognitive_core import clamp01, round_half_up
from .evaluator import ChannelResult, Outcome
from .stimuli import Channel

COMBO_CAP = 10
COMBO_STEP = 0.1
XP_PER_LEVEL = 10


@dataclass(frozen=True, slots=True)
class ScoreCard:
    overall_score: float
    max_combo: int
    combo_multiplier: float
    effective_level: int
    xp: int


def accuracy(result: ChannelResult) -> float:
    total = result.judged
    if total == 0:
        return 1.0
    return result.hits / total


def overall_score(
    results: Mapping[Channel, ChannelResult],
    channels: Sequence[Channel] | None = None,
) -> float:
    """Unweighted mean of per-channel accuracy over the active channels."""

    picked = tuple(results) if channels is None else tuple(channels)
    if not picked:
        return 0.0
    total = 0.0
    for ch in picked:
        total += accuracy(results.get(ch, ChannelResult()))
    return total / len(picked)


def combo_multiplier(max_combo: int) -> float:
    # 1.0 with no combo, capped at 2.0 from COMBO_CAP onwards.
    return 1.0 + min(max(0, int(max_combo)), COMBO_CAP) * COMBO_STEP


def xp_award(*, effective_level: int, overall_score: float, max_combo: int) -> int:
    base = effective_level * XP_PER_LEVEL * clamp01(overall_score)
    return max(0, round_half_up(base * combo_multiplier(max_combo)))


def next_combo(combo: int, outcomes: Iterable[Outcome]) -> int:
    """Combo after one scorable trial.

    Any miss or false alarm resets it. Everything else extends it, including
    trials that were correct rejections on every channel.
    """

    if any(o.is_error for o in outcomes):
        return 0
    return combo + 1


def score_session(
    results: Mapping[Channel, ChannelResult],
    *,
    channels: Sequence[Channel],
    effective_level: int,
    max_combo: int,
) -> ScoreCard:
    score = overall_score(results, channels)
    return ScoreCard(
        overall_score=score,
        max_combo=int(max_combo),
        combo_multiplier=combo_multiplier(max_combo),
        effective_level=int(effective_level),
        xp=xp_award(effective_level=effective_level, overall_score=score, max_combo=max_combo),
    )
