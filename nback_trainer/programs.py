from __future__ import annotations

from dataclasses import dataclass

from .config import NBackConfig
from .stimuli import Channel, canonical_order

DEFAULT_REQUIRED_SCORE = 0.7
SKIP_THRESHOLD = 0.9

_P = Channel.POSITION
_A = Channel.AUDIO
_C = Channel.COLOR
_S = Channel.SHAPE
_N = Channel.NUMBER


@dataclass(frozen=True, slots=True)
class ProgramSession:
    day: int
    lag: int
    channels: tuple[Channel, ...]
    trial_count: int
    interval_s: float
    description: str
    adaptive: bool = False
    required_score: float | None = None

    @property
    def required(self) -> float:
        return DEFAULT_REQUIRED_SCORE if self.required_score is None else float(self.required_score)

    def passed(self, overall_score: float) -> bool:
        return overall_score >= self.required

    def to_config(self) -> NBackConfig:
        return NBackConfig(
            lag=self.lag,
            channels=self.channels,
            trial_count=self.trial_count,
            interval_s=self.interval_s,
            adaptive=self.adaptive,
        )


@dataclass(frozen=True, slots=True)
class ProgramStep:
    """Where a program stands after one session day was played."""

    passed: bool
    next_day: int
    skipped_to: int | None
    completed: bool


@dataclass(frozen=True, slots=True)
class ProgramTemplate:
    id: str
    name: str
    description: str
    difficulty: str
    sessions: tuple[ProgramSession, ...]

    @property
    def total_days(self) -> int:
        return len(self.sessions)

    def session_for(self, day: int) -> ProgramSession:
        if not (1 <= day <= self.total_days):
            raise ValueError(f"{self.id} has no day {day}")
        return self.sessions[day - 1]

    def phase_starts(self) -> tuple[int, ...]:
        """Days on which the lag or the channel set changes."""

        starts: list[int] = []
        prev: tuple[int, frozenset[Channel]] | None = None
        for s in self.sessions:
            key = (s.lag, frozenset(s.channels))
            if key != prev:
                starts.append(s.day)
            prev = key
        return tuple(starts)

    def skip_target(self, current_day: int) -> int:
        for start in self.phase_starts():
            if start > current_day:
                return start
        return self.total_days


def can_skip(overall_score: float) -> bool:
    return overall_score >= SKIP_THRESHOLD


def advance(template: ProgramTemplate, current_day: int, overall_score: float) -> ProgramStep:
    """Apply one finished session to a program.

    A failed day is repeated. A pass moves to the next day, or to the start
    of the next phase when the score clears SKIP_THRESHOLD.
    """

    session = template.session_for(current_day)
    if not session.passed(overall_score):
        return ProgramStep(passed=False, next_day=current_day, skipped_to=None, completed=False)

    next_day = current_day + 1
    skipped_to: int | None = None
    if can_skip(overall_score):
        target = template.skip_target(current_day)
        if target > next_day:
            skipped_to = target
            next_day = target

    completed = next_day > template.total_days
    return ProgramStep(
        passed=True,
        next_day=template.total_days if completed else next_day,
        skipped_to=skipped_to,
        completed=completed,
    )


def _day(
    day: int,
    lag: int,
    channels: tuple[Channel, ...],
    trial_count: int,
    interval_s: float,
    description: str,
    *,
    adaptive: bool = False,
) -> ProgramSession:
    return ProgramSession(
        day=day,
        lag=lag,
        channels=canonical_order(channels),
        trial_count=trial_count,
        interval_s=interval_s,
        description=description,
        adaptive=adaptive,
    )


PROGRAM_TEMPLATES: tuple[ProgramTemplate, ...] = (
    ProgramTemplate(
        id="beginner",
        name="Beginner Foundation",
        description="Start with 2-back dual stimuli and work up to 3-back.",
        difficulty="beginner",
        sessions=(
            _day(1, 2, (_P, _A), 20, 3.0, "Introduction: 2-back with position + audio at a relaxed pace"),
            _day(2, 2, (_P, _A), 20, 3.0, "Practice: same setup, build confidence"),
            _day(3, 2, (_P, _A), 25, 3.0, "Extend: more trials for endurance"),
            _day(4, 2, (_P, _A), 25, 2.5, "Speed up: faster interval"),
            _day(5, 2, (_P, _A), 25, 2.5, "Consolidate at 2.5s pace"),
            _day(6, 2, (_P, _A, _C), 20, 3.0, "Add color: triple stimuli at relaxed pace"),
            _day(7, 2, (_P, _A, _C), 25, 3.0, "Practice: triple stimuli"),
            _day(8, 2, (_P, _A, _C), 25, 2.5, "Speed up triple stimuli"),
            _day(9, 2, (_P, _A, _C), 30, 2.5, "Endurance: 30 trials"),
            _day(10, 2, (_P, _A, _C), 25, 2.5, "Checkpoint: consolidate 2-back skills"),
            _day(11, 3, (_P, _A), 20, 3.0, "Level up: 3-back with dual stimuli"),
            _day(12, 3, (_P, _A), 20, 3.0, "Practice 3-back"),
            _day(13, 3, (_P, _A), 25, 3.0, "Extend 3-back"),
            _day(14, 3, (_P, _A), 25, 2.5, "Speed up 3-back"),
            _day(15, 3, (_P, _A), 25, 2.5, "Consolidate 3-back"),
            _day(16, 3, (_P, _A, _C), 20, 3.0, "Triple 3-back: add color"),
            _day(17, 3, (_P, _A, _C), 25, 3.0, "Practice triple 3-back"),
            _day(18, 3, (_P, _A, _C), 25, 2.5, "Speed up triple 3-back"),
            _day(19, 3, (_P, _A, _C), 30, 2.5, "Endurance: 30 trials of triple 3-back"),
            _day(20, 3, (_P, _A, _C), 25, 2.5, "Final: prove your 3-back mastery"),
        ),
    ),
    ProgramTemplate(
        id="intermediate",
        name="Intermediate Builder",
        description="Push from 3-back to 4-back while adding stimulus complexity.",
        difficulty="intermediate",
        sessions=(
            _day(1, 3, (_P, _A), 25, 2.5, "Warm-up: 3-back dual"),
            _day(2, 3, (_P, _A, _C), 25, 2.5, "Add color to 3-back"),
            _day(3, 3, (_P, _A, _C), 30, 2.5, "Endurance: 30 trials triple 3-back"),
            _day(4, 3, (_P, _A, _C, _S), 25, 3.0, "Quad stimuli 3-back"),
            _day(5, 3, (_P, _A, _C, _S), 25, 2.5, "Speed up quad 3-back"),
            _day(6, 3, (_P, _A, _C, _S), 30, 2.5, "Endurance quad 3-back"),
            _day(7, 3, (_P, _A, _C, _S), 25, 2.5, "Adaptive: let the system challenge you", adaptive=True),
            _day(8, 4, (_P, _A), 20, 3.0, "Level up: 4-back dual"),
            _day(9, 4, (_P, _A), 25, 3.0, "Practice 4-back dual"),
            _day(10, 4, (_P, _A), 25, 2.5, "Speed up 4-back dual"),
            _day(11, 4, (_P, _A), 30, 2.5, "Endurance 4-back dual"),
            _day(12, 4, (_P, _A, _C), 25, 3.0, "Triple 4-back"),
            _day(13, 4, (_P, _A, _C), 25, 2.5, "Speed up triple 4-back"),
            _day(14, 4, (_P, _A, _C), 30, 2.5, "Endurance triple 4-back"),
            _day(15, 4, (_P, _A, _C), 25, 2.5, "Adaptive triple challenge", adaptive=True),
            _day(16, 4, (_P, _A, _C, _S), 25, 3.0, "Quad 4-back"),
            _day(17, 4, (_P, _A, _C, _S), 25, 2.5, "Speed up quad 4-back"),
            _day(18, 4, (_P, _A, _C, _S), 30, 2.5, "Endurance quad 4-back"),
            _day(19, 4, (_P, _A, _C, _S), 25, 2.5, "Adaptive quad challenge", adaptive=True),
            _day(20, 4, (_P, _A, _C, _S), 30, 2.5, "Final: prove your 4-back mastery"),
        ),
    ),
    ProgramTemplate(
        id="advanced",
        name="Advanced Mastery",
        description="Master 4-back and push into 5-back with 4-5 stimulus types.",
        difficulty="advanced",
        sessions=(
            _day(1, 4, (_P, _A, _C), 25, 2.5, "Warm-up: 4-back triple"),
            _day(2, 4, (_P, _A, _C, _S), 25, 2.5, "Quad 4-back"),
            _day(3, 4, (_P, _A, _C, _S, _N), 25, 3.0, "All 5 stimuli at 4-back"),
            _day(4, 4, (_P, _A, _C, _S, _N), 25, 2.5, "Speed up quintuple 4-back"),
            _day(5, 4, (_P, _A, _C, _S, _N), 30, 2.5, "Endurance quintuple 4-back"),
            _day(6, 4, (_P, _A, _C, _S, _N), 25, 2.5, "Adaptive quintuple challenge", adaptive=True),
            _day(7, 5, (_P, _A), 20, 3.0, "Level up: 5-back dual"),
            _day(8, 5, (_P, _A), 25, 3.0, "Practice 5-back dual"),
            _day(9, 5, (_P, _A), 25, 2.5, "Speed up 5-back dual"),
            _day(10, 5, (_P, _A, _C), 25, 3.0, "Triple 5-back"),
            _day(11, 5, (_P, _A, _C), 25, 2.5, "Speed up triple 5-back"),
            _day(12, 5, (_P, _A, _C, _S), 25, 3.0, "Quad 5-back"),
            _day(13, 5, (_P, _A, _C, _S), 25, 2.5, "Speed up quad 5-back"),
            _day(14, 5, (_P, _A, _C, _S), 30, 2.5, "Endurance quad 5-back"),
            _day(15, 5, (_P, _A, _C, _S), 25, 2.5, "Adaptive quad 5-back", adaptive=True),
            _day(16, 5, (_P, _A, _C, _S, _N), 25, 3.0, "Quintuple 5-back"),
            _day(17, 5, (_P, _A, _C, _S, _N), 25, 2.5, "Speed up quintuple 5-back"),
            _day(18, 5, (_P, _A, _C, _S, _N), 30, 2.5, "Endurance quintuple 5-back"),
            _day(19, 5, (_P, _A, _C, _S, _N), 25, 2.0, "Sprint: fast quintuple 5-back"),
            _day(20, 5, (_P, _A, _C, _S, _N), 30, 2.5, "Final: adaptive quintuple challenge", adaptive=True),
        ),
    ),
)


def get_template(template_id: str) -> ProgramTemplate | None:
    for t in PROGRAM_TEMPLATES:
        if t.id == template_id:
            return t
    return None
