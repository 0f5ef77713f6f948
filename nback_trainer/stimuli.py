from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import StrEnum


class Channel(StrEnum):
    POSITION = "position"
    COLOR = "color"
    SHAPE = "shape"
    NUMBER = "number"
    AUDIO = "audio"


GRID_SIZE = 3
GRID_POSITIONS = GRID_SIZE * GRID_SIZE

POSITIONS: tuple[int, ...] = tuple(range(GRID_POSITIONS))
COLORS: tuple[str, ...] = (
    "red",
    "blue",
    "green",
    "yellow",
    "purple",
    "orange",
    "cyan",
    "pink",
)
SHAPES: tuple[str, ...] = (
    "circle",
    "square",
    "triangle",
    "diamond",
    "star",
    "hexagon",
    "cross",
    "pentagon",
)
NUMBERS: tuple[int, ...] = tuple(range(1, 10))
LETTERS: tuple[str, ...] = ("B", "C", "D", "F", "G", "H", "K", "L", "M", "N", "P", "Q", "R", "S", "T")

CHANNEL_VALUES: dict[Channel, tuple[object, ...]] = {
    Channel.POSITION: POSITIONS,
    Channel.COLOR: COLORS,
    Channel.SHAPE: SHAPES,
    Channel.NUMBER: NUMBERS,
    Channel.AUDIO: LETTERS,
}

CHANNEL_KEYS: dict[str, Channel] = {
    "a": Channel.POSITION,
    "s": Channel.COLOR,
    "d": Channel.SHAPE,
    "j": Channel.NUMBER,
    "l": Channel.AUDIO,
}

CHANNEL_LABELS: dict[Channel, str] = {
    Channel.POSITION: "Position",
    Channel.COLOR: "Color",
    Channel.SHAPE: "Shape",
    Channel.NUMBER: "Number",
    Channel.AUDIO: "Audio",
}


@dataclass(frozen=True, slots=True)
class Stimulus:
    """One trial's value on every channel, active or not."""

    position: int
    color: str
    shape: str
    number: int
    audio: str

    def value(self, channel: Channel) -> object:
        return getattr(self, Channel(channel).value)

    def with_value(self, channel: Channel, value: object) -> Stimulus:
        return replace(self, **{Channel(channel).value: value})


def parse_channel(raw: object) -> Channel | None:
    """Map a channel name (any case) or Channel to a Channel; None if unknown."""

    if isinstance(raw, Channel):
        return raw
    token = str(raw).strip().lower()
    try:
        return Channel(token)
    except ValueError:
        return None


def channel_for_key(key: str) -> Channel | None:
    return CHANNEL_KEYS.get(str(key).strip().lower())


def key_for_channel(channel: Channel) -> str:
    for key, ch in CHANNEL_KEYS.items():
        if ch is channel:
            return key
    raise KeyError(channel)


def canonical_order(channels: Iterable[Channel]) -> tuple[Channel, ...]:
    """Sort a collection of channels into declaration order, dropping repeats."""

    wanted = set(channels)
    return tuple(ch for ch in Channel if ch in wanted)
