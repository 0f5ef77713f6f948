"""Pygame host for the N-Back trainer.

The screen stack renders session snapshots and forwards match keys to the
session. Deterministic timing/scoring/RNG/state lives in nback_trainer/*
(core modules); nothing here changes trial data.
"""

from __future__ import annotations

import logging
import math
import os
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Protocol

import pygame

from .clock import RealClock
from .cognitive_core import Phase
from .config import NBackConfig, daily_challenge, daily_seed
from .evaluator import Outcome
from .programs import PROGRAM_TEMPLATES, ProgramTemplate, advance
from .results import SessionOutput
from .session import NBackSession, SessionSnapshot
from .stimuli import (
    CHANNEL_LABELS,
    GRID_SIZE,
    Channel,
    Stimulus,
    channel_for_key,
    key_for_channel,
)

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "NBACK_LOG_LEVEL"

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)

STIMULUS_RGB: dict[str, tuple[int, int, int]] = {
    "red": (196, 92, 78),
    "blue": (87, 127, 181),
    "green": (83, 141, 78),
    "yellow": (196, 160, 53),
    "purple": (139, 110, 174),
    "orange": (196, 122, 62),
    "cyan": (74, 158, 168),
    "pink": (181, 100, 138),
}

OUTCOME_RGB: dict[Outcome, tuple[int, int, int]] = {
    Outcome.HIT: (83, 180, 98),
    Outcome.MISS: (214, 150, 60),
    Outcome.FALSE_ALARM: (214, 72, 72),
    Outcome.CORRECT_REJECTION: (62, 84, 152),
}

_POLYGON_SIDES = {"triangle": 3, "diamond": 4, "pentagon": 5, "hexagon": 6}


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the root screen; it handles its own quit.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            if self._items:
                self._items[self._selected].action()
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            if self._is_root:
                self._app.quit()
            else:
                self._app.pop()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)

        margin = max(10, min(26, w // 34))
        frame = pygame.Rect(margin, margin, max(260, w - margin * 2), max(220, h - margin * 2))
        pygame.draw.rect(surface, PANEL_BG, frame)
        pygame.draw.rect(surface, BORDER, frame, 2)

        title = self._title_font.render(self._title, True, TEXT_MAIN)
        surface.blit(title, title.get_rect(midtop=(frame.centerx, frame.y + 18)))

        row_h = 40
        y = frame.y + 90
        for idx, item in enumerate(self._items):
            row = pygame.Rect(frame.x + 60, y, frame.w - 120, row_h)
            selected = idx == self._selected
            pygame.draw.rect(surface, (244, 248, 255) if selected else (9, 20, 106), row)
            pygame.draw.rect(surface, (62, 84, 152), row, 1)
            color = (14, 26, 74) if selected else TEXT_MAIN
            text = self._item_font.render(item.label, True, color)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += row_h + 8

        foot = self._hint_font.render("Enter/Space: Select  |  Esc/Backspace: Back", True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))


class NBackScreen:
    def __init__(
        self,
        app: App,
        *,
        session: NBackSession,
        config: NBackConfig,
        title: str = "",
        on_finished: Callable[[SessionOutput], None] | None = None,
    ) -> None:
        self._app = app
        self._session = session
        self._title = title
        self._on_finished = on_finished
        self._reported = False
        self._big_font = pygame.font.Font(None, 72)
        self._mid_font = pygame.font.Font(None, 40)
        self._small_font = pygame.font.Font(None, 24)
        self._session.start(config)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        phase = self._session.phase
        if event.key == pygame.K_ESCAPE:
            self._session.cancel()
            self._app.pop()
            return
        if phase.is_terminal:
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                self._app.pop()
            return
        channel = channel_for_key(getattr(event, "unicode", "") or pygame.key.name(event.key))
        if channel is not None:
            self._session.signal(channel)

    def render(self, surface: pygame.Surface) -> None:
        self._session.update()
        snap = self._session.snapshot()
        surface.fill(BG)

        out = self._session.output()
        if out is not None and not self._reported:
            self._reported = True
            if self._on_finished is not None:
                self._on_finished(out)

        if snap.phase is Phase.COUNTDOWN:
            self._render_centered(surface, str(snap.countdown_remaining), self._big_font)
            if self._title:
                img = self._mid_font.render(self._title, True, TEXT_MUTED)
                surface.blit(img, img.get_rect(midtop=(surface.get_width() // 2, 40)))
        elif snap.phase in (Phase.PLAYING, Phase.FEEDBACK):
            self._render_trial(surface, snap)
        elif snap.phase is Phase.RESULTS:
            self._render_results(surface)
        elif snap.phase is Phase.CANCELLED:
            self._render_centered(surface, "Session cancelled. Press Enter to return.", self._mid_font)

    def _render_centered(self, surface: pygame.Surface, text: str, font: pygame.font.Font) -> None:
        img = font.render(text, True, TEXT_MAIN)
        surface.blit(img, img.get_rect(center=surface.get_rect().center))

    def _render_trial(self, surface: pygame.Surface, snap: SessionSnapshot) -> None:
        w, h = surface.get_size()
        side = min(h - 140, w // 2)
        grid = pygame.Rect(40, 40, side, side)
        cell = side // GRID_SIZE

        stim = snap.stimulus
        feedback = snap.last_feedback if snap.phase is Phase.FEEDBACK else None
        for pos in range(GRID_SIZE * GRID_SIZE):
            r = pygame.Rect(grid.x + (pos % GRID_SIZE) * cell, grid.y + (pos // GRID_SIZE) * cell, cell, cell)
            pygame.draw.rect(surface, PANEL_BG, r.inflate(-6, -6))
            pygame.draw.rect(surface, (62, 84, 152), r.inflate(-6, -6), 1)
            if stim is not None and pos == stim.position and snap.phase is Phase.PLAYING:
                self._draw_stimulus(surface, r.inflate(-18, -18), stim)

        header = f"{snap.level}-back   trial {snap.trial_index + 1}/{snap.trial_count}"
        surface.blit(self._mid_font.render(header, True, TEXT_MAIN), (grid.right + 40, 40))
        combo = f"Combo {snap.combo}   best {snap.max_combo}"
        surface.blit(self._small_font.render(combo, True, TEXT_MUTED), (grid.right + 40, 86))
        if stim is not None and Channel.AUDIO in snap.channels and snap.phase is Phase.PLAYING:
            letter = self._big_font.render(stim.audio, True, TEXT_MAIN)
            surface.blit(letter, (grid.right + 40, 120))

        # Match buttons: one per active channel, flashing with the last outcome.
        x = 40
        y = grid.bottom + 20
        for ch in snap.channels:
            btn = pygame.Rect(x, y, 150, 44)
            color = PANEL_BG
            if feedback is not None and ch in feedback.outcomes:
                color = OUTCOME_RGB[feedback.outcomes[ch]]
            elif ch in snap.signaled:
                color = (120, 142, 196)
            pygame.draw.rect(surface, color, btn)
            pygame.draw.rect(surface, BORDER, btn, 1)
            label = f"{CHANNEL_LABELS[ch]} ({key_for_channel(ch).upper()})"
            img = self._small_font.render(label, True, TEXT_MAIN)
            surface.blit(img, img.get_rect(center=btn.center))
            x += 162

    def _draw_stimulus(self, surface: pygame.Surface, rect: pygame.Rect, stim: Stimulus) -> None:
        rgb = STIMULUS_RGB.get(stim.color, TEXT_MAIN)
        cx, cy = rect.center
        radius = rect.w // 2
        if stim.shape == "circle":
            pygame.draw.circle(surface, rgb, rect.center, radius)
        elif stim.shape == "square":
            pygame.draw.rect(surface, rgb, rect)
        elif stim.shape == "cross":
            bar = max(4, rect.w // 3)
            pygame.draw.rect(surface, rgb, pygame.Rect(cx - bar // 2, rect.y, bar, rect.h))
            pygame.draw.rect(surface, rgb, pygame.Rect(rect.x, cy - bar // 2, rect.w, bar))
        elif stim.shape == "star":
            points = []
            for k in range(10):
                r = radius if k % 2 == 0 else radius * 0.45
                a = -math.pi / 2 + k * math.pi / 5
                points.append((cx + r * math.cos(a), cy + r * math.sin(a)))
            pygame.draw.polygon(surface, rgb, points)
        else:
            sides = _POLYGON_SIDES.get(stim.shape, 6)
            points = [
                (cx + radius * math.cos(-math.pi / 2 + k * 2 * math.pi / sides),
                 cy + radius * math.sin(-math.pi / 2 + k * 2 * math.pi / sides))
                for k in range(sides)
            ]
            pygame.draw.polygon(surface, rgb, points)
        num = self._mid_font.render(str(stim.number), True, (14, 26, 74))
        surface.blit(num, num.get_rect(center=rect.center))

    def _render_results(self, surface: pygame.Surface) -> None:
        out = self._session.output()
        if out is None:
            return
        lines = [
            "Results",
            "",
            f"Score: {out.overall_score * 100.0:.0f}%   XP: {out.xp_earned}   Max combo: {out.max_combo}",
        ]
        for ch, r in out.results.items():
            lines.append(f"{CHANNEL_LABELS[ch]}: {r.hits} hits  {r.misses} misses  {r.false_alarms} false alarms")
        if out.adaptive:
            lines.append(f"Level {out.starting_level} -> {out.ending_level} ({len(out.level_changes)} changes)")
        lines += ["", "Press Enter to return."]
        y = 60
        for line in lines:
            img = self._small_font.render(line, True, TEXT_MAIN)
            surface.blit(img, (60, y))
            y += 30


def _configure_logging() -> None:
    level_name = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    if not level_name:
        return
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    _configure_logging()
    pygame.init()

    pygame.display.set_caption("N-Back Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()
    real_clock = RealClock()

    app = App(surface=surface, font=font)

    def open_session(
        config: NBackConfig,
        seed: int | None = None,
        *,
        title: str = "",
        on_finished: Callable[[SessionOutput], None] | None = None,
    ) -> None:
        session = NBackSession(clock=real_clock, seed=_new_seed() if seed is None else seed)
        app.push(NBackScreen(app, session=session, config=config, title=title, on_finished=on_finished))

    # Program progress lives for this run only; nothing is persisted.
    program_days = {t.id: 1 for t in PROGRAM_TEMPLATES}

    def open_program_day(template: ProgramTemplate) -> None:
        day = program_days[template.id]
        session = template.session_for(day)

        def finished(out: SessionOutput) -> None:
            step = advance(template, day, out.overall_score)
            program_days[template.id] = step.next_day
            logger.info(
                "program %s day %d: score=%.3f passed=%s next_day=%d",
                template.id,
                day,
                out.overall_score,
                step.passed,
                step.next_day,
            )

        open_session(
            session.to_config(),
            title=f"{template.name}, day {day}: {session.description}",
            on_finished=finished,
        )

    program_items = [MenuItem(t.name, lambda t=t: open_program_day(t)) for t in PROGRAM_TEMPLATES]

    main_items = [
        MenuItem("Dual 2-back", lambda: open_session(NBackConfig())),
        MenuItem(
            "Adaptive (starts at 2-back)",
            lambda: open_session(NBackConfig(trial_count=30, adaptive=True)),
        ),
        MenuItem(
            "Triple 3-back",
            lambda: open_session(
                NBackConfig(lag=3, channels=(Channel.POSITION, Channel.COLOR, Channel.AUDIO), trial_count=25)
            ),
        ),
        MenuItem(
            "Daily challenge",
            lambda: open_session(daily_challenge(date.today()), daily_seed(date.today())),
        ),
        MenuItem("Training programs", lambda: app.push(MenuScreen(app, "Training Programs", program_items))),
        MenuItem("Quit", app.quit),
    ]
    app.push(MenuScreen(app, "N-Back Trainer", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        pygame.quit()

    return 0
