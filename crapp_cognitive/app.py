"""Pygame host shell for the cognitive test engines.

The shell is only a render target and input source: each test screen owns one
engine, passes itself as the engine's container, forwards the variant's single
input channel and draws whatever ``snapshot()`` reports. Timing, scoring and
state live in crapp_cognitive/* (core modules); submission of results is the
surrounding questionnaire's job, so the shell only logs the final payload.
"""

from __future__ import annotations

import json
import logging
import os
import random
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import pygame

from .clock import RealClock
from .cognitive_core import CognitiveTestEngine, RunState, TestSnapshot
from .continuous_performance import CPTPayload, ContinuousPerformanceTest, build_cpt_test
from .digit_span import DigitSpanPayload, DigitSpanTest, build_digit_span_test
from .results import summary_payload
from .trail_making import TrailMakingPayload, TrailMakingTest, build_trail_making_test

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60
SEED_ENV = "CRAPP_COGNITIVE_SEED"

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)


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
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            screen = self._screens.pop()
            close = getattr(screen, "close", None)
            if close is not None:
                close()

    def quit(self) -> None:
        for screen in reversed(self._screens):
            close = getattr(screen, "close", None)
            if close is not None:
                close()
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

        frame = pygame.Rect(20, 20, max(260, w - 40), max(220, h - 40))
        pygame.draw.rect(surface, PANEL_BG, frame)
        pygame.draw.rect(surface, BORDER, frame, 2)

        title = self._title_font.render(self._title, True, TEXT_MAIN)
        surface.blit(title, title.get_rect(midtop=(frame.centerx, frame.y + 16)))

        y = frame.y + 90
        for idx, item in enumerate(self._items):
            row = pygame.Rect(frame.x + 40, y, frame.w - 80, 40)
            selected = idx == self._selected
            if selected:
                pygame.draw.rect(surface, (244, 248, 255), row)
            else:
                pygame.draw.rect(surface, (62, 84, 152), row, 1)
            color = (14, 26, 74) if selected else TEXT_MAIN
            text = self._item_font.render(item.label, True, color)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += 50

        foot = self._hint_font.render("Enter/Space: Select  |  Esc/Backspace: Back", True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))


class CognitiveTestScreen:
    """Hosts one engine: intro -> running -> ended, then Enter/Esc returns."""

    def __init__(self, app: App, *, engine_factory: Callable[[object], CognitiveTestEngine]) -> None:
        self._app = app
        self._engine = engine_factory(self)
        self._engine.on_test_end(self._on_test_end)
        self._canvas_rect: pygame.Rect | None = None

        self._small_font = pygame.font.Font(None, 26)
        self._big_font = pygame.font.Font(None, 160)
        self._mid_font = pygame.font.Font(None, 52)

    @property
    def engine(self) -> CognitiveTestEngine:
        return self._engine

    def close(self) -> None:
        self._engine.dispose()

    def _on_test_end(self, result: object) -> None:
        payload = summary_payload(result)  # type: ignore[arg-type]
        logger.info("%s result: %s", self._engine.title, json.dumps(payload, default=str))

    # ----- input -------------------------------------------------------------------

    def handle_event(self, event: pygame.event.Event) -> None:
        engine = self._engine
        state = engine.state

        if event.type == pygame.KEYDOWN:
            if event.key == pygame.K_ESCAPE:
                if state is RunState.RUNNING:
                    engine.force_complete()
                else:
                    self._app.pop()
                return
            if state is RunState.INTRO and event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                engine.start()
                return
            if state is RunState.ENDED and event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                self._app.pop()
                return

        if state is not RunState.RUNNING:
            return

        if isinstance(engine, ContinuousPerformanceTest):
            if event.type == pygame.KEYDOWN and event.key == pygame.K_SPACE:
                engine.respond()
            elif event.type in (pygame.MOUSEBUTTONDOWN, pygame.FINGERDOWN):
                engine.respond()
        elif isinstance(engine, TrailMakingTest):
            if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
                pos = self._to_canvas(event.pos)
                if pos is not None:
                    engine.click(*pos)
        elif isinstance(engine, DigitSpanTest):
            if event.type != pygame.KEYDOWN:
                return
            # The engine owns the entry buffer and resets it for every trial.
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                engine.submit()
            elif event.key == pygame.K_BACKSPACE:
                engine.type_input(engine.entry[:-1])
            elif event.unicode and event.unicode.isdigit():
                engine.type_input(engine.entry + event.unicode)

    def _to_canvas(self, pos: tuple[int, int]) -> tuple[float, float] | None:
        rect = self._canvas_rect
        payload = self._engine.snapshot().payload
        if rect is None or not isinstance(payload, TrailMakingPayload) or not rect.collidepoint(pos):
            return None
        sx = payload.canvas_width / rect.w
        sy = payload.canvas_height / rect.h
        return (pos[0] - rect.x) * sx, (pos[1] - rect.y) * sy

    # ----- drawing -----------------------------------------------------------------

    def render(self, surface: pygame.Surface) -> None:
        self._engine.update()
        snap = self._engine.snapshot()

        surface.fill(BG)
        w, h = surface.get_size()

        title = self._small_font.render(snap.title, True, TEXT_MUTED)
        surface.blit(title, (20, 14))
        if snap.time_remaining_ms is not None:
            total_s = int(round(snap.time_remaining_ms / 1000.0))
            timer = self._small_font.render(f"Time Remaining: {total_s // 60}:{total_s % 60:02d}", True, TEXT_MAIN)
            surface.blit(timer, timer.get_rect(topright=(w - 20, 14)))

        p = snap.payload
        if isinstance(p, CPTPayload):
            self._render_cpt(surface, snap, p)
        elif isinstance(p, TrailMakingPayload):
            self._render_trail(surface, snap, p)
        elif isinstance(p, DigitSpanPayload):
            self._render_digit_span(surface, snap, p)
        else:
            self._canvas_rect = None
            self._render_lines(surface, snap.prompt.split("\n"), top=60)

        hint = self._small_font.render(snap.input_hint, True, TEXT_MUTED)
        surface.blit(hint, hint.get_rect(midbottom=(w // 2, h - 12)))

    def _render_lines(self, surface: pygame.Surface, lines: list[str], *, top: int) -> None:
        y = top
        for line in lines:
            text = self._small_font.render(line, True, TEXT_MAIN)
            surface.blit(text, (40, y))
            y += text.get_height() + 6

    def _render_cpt(self, surface: pygame.Surface, snap: TestSnapshot, p: CPTPayload) -> None:
        w, h = surface.get_size()
        box = pygame.Rect(0, 0, 260, 260)
        box.center = (w // 2, h // 2)
        pygame.draw.rect(surface, PANEL_BG, box)
        pygame.draw.rect(surface, BORDER, box, 2)
        if p.stimulus is not None:
            glyph = self._big_font.render(p.stimulus, True, TEXT_MAIN)
            surface.blit(glyph, glyph.get_rect(center=box.center))
        note = self._small_font.render(f"Press Space for '{p.target_symbol}' only", True, TEXT_MUTED)
        surface.blit(note, note.get_rect(midtop=(w // 2, box.bottom + 16)))

    def _render_trail(self, surface: pygame.Surface, snap: TestSnapshot, p: TrailMakingPayload) -> None:
        w, h = surface.get_size()
        avail_w, avail_h = w - 80, h - 110
        scale = min(avail_w / p.canvas_width, avail_h / p.canvas_height)
        rect = pygame.Rect(0, 0, int(p.canvas_width * scale), int(p.canvas_height * scale))
        rect.center = (w // 2, h // 2 + 10)
        self._canvas_rect = rect
        pygame.draw.rect(surface, (244, 248, 255), rect)

        def at(x: float, y: float) -> tuple[int, int]:
            return rect.x + int(x * scale), rect.y + int(y * scale)

        joined = p.items[: p.connected]
        for a, b in zip(joined, joined[1:]):
            pygame.draw.line(surface, (74, 111, 165), at(a.x, a.y), at(b.x, b.y), 2)

        for item in p.items:
            center = at(item.x, item.y)
            radius = max(6, int(item.radius * scale))
            fill = (90, 154, 104) if item.item_id <= p.connected else (255, 255, 255)
            pygame.draw.circle(surface, fill, center, radius)
            pygame.draw.circle(surface, (51, 51, 51), center, radius, 1)
            label = self._small_font.render(item.label, True, (51, 51, 51))
            surface.blit(label, label.get_rect(center=center))

        header = self._small_font.render(f"{snap.prompt}   Errors: {p.errors}", True, TEXT_MAIN)
        surface.blit(header, (20, 40))

    def _render_digit_span(self, surface: pygame.Surface, snap: TestSnapshot, p: DigitSpanPayload) -> None:
        w, h = surface.get_size()
        status = self._small_font.render(f"Span {p.span}  |  Trial {p.trial}", True, TEXT_MUTED)
        surface.blit(status, (20, 40))
        if p.display_digit is not None:
            glyph = self._big_font.render(p.display_digit, True, TEXT_MAIN)
            surface.blit(glyph, glyph.get_rect(center=(w // 2, h // 2)))
            return
        prompt = self._mid_font.render(snap.prompt, True, TEXT_MAIN)
        surface.blit(prompt, prompt.get_rect(center=(w // 2, h // 2 - 50)))
        if p.accepting_input or p.feedback is not None:
            entry = self._mid_font.render(p.entry or "_", True, TEXT_MAIN)
            surface.blit(entry, entry.get_rect(center=(w // 2, h // 2 + 20)))


def _new_seed() -> int:
    fixed = os.environ.get(SEED_ENV, "").strip()
    if fixed:
        try:
            return int(fixed)
        except ValueError:
            logger.warning("Ignoring non-integer %s=%r", SEED_ENV, fixed)
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    pygame.init()

    pygame.display.set_caption("CRAPP Cognitive Tests")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)
    real_clock = RealClock()

    def open_cpt() -> None:
        seed = _new_seed()
        app.push(
            CognitiveTestScreen(
                app,
                engine_factory=lambda container: build_cpt_test(clock=real_clock, seed=seed, container=container),
            )
        )

    def open_trail_making() -> None:
        seed = _new_seed()
        app.push(
            CognitiveTestScreen(
                app,
                engine_factory=lambda container: build_trail_making_test(
                    clock=real_clock,
                    seed=seed,
                    container=container,
                ),
            )
        )

    def open_digit_span() -> None:
        seed = _new_seed()
        app.push(
            CognitiveTestScreen(
                app,
                engine_factory=lambda container: build_digit_span_test(
                    clock=real_clock,
                    seed=seed,
                    container=container,
                ),
            )
        )

    main_items = [
        MenuItem("Continuous Performance Test", open_cpt),
        MenuItem("Trail Making Test", open_trail_making),
        MenuItem("Digit Span Test", open_digit_span),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "Cognitive Tests", main_items, is_root=True))

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
