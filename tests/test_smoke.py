"""Smoke tests for the pygame UI.

These tests verify that the application's main loop can initialise and
execute a handful of frames without crashing when the SDL dummy video
driver is used. Engines inside screens run on a fake clock where timing
matters; the menu loop itself runs on real time for a few frames only.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

# Use the dummy drivers before importing pygame or the application
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def test_app_runs_headless() -> None:
    """Ensure the application can start and run a few frames headlessly."""
    # Import inside the test so that environment variables take effect
    from crapp_cognitive.app import run

    exit_code = run(max_frames=3)
    assert exit_code == 0


def test_digit_span_screen_forwards_keys_to_engine() -> None:
    import pygame

    from crapp_cognitive.app import App, CognitiveTestScreen, MenuScreen
    from crapp_cognitive.cognitive_core import RunState
    from crapp_cognitive.digit_span import DigitSpanConfig, DigitSpanStage, build_digit_span_test

    pygame.init()
    try:
        surface = pygame.Surface((960, 540))
        app = App(surface=surface, font=pygame.font.Font(None, 36))
        app.push(MenuScreen(app, "Root", [], is_root=True))

        clock = FakeClock()
        cfg = DigitSpanConfig(initial_span=3, pre_sequence_delay_ms=50.0, display_time_per_digit_ms=100.0,
                              inter_digit_interval_ms=50.0)
        screen = CognitiveTestScreen(
            app,
            engine_factory=lambda container: build_digit_span_test(
                clock=clock, seed=12, container=container, options=cfg
            ),
        )
        app.push(screen)
        engine = screen.engine
        assert engine.container is screen

        def key(k: int, uni: str = "") -> pygame.event.Event:
            return pygame.event.Event(pygame.KEYDOWN, {"key": k, "unicode": uni})

        app.handle_event(key(pygame.K_RETURN, "\r"))
        assert engine.state is RunState.RUNNING

        clock.t = 0.6
        app.render()
        assert engine.stage is DigitSpanStage.RECALL

        for ch in engine.current_sequence:
            app.handle_event(key(pygame.K_0 + int(ch), ch))
        app.handle_event(key(pygame.K_9, "9"))
        app.handle_event(key(pygame.K_BACKSPACE))
        app.render()
        app.handle_event(key(pygame.K_RETURN, "\r"))

        assert engine.trials()[0].correct is True
        assert engine.stage is DigitSpanStage.FEEDBACK
        app.render()

        app.handle_event(key(pygame.K_ESCAPE))
        assert engine.state is RunState.ENDED
        app.render()

        app.handle_event(key(pygame.K_ESCAPE))
        assert engine.container is None
    finally:
        pygame.quit()


def test_digit_span_screen_starts_fresh_after_recall_timeout() -> None:
    import pygame

    from crapp_cognitive.app import App, CognitiveTestScreen, MenuScreen
    from crapp_cognitive.digit_span import DigitSpanConfig, DigitSpanStage, build_digit_span_test

    pygame.init()
    try:
        surface = pygame.Surface((960, 540))
        app = App(surface=surface, font=pygame.font.Font(None, 36))
        app.push(MenuScreen(app, "Root", [], is_root=True))

        clock = FakeClock()
        cfg = DigitSpanConfig(initial_span=2, recall_timeout_ms=1000.0, pre_sequence_delay_ms=50.0,
                              display_time_per_digit_ms=100.0, inter_digit_interval_ms=50.0,
                              feedback_ms=200.0, trials_per_span=2)
        screen = CognitiveTestScreen(
            app,
            engine_factory=lambda container: build_digit_span_test(
                clock=clock, seed=12, container=container, options=cfg
            ),
        )
        app.push(screen)
        engine = screen.engine

        def key(k: int, uni: str = "") -> pygame.event.Event:
            return pygame.event.Event(pygame.KEYDOWN, {"key": k, "unicode": uni})

        app.handle_event(key(pygame.K_RETURN, "\r"))

        # Recall opens at 350 ms and times out at 1350 ms.
        clock.t = 0.4
        app.render()
        assert engine.stage is DigitSpanStage.RECALL
        app.handle_event(key(pygame.K_9, "9"))

        clock.t = 1.4
        app.render()
        assert engine.stage is DigitSpanStage.FEEDBACK
        assert engine.trials()[0].timed_out is True
        assert engine.trials()[0].entry == "9"

        # Second trial at the same span; its recall opens at 1900 ms.
        clock.t = 2.0
        app.render()
        assert engine.stage is DigitSpanStage.RECALL
        assert engine.snapshot().payload.entry == ""

        seq = engine.current_sequence
        for ch in seq:
            app.handle_event(key(pygame.K_0 + int(ch), ch))
        app.render()
        app.handle_event(key(pygame.K_RETURN, "\r"))

        second = engine.trials()[1]
        assert second.trial == 2
        assert second.entry == seq
        assert second.correct is True
    finally:
        pygame.quit()


def test_fixed_seed_from_environment(monkeypatch) -> None:
    from crapp_cognitive.app import SEED_ENV, _new_seed

    monkeypatch.setenv(SEED_ENV, "42")
    assert _new_seed() == 42

    monkeypatch.setenv(SEED_ENV, "not-a-number")
    assert 1 <= _new_seed() < 2**31
