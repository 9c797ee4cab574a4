from __future__ import annotations

import dataclasses
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeVar

from .clock import Clock, TimerHandle, TimerQueue
from .settings import resolve_settings

logger = logging.getLogger(__name__)

ConfigT = TypeVar("ConfigT")
ResultT = TypeVar("ResultT")

COUNTDOWN_TICK_MS = 1000.0


class RunState(StrEnum):
    IDLE = "idle"
    INTRO = "intro"
    RUNNING = "running"
    ENDED = "ended"


@dataclass(frozen=True, slots=True)
class StimulusEvent:
    index: int
    value: str
    is_target: bool
    presented_at_ms: float  # relative to run start


@dataclass(frozen=True, slots=True)
class ResponseEvent:
    stimulus_index: int
    response_time_ms: float
    correct: bool
    responded_at_ms: float = 0.0  # relative to run start
    value: str = ""


@dataclass(frozen=True, slots=True)
class TestSnapshot:
    """View model for the host UI (pure data)."""

    title: str
    state: RunState
    prompt: str
    input_hint: str
    time_remaining_ms: float | None
    payload: object | None = None


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def random(self) -> float:
        return self._rng.random()

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

    def choice(self, seq: tuple[str, ...] | list[str]) -> str:
        return self._rng.choice(seq)

    def uniform(self, a: float, b: float) -> float:
        return self._rng.uniform(a, b)


def clamp01(x: float) -> float:
    return 0.0 if x <= 0.0 else 1.0 if x >= 1.0 else float(x)


class CognitiveTestEngine(Generic[ConfigT, ResultT]):
    """Shared run skeleton: idle -> intro -> running -> ended.

    Subclasses supply the variant behaviour through a handful of hooks:

    - ``_reset_run()`` clears every per-run log (called by initialize()).
    - ``_begin_run()`` arms the variant's first timers once running.
    - ``_close_run()`` settles anything still open when the run ends.
    - ``_summarize(completed)`` / ``_zero_result()`` build the result summary.

    All timers go through ``_schedule()``/``_schedule_every()``. Each returns a
    handle owned by the engine; every handle is cancelled together on any exit
    from running, and each callback re-checks that its run is still live before
    touching state, since callbacks may already be queued when a cancel happens.
    """

    title: str = ""
    input_hint: str = ""
    config_type: type[Any] = object

    def __init__(self, *, clock: Clock, seed: int, timers: TimerQueue | None = None) -> None:
        self._clock = clock
        self._timers = timers if timers is not None else TimerQueue(clock)
        self._seed = int(seed)
        self._rng = SeededRng(self._seed)

        self._state = RunState.IDLE
        self._config: ConfigT = self.default_config()
        self._container: object | None = None

        self._handles: list[TimerHandle] = []
        self._countdown: TimerHandle | None = None
        self._deadline: TimerHandle | None = None
        self._remaining_ms: float | None = None
        self._generation = 0

        self._run_started_at_ms: float | None = None
        self._run_ended_at_ms: float | None = None
        self._result: ResultT | None = None

        self._on_start: Callable[[], None] | None = None
        self._on_end: Callable[[ResultT], None] | None = None

    # ----- configuration -------------------------------------------------------

    def default_config(self) -> ConfigT:
        return self.config_type()

    def resolve_configuration(self, configuration: object) -> ConfigT:
        if configuration is None:
            return self.default_config()
        if isinstance(configuration, self.config_type):
            return configuration  # type: ignore[return-value]
        if dataclasses.is_dataclass(configuration) and not isinstance(configuration, type):
            raise TypeError(
                f"{type(self).__name__} expects {self.config_type.__name__}, got {type(configuration).__name__}"
            )
        return resolve_settings(self.default_config(), configuration)

    # ----- public contract -----------------------------------------------------

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def config(self) -> ConfigT:
        return self._config

    @property
    def container(self) -> object | None:
        return self._container

    def initialize(self, container: object | None = None, configuration: object = None) -> None:
        """Reset to the intro screen with a fresh configuration and empty logs."""

        if self._state is RunState.RUNNING:
            logger.info("%s: re-initialized while running; discarding run", self.title)
        self._cancel_timers()
        self._generation += 1
        self._container = container
        self._config = self.resolve_configuration(configuration)
        self._remaining_ms = None
        self._run_started_at_ms = None
        self._run_ended_at_ms = None
        self._result = None
        self._reset_run()
        self._state = RunState.INTRO

    def start(self) -> bool:
        if self._state is not RunState.INTRO:
            logger.debug("%s: start() ignored in state %s", self.title, self._state)
            return False
        self._run_started_at_ms = self._timers.now_ms()
        self._state = RunState.RUNNING
        logger.info("%s: run started (seed=%d)", self.title, self._seed)
        self._begin_run()
        if self._on_start is not None:
            self._on_start()
        return True

    def force_complete(self) -> bool:
        return self._finish(completed=False)

    def dispose(self) -> None:
        """Host teardown: end a live run and drop the render target."""

        self._finish(completed=False)
        self._cancel_timers()
        self._container = None

    def on_test_start(self, callback: Callable[[], None] | None) -> None:
        self._on_start = callback

    def on_test_end(self, callback: Callable[[ResultT], None] | None) -> None:
        self._on_end = callback

    def get_results(self) -> ResultT:
        if self._result is not None:
            return self._result
        return self._zero_result()

    def is_running(self) -> bool:
        return self._state is RunState.RUNNING

    def is_complete(self) -> bool:
        return self._state is RunState.ENDED

    def update(self) -> None:
        """Pump due timers; the host calls this once per frame."""

        self._timers.run_due()

    def time_remaining_ms(self) -> float | None:
        if self._state is not RunState.RUNNING:
            return None
        return self._remaining_ms

    def elapsed_ms(self) -> float:
        if self._run_started_at_ms is None:
            return 0.0
        end = self._run_ended_at_ms if self._run_ended_at_ms is not None else self._timers.now_ms()
        return max(0.0, end - self._run_started_at_ms)

    def snapshot(self) -> TestSnapshot:
        return TestSnapshot(
            title=self.title,
            state=self._state,
            prompt=self._prompt_text(),
            input_hint=self.input_hint,
            time_remaining_ms=self.time_remaining_ms(),
            payload=self._payload(),
        )

    # ----- timers ----------------------------------------------------------------

    def _now_ms(self) -> float:
        """Time relative to run start."""

        if self._run_started_at_ms is None:
            return 0.0
        return self._timers.now_ms() - self._run_started_at_ms

    def _guard(self, callback: Callable[[], None]) -> Callable[[], None]:
        generation = self._generation

        def guarded() -> None:
            if generation != self._generation or not self.is_running():
                logger.debug("%s: dropping stale timer callback", self.title)
                return
            callback()

        return guarded

    def _schedule(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        if delay_ms < 0.0:
            logger.debug("%s: clamping negative delay %.1f ms to 0", self.title, delay_ms)
            delay_ms = 0.0
        handle = self._timers.call_later(delay_ms, self._guard(callback))
        self._track(handle)
        return handle

    def _schedule_every(self, interval_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle = self._timers.call_every(interval_ms, self._guard(callback))
        self._track(handle)
        return handle

    def _track(self, handle: TimerHandle) -> None:
        if len(self._handles) > 32:
            self._handles = [h for h in self._handles if not h.cancelled]
        self._handles.append(handle)

    def _cancel_timers(self) -> None:
        TimerQueue.cancel_all(self._handles)
        self._handles.clear()
        self._countdown = None
        self._deadline = None

    def _arm_countdown(self, total_ms: float, on_exhausted: Callable[[], None]) -> None:
        """Budget of ``total_ms``: 1 Hz ticks refresh the remaining time, a deadline ends it."""

        self._disarm_countdown()
        total_ms = max(0.0, float(total_ms))
        self._remaining_ms = total_ms
        deadline_ms = self._timers.now_ms() + total_ms

        def tick() -> None:
            self._remaining_ms = max(0.0, deadline_ms - self._timers.now_ms())

        def expire() -> None:
            self._remaining_ms = 0.0
            self._disarm_countdown()
            on_exhausted()

        # Deadline first: it wins ties with anything scheduled later for the same instant.
        self._deadline = self._schedule(total_ms, expire)
        self._countdown = self._schedule_every(COUNTDOWN_TICK_MS, tick)

    def _disarm_countdown(self) -> None:
        for handle in (self._countdown, self._deadline):
            if handle is not None:
                handle.cancel()
        self._countdown = None
        self._deadline = None

    # ----- transitions -------------------------------------------------------------

    def _finish(self, *, completed: bool) -> bool:
        if self._state is not RunState.RUNNING:
            return False
        self._cancel_timers()
        self._run_ended_at_ms = self._timers.now_ms()
        self._close_run()
        self._state = RunState.ENDED
        self._result = self._summarize(completed)
        logger.info(
            "%s: run ended (%s) after %.0f ms",
            self.title,
            "completed" if completed else "cancelled",
            self.elapsed_ms(),
        )
        if self._on_end is not None:
            self._on_end(self._result)
        return True

    # ----- variant hooks --------------------------------------------------------------

    def _reset_run(self) -> None:
        raise NotImplementedError

    def _begin_run(self) -> None:
        raise NotImplementedError

    def _close_run(self) -> None:
        pass

    def _summarize(self, completed: bool) -> ResultT:
        raise NotImplementedError

    def _zero_result(self) -> ResultT:
        raise NotImplementedError

    def _prompt_text(self) -> str:
        return ""

    def _payload(self) -> object | None:
        return None
