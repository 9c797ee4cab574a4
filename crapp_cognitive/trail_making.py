from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from .clock import Clock, TimerQueue
from .cognitive_core import CognitiveTestEngine, ResponseEvent, RunState, SeededRng, StimulusEvent
from .results import TMTResultSummary, TrailClick, TrailPart, TrailPartRecord, summarize_tmt
from .settings import setting

logger = logging.getLogger(__name__)

_MAX_PLACEMENT_ATTEMPTS = 100


@dataclass(frozen=True, slots=True)
class TMTConfig:
    part_a_items: int = setting(25, aliases=("partAItems",), minimum=1)
    part_b_items: int = setting(25, aliases=("partBItems",), minimum=1, maximum=52)  # labels 1..26 and A..Z
    include_part_b: bool = setting(True, aliases=("includePartB",))
    part_a_time_limit_ms: float = setting(60000.0, aliases=("partATimeLimit",), minimum=0.0, exclusive_minimum=True)
    part_b_time_limit_ms: float = setting(120000.0, aliases=("partBTimeLimit",), minimum=0.0, exclusive_minimum=True)
    include_practice: bool = setting(True, aliases=("includePractice",))
    practice_items: int = setting(5, aliases=("practiceItems",), minimum=1)
    item_radius: float = setting(20.0, aliases=("itemRadius", "radius"), minimum=0.0, exclusive_minimum=True)
    min_distance: float = setting(60.0, aliases=("minDistance",), minimum=0.0)
    canvas_width: float = setting(800.0, aliases=("canvasWidth", "width"), minimum=0.0, exclusive_minimum=True)
    canvas_height: float = setting(600.0, aliases=("canvasHeight", "height"), minimum=0.0, exclusive_minimum=True)


@dataclass(frozen=True, slots=True)
class TrailItem:
    item_id: int
    label: str
    x: float
    y: float
    radius: float

    def contains(self, x: float, y: float) -> bool:
        return math.hypot(x - self.x, y - self.y) <= self.radius


@dataclass(frozen=True, slots=True)
class TrailMakingPayload:
    part: TrailPart
    items: tuple[TrailItem, ...]
    connected: int  # items 1..connected are joined
    current_item: int
    errors: int
    canvas_width: float
    canvas_height: float


def trail_label(part: TrailPart, item_id: int) -> str:
    """Part B alternates numbers and letters: 1, A, 2, B, ..."""

    if part is TrailPart.B:
        if item_id % 2 == 1:
            return str((item_id + 1) // 2)
        return chr(64 + item_id // 2)
    return str(item_id)


class TrailLayoutGenerator:
    """Seeded placement of trail circles inside the canvas."""

    def __init__(self, rng: SeededRng) -> None:
        self._rng = rng

    def layout(self, *, part: TrailPart, count: int, config: TMTConfig) -> tuple[TrailItem, ...]:
        width = float(config.canvas_width)
        height = float(config.canvas_height)
        radius = float(config.item_radius)
        min_dist = float(config.min_distance)
        pad = min(min_dist, width / 2.0, height / 2.0)

        items: list[TrailItem] = []
        for item_id in range(1, count + 1):
            x = y = 0.0
            overlapping = True
            attempts = 0
            while overlapping and attempts < _MAX_PLACEMENT_ATTEMPTS:
                if item_id == 1:
                    # First circle sits near the upper centre so it is easy to find.
                    x = pad + (width - 2 * pad) * (0.3 + self._rng.random() * 0.4)
                    y = pad + (height - 2 * pad) * (0.2 + self._rng.random() * 0.3)
                else:
                    x = pad + self._rng.random() * (width - 2 * pad)
                    y = pad + self._rng.random() * (height - 2 * pad)
                overlapping = any(math.hypot(x - it.x, y - it.y) < min_dist for it in items)
                attempts += 1

            if overlapping and items:
                closest = min(items, key=lambda it: math.hypot(x - it.x, y - it.y))
                angle = math.atan2(y - closest.y, x - closest.x)
                x = closest.x + math.cos(angle) * min_dist
                y = closest.y + math.sin(angle) * min_dist
                x = max(pad, min(width - pad, x))
                y = max(pad, min(height - pad, y))

            items.append(TrailItem(item_id=item_id, label=trail_label(part, item_id), x=x, y=y, radius=radius))
        return tuple(items)


class TrailMakingTest(CognitiveTestEngine[TMTConfig, TMTResultSummary]):
    """Trail Making Test: connect circles in order (A: 1-2-3..., B: 1-A-2-B...).

    Event-driven: each circle becoming the next target opens a response window;
    a pointer-down on it closes the window and opens the next one, a hit on any
    other circle is an error for the current part. The countdown over the summed
    part time limits starts with Part A; the optional practice trail is untimed.
    """

    title = "Trail Making Test"
    input_hint = "Click the circles in order"
    config_type = TMTConfig

    def __init__(self, *, clock: Clock, seed: int, timers: TimerQueue | None = None) -> None:
        super().__init__(clock=clock, seed=seed, timers=timers)
        self._layout = TrailLayoutGenerator(self._rng)
        self._reset_run()

    def _reset_run(self) -> None:
        self._part: TrailPart | None = None
        self._items: tuple[TrailItem, ...] = ()
        self._current_item = 1
        self._part_errors = 0
        self._part_started_at_ms = 0.0
        self._window_opened_at_ms = 0.0
        self._window_stimulus_index: int | None = None
        self._parts: list[TrailPartRecord] = []
        self._stimuli: list[StimulusEvent] = []
        self._responses: list[ResponseEvent] = []
        self._clicks: list[TrailClick] = []

    # ----- flow --------------------------------------------------------------------

    def _begin_run(self) -> None:
        if self._config.include_practice:
            self._begin_part(TrailPart.PRACTICE)
        else:
            self._begin_scored()

    def _begin_scored(self) -> None:
        cfg = self._config
        budget = cfg.part_a_time_limit_ms + (cfg.part_b_time_limit_ms if cfg.include_part_b else 0.0)
        self._arm_countdown(budget, lambda: self._finish(completed=False))
        self._begin_part(TrailPart.A)

    def _begin_part(self, part: TrailPart) -> None:
        cfg = self._config
        count = {
            TrailPart.PRACTICE: cfg.practice_items,
            TrailPart.A: cfg.part_a_items,
            TrailPart.B: cfg.part_b_items,
        }[part]
        self._part = part
        self._items = self._layout.layout(part=part, count=count, config=cfg)
        self._current_item = 1
        self._part_errors = 0
        self._part_started_at_ms = self._now_ms()
        logger.debug("TMT: part %s started with %d items", part.value, count)
        self._open_window()

    def _open_window(self) -> None:
        self._window_opened_at_ms = self._now_ms()
        if self._part is TrailPart.PRACTICE:
            self._window_stimulus_index = None
            return
        item = self._items[self._current_item - 1]
        index = len(self._stimuli)
        self._stimuli.append(
            StimulusEvent(index=index, value=item.label, is_target=True, presented_at_ms=self._window_opened_at_ms)
        )
        self._window_stimulus_index = index

    def _complete_part(self) -> None:
        part = self._part
        assert part is not None
        if part is TrailPart.PRACTICE:
            self._begin_scored()
            return

        self._parts.append(
            TrailPartRecord(
                part=part,
                started_at_ms=self._part_started_at_ms,
                ended_at_ms=self._now_ms(),
                errors=self._part_errors,
            )
        )
        if part is TrailPart.A and self._config.include_part_b:
            self._begin_part(TrailPart.B)
            return
        self._finish(completed=True)

    def _close_run(self) -> None:
        part = self._part
        if part in (TrailPart.A, TrailPart.B) and all(p.part is not part for p in self._parts):
            # Timed out or cancelled mid-part: errors count, completion time does not.
            self._parts.append(
                TrailPartRecord(part=part, started_at_ms=self._part_started_at_ms, ended_at_ms=None, errors=self._part_errors)
            )
        self._window_stimulus_index = None

    # ----- response capture --------------------------------------------------------

    def item_at(self, x: float, y: float) -> TrailItem | None:
        hits = [item for item in self._items if item.contains(x, y)]
        if not hits:
            return None
        return min(hits, key=lambda it: math.hypot(x - it.x, y - it.y))

    def click(self, x: float, y: float) -> bool:
        """Pointer-down at canvas coordinates. Returns True if a circle was hit."""

        if self._state is not RunState.RUNNING or self._part is None or not self._items:
            return False

        now = self._now_ms()
        hit = self.item_at(x, y)
        self._clicks.append(
            TrailClick(
                x=float(x),
                y=float(y),
                time_ms=now,
                target_item=self._current_item,
                part=self._part,
                hit_item=None if hit is None else hit.item_id,
            )
        )
        if hit is None:
            return False

        correct = hit.item_id == self._current_item
        if self._window_stimulus_index is not None:
            self._responses.append(
                ResponseEvent(
                    stimulus_index=self._window_stimulus_index,
                    response_time_ms=max(0.0, now - self._window_opened_at_ms),
                    correct=correct,
                    responded_at_ms=now,
                    value=hit.label,
                )
            )

        if not correct:
            self._part_errors += 1
            return True

        if self._current_item >= len(self._items):
            self._complete_part()
        else:
            self._current_item += 1
            self._open_window()
        return True

    # ----- results -----------------------------------------------------------------

    @property
    def part(self) -> TrailPart | None:
        return self._part

    def items(self) -> tuple[TrailItem, ...]:
        return self._items

    def _summarize(self, completed: bool) -> TMTResultSummary:
        return summarize_tmt(
            self._parts,
            self._stimuli,
            self._responses,
            self._clicks,
            self._config,
            elapsed_ms=self.elapsed_ms(),
            completed=completed,
        )

    def _zero_result(self) -> TMTResultSummary:
        return summarize_tmt((), (), (), (), self._config)

    # ----- view --------------------------------------------------------------------

    def _payload(self) -> TrailMakingPayload | None:
        if self._state is not RunState.RUNNING or self._part is None:
            return None
        return TrailMakingPayload(
            part=self._part,
            items=self._items,
            connected=self._current_item - 1,
            current_item=self._current_item,
            errors=self._part_errors,
            canvas_width=float(self._config.canvas_width),
            canvas_height=float(self._config.canvas_height),
        )

    def _prompt_text(self) -> str:
        if self._state is RunState.INTRO:
            lines = [
                "Trail Making Test",
                "",
                "This test measures visual attention and task switching.",
                "Part A: click the numbered circles in ascending order (1, 2, 3, ...).",
            ]
            if self._config.include_part_b:
                lines.append("Part B: alternate numbers and letters (1, A, 2, B, 3, C, ...).")
            if self._config.include_practice:
                lines.append("A short untimed practice trail comes first.")
            lines += ["Work as quickly and accurately as you can.", "", "Press Enter to start."]
            return "\n".join(lines)
        if self._state is RunState.ENDED:
            return "Test completed! You can now proceed to the next question."
        if self._part is TrailPart.PRACTICE:
            return "Practice: connect the circles in order."
        if self._part is TrailPart.A:
            return "Part A: connect the numbers in order."
        if self._part is TrailPart.B:
            return "Part B: alternate numbers and letters."
        return ""


def build_trail_making_test(
    *,
    clock: Clock,
    seed: int,
    container: object | None = None,
    options: object = None,
    timers: TimerQueue | None = None,
) -> TrailMakingTest:
    engine = TrailMakingTest(clock=clock, seed=seed, timers=timers)
    engine.initialize(container, options)
    return engine
