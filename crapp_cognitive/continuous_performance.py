from __future__ import annotations

import logging
from dataclasses import dataclass

from .clock import Clock, TimerQueue
from .cognitive_core import CognitiveTestEngine, ResponseEvent, RunState, StimulusEvent
from .results import CPTResultSummary, summarize_cpt
from .settings import setting

logger = logging.getLogger(__name__)

LEAD_IN_MS = 1000.0


@dataclass(frozen=True, slots=True)
class CPTConfig:
    test_duration_ms: float = setting(120000.0, aliases=("testDuration",), minimum=0.0, exclusive_minimum=True)
    stimulus_duration_ms: float = setting(250.0, aliases=("stimulusDuration",), minimum=0.0, exclusive_minimum=True)
    inter_stimulus_interval_ms: float = setting(
        2000.0, aliases=("interStimulusInterval", "isi"), minimum=0.0, exclusive_minimum=True
    )
    target_probability: float = setting(0.7, minimum=0.0, maximum=1.0)
    targets: tuple[str, ...] = setting(("X",))
    non_targets: tuple[str, ...] = setting(("A", "B", "C", "E", "F", "H", "K", "L"), aliases=("nonTargets",))


def next_stimulus_gap_ms(config: CPTConfig) -> float:
    """Delay between hiding one stimulus and presenting the next.

    Onsets stay ``inter_stimulus_interval_ms`` apart whatever the participant does.
    A misconfigured interval shorter than the display time yields 0.
    """

    return max(0.0, float(config.inter_stimulus_interval_ms) - float(config.stimulus_duration_ms))


@dataclass(slots=True)
class _StimulusWindow:
    index: int
    value: str
    is_target: bool
    opened_at_ms: float
    responded: bool = False


@dataclass(frozen=True, slots=True)
class CPTPayload:
    stimulus: str | None
    target_symbol: str
    correct_detections: int
    commission_errors: int
    omission_errors: int
    stimuli_presented: int


class ContinuousPerformanceTest(CognitiveTestEngine[CPTConfig, CPTResultSummary]):
    """Continuous Performance Test: respond to the target letter, ignore the rest.

    Stimuli appear on a fixed open-loop cadence. Each presentation opens one
    response window; the first response in a window is classified immediately
    (target -> detection, non-target -> commission) and later ones are dropped.
    A target whose window closes without a response is an omission.
    """

    title = "Continuous Performance Test"
    input_hint = "Press Space for the target letter only"
    config_type = CPTConfig

    def __init__(self, *, clock: Clock, seed: int, timers: TimerQueue | None = None) -> None:
        super().__init__(clock=clock, seed=seed, timers=timers)
        self._reset_run()

    def _reset_run(self) -> None:
        self._stimuli: list[StimulusEvent] = []
        self._responses: list[ResponseEvent] = []
        self._reaction_times: list[float] = []
        self._active: _StimulusWindow | None = None
        self._correct_detections = 0
        self._commission_errors = 0
        self._omission_errors = 0

    # ----- scheduler ---------------------------------------------------------------

    def _begin_run(self) -> None:
        self._arm_countdown(self._config.test_duration_ms, lambda: self._finish(completed=True))
        self._schedule(LEAD_IN_MS, self._present_stimulus)

    def _present_stimulus(self) -> None:
        cfg = self._config
        is_target = self._rng.random() < cfg.target_probability
        value = cfg.targets[0] if is_target else self._rng.choice(cfg.non_targets)

        now = self._now_ms()
        index = len(self._stimuli)
        self._stimuli.append(StimulusEvent(index=index, value=value, is_target=is_target, presented_at_ms=now))
        self._active = _StimulusWindow(index=index, value=value, is_target=is_target, opened_at_ms=now)

        self._schedule(cfg.stimulus_duration_ms, self._hide_stimulus)

    def _hide_stimulus(self) -> None:
        w = self._active
        if w is not None and w.is_target and not w.responded:
            self._omission_errors += 1
        self._active = None
        self._schedule(next_stimulus_gap_ms(self._config), self._present_stimulus)

    def _close_run(self) -> None:
        w = self._active
        if w is not None and w.is_target and not w.responded:
            self._omission_errors += 1
        self._active = None

    # ----- response capture --------------------------------------------------------

    def respond(self) -> bool:
        """Spacebar / tap. Returns True if the response was recorded."""

        if self._state is not RunState.RUNNING:
            return False
        w = self._active
        if w is None:
            logger.debug("CPT: response with no stimulus on screen ignored")
            return False
        if w.responded:
            return False

        now = self._now_ms()
        w.responded = True
        rt = max(0.0, now - w.opened_at_ms)
        if w.is_target:
            self._correct_detections += 1
            self._reaction_times.append(rt)
        else:
            self._commission_errors += 1

        self._responses.append(
            ResponseEvent(
                stimulus_index=w.index,
                response_time_ms=rt,
                correct=w.is_target,
                responded_at_ms=now,
                value=w.value,
            )
        )
        return True

    # ----- results -----------------------------------------------------------------

    def stimuli(self) -> tuple[StimulusEvent, ...]:
        return tuple(self._stimuli)

    def responses(self) -> tuple[ResponseEvent, ...]:
        return tuple(self._responses)

    def _summarize(self, completed: bool) -> CPTResultSummary:
        summary = summarize_cpt(
            self._stimuli,
            self._responses,
            self._config,
            elapsed_ms=self.elapsed_ms(),
            completed=completed,
        )
        if (summary.correct_detections, summary.commission_errors, summary.omission_errors) != (
            self._correct_detections,
            self._commission_errors,
            self._omission_errors,
        ):
            logger.warning("CPT: live counters disagree with replayed classification")
        return summary

    def _zero_result(self) -> CPTResultSummary:
        return summarize_cpt((), (), self._config)

    # ----- view --------------------------------------------------------------------

    def _payload(self) -> CPTPayload | None:
        if self._state is not RunState.RUNNING:
            return None
        return CPTPayload(
            stimulus=None if self._active is None else self._active.value,
            target_symbol=self._config.targets[0],
            correct_detections=self._correct_detections,
            commission_errors=self._commission_errors,
            omission_errors=self._omission_errors,
            stimuli_presented=len(self._stimuli),
        )

    def _prompt_text(self) -> str:
        target = self._config.targets[0]
        if self._state is RunState.INTRO:
            minutes = self._config.test_duration_ms / 60000.0
            return "\n".join(
                [
                    "Continuous Performance Test",
                    "",
                    "This test measures your attention and response control.",
                    "Letters will appear on the screen one at a time.",
                    f"Press Space when you see the letter '{target}'.",
                    "Do NOT press anything for other letters.",
                    "Respond as quickly and accurately as possible.",
                    f"The test takes {minutes:g} minutes.",
                    "",
                    "Press Enter to start.",
                ]
            )
        if self._state is RunState.ENDED:
            return "Test completed! You can now proceed to the next question."
        if self._state is RunState.RUNNING:
            return "" if self._active is None else self._active.value
        return ""


def build_cpt_test(
    *,
    clock: Clock,
    seed: int,
    container: object | None = None,
    options: object = None,
    timers: TimerQueue | None = None,
) -> ContinuousPerformanceTest:
    engine = ContinuousPerformanceTest(clock=clock, seed=seed, timers=timers)
    engine.initialize(container, options)
    return engine
