from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .clock import Clock, TimerQueue
from .cognitive_core import CognitiveTestEngine, ResponseEvent, RunState, SeededRng, StimulusEvent
from .results import DigitSpanResultSummary, DigitSpanTrial, summarize_digit_span
from .settings import setting

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DigitSpanConfig:
    initial_span: int = setting(3, aliases=("initialSpan", "startLength"), minimum=1)
    max_span: int = setting(10, aliases=("maxSpan", "maxLength"), minimum=1)
    display_time_per_digit_ms: float = setting(
        1000.0, aliases=("displayTimePerDigit",), minimum=0.0, exclusive_minimum=True
    )
    inter_digit_interval_ms: float = setting(500.0, aliases=("interDigitInterval",), minimum=0.0)
    recall_timeout_ms: float = setting(10000.0, aliases=("recallTimeout",), minimum=0.0, exclusive_minimum=True)
    trials_per_span: int = setting(2, aliases=("trialsPerSpan", "trialsPerLength"), minimum=1)
    feedback_ms: float = setting(1500.0, aliases=("feedbackDuration",), minimum=0.0)
    pre_sequence_delay_ms: float = setting(500.0, aliases=("preSequenceDelay",), minimum=0.0)


class DigitSpanStage(str, Enum):
    PRESENTING = "presenting"
    RECALL = "recall"
    FEEDBACK = "feedback"


@dataclass(frozen=True, slots=True)
class DigitSpanPayload:
    stage: DigitSpanStage
    display_digit: str | None
    span: int
    trial: int
    entry: str
    accepting_input: bool
    feedback: str | None


class DigitSequenceGenerator:
    def __init__(self, rng: SeededRng) -> None:
        self._rng = rng

    def next_sequence(self, length: int) -> str:
        # Digits 1-9: zero is left out so sequences read unambiguously.
        return "".join(str(self._rng.randint(1, 9)) for _ in range(int(length)))


class DigitSpanTest(CognitiveTestEngine[DigitSpanConfig, DigitSpanResultSummary]):
    """Forward digit span with an adaptive span length.

    Each trial plays a sequence one digit at a time, then opens a single recall
    window. A correct recall moves up one digit; a miss retries the same length
    until ``trials_per_span`` attempts are used, which ends the test. Reaching
    ``max_span`` correctly also ends it.
    """

    title = "Digit Span Test"
    input_hint = "Type the digits then Enter"
    config_type = DigitSpanConfig

    def __init__(self, *, clock: Clock, seed: int, timers: TimerQueue | None = None) -> None:
        super().__init__(clock=clock, seed=seed, timers=timers)
        self._gen = DigitSequenceGenerator(self._rng)
        self._reset_run()

    def _reset_run(self) -> None:
        # A start span above the maximum plays the maximum.
        self._span = min(int(self._config.initial_span), int(self._config.max_span))
        self._trial = 1
        self._sequence = ""
        self._stage: DigitSpanStage | None = None
        self._display_index: int | None = None
        self._entry = ""
        self._feedback: str | None = None
        self._window_opened_at_ms: float | None = None
        self._stimulus_index: int | None = None
        self._trials: list[DigitSpanTrial] = []
        self._stimuli: list[StimulusEvent] = []
        self._responses: list[ResponseEvent] = []

    # ----- playback ----------------------------------------------------------------

    def _begin_run(self) -> None:
        self._start_trial()

    def _start_trial(self) -> None:
        self._sequence = self._gen.next_sequence(self._span)
        self._stage = DigitSpanStage.PRESENTING
        self._display_index = None
        self._entry = ""
        self._feedback = None
        self._window_opened_at_ms = None
        self._schedule(self._config.pre_sequence_delay_ms, lambda: self._show_digit(0))

    def _show_digit(self, index: int) -> None:
        if index == 0:
            self._stimulus_index = len(self._stimuli)
            self._stimuli.append(
                StimulusEvent(
                    index=self._stimulus_index,
                    value=self._sequence,
                    is_target=True,
                    presented_at_ms=self._now_ms(),
                )
            )
        self._display_index = index
        self._schedule(self._config.display_time_per_digit_ms, lambda: self._hide_digit(index))

    def _hide_digit(self, index: int) -> None:
        self._display_index = None
        if index < len(self._sequence) - 1:
            self._schedule(self._config.inter_digit_interval_ms, lambda: self._show_digit(index + 1))
        else:
            self._schedule(self._config.inter_digit_interval_ms, self._open_recall)

    def _open_recall(self) -> None:
        self._stage = DigitSpanStage.RECALL
        self._entry = ""
        self._window_opened_at_ms = self._now_ms()
        self._arm_countdown(self._config.recall_timeout_ms, self._recall_expired)

    def _recall_expired(self) -> None:
        logger.debug("Digit span: recall timed out at span %d", self._span)
        self._record_submission(self._entry, timed_out=True)

    # ----- response capture --------------------------------------------------------

    def type_input(self, text: str) -> bool:
        """Replace the recall entry buffer (non-digits are dropped)."""

        if self._state is not RunState.RUNNING or self._stage is not DigitSpanStage.RECALL:
            return False
        self._entry = "".join(ch for ch in str(text) if ch.isdigit())
        return True

    def submit(self, raw: str | None = None) -> bool:
        """Close the recall window with ``raw`` (or the typed buffer)."""

        if self._state is not RunState.RUNNING or self._stage is not DigitSpanStage.RECALL:
            return False
        entry = self._entry if raw is None else "".join(ch for ch in str(raw) if ch.isdigit())
        self._record_submission(entry, timed_out=False)
        return True

    def _record_submission(self, entry: str, *, timed_out: bool) -> None:
        self._disarm_countdown()
        self._remaining_ms = None
        now = self._now_ms()
        correct = entry == self._sequence
        opened = self._window_opened_at_ms if self._window_opened_at_ms is not None else now

        self._trials.append(
            DigitSpanTrial(
                span=self._span,
                trial=self._trial,
                sequence=self._sequence,
                entry=entry,
                correct=correct,
                timed_out=timed_out,
                submitted_at_ms=now,
            )
        )
        if self._stimulus_index is not None:
            self._responses.append(
                ResponseEvent(
                    stimulus_index=self._stimulus_index,
                    response_time_ms=max(0.0, now - opened),
                    correct=correct,
                    responded_at_ms=now,
                    value=entry,
                )
            )

        self._entry = entry
        self._stage = DigitSpanStage.FEEDBACK
        self._feedback = "Correct!" if correct else "Incorrect"
        self._window_opened_at_ms = None
        self._schedule(self._config.feedback_ms, lambda: self._advance(correct))

    def _advance(self, correct: bool) -> None:
        cfg = self._config
        if correct:
            if self._span + 1 > cfg.max_span:
                self._finish(completed=True)
                return
            self._span += 1
            self._trial = 1
        else:
            if self._trial >= cfg.trials_per_span:
                self._finish(completed=True)
                return
            self._trial += 1
        self._start_trial()

    # ----- results -----------------------------------------------------------------

    @property
    def stage(self) -> DigitSpanStage | None:
        return self._stage

    @property
    def current_sequence(self) -> str:
        return self._sequence

    @property
    def entry(self) -> str:
        """Digits typed so far in the open recall window."""

        return self._entry

    def trials(self) -> tuple[DigitSpanTrial, ...]:
        return tuple(self._trials)

    def _close_run(self) -> None:
        self._display_index = None
        self._window_opened_at_ms = None

    def _summarize(self, completed: bool) -> DigitSpanResultSummary:
        return summarize_digit_span(
            self._trials,
            self._stimuli,
            self._responses,
            self._config,
            elapsed_ms=self.elapsed_ms(),
            completed=completed,
        )

    def _zero_result(self) -> DigitSpanResultSummary:
        return summarize_digit_span((), (), (), self._config)

    # ----- view --------------------------------------------------------------------

    def _payload(self) -> DigitSpanPayload | None:
        if self._state is not RunState.RUNNING or self._stage is None:
            return None
        digit = None
        if self._display_index is not None and self._display_index < len(self._sequence):
            digit = self._sequence[self._display_index]
        return DigitSpanPayload(
            stage=self._stage,
            display_digit=digit,
            span=self._span,
            trial=self._trial,
            entry=self._entry,
            accepting_input=self._stage is DigitSpanStage.RECALL,
            feedback=self._feedback,
        )

    def _prompt_text(self) -> str:
        if self._state is RunState.INTRO:
            return "\n".join(
                [
                    "Digit Span Test",
                    "",
                    "This test measures your short-term memory capacity.",
                    "A sequence of digits will be shown one at a time.",
                    "When it ends, type the digits in the same order and press Enter.",
                    f"Sequences start at {self._span} digits and grow as you succeed.",
                    "",
                    "Press Enter to start.",
                ]
            )
        if self._state is RunState.ENDED:
            return "Test completed! You can now proceed to the next question."
        if self._stage is DigitSpanStage.PRESENTING:
            return "Watch the digits..."
        if self._stage is DigitSpanStage.RECALL:
            return "Enter the digits in order:"
        if self._stage is DigitSpanStage.FEEDBACK:
            return self._feedback or ""
        return ""


def build_digit_span_test(
    *,
    clock: Clock,
    seed: int,
    container: object | None = None,
    options: object = None,
    timers: TimerQueue | None = None,
) -> DigitSpanTest:
    engine = DigitSpanTest(clock=clock, seed=seed, timers=timers)
    engine.initialize(container, options)
    return engine
