"""Result aggregation for the cognitive tests.

Every summary is a pure function of the event logs gathered during a run, so
replaying the same logs always yields the same summary. Rates never divide by
zero; an empty denominator gives 0.0.
"""

from __future__ import annotations

import dataclasses
import statistics
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .cognitive_core import ResponseEvent, StimulusEvent


def safe_ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return 0.0
    return float(numerator) / float(denominator)


def mean_or_zero(values: list[float] | tuple[float, ...]) -> float:
    return statistics.fmean(values) if values else 0.0


def population_sd(values: list[float] | tuple[float, ...]) -> float:
    if len(values) < 2:
        return 0.0
    return statistics.pstdev(values)


@dataclass(frozen=True, slots=True)
class CPTResultSummary:
    total_targets: int
    total_non_targets: int
    correct_detections: int
    commission_errors: int
    omission_errors: int
    average_reaction_time_ms: float
    reaction_time_sd_ms: float
    detection_rate: float
    omission_error_rate: float
    commission_error_rate: float
    reaction_times_ms: tuple[float, ...]
    stimuli: tuple[StimulusEvent, ...]
    responses: tuple[ResponseEvent, ...]
    configuration: Any
    elapsed_ms: float = 0.0
    completed: bool = False


def summarize_cpt(
    stimuli: list[StimulusEvent] | tuple[StimulusEvent, ...],
    responses: list[ResponseEvent] | tuple[ResponseEvent, ...],
    configuration: Any,
    *,
    elapsed_ms: float = 0.0,
    completed: bool = False,
) -> CPTResultSummary:
    """Classify responses against the stimuli they answered and derive CPT metrics.

    Only the first response per stimulus counts; responses pointing at a stimulus
    that was never presented are ignored.
    """

    stimuli = tuple(stimuli)
    responses = tuple(responses)

    total_targets = sum(1 for s in stimuli if s.is_target)
    total_non_targets = len(stimuli) - total_targets

    seen: set[int] = set()
    detections = 0
    commissions = 0
    reaction_times: list[float] = []
    for r in responses:
        idx = r.stimulus_index
        if idx < 0 or idx >= len(stimuli) or idx in seen:
            continue
        seen.add(idx)
        if stimuli[idx].is_target:
            detections += 1
            reaction_times.append(float(r.response_time_ms))
        else:
            commissions += 1

    omissions = total_targets - detections

    return CPTResultSummary(
        total_targets=total_targets,
        total_non_targets=total_non_targets,
        correct_detections=detections,
        commission_errors=commissions,
        omission_errors=omissions,
        average_reaction_time_ms=mean_or_zero(reaction_times),
        reaction_time_sd_ms=population_sd(reaction_times),
        detection_rate=safe_ratio(detections, total_targets),
        omission_error_rate=safe_ratio(omissions, total_targets),
        commission_error_rate=safe_ratio(commissions, total_non_targets),
        reaction_times_ms=tuple(reaction_times),
        stimuli=stimuli,
        responses=responses,
        configuration=configuration,
        elapsed_ms=float(elapsed_ms),
        completed=bool(completed),
    )


class TrailPart(str, Enum):
    PRACTICE = "practice"
    A = "A"
    B = "B"


@dataclass(frozen=True, slots=True)
class TrailClick:
    x: float
    y: float
    time_ms: float
    target_item: int
    part: TrailPart
    hit_item: int | None = None


@dataclass(frozen=True, slots=True)
class TrailPartRecord:
    part: TrailPart
    started_at_ms: float
    ended_at_ms: float | None
    errors: int

    @property
    def completion_time_ms(self) -> float:
        if self.ended_at_ms is None:
            return 0.0
        return max(0.0, self.ended_at_ms - self.started_at_ms)


@dataclass(frozen=True, slots=True)
class TMTResultSummary:
    part_a_completion_time_ms: float
    part_a_errors: int
    part_b_completion_time_ms: float
    part_b_errors: int
    b_to_a_ratio: float
    stimuli: tuple[StimulusEvent, ...]
    responses: tuple[ResponseEvent, ...]
    clicks: tuple[TrailClick, ...]
    configuration: Any
    elapsed_ms: float = 0.0
    completed: bool = False


def summarize_tmt(
    parts: list[TrailPartRecord] | tuple[TrailPartRecord, ...],
    stimuli: list[StimulusEvent] | tuple[StimulusEvent, ...],
    responses: list[ResponseEvent] | tuple[ResponseEvent, ...],
    clicks: list[TrailClick] | tuple[TrailClick, ...],
    configuration: Any,
    *,
    elapsed_ms: float = 0.0,
    completed: bool = False,
) -> TMTResultSummary:
    by_part = {p.part: p for p in parts}
    a = by_part.get(TrailPart.A)
    b = by_part.get(TrailPart.B)

    a_time = 0.0 if a is None else a.completion_time_ms
    b_time = 0.0 if b is None else b.completion_time_ms

    return TMTResultSummary(
        part_a_completion_time_ms=a_time,
        part_a_errors=0 if a is None else int(a.errors),
        part_b_completion_time_ms=b_time,
        part_b_errors=0 if b is None else int(b.errors),
        b_to_a_ratio=safe_ratio(b_time, a_time) if b_time > 0.0 else 0.0,
        stimuli=tuple(stimuli),
        responses=tuple(responses),
        clicks=tuple(clicks),
        configuration=configuration,
        elapsed_ms=float(elapsed_ms),
        completed=bool(completed),
    )


@dataclass(frozen=True, slots=True)
class DigitSpanTrial:
    span: int
    trial: int
    sequence: str
    entry: str
    correct: bool
    timed_out: bool
    submitted_at_ms: float


@dataclass(frozen=True, slots=True)
class DigitSpanResultSummary:
    highest_span_achieved: int
    correct_trials: int
    total_trials: int
    trials: tuple[DigitSpanTrial, ...]
    stimuli: tuple[StimulusEvent, ...]
    responses: tuple[ResponseEvent, ...]
    configuration: Any
    elapsed_ms: float = 0.0
    completed: bool = False


def summarize_digit_span(
    trials: list[DigitSpanTrial] | tuple[DigitSpanTrial, ...],
    stimuli: list[StimulusEvent] | tuple[StimulusEvent, ...],
    responses: list[ResponseEvent] | tuple[ResponseEvent, ...],
    configuration: Any,
    *,
    elapsed_ms: float = 0.0,
    completed: bool = False,
) -> DigitSpanResultSummary:
    trials = tuple(trials)
    correct = [t for t in trials if t.correct]
    return DigitSpanResultSummary(
        highest_span_achieved=max((t.span for t in correct), default=0),
        correct_trials=len(correct),
        total_trials=len(trials),
        trials=trials,
        stimuli=tuple(stimuli),
        responses=tuple(responses),
        configuration=configuration,
        elapsed_ms=float(elapsed_ms),
        completed=bool(completed),
    )


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p[:1].upper() + p[1:] for p in rest)


def _to_payload(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {_camel(f.name): _to_payload(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, (list, tuple)):
        return [_to_payload(v) for v in value]
    return value


def summary_payload(summary: CPTResultSummary | TMTResultSummary | DigitSpanResultSummary) -> dict[str, object]:
    """JSON-ready dict (camelCase keys) for embedding in a host submission."""

    out = _to_payload(summary)
    assert isinstance(out, dict)
    return out
