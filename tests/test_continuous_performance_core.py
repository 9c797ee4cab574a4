from __future__ import annotations

from dataclasses import dataclass

import pytest

from crapp_cognitive.clock import TimerQueue
from crapp_cognitive.cognitive_core import ResponseEvent, RunState, StimulusEvent
from crapp_cognitive.continuous_performance import (
    LEAD_IN_MS,
    ContinuousPerformanceTest,
    CPTConfig,
    build_cpt_test,
    next_stimulus_gap_ms,
)
from crapp_cognitive.digit_span import DigitSpanConfig
from crapp_cognitive.results import summarize_cpt


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def _cfg(**kw: object) -> CPTConfig:
    base = dict(
        test_duration_ms=10000.0,
        stimulus_duration_ms=250.0,
        inter_stimulus_interval_ms=2000.0,
        target_probability=1.0,
    )
    base.update(kw)
    return CPTConfig(**base)  # type: ignore[arg-type]


def test_all_targets_without_responses_are_all_omissions() -> None:
    clock = FakeClock()
    engine = build_cpt_test(clock=clock, seed=1, options=_cfg())
    assert engine.start() is True

    clock.advance(10.5)
    engine.update()

    assert engine.state is RunState.ENDED
    r = engine.get_results()
    assert [s.presented_at_ms for s in r.stimuli] == [1000.0, 3000.0, 5000.0, 7000.0, 9000.0]
    assert r.total_targets == 5
    assert r.total_non_targets == 0
    assert r.omission_errors == r.total_targets
    assert r.correct_detections == 0
    assert r.detection_rate == 0.0
    assert r.omission_error_rate == 1.0
    assert r.commission_error_rate == 0.0
    assert r.completed is True
    assert r.elapsed_ms == pytest.approx(10000.0)


def test_response_to_non_target_is_a_commission_not_an_omission() -> None:
    clock = FakeClock()
    engine = build_cpt_test(clock=clock, seed=2, options=_cfg(target_probability=0.0))
    engine.start()

    clock.advance(1.0)
    engine.update()
    assert len(engine.stimuli()) == 1
    assert engine.stimuli()[0].is_target is False

    clock.advance(0.05)
    assert engine.respond() is True

    engine.force_complete()
    r = engine.get_results()
    assert r.commission_errors == 1
    assert r.omission_errors == 0
    assert r.correct_detections == 0
    assert r.responses[0].correct is False
    assert r.responses[0].response_time_ms == pytest.approx(50.0)
    assert r.commission_error_rate == 1.0


@pytest.mark.parametrize("isi", [250.0, 100.0])
def test_interval_not_longer_than_display_clamps_gap_to_zero(isi: float) -> None:
    cfg = _cfg(test_duration_ms=2000.0, inter_stimulus_interval_ms=isi, target_probability=0.0)
    assert next_stimulus_gap_ms(cfg) == 0.0

    clock = FakeClock()
    engine = build_cpt_test(clock=clock, seed=3, options=cfg)
    engine.start()
    clock.advance(3.0)
    engine.update()

    onsets = [s.presented_at_ms for s in engine.get_results().stimuli]
    assert onsets == [1000.0, 1250.0, 1500.0, 1750.0]


def test_gap_keeps_onsets_an_interval_apart() -> None:
    assert next_stimulus_gap_ms(_cfg()) == 1750.0
    assert next_stimulus_gap_ms(_cfg(inter_stimulus_interval_ms=1000.0)) == 750.0


def test_first_response_wins_and_cadence_ignores_responses() -> None:
    clock = FakeClock()
    engine = build_cpt_test(clock=clock, seed=4, options=_cfg())
    engine.start()

    clock.advance(0.5)
    engine.update()
    assert engine.respond() is False  # lead-in, nothing on screen

    clock.advance(0.6)
    engine.update()
    assert engine.respond() is True
    assert engine.respond() is False

    clock.advance(2.0)
    engine.update()

    assert [s.presented_at_ms for s in engine.stimuli()] == [1000.0, 3000.0]
    assert len(engine.responses()) == 1
    assert engine.responses()[0].response_time_ms == pytest.approx(100.0)


def test_response_after_window_closes_is_ignored() -> None:
    clock = FakeClock()
    engine = build_cpt_test(clock=clock, seed=5, options=_cfg())
    engine.start()

    clock.advance(1.3)
    engine.update()
    assert engine.snapshot().payload.stimulus is None
    assert engine.respond() is False
    assert engine.responses() == ()


def test_open_target_at_end_counts_as_omission() -> None:
    clock = FakeClock()
    engine = build_cpt_test(clock=clock, seed=6, options=_cfg(test_duration_ms=1100.0))
    engine.start()
    clock.advance(2.0)
    engine.update()

    r = engine.get_results()
    assert r.total_targets == 1
    assert r.omission_errors == 1


def test_start_only_from_intro() -> None:
    clock = FakeClock()
    engine = ContinuousPerformanceTest(clock=clock, seed=7)
    assert engine.state is RunState.IDLE
    assert engine.start() is False

    engine.initialize(None, _cfg())
    assert engine.state is RunState.INTRO
    assert engine.is_running() is False
    assert engine.start() is True
    assert engine.is_running() is True
    assert engine.start() is False

    engine.force_complete()
    assert engine.is_complete() is True
    assert engine.start() is False
    assert engine.state is RunState.ENDED


def test_config_of_another_test_is_rejected() -> None:
    with pytest.raises(TypeError):
        build_cpt_test(clock=FakeClock(), seed=1, options=DigitSpanConfig())


def test_force_complete_is_idempotent_and_results_are_stable() -> None:
    clock = FakeClock()
    engine = build_cpt_test(clock=clock, seed=8, options=_cfg())
    ended: list[object] = []
    engine.on_test_end(ended.append)

    pre = engine.get_results()
    assert pre.total_targets == 0
    assert pre.completed is False

    engine.start()
    clock.advance(1.1)
    engine.update()
    engine.respond()

    assert engine.force_complete() is True
    first = engine.get_results()
    assert engine.force_complete() is False
    assert engine.get_results() is first
    assert ended == [first]
    assert first.completed is False
    assert first.correct_detections == 1


def test_last_registered_callbacks_win() -> None:
    clock = FakeClock()
    engine = build_cpt_test(clock=clock, seed=9, options=_cfg())
    calls: list[str] = []
    engine.on_test_start(lambda: calls.append("start-1"))
    engine.on_test_start(lambda: calls.append("start-2"))
    engine.on_test_end(lambda r: calls.append("end-1"))
    engine.on_test_end(lambda r: calls.append("end-2"))

    engine.start()
    clock.advance(11.0)
    engine.update()
    engine.force_complete()

    assert calls == ["start-2", "end-2"]


def test_late_update_after_end_does_not_revive_run() -> None:
    clock = FakeClock()
    engine = build_cpt_test(clock=clock, seed=10, options=_cfg())
    engine.start()
    clock.advance(1.1)
    engine.update()
    engine.force_complete()

    presented = len(engine.stimuli())
    clock.advance(30.0)
    engine.update()

    assert engine.state is RunState.ENDED
    assert len(engine.stimuli()) == presented
    assert engine.time_remaining_ms() is None


def test_reinitialize_resets_logs_and_options() -> None:
    clock = FakeClock()
    engine = build_cpt_test(clock=clock, seed=11, options=_cfg())
    engine.start()
    clock.advance(4.0)
    engine.update()
    assert engine.stimuli()

    engine.initialize(None, [{"label": "targetProbability", "value": "0.5"}])
    assert engine.state is RunState.INTRO
    assert engine.stimuli() == ()
    assert engine.responses() == ()
    assert engine.get_results().total_targets == 0
    assert engine.config.target_probability == 0.5
    assert engine.config.test_duration_ms == CPTConfig().test_duration_ms

    # Timers from the discarded run never fire.
    clock.advance(20.0)
    engine.update()
    assert engine.stimuli() == ()


def test_countdown_refreshes_once_per_second() -> None:
    clock = FakeClock()
    engine = build_cpt_test(clock=clock, seed=12, options=_cfg())
    assert engine.time_remaining_ms() is None
    engine.start()
    assert engine.time_remaining_ms() == pytest.approx(10000.0)

    clock.advance(2.5)
    engine.update()
    assert engine.time_remaining_ms() == pytest.approx(8000.0)


def test_results_replay_from_logs() -> None:
    clock = FakeClock()
    engine = build_cpt_test(clock=clock, seed=13, options=_cfg(target_probability=0.5))
    engine.start()
    for _ in range(20):
        clock.advance(0.5)
        engine.update()
        engine.respond()
    engine.force_complete()

    r = engine.get_results()
    replay = summarize_cpt(r.stimuli, r.responses, r.configuration, elapsed_ms=r.elapsed_ms, completed=r.completed)
    assert replay == r
    for rate in (r.detection_rate, r.omission_error_rate, r.commission_error_rate):
        assert 0.0 <= rate <= 1.0
    assert r.correct_detections + r.omission_errors == r.total_targets


@pytest.mark.parametrize("seed", [21, 22, 23, 24])
@pytest.mark.parametrize("p", [0.0, 0.3, 0.7, 1.0])
def test_completed_run_counts_stay_consistent(seed: int, p: float) -> None:
    clock = FakeClock()
    engine = build_cpt_test(
        clock=clock, seed=seed, options=_cfg(inter_stimulus_interval_ms=600.0, target_probability=p)
    )
    engine.start()
    # Press every 100 ms, which lands in most display windows and in gaps.
    for _ in range(120):
        clock.advance(0.1)
        engine.update()
        engine.respond()

    r = engine.get_results()
    assert r.completed is True
    assert r.total_targets + r.total_non_targets == len(r.stimuli) > 0
    assert r.correct_detections + r.omission_errors == r.total_targets
    assert 0 <= r.commission_errors <= r.total_non_targets
    for rate in (r.detection_rate, r.omission_error_rate, r.commission_error_rate):
        assert 0.0 <= rate <= 1.0
    if r.correct_detections < 2:
        assert r.reaction_time_sd_ms == 0.0
    if p == 0.0:
        assert r.total_targets == 0
        assert r.commission_errors == r.total_non_targets


def test_summarize_ignores_duplicate_and_unknown_indices() -> None:
    stimuli = [
        StimulusEvent(index=0, value="X", is_target=True, presented_at_ms=1000.0),
        StimulusEvent(index=1, value="A", is_target=False, presented_at_ms=3000.0),
    ]
    responses = [
        ResponseEvent(stimulus_index=0, response_time_ms=320.0, correct=True),
        ResponseEvent(stimulus_index=0, response_time_ms=400.0, correct=True),
        ResponseEvent(stimulus_index=5, response_time_ms=10.0, correct=False),
    ]
    r = summarize_cpt(stimuli, responses, _cfg())
    assert r.correct_detections == 1
    assert r.commission_errors == 0
    assert r.omission_errors == 0
    assert r.average_reaction_time_ms == pytest.approx(320.0)
    assert r.reaction_time_sd_ms == 0.0


def test_engines_sharing_a_timer_queue_stay_independent() -> None:
    clock = FakeClock()
    timers = TimerQueue(clock)
    a = build_cpt_test(clock=clock, seed=14, options=_cfg(), timers=timers)
    b = build_cpt_test(clock=clock, seed=15, options=_cfg(inter_stimulus_interval_ms=1000.0), timers=timers)
    a.start()
    b.start()

    clock.advance(LEAD_IN_MS / 1000.0 + 0.1)
    timers.run_due()
    a.force_complete()
    assert b.is_running() is True

    clock.advance(10.0)
    timers.run_due()
    assert len(a.stimuli()) == 1
    assert [s.presented_at_ms for s in b.stimuli()] == [1000.0 * k for k in range(1, 10)]
    assert b.get_results().completed is True
