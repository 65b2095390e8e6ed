"""Tests for gate time classification and estimation."""

import math
from typing import List, Optional

import pytest

from hp_counter_lib.gate_time import GateTimeEstimator, classify_interval, gate_time_seconds
from hp_counter_lib.models import GateTime


@pytest.mark.parametrize(
    "t, expected",
    [
        (0.05, GateTime.GATE_0_1S),
        (0.5, GateTime.GATE_0_1S),
        (0.999, GateTime.GATE_0_1S),
        (1.0, GateTime.GATE_1S),
        (1.9, GateTime.GATE_1S),
        (10.0, GateTime.GATE_10S),
        (10.4, GateTime.GATE_10S),
        (5.5, GateTime.OTHER),
        (2.0, GateTime.OTHER),
        (11.0, GateTime.OTHER),
        (None, GateTime.UNKNOWN),
        (math.nan, GateTime.UNKNOWN),
    ],
)
def test_classify_interval(t: Optional[float], expected: GateTime) -> None:
    """Test the truncation rule for nominal gate times."""
    assert classify_interval(t) == expected


def test_gate_time_seconds_table() -> None:
    """Test nominal durations for each class."""
    assert gate_time_seconds(GateTime.GATE_0_1S) == 0.1
    assert gate_time_seconds(GateTime.GATE_1S) == 1.0
    assert gate_time_seconds(GateTime.GATE_10S) == 10.0
    assert gate_time_seconds(GateTime.OTHER) == 0.0
    assert gate_time_seconds(GateTime.UNKNOWN) == 0.0


class ScriptedSampler:
    """Returns scripted intervals and counts calls."""

    def __init__(self, intervals: List[Optional[float]]) -> None:
        self.intervals = list(intervals)
        self.calls = 0

    def __call__(self) -> Optional[float]:
        self.calls += 1
        return self.intervals.pop(0) if self.intervals else None


def test_estimate_discards_warm_up_sample() -> None:
    """Test that the first interval is ignored."""
    sampler = ScriptedSampler([55.0, 1.0, 1.2, 1.1])
    estimator = GateTimeEstimator(sampler)

    mean = estimator.mean_interval(3)

    assert sampler.calls == 4
    assert mean == pytest.approx(1.1)
    assert classify_interval(mean) == GateTime.GATE_1S


def test_estimate_zero_point_one() -> None:
    """Test a fast gate (mean 0.5 s)."""
    estimator = GateTimeEstimator(ScriptedSampler([0.0, 0.4, 0.6]))

    assert estimator.estimate(2) == GateTime.GATE_0_1S


def test_estimate_ten_seconds() -> None:
    """Test a 10 s gate with overhead."""
    estimator = GateTimeEstimator(ScriptedSampler([0.0, 10.3, 10.5]))

    assert estimator.estimate(2) == GateTime.GATE_10S


def test_estimate_other() -> None:
    """Test a gate that matches no nominal value."""
    estimator = GateTimeEstimator(ScriptedSampler([0.0, 5.5, 5.5]))

    assert estimator.estimate(2) == GateTime.OTHER


def test_estimate_no_samples() -> None:
    """Test that failed reads only give UNKNOWN."""
    estimator = GateTimeEstimator(ScriptedSampler([]))

    assert estimator.mean_interval(3) is None
    assert estimator.estimate(3) == GateTime.UNKNOWN


def test_estimate_skips_failed_reads() -> None:
    """Test that only successful reads are averaged."""
    estimator = GateTimeEstimator(ScriptedSampler([0.0, None, 1.0, None]))

    assert estimator.mean_interval(3) == pytest.approx(1.0)


@pytest.mark.parametrize("count", [-1, 0, 1])
def test_sample_count_clamped(count: int) -> None:
    """Test that fewer than 2 samples are raised to 2."""
    sampler = ScriptedSampler([0.0, 1.0, 1.0, 1.0])
    estimator = GateTimeEstimator(sampler)

    estimator.mean_interval(count)

    assert sampler.calls == 3  # warm-up + 2
