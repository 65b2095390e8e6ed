"""Gate time classification and estimation from inter-record intervals."""

import logging
import math
from typing import Callable, List, Optional

from hp_counter_lib import protocol
from hp_counter_lib.models import GateTime

logger = logging.getLogger(__name__)

# Returns the interval since the previous record in seconds, or None if no
# record could be read.
IntervalSampler = Callable[[], Optional[float]]


def classify_interval(t: Optional[float]) -> GateTime:
    """Map a duration in seconds onto the nearest nominal gate time.

    Args:
        t: Mean interval between records, None/NaN if unknown

    Returns:
        GateTime class
    """
    if t is None or math.isnan(t):
        return GateTime.UNKNOWN
    if t < 1.0:
        return GateTime.GATE_0_1S
    whole = math.trunc(t)
    if whole == 1:
        return GateTime.GATE_1S
    if whole == 10:
        return GateTime.GATE_10S
    return GateTime.OTHER


def gate_time_seconds(gate_time: GateTime) -> float:
    """Nominal gate duration in seconds (0 for UNKNOWN and OTHER)."""
    return protocol.GATE_TIME_SECONDS[gate_time]


class GateTimeEstimator:
    """Estimate the gate time by timing successive records.

    The counter prints one line per gate period, so the mean spacing of
    records approximates the gate time plus a small processing overhead.
    """

    def __init__(self, sampler: IntervalSampler) -> None:
        """Initialize estimator.

        Args:
            sampler: Callable that reads one record and returns the interval
                     to the previous one (None when the read failed)
        """
        self._sampler = sampler

    def mean_interval(self, sample_count: int) -> Optional[float]:
        """Read ``sample_count`` records and average their spacing.

        One warm-up record is read and discarded first, since its interval
        spans the idle time before the measurement window. Counts below 2
        are raised to 2.

        Returns:
            Mean interval in seconds, None if no record could be read
        """
        if sample_count < protocol.MIN_ESTIMATE_SAMPLES:
            logger.warning(
                f"sample_count {sample_count} too small, using "
                f"{protocol.MIN_ESTIMATE_SAMPLES}"
            )
            sample_count = protocol.MIN_ESTIMATE_SAMPLES

        self._sampler()  # warm-up, discarded

        intervals: List[float] = []
        for _ in range(sample_count):
            interval = self._sampler()
            if interval is not None:
                intervals.append(interval)

        if not intervals:
            logger.warning("No records received while estimating gate time")
            return None

        mean = sum(intervals) / len(intervals)
        logger.debug(f"Mean record interval over {len(intervals)} samples: {mean:.4f}s")
        return mean

    def estimate(self, sample_count: int = protocol.DEFAULT_ESTIMATE_SAMPLES) -> GateTime:
        """Estimate the gate time class from live records."""
        gate_time = classify_interval(self.mean_interval(sample_count))
        logger.info(f"Estimated gate time: {gate_time.value}")
        return gate_time
