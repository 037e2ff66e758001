"""Latency anomaly detection against a rolling baseline."""

import logging
import math
from dataclasses import dataclass
from typing import Sequence

from .config import AnomalyConfig
from .models import AnomalyTrend, CheckSample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LatencyPoint:
    latency_ms: float
    is_simulated: bool


def is_simulated_sample(sample: CheckSample) -> bool:
    """A sample counts as simulated when flagged or when its message says so."""
    if sample.is_simulated:
        return True
    return bool(sample.message) and "simulated" in sample.message.lower()


class AnomalyDetector:
    """Classifies the newest latency sample of an endpoint.

    The newest point is compared against the mean and population standard
    deviation of the points before it. Short histories yield ``unknown``,
    except for simulated latency, which falls back to an absolute threshold
    so that injected delay can still trigger alerts. Simulated points are
    never used as the baseline for another simulated point.
    """

    def __init__(
        self,
        minimum_samples: int = 10,
        rolling_window_size: int = 50,
        threshold_multiplier: float = 2.5,
        simulated_fallback_degrading_ms: float = 1800,
        simulated_margin_ms: float = 500,
    ) -> None:
        self.minimum_samples = minimum_samples
        self.rolling_window_size = rolling_window_size
        self.threshold_multiplier = threshold_multiplier
        self.simulated_fallback_degrading_ms = simulated_fallback_degrading_ms
        self.simulated_margin_ms = simulated_margin_ms

    @classmethod
    def from_config(cls, config: AnomalyConfig) -> "AnomalyDetector":
        return cls(
            minimum_samples=config.minimum_samples,
            rolling_window_size=config.rolling_window_size,
            threshold_multiplier=config.threshold_multiplier,
            simulated_fallback_degrading_ms=config.simulated_fallback_degrading_ms,
            simulated_margin_ms=config.simulated_margin_ms,
        )

    def classify(self, samples: Sequence[CheckSample]) -> AnomalyTrend:
        """Classify the latest latency sample.

        Args:
            samples: Sample history of one endpoint, oldest first

        Returns:
            The latency trend of the newest point
        """
        points = [
            LatencyPoint(latency_ms=float(sample.response_time_ms), is_simulated=is_simulated_sample(sample))
            for sample in samples
            if sample.state.is_latency_eligible and sample.response_time_ms is not None
        ]
        recent = points[-self.rolling_window_size :]

        if not recent:
            return AnomalyTrend.UNKNOWN

        latest = recent[-1]

        if latest.is_simulated and len(recent) < self.minimum_samples:
            return self._absolute_fallback(latest)

        if len(recent) < self.minimum_samples:
            return AnomalyTrend.UNKNOWN

        previous = recent[:-1]
        if latest.is_simulated:
            previous = [point for point in previous if not point.is_simulated]
            if not previous:
                return self._absolute_fallback(latest)

        if not previous:
            return AnomalyTrend.UNKNOWN

        baseline = [point.latency_ms for point in previous]
        mean = sum(baseline) / len(baseline)
        variance = sum((value - mean) ** 2 for value in baseline) / len(baseline)
        stddev = math.sqrt(variance)

        above_std = latest.latency_ms > mean + self.threshold_multiplier * stddev
        above_simulated = latest.is_simulated and latest.latency_ms > mean + self.simulated_margin_ms

        if above_std or above_simulated:
            logger.debug(
                f"Latency anomaly detected - latest_ms: {latest.latency_ms:.0f}, mean_ms: {mean:.1f}, "
                f"stddev_ms: {stddev:.1f}, simulated: {latest.is_simulated}"
            )
            return AnomalyTrend.DEGRADING
        return AnomalyTrend.STABLE

    def _absolute_fallback(self, latest: LatencyPoint) -> AnomalyTrend:
        if latest.latency_ms >= self.simulated_fallback_degrading_ms:
            return AnomalyTrend.DEGRADING
        return AnomalyTrend.UNKNOWN
