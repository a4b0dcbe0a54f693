"""
Flow State Detection

Decides whether a learner is in flow: accurate but challenged, responding
at a pace that fits the difficulty, confident, and consistent. Only the most
recent samples are considered.
"""

import statistics
from typing import List, Optional, Sequence

from flowtutor.adaptation.models import FlowVerdict, PerformanceMetric
from flowtutor.common.logger import app_logger

# Module logger
logger = app_logger.getChild("adaptation.flow")

FLOW_WINDOW = 5
MIN_SAMPLES = 3

# Accuracy sweet spot
ACCURACY_LOW = 0.60
ACCURACY_HIGH = 0.85
ACCURACY_OPTIMAL = 0.75

MIN_TIMING = 0.70
MIN_CONFIDENCE = 0.60
MAX_ACCURACY_STDDEV = 0.20
CONSISTENCY_SCALE = 0.30

QUALITY_WEIGHTS = {
    "accuracy": 0.4,
    "timing": 0.2,
    "confidence": 0.2,
    "consistency": 0.2,
}

INSUFFICIENT_DATA_REASON = "insufficient data (need at least 3 samples)"


def _mean(values: Sequence[float]) -> float:
    return statistics.fmean(values) if values else 0.0


def _stddev(values: Sequence[float]) -> float:
    # Population standard deviation
    return statistics.pstdev(values) if values else 0.0


def _percent(value: float) -> int:
    return int(round(value * 100))


def accuracy_score(mean_accuracy: float) -> float:
    """
    Score mean accuracy against the sweet spot.

    Peaks at 1.0 for 0.75 and falls linearly to 0 at 0.60 and 0.85; anything
    beyond the band scores 0.
    """
    if mean_accuracy <= ACCURACY_OPTIMAL:
        half_width = ACCURACY_OPTIMAL - ACCURACY_LOW
    else:
        half_width = ACCURACY_HIGH - ACCURACY_OPTIMAL
    return max(0.0, 1.0 - abs(mean_accuracy - ACCURACY_OPTIMAL) / half_width)


class FlowStateDetector:
    """Flow diagnosis over a metric history."""

    def __init__(self, window: int = FLOW_WINDOW, min_samples: int = MIN_SAMPLES):
        self.window = window
        self.min_samples = min_samples

    def _recent(self, metrics: Sequence[PerformanceMetric]) -> List[PerformanceMetric]:
        return list(metrics[-self.window:])

    def detect_flow(self, metrics: Sequence[PerformanceMetric]) -> bool:
        """
        Check whether the recent window is in flow.

        All of the following must hold over the last five samples: mean
        accuracy in [0.60, 0.85], mean timing >= 0.70, mean confidence
        >= 0.60, accuracy standard deviation < 0.20.
        """
        if len(metrics) < self.min_samples:
            return False

        recent = self._recent(metrics)
        accuracies = [m.accuracy for m in recent]
        mean_accuracy = _mean(accuracies)

        return (
            ACCURACY_LOW <= mean_accuracy <= ACCURACY_HIGH
            and _mean([m.timing_score for m in recent]) >= MIN_TIMING
            and _mean([m.confidence for m in recent]) >= MIN_CONFIDENCE
            and _stddev(accuracies) < MAX_ACCURACY_STDDEV
        )

    def calculate_flow_quality(self, metrics: Sequence[PerformanceMetric]) -> float:
        """
        Weighted flow quality in [0, 1].

        Returns 0 for an empty history.
        """
        if not metrics:
            return 0.0

        recent = self._recent(metrics)
        accuracies = [m.accuracy for m in recent]
        consistency = max(0.0, 1.0 - _stddev(accuracies) / CONSISTENCY_SCALE)

        quality = (
            QUALITY_WEIGHTS["accuracy"] * accuracy_score(_mean(accuracies))
            + QUALITY_WEIGHTS["timing"] * _mean([m.timing_score for m in recent])
            + QUALITY_WEIGHTS["confidence"] * _mean([m.confidence for m in recent])
            + QUALITY_WEIGHTS["consistency"] * consistency
        )
        return max(0.0, min(1.0, quality))

    def analyze_flow_state(self, metrics: Sequence[PerformanceMetric]) -> FlowVerdict:
        """
        Full verdict with one diagnostic per dimension.

        Reasons are always ordered accuracy, timing, confidence, consistency.
        """
        if len(metrics) < self.min_samples:
            return FlowVerdict(is_flow=False, quality=0.0, reasons=[INSUFFICIENT_DATA_REASON])

        recent = self._recent(metrics)
        accuracies = [m.accuracy for m in recent]
        mean_accuracy = _mean(accuracies)
        mean_timing = _mean([m.timing_score for m in recent])
        mean_confidence = _mean([m.confidence for m in recent])
        deviation = _stddev(accuracies)

        reasons = []

        if mean_accuracy < ACCURACY_LOW:
            reasons.append(f"accuracy low ({_percent(mean_accuracy)}%)")
        elif mean_accuracy > ACCURACY_HIGH:
            reasons.append(f"too easy ({_percent(mean_accuracy)}%)")
        else:
            reasons.append(f"accuracy on target ({_percent(mean_accuracy)}%)")

        if mean_timing < MIN_TIMING:
            reasons.append("response timing off")
        else:
            reasons.append("response timing on target")

        if mean_confidence < MIN_CONFIDENCE:
            reasons.append(f"confidence low ({_percent(mean_confidence)}%)")
        else:
            reasons.append(f"confidence high ({_percent(mean_confidence)}%)")

        if deviation > MAX_ACCURACY_STDDEV:
            reasons.append("performance inconsistent")
        else:
            reasons.append("performance consistent")

        return FlowVerdict(
            is_flow=self.detect_flow(metrics),
            quality=self.calculate_flow_quality(metrics),
            reasons=reasons
        )

    def calculate_flow_duration(self, metrics: Sequence[PerformanceMetric]) -> Optional[float]:
        """
        Minutes spent in the longest contiguous flow stretch.

        Slides a three-sample window over the history; consecutive flow
        windows form a run whose duration runs from the first sample of the
        first window to the last sample of the last window. Ties go to the
        earliest run.

        Returns:
            Duration in minutes, or None if no window is in flow
        """
        if len(metrics) < MIN_SAMPLES:
            return None

        best: Optional[float] = None
        run_start: Optional[int] = None

        def close_run(start: int, last_window: int) -> None:
            nonlocal best
            span = metrics[last_window + MIN_SAMPLES - 1].taken_at - metrics[start].taken_at
            minutes = span.total_seconds() / 60
            if best is None or minutes > best:
                best = minutes

        window_count = len(metrics) - MIN_SAMPLES + 1
        for i in range(window_count):
            in_flow = self.detect_flow(metrics[i:i + MIN_SAMPLES])
            if in_flow and run_start is None:
                run_start = i
            elif not in_flow and run_start is not None:
                close_run(run_start, i - 1)
                run_start = None

        if run_start is not None:
            close_run(run_start, window_count - 1)

        return best
