"""
Adaptive Difficulty Adjustment

This module recommends the next difficulty for a session from the learner's
recent performance. It provides:
1. A priority-ordered per-turn decision table that steers toward flow
2. An emergency override for extreme performance over the last three turns
3. A session-level recommendation for the next session
4. Difficulty labels and trend analysis for display
"""

import random
import statistics
from typing import Dict, Optional, Sequence, Tuple

from flowtutor.adaptation.flow import FlowStateDetector
from flowtutor.adaptation.models import (
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    DifficultyAdjustment,
    DifficultyTrend,
    PerformanceMetric,
    TrendDirection,
    clamp_difficulty,
)
from flowtutor.common.logger import app_logger
from flowtutor.common.validation import require_range

# Module logger
logger = app_logger.getChild("adaptation.difficulty")

STEP = 0.10
FINE_STEP = STEP / 2
MIN_SAMPLES = 3
RECENT_WINDOW = 5
EMERGENCY_WINDOW = 3
SESSION_MIN_SAMPLES = 5
SESSION_FLOW_MINUTES = 10.0

# Encouragement pools keyed by outcome; one is picked per adjustment
RECOMMENDATIONS: Dict[str, Tuple[str, ...]] = {
    "insufficient": (
        "Keep going, a few more answers will tune the level.",
        "Keep practicing so the level can adapt to you.",
    ),
    "flow": (
        "This level suits you. Keep it up!",
        "You're in the zone. Carry on!",
    ),
    "increase": (
        "Try something more challenging to keep improving!",
        "You're ready for a tougher challenge.",
    ),
    "decrease": (
        "Let's step back a little and build up from the basics.",
        "Slightly easier material will help this stick.",
    ),
    "nudge_down": (
        "Easing off slightly to build your confidence.",
    ),
    "nudge_up": (
        "Raising the level slightly for a bit more challenge.",
    ),
    "keep": (
        "Keep this pace!",
        "Nice and steady. Keep going!",
    ),
    "undetermined": (
        "More answers are needed before changing the level.",
    ),
    "emergency_down": (
        "The level has been lowered a lot. Let's restart from the basics.",
    ),
    "emergency_up": (
        "The level has been raised a lot. Time for harder material!",
    ),
    "emergency_confidence": (
        "The level has been lowered to help you regain confidence.",
    ),
    "session_up": (
        "Great session! Try more challenging content next time.",
    ),
    "session_down": (
        "Start next session by reviewing the basics.",
    ),
    "session_keep": (
        "Keep learning at this pace next session.",
    ),
}


def get_difficulty_label(difficulty: float) -> str:
    """Human-readable band for a difficulty value."""
    if difficulty < 0.3:
        return "Beginner"
    if difficulty < 0.5:
        return "Elementary"
    if difficulty < 0.7:
        return "Intermediate"
    if difficulty < 0.9:
        return "Advanced"
    return "Expert"


def _mean(values: Sequence[float]) -> float:
    return statistics.fmean(values) if values else 0.0


def _percent(value: float) -> int:
    return int(round(value * 100))


class DifficultyAdjuster:
    """
    Recommends difficulty changes.

    Pure apart from the random source used to pick encouragement strings,
    which can be seeded for repeatable output.
    """

    def __init__(
        self,
        flow_detector: Optional[FlowStateDetector] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize the adjuster.

        Args:
            flow_detector: Detector used for the flow check in the table
            rng: Random source for recommendation strings
        """
        self.flow_detector = flow_detector or FlowStateDetector()
        self.rng = rng or random.Random()

    def _recommendation(self, outcome: str) -> str:
        return self.rng.choice(RECOMMENDATIONS[outcome])

    def _result(
        self,
        current: float,
        delta: float,
        reason: str,
        outcome: str,
        insufficient_data: bool = False,
        emergency: bool = False
    ) -> DifficultyAdjustment:
        # A keep is reported as exactly no change
        new_difficulty = round(clamp_difficulty(current + delta), 4) if delta else current

        return DifficultyAdjustment(
            new_difficulty=new_difficulty,
            previous_difficulty=current,
            change=round(new_difficulty - current, 4),
            reason=reason,
            recommendation=self._recommendation(outcome),
            insufficient_data=insufficient_data,
            emergency=emergency
        )

    def adjust_difficulty(
        self,
        current: float,
        metrics: Sequence[PerformanceMetric]
    ) -> DifficultyAdjustment:
        """
        Per-turn recommendation from the decision table.

        First match wins:
        1. In flow with quality >= 0.70: keep
        2. Mean accuracy > 0.85 and mean timing > 0.70: +0.10
        3. Mean accuracy < 0.60 or mean confidence < 0.50: -0.10
        4. Accuracy in [0.60, 0.85]: -0.05 below 0.70, +0.05 above 0.80, else keep
        5. Keep

        Args:
            current: Current difficulty in [0.2, 1.0]
            metrics: Session metric history, oldest first

        Returns:
            The adjustment; a no-op flagged ``insufficient_data`` when fewer
            than three samples exist
        """
        require_range(current, "current_difficulty", MIN_DIFFICULTY, MAX_DIFFICULTY)

        if len(metrics) < MIN_SAMPLES:
            return self._result(current, 0.0, "insufficient data", "insufficient", insufficient_data=True)

        recent = list(metrics[-RECENT_WINDOW:])
        mean_accuracy = _mean([m.accuracy for m in recent])
        mean_timing = _mean([m.timing_score for m in recent])
        mean_confidence = _mean([m.confidence for m in recent])

        is_flow = self.flow_detector.detect_flow(metrics)
        quality = self.flow_detector.calculate_flow_quality(metrics)

        if is_flow and quality >= 0.7:
            result = self._result(current, 0.0, f"flow maintained (quality {_percent(quality)}%)", "flow")
        elif mean_accuracy > 0.85 and mean_timing > 0.7:
            result = self._result(current, STEP, f"too easy (accuracy {_percent(mean_accuracy)}%)", "increase")
        elif mean_accuracy < 0.6 or mean_confidence < 0.5:
            if mean_accuracy < 0.6:
                reason = f"accuracy low ({_percent(mean_accuracy)}%)"
            else:
                reason = f"confidence low ({_percent(mean_confidence)}%)"
            result = self._result(current, -STEP, reason, "decrease")
        elif 0.6 <= mean_accuracy <= 0.85:
            if mean_accuracy < 0.7:
                result = self._result(current, -FINE_STEP, "slightly hard (nudging toward flow)", "nudge_down")
            elif mean_accuracy > 0.8:
                result = self._result(current, FINE_STEP, "slightly easy (nudging toward flow)", "nudge_up")
            else:
                result = self._result(current, 0.0, "near flow", "keep")
        else:
            result = self._result(current, 0.0, "undetermined", "undetermined")

        logger.debug(
            f"Difficulty {current} -> {result.new_difficulty}: {result.reason} "
            f"(accuracy={mean_accuracy:.2f}, timing={mean_timing:.2f}, confidence={mean_confidence:.2f})"
        )
        return result

    def emergency_adjust(
        self,
        current: float,
        metrics: Sequence[PerformanceMetric]
    ) -> Optional[DifficultyAdjustment]:
        """
        Override for extreme performance over the last three samples.

        Mean accuracy < 0.40 gives -0.20, > 0.95 gives +0.20; otherwise mean
        confidence < 0.30 gives -0.15.

        Returns:
            The override, or None if nothing fires or fewer than three
            samples exist
        """
        require_range(current, "current_difficulty", MIN_DIFFICULTY, MAX_DIFFICULTY)

        if len(metrics) < EMERGENCY_WINDOW:
            return None

        recent = list(metrics[-EMERGENCY_WINDOW:])
        mean_accuracy = _mean([m.accuracy for m in recent])
        mean_confidence = _mean([m.confidence for m in recent])

        if mean_accuracy < 0.4:
            result = self._result(current, -STEP * 2, "emergency: too hard", "emergency_down", emergency=True)
        elif mean_accuracy > 0.95:
            result = self._result(current, STEP * 2, "emergency: too easy", "emergency_up", emergency=True)
        elif mean_confidence < 0.3:
            result = self._result(
                current, -STEP * 1.5, "emergency: confidence low", "emergency_confidence", emergency=True
            )
        else:
            return None

        logger.info(f"Emergency difficulty override {current} -> {result.new_difficulty}: {result.reason}")
        return result

    def recommend(
        self,
        current: float,
        metrics: Sequence[PerformanceMetric]
    ) -> DifficultyAdjustment:
        """Next difficulty for the session; the emergency override wins when it fires."""
        override = self.emergency_adjust(current, metrics)
        if override is not None:
            return override
        return self.adjust_difficulty(current, metrics)

    def adjust_for_next_session(
        self,
        current: float,
        metrics: Sequence[PerformanceMetric]
    ) -> DifficultyAdjustment:
        """
        Recommendation for the next session from the whole session history.

        Requires at least five samples. Ten or more minutes of flow gives
        +0.10; otherwise a session mean accuracy below 0.50 gives -0.10.
        """
        require_range(current, "current_difficulty", MIN_DIFFICULTY, MAX_DIFFICULTY)

        if len(metrics) < SESSION_MIN_SAMPLES:
            return self._result(
                current, 0.0, "insufficient session data", "insufficient", insufficient_data=True
            )

        mean_accuracy = _mean([m.accuracy for m in metrics])
        flow_minutes = self.flow_detector.calculate_flow_duration(metrics)

        if flow_minutes is not None and flow_minutes >= SESSION_FLOW_MINUTES:
            return self._result(
                current, STEP, f"strong session (flow {int(round(flow_minutes))} min)", "session_up"
            )
        if mean_accuracy < 0.5:
            return self._result(
                current, -STEP, f"session was hard (accuracy {_percent(mean_accuracy)}%)", "session_down"
            )
        return self._result(current, 0.0, "steady progress", "session_keep")

    @staticmethod
    def analyze_difficulty_trend(history: Sequence[float]) -> DifficultyTrend:
        """
        Trend of recent difficulty values.

        Compares the means of the two halves of the last ten values; a rise of
        more than 0.1 is improving and a drop of more than 0.1 is declining.
        Fewer than five values is reported as stable.
        """
        if len(history) < 5:
            return DifficultyTrend(
                trend=TrendDirection.STABLE,
                average_difficulty=_mean(history) if history else 0.5,
                message="Not enough data yet."
            )

        recent = list(history[-10:])
        middle = len(recent) // 2
        difference = _mean(recent[middle:]) - _mean(recent[:middle])

        if difference > 0.1:
            trend, message = TrendDirection.IMPROVING, "Your level keeps rising!"
        elif difference < -0.1:
            trend, message = TrendDirection.DECLINING, "Things got harder lately. A review could help."
        else:
            trend, message = TrendDirection.STABLE, "You're holding your level steadily."

        return DifficultyTrend(trend=trend, average_difficulty=_mean(recent), message=message)


__all__ = [
    "DifficultyAdjuster",
    "get_difficulty_label",
    "RECOMMENDATIONS",
    "MIN_DIFFICULTY",
    "MAX_DIFFICULTY",
]
