"""
Performance Scoring

Turns one raw learner interaction into a normalized metric triple:
accuracy from edit distance, timing quality against a difficulty-scaled
expected response time, and an estimated confidence.
"""

import datetime
import statistics
from typing import Optional, Sequence

from flowtutor.adaptation.models import AggregatedMetrics, PerformanceMetric
from flowtutor.common.clock import Clock, SystemClock
from flowtutor.common.logger import app_logger
from flowtutor.common.validation import require_positive_int, require_range

# Module logger
logger = app_logger.getChild("adaptation.scoring")

# Expected response time is BASE + difficulty * SPAN seconds
BASE_RESPONSE_SECONDS = 5.0
DIFFICULTY_RESPONSE_SECONDS = 25.0

TIMING_ON_TARGET = 1.0
TIMING_OFF_TARGET = 0.6
TIMING_EXTREME = 0.3

FAST_RESPONSE_SECONDS = 10.0
SLOW_RESPONSE_SECONDS = 30.0
CONFIDENCE_STEP = 0.1
HINT_PENALTY = 0.1


def levenshtein_distance(a: str, b: str) -> int:
    """
    Edit distance between two strings.

    Uses the two-row dynamic programming formulation.
    """
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j - 1], previous[j], current[j - 1]))
        previous = current
    return previous[-1]


def calculate_accuracy(user_input: str, expected_output: str) -> float:
    """
    Similarity between the learner's answer and the expected answer.

    Comparison is case-insensitive and ignores surrounding whitespace; the
    distance is normalized by the longer of the two raw strings.

    Args:
        user_input: What the learner produced
        expected_output: The reference answer

    Returns:
        Accuracy in [0, 1]; 1 when both are empty, 0 when only one is
    """
    if not user_input and not expected_output:
        return 1.0
    if not user_input or not expected_output:
        return 0.0

    distance = levenshtein_distance(
        user_input.strip().lower(),
        expected_output.strip().lower()
    )
    max_length = max(len(user_input), len(expected_output))
    return max(0.0, min(1.0, 1.0 - distance / max_length))


def expected_response_time(difficulty: float) -> float:
    """Seconds a well-matched learner should need at this difficulty."""
    return BASE_RESPONSE_SECONDS + DIFFICULTY_RESPONSE_SECONDS * difficulty


def evaluate_timing(elapsed_seconds: float, difficulty: float) -> float:
    """
    Score how well the response time matches the difficulty.

    Within 20% of the expected time scores 1.0; under half or over double
    scores 0.3; anything else scores 0.6.
    """
    target = expected_response_time(difficulty)

    if target * 0.8 <= elapsed_seconds <= target * 1.2:
        return TIMING_ON_TARGET

    # Too fast means too easy, too slow means too hard
    if elapsed_seconds < target * 0.5 or elapsed_seconds > target * 2:
        return TIMING_EXTREME

    return TIMING_OFF_TARGET


def estimate_confidence(accuracy: float, elapsed_seconds: float, hint_count: int = 0) -> float:
    """
    Estimate learner confidence from accuracy, speed and hints.

    Args:
        accuracy: Accuracy of the answer
        elapsed_seconds: Response time
        hint_count: Hints requested for this turn

    Returns:
        Confidence in [0, 1]
    """
    confidence = accuracy

    if elapsed_seconds < FAST_RESPONSE_SECONDS:
        confidence += CONFIDENCE_STEP
    elif elapsed_seconds > SLOW_RESPONSE_SECONDS:
        confidence -= CONFIDENCE_STEP

    confidence -= hint_count * HINT_PENALTY

    return max(0.0, min(1.0, confidence))


class PerformanceScorer:
    """
    Scores learner turns.

    Stateless apart from the clock used to timestamp metrics when the caller
    does not supply one.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()

    def score(
        self,
        user_input: str,
        expected_output: str,
        elapsed_seconds: float,
        difficulty: float,
        hint_count: int = 0,
        taken_at: Optional[datetime.datetime] = None
    ) -> PerformanceMetric:
        """
        Score one interaction.

        Args:
            user_input: Learner's answer
            expected_output: Reference answer
            elapsed_seconds: Time taken to answer, >= 0
            difficulty: Current difficulty in [0, 1]
            hint_count: Hints used, >= 0
            taken_at: Timestamp for the metric; defaults to the clock

        Returns:
            The metric for this turn

        Raises:
            ValidationError: On out-of-range input
        """
        require_range(elapsed_seconds, "elapsed_seconds", min_value=0)
        require_range(difficulty, "difficulty", 0.0, 1.0)
        require_positive_int(hint_count, "hint_count", allow_zero=True)

        accuracy = calculate_accuracy(user_input or "", expected_output or "")
        timing_score = evaluate_timing(elapsed_seconds, difficulty)
        confidence = estimate_confidence(accuracy, elapsed_seconds, hint_count)

        metric = PerformanceMetric(
            accuracy=accuracy,
            timing_score=timing_score,
            confidence=confidence,
            taken_at=taken_at or self.clock.now(),
            hint_count=hint_count
        )
        logger.debug(
            f"Scored turn: accuracy={accuracy:.2f} timing={timing_score:.2f} "
            f"confidence={confidence:.2f} (elapsed={elapsed_seconds}s, difficulty={difficulty})"
        )
        return metric

    @staticmethod
    def aggregate_metrics(metrics: Sequence[PerformanceMetric]) -> AggregatedMetrics:
        """
        Average a batch of metrics and run a quick flow check on the means.

        The full check with consistency lives in the flow detector.
        """
        if not metrics:
            return AggregatedMetrics(
                avg_accuracy=0.5,
                avg_timing=0.5,
                avg_confidence=0.5,
                flow_state=False
            )

        avg_accuracy = statistics.fmean(m.accuracy for m in metrics)
        avg_timing = statistics.fmean(m.timing_score for m in metrics)
        avg_confidence = statistics.fmean(m.confidence for m in metrics)

        return AggregatedMetrics(
            avg_accuracy=avg_accuracy,
            avg_timing=avg_timing,
            avg_confidence=avg_confidence,
            flow_state=(
                0.6 <= avg_accuracy <= 0.85
                and avg_timing >= 0.7
                and avg_confidence >= 0.6
            )
        )
