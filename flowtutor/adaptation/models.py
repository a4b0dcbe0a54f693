"""
Adaptive Learning Models

This module defines the value types passed between the scorer, the flow
detector and the difficulty adjuster:
1. Per-turn performance metrics
2. Flow verdicts
3. Difficulty adjustments, state and trends

All of them are plain data; none is persisted by the core.
"""

import enum
import datetime
from dataclasses import dataclass, field
from typing import List, Optional

from flowtutor.common.serialization import SerializableMixin, parse_datetime
from flowtutor.common.validation import require_positive_int, require_probability

# Difficulty bounds shared by every adjustment path
MIN_DIFFICULTY = 0.2
MAX_DIFFICULTY = 1.0


def clamp_difficulty(value: float) -> float:
    """Clamp a difficulty into the playable range."""
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, value))


@dataclass(frozen=True)
class PerformanceMetric(SerializableMixin):
    """
    Normalized scores for one learner turn.

    Immutable; callers append these to a per-session history that the
    detectors read.
    """

    __serializable_fields__ = ["accuracy", "timing_score", "confidence", "taken_at", "hint_count"]
    __optional_fields__ = ["hint_count"]

    accuracy: float
    timing_score: float
    confidence: float
    taken_at: datetime.datetime
    hint_count: Optional[int] = None

    def __post_init__(self):
        require_probability(self.accuracy, "accuracy")
        require_probability(self.timing_score, "timing_score")
        require_probability(self.confidence, "confidence")
        if self.hint_count is not None:
            require_positive_int(self.hint_count, "hint_count", allow_zero=True)
        # Frozen dataclass, so normalize through object.__setattr__
        object.__setattr__(self, "taken_at", parse_datetime(self.taken_at))


@dataclass
class AggregatedMetrics(SerializableMixin):
    """Means over a batch of metrics plus a quick flow check."""

    __serializable_fields__ = ["avg_accuracy", "avg_timing", "avg_confidence", "flow_state"]

    avg_accuracy: float
    avg_timing: float
    avg_confidence: float
    flow_state: bool


@dataclass
class FlowVerdict(SerializableMixin):
    """Flow diagnosis for the recent window."""

    __serializable_fields__ = ["is_flow", "quality", "reasons"]

    is_flow: bool
    quality: float
    reasons: List[str] = field(default_factory=list)


@dataclass
class DifficultyAdjustment(SerializableMixin):
    """
    A difficulty recommendation.

    ``insufficient_data`` marks the no-op returned when the window is too
    short; ``emergency`` marks results from the override path.
    """

    __serializable_fields__ = [
        "new_difficulty", "previous_difficulty", "change", "reason",
        "recommendation", "insufficient_data", "emergency"
    ]

    new_difficulty: float
    previous_difficulty: float
    change: float
    reason: str
    recommendation: str = ""
    insufficient_data: bool = False
    emergency: bool = False

    @property
    def changed(self) -> bool:
        return self.change != 0


class TrendDirection(enum.Enum):
    """Direction of a learner's difficulty over time."""
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


@dataclass
class DifficultyTrend(SerializableMixin):
    """Summary of recent difficulty history."""

    __serializable_fields__ = ["trend", "average_difficulty", "message"]

    trend: TrendDirection
    average_difficulty: float
    message: str

    def __post_init__(self):
        if isinstance(self.trend, str):
            self.trend = TrendDirection(self.trend)


@dataclass
class DifficultyState(SerializableMixin):
    """Session-owned difficulty, always within [0.2, 1.0]."""

    __serializable_fields__ = ["current"]

    current: float = 0.5

    def __post_init__(self):
        self.current = clamp_difficulty(self.current)

    def apply(self, adjustment: DifficultyAdjustment) -> float:
        """Write an adjustment back and return the new value."""
        self.current = clamp_difficulty(adjustment.new_difficulty)
        return self.current
