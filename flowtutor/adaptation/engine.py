"""
Adaptive Learning Engine

Single entry point for the session-turn handler. Wires the scorer, flow
detector and difficulty adjuster together; holds no per-session state, so
the caller supplies the metric history on every call.
"""

import datetime
import random
from typing import Optional, Sequence

from flowtutor.adaptation.difficulty import DifficultyAdjuster
from flowtutor.adaptation.flow import FlowStateDetector
from flowtutor.adaptation.models import DifficultyAdjustment, FlowVerdict, PerformanceMetric
from flowtutor.adaptation.scoring import PerformanceScorer
from flowtutor.common.clock import Clock


class AdaptiveLearningEngine:
    """Facade over scoring, flow detection and difficulty adjustment."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        scorer: Optional[PerformanceScorer] = None,
        flow_detector: Optional[FlowStateDetector] = None,
        adjuster: Optional[DifficultyAdjuster] = None
    ):
        self.scorer = scorer or PerformanceScorer(clock)
        self.flow_detector = flow_detector or FlowStateDetector()
        self.adjuster = adjuster or DifficultyAdjuster(self.flow_detector, rng)

    def score_turn(
        self,
        user_input: str,
        expected_output: str,
        elapsed_seconds: float,
        difficulty: float,
        hint_count: int = 0,
        taken_at: Optional[datetime.datetime] = None
    ) -> PerformanceMetric:
        return self.scorer.score(
            user_input, expected_output, elapsed_seconds, difficulty, hint_count, taken_at
        )

    def detect_flow(self, history: Sequence[PerformanceMetric]) -> FlowVerdict:
        return self.flow_detector.analyze_flow_state(history)

    def adjust_difficulty(
        self,
        current: float,
        history: Sequence[PerformanceMetric]
    ) -> DifficultyAdjustment:
        return self.adjuster.adjust_difficulty(current, history)

    def emergency_adjust(
        self,
        current: float,
        history: Sequence[PerformanceMetric]
    ) -> Optional[DifficultyAdjustment]:
        return self.adjuster.emergency_adjust(current, history)

    def next_difficulty(
        self,
        current: float,
        history: Sequence[PerformanceMetric]
    ) -> DifficultyAdjustment:
        """Recommendation for the next turn, with the emergency override taking precedence."""
        return self.adjuster.recommend(current, history)

    def adjust_for_next_session(
        self,
        current: float,
        history: Sequence[PerformanceMetric]
    ) -> DifficultyAdjustment:
        return self.adjuster.adjust_for_next_session(current, history)
