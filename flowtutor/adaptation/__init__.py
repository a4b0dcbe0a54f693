"""
Adaptive Learning Package

Real-time difficulty adaptation for tutoring sessions:
- Per-turn performance scoring
- Flow-state detection
- Difficulty recommendations with an emergency override
"""

from flowtutor.adaptation.models import (
    PerformanceMetric, AggregatedMetrics, FlowVerdict, DifficultyAdjustment,
    DifficultyTrend, DifficultyState, TrendDirection, clamp_difficulty
)
from flowtutor.adaptation.scoring import PerformanceScorer, calculate_accuracy, levenshtein_distance
from flowtutor.adaptation.flow import FlowStateDetector
from flowtutor.adaptation.difficulty import DifficultyAdjuster, get_difficulty_label
from flowtutor.adaptation.engine import AdaptiveLearningEngine
