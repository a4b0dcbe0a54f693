"""
Tests for per-turn performance scoring.

Covers:
1. Edit distance and accuracy
2. Timing bands against the expected response time
3. Confidence estimation
4. Input validation and aggregation
"""

import datetime
import unittest

import pytest

from flowtutor.adaptation.models import PerformanceMetric
from flowtutor.adaptation.scoring import (
    PerformanceScorer,
    calculate_accuracy,
    estimate_confidence,
    evaluate_timing,
    expected_response_time,
    levenshtein_distance,
)
from flowtutor.common.clock import FixedClock
from flowtutor.common.error_handling import ValidationError

NOW = datetime.datetime(2024, 3, 1, 9, 0, tzinfo=datetime.timezone.utc)


class TestAccuracy(unittest.TestCase):
    """Test edit-distance accuracy."""

    def test_levenshtein_distance(self):
        self.assertEqual(levenshtein_distance("kitten", "sitting"), 3)
        self.assertEqual(levenshtein_distance("", "abc"), 3)
        self.assertEqual(levenshtein_distance("abc", "abc"), 0)

    def test_exact_match_ignores_case_and_whitespace(self):
        self.assertEqual(calculate_accuracy("Hello", "hello"), 1.0)
        self.assertEqual(calculate_accuracy("hello", "  hello  ".strip()), 1.0)

    def test_partial_match(self):
        self.assertAlmostEqual(calculate_accuracy("abcd", "abce"), 0.75)

    def test_empty_strings(self):
        """Both empty is a perfect match; one empty is a miss."""
        self.assertEqual(calculate_accuracy("", ""), 1.0)
        self.assertEqual(calculate_accuracy("abc", ""), 0.0)
        self.assertEqual(calculate_accuracy("", "abc"), 0.0)

    def test_completely_different(self):
        self.assertEqual(calculate_accuracy("abc", "xyz"), 0.0)


class TestTiming(unittest.TestCase):
    """Test timing scores."""

    def test_expected_response_time(self):
        self.assertAlmostEqual(expected_response_time(0.0), 5.0)
        self.assertAlmostEqual(expected_response_time(0.2), 10.0)
        self.assertAlmostEqual(expected_response_time(1.0), 30.0)

    def test_on_target(self):
        self.assertEqual(evaluate_timing(10.0, 0.2), 1.0)
        self.assertEqual(evaluate_timing(8.0, 0.2), 1.0)
        self.assertEqual(evaluate_timing(12.0, 0.2), 1.0)

    def test_off_target(self):
        # Outside +/-20% but within [0.5x, 2x]
        self.assertEqual(evaluate_timing(6.0, 0.2), 0.6)
        self.assertEqual(evaluate_timing(15.0, 0.2), 0.6)

    def test_extreme(self):
        self.assertEqual(evaluate_timing(4.0, 0.2), 0.3)
        self.assertEqual(evaluate_timing(25.0, 0.2), 0.3)


class TestConfidence(unittest.TestCase):
    """Test confidence estimation."""

    def test_fast_answer_boosts(self):
        self.assertAlmostEqual(estimate_confidence(0.8, 5.0), 0.9)

    def test_slow_answer_penalizes(self):
        self.assertAlmostEqual(estimate_confidence(0.8, 40.0), 0.7)

    def test_hints_penalize(self):
        self.assertAlmostEqual(estimate_confidence(0.8, 15.0, hint_count=2), 0.6)

    def test_clamped(self):
        self.assertEqual(estimate_confidence(1.0, 1.0), 1.0)
        self.assertEqual(estimate_confidence(0.1, 40.0, hint_count=5), 0.0)


class TestPerformanceScorer(unittest.TestCase):
    """Test the PerformanceScorer class."""

    def setUp(self):
        self.scorer = PerformanceScorer(FixedClock(NOW))

    def test_score(self):
        metric = self.scorer.score("hello", "hello", 10.0, 0.2)
        self.assertEqual(metric.accuracy, 1.0)
        self.assertEqual(metric.timing_score, 1.0)
        self.assertEqual(metric.confidence, 1.0)
        self.assertEqual(metric.taken_at, NOW)
        self.assertEqual(metric.hint_count, 0)

    def test_scores_are_probabilities(self):
        for answer, elapsed, difficulty in [("", 0.0, 0.0), ("abc", 500.0, 1.0), ("hi", 3.0, 0.5)]:
            metric = self.scorer.score(answer, "hello there", elapsed, difficulty, hint_count=3)
            for value in (metric.accuracy, metric.timing_score, metric.confidence):
                self.assertGreaterEqual(value, 0.0)
                self.assertLessEqual(value, 1.0)

    def test_explicit_timestamp(self):
        taken_at = NOW - datetime.timedelta(minutes=3)
        metric = self.scorer.score("a", "a", 10.0, 0.2, taken_at=taken_at)
        self.assertEqual(metric.taken_at, taken_at)

    def test_rejects_bad_input(self):
        with self.assertRaises(ValidationError):
            self.scorer.score("a", "a", -1.0, 0.5)
        with self.assertRaises(ValidationError):
            self.scorer.score("a", "a", 5.0, 1.5)
        with self.assertRaises(ValidationError):
            self.scorer.score("a", "a", 5.0, 0.5, hint_count=-1)
        with self.assertRaises(ValidationError):
            self.scorer.score("a", "a", float("nan"), 0.5)

    def test_metric_rejects_out_of_range(self):
        with self.assertRaises(ValidationError):
            PerformanceMetric(accuracy=1.2, timing_score=0.5, confidence=0.5, taken_at=NOW)

    def test_metric_parses_timestamp(self):
        metric = PerformanceMetric(accuracy=0.5, timing_score=0.5, confidence=0.5, taken_at=NOW.isoformat())
        self.assertEqual(metric.taken_at, NOW)


def test_aggregate_metrics_empty():
    aggregated = PerformanceScorer.aggregate_metrics([])
    assert aggregated.avg_accuracy == 0.5
    assert aggregated.flow_state is False


def test_aggregate_metrics_flow():
    metrics = [
        PerformanceMetric(accuracy=0.75, timing_score=1.0, confidence=0.8, taken_at=NOW),
        PerformanceMetric(accuracy=0.7, timing_score=0.6, confidence=0.7, taken_at=NOW),
    ]
    aggregated = PerformanceScorer.aggregate_metrics(metrics)
    assert aggregated.avg_accuracy == pytest.approx(0.725)
    assert aggregated.avg_timing == pytest.approx(0.8)
    assert aggregated.flow_state is True
