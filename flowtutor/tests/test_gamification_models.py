"""
Tests for the gamification records.

These cover the in-memory state transitions only; persistence and
concurrency are covered by the ledger tests.
"""

import datetime
import unittest

from flowtutor.gamification.models import (
    BadgeKind,
    GamificationRecord,
    MistakeCategory,
    Plant,
    PlantStage,
    StreakRecord,
    plant_id_for,
)

NOW = datetime.datetime(2024, 3, 1, 9, 0, tzinfo=datetime.timezone.utc)


class TestGamificationRecord(unittest.TestCase):
    """Test XP credits and badges on the record."""

    def setUp(self):
        self.record = GamificationRecord.load("alice", None, NOW)

    def test_fresh_record(self):
        self.assertEqual(self.record.xp, 0)
        self.assertEqual(self.record.level, 0)
        self.assertEqual(self.record.badges, [])
        self.assertEqual(self.record.created_at, NOW)

    def test_add_xp_history(self):
        self.record.add_xp(40, "text message", NOW)
        self.record.add_xp(30, "voice message", NOW)
        self.assertEqual(self.record.xp, 70)
        self.assertEqual([e.running_total for e in self.record.xp_history], [40, 70])
        self.assertEqual(self.record.xp_history[1].reason, "voice message")

    def test_level_up(self):
        self.record.add_xp(90, "warm up", NOW)
        result = self.record.add_xp(20, "lesson", NOW)
        self.assertTrue(result.leveled_up)
        self.assertEqual(result.previous_level, 0)
        self.assertEqual(result.current_level, 1)
        self.assertEqual(result.level_up_reward.bonus, 10)
        # The bonus is descriptive only
        self.assertEqual(self.record.xp, 110)
        self.assertTrue(self.record.has_badge("level_1"))

    def test_multi_level_jump(self):
        result = self.record.add_xp(650, "backfill", NOW)
        self.assertEqual(result.previous_level, 0)
        self.assertEqual(result.current_level, 3)
        self.assertEqual(result.level_up_reward.level, 3)

    def test_rejects_non_positive(self):
        with self.assertRaises(ValueError):
            self.record.add_xp(0, "nothing", NOW)

    def test_award_badge_is_idempotent(self):
        self.assertTrue(self.record.award_badge("bronze_streak", "7-day streak", BadgeKind.STREAK, NOW))
        self.assertFalse(self.record.award_badge("bronze_streak", "7-day streak", BadgeKind.STREAK, NOW))
        self.assertEqual(self.record.badge_ids, ["bronze_streak"])

    def test_document_round_trip(self):
        self.record.add_xp(120, "lesson", NOW)
        restored = GamificationRecord.load("alice", self.record.to_dict(), NOW)
        self.assertEqual(restored.xp, 120)
        self.assertEqual(restored.badges[0].kind, BadgeKind.LEVEL)
        self.assertEqual(restored.xp_history[0].at, NOW)
        self.assertEqual(restored.to_dict(), self.record.to_dict())


class TestStreakRecord(unittest.TestCase):
    """Test the streak record."""

    def test_longest_follows_current(self):
        streak = StreakRecord(user_id="bob")
        streak.set_streak(4)
        streak.set_streak(1)
        self.assertEqual(streak.streak_days, 1)
        self.assertEqual(streak.longest_streak, 4)

    def test_parses_dates(self):
        streak = StreakRecord.from_dict({
            "user_id": "bob",
            "streak_days": 2,
            "longest_streak": 2,
            "last_activity_date": "2024-03-01",
            "freeze_count": 1,
            "history": [{"date": "2024-03-01", "active": True}],
        })
        self.assertEqual(streak.last_activity_date, datetime.date(2024, 3, 1))
        self.assertEqual(streak.history[0].date, datetime.date(2024, 3, 1))
        self.assertFalse(streak.history[0].freeze_used)


class TestPlant(unittest.TestCase):
    """Test plant growth."""

    def setUp(self):
        self.plant = Plant.seed("carol", "rendezvous", MistakeCategory.PRONUNCIATION, "said randezvous", NOW)

    def test_seed(self):
        self.assertEqual(self.plant.stage, PlantStage.SEED)
        self.assertEqual(self.plant.practice_count, 0)
        self.assertEqual(len(self.plant.error_history), 1)
        self.assertEqual(self.plant.plant_id, plant_id_for("rendezvous", MistakeCategory.PRONUNCIATION))

    def test_plant_ids_are_deterministic(self):
        self.assertEqual(
            plant_id_for("their", MistakeCategory.GRAMMAR),
            plant_id_for("their", MistakeCategory.GRAMMAR)
        )
        self.assertNotEqual(
            plant_id_for("their", MistakeCategory.GRAMMAR),
            plant_id_for("their", MistakeCategory.VOCABULARY)
        )

    def test_stage_bands(self):
        stages = []
        for _ in range(12):
            self.plant.practice(NOW)
            stages.append(self.plant.stage)

        self.assertEqual(stages[1], PlantStage.SEED)
        self.assertEqual(stages[2], PlantStage.SPROUT)
        self.assertEqual(stages[5], PlantStage.BUD)
        self.assertEqual(stages[8], PlantStage.BLOOM)
        self.assertEqual([s.rank for s in stages], sorted(s.rank for s in stages))
        self.assertEqual(self.plant.mastery_level, 1.0)

    def test_blooms_once(self):
        blooms = [self.plant.practice(NOW) for _ in range(12)]
        self.assertEqual(blooms.count(True), 1)
        self.assertTrue(blooms[8])
        self.assertEqual(self.plant.bloomed_at, NOW)

    def test_stage_survives_reload(self):
        for _ in range(4):
            self.plant.practice(NOW)
        restored = Plant.from_dict(self.plant.to_dict())
        self.assertEqual(restored.stage, PlantStage.SPROUT)
        self.assertEqual(restored.category, MistakeCategory.PRONUNCIATION)
        self.assertEqual(restored.badge_id, "bloom:pronunciation:rendezvous")
