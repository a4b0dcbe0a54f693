"""
Reward Schedule

Every XP amount, streak milestone and level-up reward the ledger hands out
is declared here.
"""

import enum
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from flowtutor.common.serialization import SerializableMixin
from flowtutor.gamification.levels import get_level_badge, get_level_title


class XPReward(enum.IntEnum):
    """Fixed XP amounts for learner actions."""
    TEXT_MESSAGE = 5
    VOICE_MESSAGE = 10
    TUTOR_LESSON = 50
    PRONUNCIATION_BONUS = 5
    DAILY_GOAL = 100
    SEED = 10
    WATER = 15
    BLOOM = 100


# Pronunciation score (0-100) that earns the voice bonus
PRONUNCIATION_BONUS_THRESHOLD = 90

# XP earned in a day before the daily goal bonus is paid
DAILY_GOAL_THRESHOLD = 100

LEVEL_BONUS_PER_LEVEL = 10


class MilestoneTier(enum.Enum):
    """Streak milestone tiers."""
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    DIAMOND = "diamond"


@dataclass(frozen=True)
class StreakMilestone(SerializableMixin):
    """Badge and XP paid when a streak reaches exactly ``days``."""

    __serializable_fields__ = ["days", "tier", "badge", "xp"]

    days: int
    tier: MilestoneTier
    badge: str
    xp: int


STREAK_MILESTONES: Tuple[StreakMilestone, ...] = (
    StreakMilestone(7, MilestoneTier.BRONZE, "bronze_streak", 100),
    StreakMilestone(30, MilestoneTier.SILVER, "silver_streak", 500),
    StreakMilestone(100, MilestoneTier.GOLD, "gold_streak", 2000),
    StreakMilestone(365, MilestoneTier.DIAMOND, "diamond_streak", 10000),
)

_MILESTONES_BY_DAYS: Dict[int, StreakMilestone] = {m.days: m for m in STREAK_MILESTONES}


def milestone_for(streak_days: int) -> Optional[StreakMilestone]:
    """Milestone reached by exactly this streak length, if any."""
    return _MILESTONES_BY_DAYS.get(streak_days)


@dataclass(frozen=True)
class LevelUpReward(SerializableMixin):
    """
    Reward descriptor returned on level-up.

    ``bonus`` is informational; it is not credited to the learner's XP.
    """

    __serializable_fields__ = ["level", "badge", "title", "bonus"]

    level: int
    badge: str
    title: str
    bonus: int


def level_up_reward(level: int) -> LevelUpReward:
    return LevelUpReward(
        level=level,
        badge=get_level_badge(level),
        title=get_level_title(level),
        bonus=level * LEVEL_BONUS_PER_LEVEL
    )
