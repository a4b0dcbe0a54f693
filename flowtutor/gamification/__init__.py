"""
Gamification Package

Durable learner progress:
- XP with derived levels, badges and history
- Daily streaks with freeze tokens and milestones
- The mistake garden
- An all-time XP leaderboard
"""

from flowtutor.gamification.levels import (
    calculate_level, get_xp_for_level, get_level_progress, get_level_title, get_level_badge
)
from flowtutor.gamification.rewards import (
    XPReward, STREAK_MILESTONES, StreakMilestone, LevelUpReward, level_up_reward
)
from flowtutor.gamification.models import (
    GamificationRecord, StreakRecord, Plant, PlantStage, MistakeCategory, BadgeKind,
    XPGrantResult, StreakUpdate, SeedResult, WaterResult, GardenStats, XPStatus,
    StreakStatus, CalendarDay, InactivityOutcome, LeaderboardEntry, ActivityResult
)
from flowtutor.gamification.leaderboard import Leaderboard
from flowtutor.gamification.xp import XPLedger
from flowtutor.gamification.streaks import StreakLedger
from flowtutor.gamification.garden import MistakeGarden
from flowtutor.gamification.service import GamificationService
