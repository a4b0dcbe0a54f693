"""
Gamification Service

Facade over the XP, streak and garden ledgers and the leaderboard. The
learner-action hooks credit action XP and record the day's activity for
the streak in one transaction, so a retried hook never leaves XP without
the streak update or the reverse.
"""

from typing import List, Optional, Tuple, Union

from redis.asyncio import Redis as AsyncRedis

from flowtutor.common.clock import Clock, SystemClock, calendar_date
from flowtutor.common.config import AppConfig, LedgerConfig, get_config
from flowtutor.common.logger import app_logger, configure_logger
from flowtutor.common.redis import get_redis_client
from flowtutor.common.storage import RecordStore, SQLRecordStore, create_record_store
from flowtutor.common.validation import require_non_empty, require_range
from flowtutor.gamification.garden import MistakeGarden
from flowtutor.gamification.leaderboard import Leaderboard
from flowtutor.gamification.models import (
    ActivityResult,
    CalendarDay,
    GamificationRecord,
    GardenStats,
    InactivityOutcome,
    LeaderboardEntry,
    MistakeCategory,
    Plant,
    SeedResult,
    StreakRecord,
    StreakStatus,
    StreakUpdate,
    WaterResult,
    XPGrantResult,
    XPHistoryEntry,
    XPStatus,
    gamification_key,
    streak_key,
)
from flowtutor.gamification.rewards import PRONUNCIATION_BONUS_THRESHOLD, XPReward
from flowtutor.gamification.streaks import StreakLedger, apply_activity
from flowtutor.gamification.xp import XPLedger

# Set up module logger
logger = app_logger.getChild("gamification.service")


class GamificationService:
    """
    Entry point for the external chat and lesson handlers.

    Owns one instance of each ledger sharing a store, a clock and a
    leaderboard.
    """

    def __init__(
        self,
        store: RecordStore,
        clock: Optional[Clock] = None,
        config: Optional[LedgerConfig] = None,
        redis_client: Optional[AsyncRedis] = None,
        key_prefix: str = "flowtutor:"
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config or store.ledger_config
        self.leaderboard = Leaderboard(store, redis_client, key_prefix)
        self.xp = XPLedger(store, self.clock, self.config, self.leaderboard)
        self.streaks = StreakLedger(store, self.clock, self.config, self.leaderboard)
        self.garden = MistakeGarden(store, self.clock, self.leaderboard)

    @classmethod
    async def from_config(
        cls,
        config: Optional[AppConfig] = None,
        clock: Optional[Clock] = None
    ) -> "GamificationService":
        """
        Build the service from application settings.

        Creates the ledger table when the store is SQL-backed.
        """
        config = config or get_config()
        configure_logger(config.logging)

        store = create_record_store(config)
        if isinstance(store, SQLRecordStore):
            await store.create_schema()

        redis_client = get_redis_client(config.redis)
        logger.info(
            f"Gamification service ready (storage={config.storage.url.split('://')[0]}, "
            f"redis={'on' if redis_client is not None else 'off'})"
        )
        return cls(
            store,
            clock=clock,
            config=config.ledger,
            redis_client=redis_client,
            key_prefix=config.redis.key_prefix
        )

    async def close(self) -> None:
        await self.store.close()

    # Learner-action hooks

    async def _record_action(self, user_id: str, rewards: List[Tuple[int, str]], operation: str) -> ActivityResult:
        require_non_empty(user_id, "user_id")

        gkey = gamification_key(user_id)
        skey = streak_key(user_id)
        now = self.clock.now()
        today = calendar_date(now, self.config.tzinfo)

        def apply(snapshot):
            record = GamificationRecord.load(user_id, snapshot[gkey], now)
            streak = StreakRecord.load(user_id, snapshot[skey])

            grants = [record.add_xp(amount, reason, now) for amount, reason in rewards]
            update, streak_changed = apply_activity(streak, record, today, now)

            writes = {gkey: record.to_dict()}
            if streak_changed:
                writes[skey] = streak.to_dict()
            return writes, (ActivityResult(xp=grants, streak=update), record.xp)

        result, total_xp = await self.store.transact([gkey, skey], apply, operation=operation)

        logger.debug(
            f"User {user_id} {operation}: +{result.total_earned} XP, streak {result.streak.streak}"
        )
        if result.streak.milestone is not None:
            logger.info(f"User {user_id} reached streak milestone {result.streak.milestone.badge}")

        await self.leaderboard.publish(user_id, total_xp)
        return result

    async def on_text_message(self, user_id: str) -> ActivityResult:
        """A learner sent a text chat message."""
        return await self._record_action(
            user_id,
            [(XPReward.TEXT_MESSAGE, "text message")],
            "on_text_message"
        )

    async def on_voice_message(
        self,
        user_id: str,
        pronunciation_score: Optional[float] = None
    ) -> ActivityResult:
        """
        A learner sent a voice message.

        Args:
            user_id: Learner id
            pronunciation_score: Score out of 100; at or above the bonus
                threshold earns the pronunciation bonus
        """
        rewards = [(XPReward.VOICE_MESSAGE, "voice message")]
        if pronunciation_score is not None:
            require_range(pronunciation_score, "pronunciation_score", 0, 100)
            if pronunciation_score >= PRONUNCIATION_BONUS_THRESHOLD:
                rewards.append((XPReward.PRONUNCIATION_BONUS, "pronunciation bonus"))
        return await self._record_action(user_id, rewards, "on_voice_message")

    async def on_lesson_completed(self, user_id: str) -> ActivityResult:
        """A learner finished a tutor lesson."""
        return await self._record_action(
            user_id,
            [(XPReward.TUTOR_LESSON, "tutor lesson completed")],
            "on_lesson_completed"
        )

    async def on_daily_goal(self, user_id: str) -> Optional[XPGrantResult]:
        """Pay the daily goal bonus if earned and not yet paid today."""
        return await self.xp.check_daily_goal(user_id)

    # XP

    async def grant_xp(self, user_id: str, amount: int, reason: str) -> XPGrantResult:
        return await self.xp.grant_xp(user_id, amount, reason)

    async def get_record(self, user_id: str) -> GamificationRecord:
        return await self.xp.get_record(user_id)

    async def get_xp_status(self, user_id: str) -> XPStatus:
        return await self.xp.get_xp_status(user_id)

    async def get_daily_xp(self, user_id: str) -> int:
        return await self.xp.get_daily_xp(user_id)

    async def get_weekly_xp(self, user_id: str) -> int:
        return await self.xp.get_weekly_xp(user_id)

    async def get_recent_transactions(self, user_id: str, limit: int = 10) -> List[XPHistoryEntry]:
        return await self.xp.get_recent_transactions(user_id, limit)

    # Streaks

    async def record_activity(self, user_id: str) -> StreakUpdate:
        return await self.streaks.record_activity(user_id)

    async def grant_freeze(self, user_id: str, count: int = 1) -> int:
        return await self.streaks.grant_freeze(user_id, count)

    async def get_streak_status(self, user_id: str) -> StreakStatus:
        return await self.streaks.get_streak_status(user_id)

    async def get_streak_calendar(self, user_id: str, days: Optional[int] = None) -> List[CalendarDay]:
        return await self.streaks.get_streak_calendar(user_id, days)

    async def check_inactive_streak(self, user_id: str) -> InactivityOutcome:
        return await self.streaks.check_inactive_streak(user_id)

    # Garden

    async def plant_seed(
        self,
        user_id: str,
        item: str,
        category: Union[MistakeCategory, str],
        context: Optional[str] = None
    ) -> SeedResult:
        return await self.garden.plant_seed(user_id, item, category, context)

    async def water_plant(self, user_id: str, plant_id: str, success: bool) -> WaterResult:
        return await self.garden.water_plant(user_id, plant_id, success)

    async def get_garden(self, user_id: str) -> List[Plant]:
        return await self.garden.get_garden(user_id)

    async def get_plant(self, user_id: str, plant_id: str) -> Optional[Plant]:
        return await self.garden.get_plant(user_id, plant_id)

    async def get_plants_needing_water(self, user_id: str, limit: int = 5) -> List[Plant]:
        return await self.garden.get_plants_needing_water(user_id, limit)

    async def get_garden_stats(self, user_id: str) -> GardenStats:
        return await self.garden.get_garden_stats(user_id)

    # Leaderboard

    async def get_leaderboard(self, limit: int = 10) -> List[LeaderboardEntry]:
        return await self.leaderboard.top(limit)

    async def get_rank(self, user_id: str) -> Optional[int]:
        return await self.leaderboard.rank(user_id)
