"""
XP Ledger

Credits experience points to a learner's gamification record. Every credit
is one atomic read-modify-write: the running total in the history entry and
the level-up detection both depend on the exact pre-update total, so a
blind increment would not do.
"""

import datetime
from typing import List, Optional

from flowtutor.common.clock import Clock, SystemClock, calendar_date
from flowtutor.common.config import LedgerConfig
from flowtutor.common.logger import LoggerAdapter, app_logger
from flowtutor.common.storage import RecordStore
from flowtutor.common.validation import require_non_empty, require_positive_int
from flowtutor.gamification.leaderboard import Leaderboard
from flowtutor.gamification.models import (
    GamificationRecord,
    XPGrantResult,
    XPHistoryEntry,
    XPStatus,
    gamification_key,
)
from flowtutor.gamification.rewards import DAILY_GOAL_THRESHOLD, XPReward

# Set up module logger
logger = app_logger.getChild("gamification.xp")

DAILY_GOAL_REASON = "daily goal reached"


class XPLedger:
    """
    Transactional XP credits and XP read models.

    Grants are not idempotent: retrying a grant whose outcome is unknown may
    credit twice, so callers dedupe at the request layer.
    """

    def __init__(
        self,
        store: RecordStore,
        clock: Optional[Clock] = None,
        config: Optional[LedgerConfig] = None,
        leaderboard: Optional[Leaderboard] = None
    ):
        """
        Initialize the ledger.

        Args:
            store: Record store for gamification records
            clock: Time source
            config: Ledger settings; defaults to the store's
            leaderboard: Leaderboard to mirror totals into after commits
        """
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config or store.ledger_config
        self.leaderboard = leaderboard

    async def _publish(self, user_id: str, total_xp: int) -> None:
        if self.leaderboard is not None:
            await self.leaderboard.publish(user_id, total_xp)

    async def grant_xp(self, user_id: str, amount: int, reason: str) -> XPGrantResult:
        """
        Credit XP to a learner.

        Args:
            user_id: Learner id
            amount: XP to add, a positive integer
            reason: Non-empty description kept in the history

        Returns:
            Totals after the credit and the level-up reward, if any

        Raises:
            ValidationError: On bad input, before any read
            TransientError: If the transaction could not commit
        """
        require_non_empty(user_id, "user_id")
        require_positive_int(amount, "amount")
        require_non_empty(reason, "reason")

        key = gamification_key(user_id)
        now = self.clock.now()

        def apply(snapshot):
            record = GamificationRecord.load(user_id, snapshot[key], now)
            result = record.add_xp(amount, reason, now)
            return {key: record.to_dict()}, result

        result = await self.store.transact([key], apply, operation="grant_xp")

        log = LoggerAdapter(logger, {"user_id": user_id})
        if result.leveled_up:
            log.info(
                f"User {user_id} reached level {result.current_level} "
                f"({result.level_up_reward.title}) with {result.total_xp} XP"
            )
        else:
            log.debug(f"Granted {amount} XP to user {user_id} for {reason!r}")

        await self._publish(user_id, result.total_xp)
        return result

    async def _load(self, user_id: str) -> GamificationRecord:
        require_non_empty(user_id, "user_id")
        document = await self.store.get(gamification_key(user_id))
        return GamificationRecord.load(user_id, document, self.clock.now())

    async def get_record(self, user_id: str) -> GamificationRecord:
        """Current gamification record (a fresh one if the learner has none)."""
        return await self._load(user_id)

    async def get_xp_status(self, user_id: str) -> XPStatus:
        record = await self._load(user_id)
        return XPStatus.for_xp(record.xp)

    async def get_daily_xp(self, user_id: str) -> int:
        """XP earned on today's calendar date in the reference timezone."""
        record = await self._load(user_id)
        tz = self.config.tzinfo
        today = calendar_date(self.clock.now(), tz)
        return sum(e.amount for e in record.xp_history if calendar_date(e.at, tz) == today)

    async def get_weekly_xp(self, user_id: str) -> int:
        """XP earned in the last seven days."""
        record = await self._load(user_id)
        since = self.clock.now() - datetime.timedelta(days=7)
        return sum(e.amount for e in record.xp_history if e.at >= since)

    async def get_recent_transactions(self, user_id: str, limit: int = 10) -> List[XPHistoryEntry]:
        """Most recent XP credits, newest first."""
        require_positive_int(limit, "limit")
        record = await self._load(user_id)
        return sorted(record.xp_history, key=lambda e: e.at, reverse=True)[:limit]

    async def check_daily_goal(self, user_id: str) -> Optional[XPGrantResult]:
        """
        Pay the daily goal bonus if today's XP reached the threshold.

        Paid at most once per calendar day; the check and the credit run in
        the same transaction.

        Returns:
            The bonus grant, or None if the goal is unmet or already paid
        """
        require_non_empty(user_id, "user_id")

        key = gamification_key(user_id)
        now = self.clock.now()
        tz = self.config.tzinfo
        today = calendar_date(now, tz)

        def apply(snapshot):
            record = GamificationRecord.load(user_id, snapshot[key], now)
            todays = [e for e in record.xp_history if calendar_date(e.at, tz) == today]

            if any(e.reason == DAILY_GOAL_REASON for e in todays):
                return {}, None
            if sum(e.amount for e in todays) < DAILY_GOAL_THRESHOLD:
                return {}, None

            result = record.add_xp(XPReward.DAILY_GOAL, DAILY_GOAL_REASON, now)
            return {key: record.to_dict()}, result

        result = await self.store.transact([key], apply, operation="check_daily_goal")

        if result is not None:
            logger.info(f"User {user_id} reached the daily goal")
            await self._publish(user_id, result.total_xp)
        return result
