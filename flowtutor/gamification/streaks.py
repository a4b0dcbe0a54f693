"""
Streak Ledger

Daily activity streaks with freeze tokens. Days are calendar dates in the
ledger's reference timezone (UTC unless configured otherwise), applied
consistently to every comparison.

Milestone XP is credited to the gamification record in the same
transaction as the streak update, so a milestone is never paid without the
streak that earned it.
"""

import datetime
from typing import List, Optional, Tuple

from flowtutor.common.clock import Clock, SystemClock, calendar_date
from flowtutor.common.config import LedgerConfig
from flowtutor.common.logger import app_logger
from flowtutor.common.storage import RecordStore
from flowtutor.common.validation import require_non_empty, require_positive_int
from flowtutor.gamification.leaderboard import Leaderboard
from flowtutor.gamification.models import (
    BadgeKind,
    CalendarDay,
    GamificationRecord,
    InactivityOutcome,
    StreakHistoryEntry,
    StreakRecord,
    StreakStatus,
    StreakUpdate,
    gamification_key,
    streak_key,
)
from flowtutor.gamification.rewards import milestone_for

# Set up module logger
logger = app_logger.getChild("gamification.streaks")


def apply_activity(
    streak: StreakRecord,
    record: GamificationRecord,
    today: datetime.date,
    now: datetime.datetime
) -> Tuple[StreakUpdate, bool]:
    """
    Advance a streak for activity on ``today``.

    - Already active today (or a last date in the future): no change
    - No streak yet: start at 1
    - Active yesterday: +1, paying any milestone reached exactly
    - Gap of two or more days with a freeze: spend it, keep the streak
    - Otherwise: restart at 1

    Args:
        streak: Streak record, mutated in place
        record: Gamification record credited with milestone XP
        today: Today's date in the reference timezone
        now: Current instant for badge and XP timestamps

    Returns:
        The update and whether either record changed
    """
    last = streak.last_activity_date

    if last is not None and last >= today:
        return StreakUpdate(
            streak=streak.streak_days,
            longest_streak=streak.longest_streak,
            increased=False
        ), False

    if last is None or streak.streak_days == 0:
        streak.set_streak(1)
        streak.last_activity_date = today
        streak.history.append(StreakHistoryEntry(date=today, active=True))
        streak.updated_at = now
        update = StreakUpdate(streak=1, longest_streak=streak.longest_streak, increased=True)

    elif last == today - datetime.timedelta(days=1):
        streak.set_streak(streak.streak_days + 1)
        streak.last_activity_date = today
        streak.history.append(StreakHistoryEntry(date=today, active=True))
        streak.updated_at = now
        update = StreakUpdate(
            streak=streak.streak_days,
            longest_streak=streak.longest_streak,
            increased=True
        )

    elif streak.freeze_count > 0:
        streak.freeze_count -= 1
        streak.last_activity_date = today
        streak.history.append(StreakHistoryEntry(date=today, active=True, freeze_used=True))
        streak.updated_at = now
        return StreakUpdate(
            streak=streak.streak_days,
            longest_streak=streak.longest_streak,
            increased=False,
            freeze_used=True
        ), True

    else:
        streak.streak_days = 1
        streak.last_activity_date = today
        streak.history.append(StreakHistoryEntry(date=today, active=True, reset=True))
        streak.updated_at = now
        return StreakUpdate(
            streak=1,
            longest_streak=streak.longest_streak,
            increased=False,
            reset=True
        ), True

    milestone = milestone_for(streak.streak_days)
    if milestone is not None:
        record.award_badge(milestone.badge, f"{milestone.days}-day streak", BadgeKind.STREAK, now)
        update.milestone = milestone
        update.milestone_xp = record.add_xp(milestone.xp, f"{milestone.days}-day streak", now)

    return update, True


class StreakLedger:
    """Transactional streak updates and streak read models."""

    def __init__(
        self,
        store: RecordStore,
        clock: Optional[Clock] = None,
        config: Optional[LedgerConfig] = None,
        leaderboard: Optional[Leaderboard] = None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config or store.ledger_config
        self.leaderboard = leaderboard

    def today(self) -> datetime.date:
        return calendar_date(self.clock.now(), self.config.tzinfo)

    async def record_activity(self, user_id: str) -> StreakUpdate:
        """
        Record that a learner was active now.

        Calling it again on the same day returns ``increased=False`` and
        leaves the streak unchanged.

        Raises:
            ValidationError: On a missing user id
            TransientError: If the transaction could not commit
        """
        require_non_empty(user_id, "user_id")

        skey = streak_key(user_id)
        gkey = gamification_key(user_id)
        now = self.clock.now()
        today = calendar_date(now, self.config.tzinfo)

        def apply(snapshot):
            streak = StreakRecord.load(user_id, snapshot[skey])
            record = GamificationRecord.load(user_id, snapshot[gkey], now)
            update, changed = apply_activity(streak, record, today, now)
            if not changed:
                return {}, update

            writes = {skey: streak.to_dict()}
            if update.milestone is not None:
                writes[gkey] = record.to_dict()
            return writes, update

        update = await self.store.transact([skey, gkey], apply, operation="record_activity")
        self._log_update(user_id, update)

        if update.milestone_xp is not None and self.leaderboard is not None:
            await self.leaderboard.publish(user_id, update.milestone_xp.total_xp)
        return update

    def _log_update(self, user_id: str, update: StreakUpdate) -> None:
        if update.milestone is not None:
            logger.info(
                f"User {user_id} reached the {update.milestone.days}-day streak milestone "
                f"({update.milestone.badge}, +{update.milestone.xp} XP)"
            )
        elif update.reset:
            logger.info(f"User {user_id} streak reset to 1")
        elif update.freeze_used:
            logger.info(f"User {user_id} used a streak freeze at {update.streak} days")
        else:
            logger.debug(f"User {user_id} streak {update.streak} (increased={update.increased})")

    async def grant_freeze(self, user_id: str, count: int = 1) -> int:
        """
        Add freeze tokens.

        Returns:
            The learner's freeze count after the grant
        """
        require_non_empty(user_id, "user_id")
        require_positive_int(count, "count")

        key = streak_key(user_id)
        now = self.clock.now()

        def apply(snapshot):
            streak = StreakRecord.load(user_id, snapshot[key])
            streak.freeze_count += count
            streak.updated_at = now
            return {key: streak.to_dict()}, streak.freeze_count

        freeze_count = await self.store.transact([key], apply, operation="grant_freeze")
        logger.info(f"Granted {count} streak freeze(s) to user {user_id}, now {freeze_count}")
        return freeze_count

    async def _load(self, user_id: str) -> StreakRecord:
        require_non_empty(user_id, "user_id")
        return StreakRecord.load(user_id, await self.store.get(streak_key(user_id)))

    async def get_streak_status(self, user_id: str) -> StreakStatus:
        streak = await self._load(user_id)
        today = self.today()
        week_start = today - datetime.timedelta(days=6)
        active_days = {
            entry.date for entry in streak.history
            if entry.active and week_start <= entry.date <= today
        }

        return StreakStatus(
            streak=streak.streak_days,
            longest_streak=streak.longest_streak,
            freeze_count=streak.freeze_count,
            last_activity_date=streak.last_activity_date,
            is_active_today=streak.last_activity_date == today,
            active_days_last_week=len(active_days)
        )

    async def get_streak_calendar(self, user_id: str, days: Optional[int] = None) -> List[CalendarDay]:
        """
        Activity for the last ``days`` days, oldest first, ending today.

        Defaults to the configured calendar length.
        """
        days = days if days is not None else self.config.calendar_days
        require_positive_int(days, "days")

        streak = await self._load(user_id)
        today = self.today()

        calendar = []
        for offset in range(days - 1, -1, -1):
            day = today - datetime.timedelta(days=offset)
            entries = [entry for entry in streak.history if entry.date == day]
            calendar.append(CalendarDay(
                date=day,
                active=any(entry.active for entry in entries),
                freeze_used=any(entry.freeze_used for entry in entries)
            ))
        return calendar

    async def check_inactive_streak(self, user_id: str) -> InactivityOutcome:
        """
        Nightly check for one learner.

        If the learner was last active before yesterday, spend a freeze to
        cover yesterday or reset the streak to 0.
        """
        require_non_empty(user_id, "user_id")

        key = streak_key(user_id)
        now = self.clock.now()
        yesterday = calendar_date(now, self.config.tzinfo) - datetime.timedelta(days=1)

        def apply(snapshot):
            streak = StreakRecord.load(user_id, snapshot[key])
            last = streak.last_activity_date

            if last is None or streak.streak_days == 0:
                return {}, InactivityOutcome.NO_STREAK
            if last >= yesterday:
                return {}, InactivityOutcome.SAFE

            if streak.freeze_count > 0:
                streak.freeze_count -= 1
                # Yesterday counts as covered, so activity today continues the streak
                streak.last_activity_date = yesterday
                streak.history.append(StreakHistoryEntry(date=yesterday, active=False, freeze_used=True))
                outcome = InactivityOutcome.FREEZE_USED
            else:
                streak.streak_days = 0
                streak.history.append(StreakHistoryEntry(date=yesterday, active=False, reset=True))
                outcome = InactivityOutcome.RESET

            streak.updated_at = now
            return {key: streak.to_dict()}, outcome

        outcome = await self.store.transact([key], apply, operation="check_inactive_streak")
        if outcome in (InactivityOutcome.FREEZE_USED, InactivityOutcome.RESET):
            logger.info(f"User {user_id} inactivity check: {outcome.value}")
        return outcome
