"""
XP Leaderboard

All-time XP ranking. When Redis is configured, totals are mirrored into a
sorted set after each committed XP change; the record store stays the
source of truth and is scanned when Redis is absent or failing. Rankings
are eventually consistent.
"""

from typing import List, Optional, Tuple, Union

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from flowtutor.common.logger import app_logger, log_execution_time
from flowtutor.common.storage import RecordStore
from flowtutor.gamification.models import LeaderboardEntry

# Set up module logger
logger = app_logger.getChild("gamification.leaderboard")

RECORD_PREFIX = "gamification:"


def _decode(value: Union[bytes, str]) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class Leaderboard:
    """Ranks learners by total XP."""

    def __init__(
        self,
        store: RecordStore,
        redis_client: Optional[AsyncRedis] = None,
        key_prefix: str = "flowtutor:"
    ):
        """
        Initialize the leaderboard.

        Args:
            store: Record store holding the gamification records
            redis_client: Optional Redis client for the sorted set
            key_prefix: Prefix for Redis keys
        """
        self.store = store
        self.redis = redis_client
        self.key = f"{key_prefix}leaderboard:xp:all_time"

    async def record_score(self, user_id: str, total_xp: int) -> None:
        """
        Mirror a learner's total into Redis. No-op without Redis.

        Totals only grow, so the set keeps the larger score when publishes
        from concurrent grants arrive out of order.
        """
        if not self.redis:
            return
        await self.redis.zadd(self.key, {user_id: total_xp}, gt=True)

    async def publish(self, user_id: str, total_xp: int) -> None:
        """
        Best-effort ``record_score`` used after ledger commits.

        Failures are logged and swallowed; the committed XP is unaffected and
        the next update or a rebuild repairs the ranking.
        """
        try:
            await self.record_score(user_id, total_xp)
        except (RedisError, OSError) as e:
            logger.error(f"Error updating leaderboard for user {user_id}: {e}")

    async def _scan_totals(self) -> List[Tuple[str, int]]:
        records = await self.store.scan(RECORD_PREFIX)
        totals = [
            (document.get("user_id") or key[len(RECORD_PREFIX):], int(document.get("xp", 0)))
            for key, document in records.items()
        ]
        # Highest XP first, ties by user id
        totals.sort(key=lambda item: (-item[1], item[0]))
        return totals

    async def top(self, limit: int = 10) -> List[LeaderboardEntry]:
        """
        Top learners by XP.

        Args:
            limit: Maximum number of entries

        Returns:
            Entries ranked from 1
        """
        if limit <= 0:
            return []

        if self.redis:
            try:
                rows = await self.redis.zrevrange(self.key, 0, limit - 1, withscores=True)
                return [
                    LeaderboardEntry.for_user(rank, _decode(user_id), int(score))
                    for rank, (user_id, score) in enumerate(rows, start=1)
                ]
            except (RedisError, OSError) as e:
                logger.warning(f"Redis leaderboard unavailable, scanning records: {e}")

        totals = await self._scan_totals()
        return [
            LeaderboardEntry.for_user(rank, user_id, xp)
            for rank, (user_id, xp) in enumerate(totals[:limit], start=1)
        ]

    async def rank(self, user_id: str) -> Optional[int]:
        """A learner's 1-based rank, or None if they have no XP record."""
        if self.redis:
            try:
                rank = await self.redis.zrevrank(self.key, user_id)
                return rank + 1 if rank is not None else None
            except (RedisError, OSError) as e:
                logger.warning(f"Redis leaderboard unavailable, scanning records: {e}")

        for position, (candidate, _) in enumerate(await self._scan_totals(), start=1):
            if candidate == user_id:
                return position
        return None

    @log_execution_time(logger)
    async def rebuild(self) -> int:
        """Reload the Redis sorted set from the record store. Returns the entry count."""
        totals = await self._scan_totals()
        if not self.redis or not totals:
            return len(totals)
        await self.redis.delete(self.key)
        await self.redis.zadd(self.key, dict(totals))
        logger.info(f"Rebuilt XP leaderboard with {len(totals)} entries")
        return len(totals)
