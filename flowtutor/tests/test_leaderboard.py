"""
Tests for the XP leaderboard.

Redis is replaced with AsyncMock; the store-scan path runs against the
memory store.
"""

import datetime
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from flowtutor.common.clock import FixedClock
from flowtutor.common.storage import MemoryRecordStore
from flowtutor.gamification.leaderboard import Leaderboard
from flowtutor.gamification.xp import XPLedger

NOW = datetime.datetime(2024, 3, 1, 9, 0, tzinfo=datetime.timezone.utc)


async def seeded_store():
    store = MemoryRecordStore()
    ledger = XPLedger(store, FixedClock(NOW))
    await ledger.grant_xp("alice", 150, "seed")
    await ledger.grant_xp("bob", 400, "seed")
    await ledger.grant_xp("carol", 150, "seed")
    return store


@pytest.mark.asyncio
async def test_top_from_store_scan():
    leaderboard = Leaderboard(await seeded_store())

    entries = await leaderboard.top(10)
    assert [(e.rank, e.user_id, e.total_xp) for e in entries] == [
        (1, "bob", 400),
        (2, "alice", 150),
        (3, "carol", 150),
    ]
    assert entries[0].level == 2
    assert await leaderboard.top(0) == []


@pytest.mark.asyncio
async def test_rank_from_store_scan():
    leaderboard = Leaderboard(await seeded_store())
    assert await leaderboard.rank("bob") == 1
    assert await leaderboard.rank("carol") == 3
    assert await leaderboard.rank("nobody") is None


@pytest.mark.asyncio
async def test_top_from_redis():
    redis_mock = AsyncMock()
    redis_mock.zrevrange.return_value = [("bob", 400.0), ("alice", 150.0)]
    leaderboard = Leaderboard(MemoryRecordStore(), redis_mock, key_prefix="test:")

    entries = await leaderboard.top(2)

    redis_mock.zrevrange.assert_awaited_once_with("test:leaderboard:xp:all_time", 0, 1, withscores=True)
    assert [(e.rank, e.user_id, e.total_xp) for e in entries] == [(1, "bob", 400), (2, "alice", 150)]


@pytest.mark.asyncio
async def test_rank_from_redis():
    redis_mock = AsyncMock()
    redis_mock.zrevrank.return_value = 0
    leaderboard = Leaderboard(MemoryRecordStore(), redis_mock)
    assert await leaderboard.rank("bob") == 1

    redis_mock.zrevrank.return_value = None
    assert await leaderboard.rank("nobody") is None


@pytest.mark.asyncio
async def test_falls_back_to_scan_when_redis_fails():
    redis_mock = AsyncMock()
    redis_mock.zrevrange.side_effect = RedisConnectionError("down")
    redis_mock.zrevrank.side_effect = RedisConnectionError("down")
    leaderboard = Leaderboard(await seeded_store(), redis_mock)

    entries = await leaderboard.top(1)
    assert entries[0].user_id == "bob"
    assert await leaderboard.rank("alice") == 2


@pytest.mark.asyncio
async def test_publish_swallows_redis_errors():
    redis_mock = AsyncMock()
    redis_mock.zadd.side_effect = RedisConnectionError("down")
    leaderboard = Leaderboard(MemoryRecordStore(), redis_mock)

    await leaderboard.publish("alice", 10)
    redis_mock.zadd.assert_awaited_once()


@pytest.mark.asyncio
async def test_record_score_without_redis_is_noop():
    leaderboard = Leaderboard(MemoryRecordStore())
    await leaderboard.record_score("alice", 10)


@pytest.mark.asyncio
async def test_rebuild():
    redis_mock = AsyncMock()
    leaderboard = Leaderboard(await seeded_store(), redis_mock)

    assert await leaderboard.rebuild() == 3
    redis_mock.delete.assert_awaited_once_with("flowtutor:leaderboard:xp:all_time")
    redis_mock.zadd.assert_awaited_once_with(
        "flowtutor:leaderboard:xp:all_time",
        {"bob": 400, "alice": 150, "carol": 150}
    )


@pytest.mark.asyncio
async def test_record_score_keeps_highest_total():
    redis_mock = AsyncMock()
    leaderboard = Leaderboard(MemoryRecordStore(), redis_mock)

    # Publishes from two committed grants landing in reverse order
    await leaderboard.record_score("alice", 200)
    await leaderboard.record_score("alice", 100)

    for call in redis_mock.zadd.await_args_list:
        assert call.kwargs == {"gt": True}
    assert [call.args[1] for call in redis_mock.zadd.await_args_list] == [{"alice": 200}, {"alice": 100}]
