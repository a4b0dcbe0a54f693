"""
Tests for the mistake garden.

Covers seeding, watering through the growth stages, the one-time bloom
bonus and the garden read models.
"""

import asyncio
import datetime

import pytest

from flowtutor.common.clock import FixedClock
from flowtutor.common.config import LedgerConfig
from flowtutor.common.error_handling import NotFoundError, ValidationError
from flowtutor.common.storage import MemoryRecordStore
from flowtutor.gamification.garden import MistakeGarden
from flowtutor.gamification.models import MistakeCategory, PlantStage
from flowtutor.gamification.xp import XPLedger

NOW = datetime.datetime(2024, 3, 1, 9, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def store():
    return MemoryRecordStore(LedgerConfig(max_retries=50, retry_delay=0.0, jitter=0.0))


@pytest.fixture
def garden(store, clock):
    return MistakeGarden(store, clock)


async def total_xp(store, clock, user_id="alice"):
    return (await XPLedger(store, clock).get_record(user_id)).xp


@pytest.mark.asyncio
async def test_plant_seed(garden, store, clock):
    result = await garden.plant_seed("alice", "their", MistakeCategory.GRAMMAR, "wrote there")

    assert result.new_seed is True
    assert result.xp.xp_earned == 10
    assert await total_xp(store, clock) == 10

    plant = await garden.get_plant("alice", result.plant_id)
    assert plant.stage == PlantStage.SEED
    assert plant.error_history[0].context == "wrote there"


@pytest.mark.asyncio
async def test_plant_seed_is_idempotent(garden, store, clock):
    first = await garden.plant_seed("alice", "their", "grammar", "wrote there")
    second = await garden.plant_seed("alice", "their", "grammar", "wrote they're")

    assert second.new_seed is False
    assert second.plant_id == first.plant_id
    assert second.xp is None
    assert await total_xp(store, clock) == 10

    plants = await garden.get_garden("alice")
    assert len(plants) == 1
    assert len(plants[0].error_history) == 2
    assert plants[0].error_history[1].corrected is False


@pytest.mark.asyncio
async def test_concurrent_seeding_creates_one_plant(garden, store, clock):
    results = await asyncio.gather(*[
        garden.plant_seed("alice", "rendezvous", MistakeCategory.PRONUNCIATION) for _ in range(5)
    ])

    assert sum(1 for r in results if r.new_seed) == 1
    assert len(await garden.get_garden("alice")) == 1
    assert await total_xp(store, clock) == 10


@pytest.mark.asyncio
async def test_plant_seed_validation(garden):
    with pytest.raises(ValidationError):
        await garden.plant_seed("alice", "their", "spelling")
    with pytest.raises(ValidationError):
        await garden.plant_seed("alice", "  ", MistakeCategory.GRAMMAR)


@pytest.mark.asyncio
async def test_water_missing_plant(garden):
    with pytest.raises(NotFoundError):
        await garden.water_plant("alice", "no-such-plant", True)


@pytest.mark.asyncio
async def test_water_grows_and_blooms_once(garden, store, clock):
    seed = await garden.plant_seed("alice", "their", MistakeCategory.GRAMMAR)

    results = []
    for _ in range(12):
        results.append(await garden.water_plant("alice", seed.plant_id, True))

    assert [r.practice_count for r in results] == list(range(1, 13))
    assert results[2].stage == PlantStage.SPROUT
    assert results[5].stage == PlantStage.BUD
    assert results[8].stage == PlantStage.BLOOM
    assert [r.bloomed for r in results].count(True) == 1
    assert results[8].bloomed is True
    assert results[8].xp_earned == 115
    assert results[11].mastery_level == 1.0

    # Seed, twelve practices and one bloom bonus
    assert await total_xp(store, clock) == 10 + 12 * 15 + 100

    record = await XPLedger(store, clock).get_record("alice")
    assert "bloom:grammar:their" in record.badge_ids


@pytest.mark.asyncio
async def test_failed_water_records_error(garden, store, clock):
    seed = await garden.plant_seed("alice", "their", MistakeCategory.GRAMMAR)
    await garden.water_plant("alice", seed.plant_id, True)

    result = await garden.water_plant("alice", seed.plant_id, False)
    assert result.practice_count == 1
    assert result.xp_earned == 0
    assert result.bloomed is False

    plant = await garden.get_plant("alice", seed.plant_id)
    assert len(plant.error_history) == 2
    assert await total_xp(store, clock) == 25


@pytest.mark.asyncio
async def test_concurrent_watering_blooms_once(garden, store, clock):
    seed = await garden.plant_seed("alice", "their", MistakeCategory.GRAMMAR)
    for _ in range(8):
        await garden.water_plant("alice", seed.plant_id, True)

    results = await asyncio.gather(*[
        garden.water_plant("alice", seed.plant_id, True) for _ in range(5)
    ])

    assert sum(1 for r in results if r.bloomed) == 1
    plant = await garden.get_plant("alice", seed.plant_id)
    assert plant.practice_count == 13
    assert await total_xp(store, clock) == 10 + 13 * 15 + 100


@pytest.mark.asyncio
async def test_garden_read_models(garden, clock):
    first = await garden.plant_seed("alice", "their", MistakeCategory.GRAMMAR)
    clock.advance(minutes=1)
    second = await garden.plant_seed("alice", "rendezvous", MistakeCategory.PRONUNCIATION)
    clock.advance(minutes=1)
    third = await garden.plant_seed("alice", "ubiquitous", MistakeCategory.VOCABULARY)

    for _ in range(3):
        await garden.water_plant("alice", first.plant_id, True)
    clock.advance(minutes=1)
    await garden.water_plant("alice", third.plant_id, True)

    plants = await garden.get_garden("alice")
    assert [p.plant_id for p in plants] == [third.plant_id, second.plant_id, first.plant_id]

    needing = await garden.get_plants_needing_water("alice", limit=2)
    # Seeds before sprouts; the never-practiced seed first
    assert [p.plant_id for p in needing] == [second.plant_id, third.plant_id]

    stats = await garden.get_garden_stats("alice")
    assert stats.total_plants == 3
    assert stats.seeds == 2
    assert stats.sprouting == 1
    assert stats.bloomed == 0
    assert stats.avg_mastery == pytest.approx((0.3 + 0.0 + 0.1) / 3, abs=1e-4)
    assert stats.categories == {"grammar": 1, "pronunciation": 1, "vocabulary": 1}


@pytest.mark.asyncio
async def test_gardens_do_not_leak_across_users(garden):
    await garden.plant_seed("al", "their", MistakeCategory.GRAMMAR)
    await garden.plant_seed("al:ice", "there", MistakeCategory.GRAMMAR)

    assert [p.item for p in await garden.get_garden("al")] == ["their"]
    empty = await garden.get_garden_stats("nobody")
    assert empty.total_plants == 0
    assert empty.avg_mastery == 0.0
