"""
Mistake Garden

Recurring learner mistakes are planted as seeds keyed by (item, category)
and grow through seed, sprout, bud and bloom as the learner practices them
successfully. Each plant is its own record, so practice on different plants
never contends; practice on the same plant serializes through the store.
"""

from typing import Dict, List, Optional, Union

from flowtutor.common.clock import Clock, SystemClock
from flowtutor.common.error_handling import NotFoundError
from flowtutor.common.logger import app_logger, with_context
from flowtutor.common.storage import RecordStore
from flowtutor.common.validation import require_enum, require_non_empty, require_positive_int
from flowtutor.gamification.leaderboard import Leaderboard
from flowtutor.gamification.models import (
    BadgeKind,
    GamificationRecord,
    GardenStats,
    MistakeCategory,
    Plant,
    PlantStage,
    SeedResult,
    WaterResult,
    gamification_key,
    garden_key,
    garden_prefix,
    plant_id_for,
)
from flowtutor.gamification.rewards import XPReward

# Set up module logger
logger = app_logger.getChild("gamification.garden")


class MistakeGarden:
    """Transactional plant growth and garden read models."""

    def __init__(
        self,
        store: RecordStore,
        clock: Optional[Clock] = None,
        leaderboard: Optional[Leaderboard] = None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.leaderboard = leaderboard

    async def _publish(self, user_id: str, total_xp: int) -> None:
        if self.leaderboard is not None:
            await self.leaderboard.publish(user_id, total_xp)

    async def plant_seed(
        self,
        user_id: str,
        item: str,
        category: Union[MistakeCategory, str],
        context: Optional[str] = None
    ) -> SeedResult:
        """
        Plant a mistake, or record another occurrence of a known one.

        Args:
            user_id: Learner id
            item: The word or phrase the learner got wrong
            category: Mistake category
            context: Free text shown with the error history

        Returns:
            ``new_seed`` is False when the plant already existed; seed XP is
            only granted for new plants
        """
        require_non_empty(user_id, "user_id")
        require_non_empty(item, "item")
        category = require_enum(category, MistakeCategory, "category")

        plant_id = plant_id_for(item, category)
        pkey = garden_key(user_id, plant_id)
        gkey = gamification_key(user_id)
        now = self.clock.now()

        def apply(snapshot):
            if snapshot[pkey] is not None:
                plant = Plant.from_dict(snapshot[pkey])
                plant.record_error(context, now)
                return {pkey: plant.to_dict()}, SeedResult(new_seed=False, plant_id=plant_id)

            plant = Plant.seed(user_id, item, category, context, now)
            record = GamificationRecord.load(user_id, snapshot[gkey], now)
            grant = record.add_xp(XPReward.SEED, f"planted {category.value} seed", now)
            writes = {pkey: plant.to_dict(), gkey: record.to_dict()}
            return writes, SeedResult(new_seed=True, plant_id=plant_id, xp=grant)

        result = await self.store.transact([pkey, gkey], apply, operation="plant_seed")

        if result.new_seed:
            logger.info(f"User {user_id} planted a {category.value} seed for {item!r}")
            await self._publish(user_id, result.xp.total_xp)
        else:
            logger.debug(f"User {user_id} repeated {category.value} mistake {item!r}")
        return result

    async def water_plant(self, user_id: str, plant_id: str, success: bool) -> WaterResult:
        """
        Apply one practice attempt to a plant.

        A successful practice grows the plant and grants water XP; the first
        bloom also grants the bloom bonus and a mastery badge. A failed
        practice only extends the error history.

        Raises:
            NotFoundError: If the learner has no such plant
        """
        require_non_empty(user_id, "user_id")
        require_non_empty(plant_id, "plant_id")

        pkey = garden_key(user_id, plant_id)
        gkey = gamification_key(user_id)
        now = self.clock.now()

        def apply(snapshot):
            if snapshot[pkey] is None:
                raise NotFoundError("plant", plant_id)
            plant = Plant.from_dict(snapshot[pkey])

            if not success:
                plant.record_error("practice failed", now)
                return {pkey: plant.to_dict()}, (
                    WaterResult(
                        stage=plant.stage,
                        mastery_level=plant.mastery_level,
                        bloomed=False,
                        practice_count=plant.practice_count
                    ),
                    None
                )

            bloomed = plant.practice(now)
            record = GamificationRecord.load(user_id, snapshot[gkey], now)
            grant = record.add_xp(XPReward.WATER, f"practiced {plant.item!r}", now)
            earned = grant.xp_earned

            if bloomed:
                record.award_badge(plant.badge_id, f"Mastered {plant.item!r}", BadgeKind.MASTERY, now)
                grant = record.add_xp(XPReward.BLOOM, f"{plant.item!r} bloomed", now)
                earned += grant.xp_earned

            writes = {pkey: plant.to_dict(), gkey: record.to_dict()}
            return writes, (
                WaterResult(
                    stage=plant.stage,
                    mastery_level=plant.mastery_level,
                    bloomed=bloomed,
                    practice_count=plant.practice_count,
                    xp_earned=earned
                ),
                grant.total_xp
            )

        result, total_xp = await self.store.transact([pkey, gkey], apply, operation="water_plant")

        if result.bloomed:
            log = with_context(logger.name, user_id=user_id, plant_id=plant_id)
            log.info(f"Plant bloomed after {result.practice_count} practices ({result.mastery_level:.0%} mastery)")
        if total_xp is not None:
            await self._publish(user_id, total_xp)
        return result

    async def get_garden(self, user_id: str) -> List[Plant]:
        """All of a learner's plants, newest first."""
        require_non_empty(user_id, "user_id")
        documents = await self.store.scan(garden_prefix(user_id))
        plants = [Plant.from_dict(document) for document in documents.values()]
        # User ids may share a prefix; keep only exact owners
        plants = [plant for plant in plants if plant.user_id == user_id]
        plants.sort(key=lambda plant: plant.planted_at, reverse=True)
        return plants

    async def get_plant(self, user_id: str, plant_id: str) -> Optional[Plant]:
        require_non_empty(user_id, "user_id")
        require_non_empty(plant_id, "plant_id")
        document = await self.store.get(garden_key(user_id, plant_id))
        return Plant.from_dict(document) if document is not None else None

    async def get_plants_needing_water(self, user_id: str, limit: int = 5) -> List[Plant]:
        """
        Plants still growing, least grown first.

        Ties go to the plant practiced longest ago; never-practiced plants
        come first.
        """
        require_positive_int(limit, "limit")
        plants = [plant for plant in await self.get_garden(user_id) if not plant.is_bloomed]
        plants.sort(key=lambda plant: (
            plant.stage.rank,
            plant.last_practiced is not None,
            plant.last_practiced or plant.planted_at
        ))
        return plants[:limit]

    async def get_garden_stats(self, user_id: str) -> GardenStats:
        plants = await self.get_garden(user_id)

        stages: Dict[PlantStage, int] = {stage: 0 for stage in PlantStage}
        categories: Dict[str, int] = {}
        for plant in plants:
            stages[plant.stage] += 1
            categories[plant.category.value] = categories.get(plant.category.value, 0) + 1

        avg_mastery = sum(plant.mastery_level for plant in plants) / len(plants) if plants else 0.0

        return GardenStats(
            total_plants=len(plants),
            seeds=stages[PlantStage.SEED],
            sprouting=stages[PlantStage.SPROUT],
            budding=stages[PlantStage.BUD],
            bloomed=stages[PlantStage.BLOOM],
            avg_mastery=round(avg_mastery, 4),
            categories=categories
        )
