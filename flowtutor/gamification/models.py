"""
Gamification Ledger Models

This module defines the persisted per-user records and the result types the
ledgers return:
1. XP record with level derived from total XP, badges and XP history
2. Daily streak record with freeze tokens
3. Mistake-garden plants growing through four stages

Records are mutated only inside store transactions; the mutating methods
here are pure in-memory state transitions.
"""

import enum
import uuid
import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flowtutor.common.serialization import SerializableMixin, parse_date, parse_datetime
from flowtutor.gamification.levels import (
    calculate_level,
    get_level_badge,
    get_level_progress,
    get_level_title,
)
from flowtutor.gamification.rewards import LevelUpReward, StreakMilestone, level_up_reward

# Namespace for deterministic plant ids
PLANT_NAMESPACE = uuid.UUID("5b0e3c4d-8f1a-4c6e-9d2b-7a1f0e9c3b21")

MASTERY_PRACTICE_COUNT = 10


def gamification_key(user_id: str) -> str:
    return f"gamification:{user_id}"


def streak_key(user_id: str) -> str:
    return f"streak:{user_id}"


def garden_prefix(user_id: str) -> str:
    return f"garden:{user_id}:"


def garden_key(user_id: str, plant_id: str) -> str:
    return f"{garden_prefix(user_id)}{plant_id}"


class BadgeKind(enum.Enum):
    """What a badge was awarded for."""
    LEVEL = "level"
    STREAK = "streak"
    MASTERY = "mastery"


class MistakeCategory(enum.Enum):
    """Kinds of recurring learner mistakes."""
    PRONUNCIATION = "pronunciation"
    GRAMMAR = "grammar"
    VOCABULARY = "vocabulary"


class PlantStage(enum.Enum):
    """Growth stages of a mistake plant, in order."""
    SEED = "seed"
    SPROUT = "sprout"
    BUD = "bud"
    BLOOM = "bloom"

    @property
    def rank(self) -> int:
        return _STAGE_ORDER.index(self)

    @property
    def icon(self) -> str:
        return {
            PlantStage.SEED: "🌱",
            PlantStage.SPROUT: "🌿",
            PlantStage.BUD: "🌺",
            PlantStage.BLOOM: "🌸",
        }[self]

    @classmethod
    def for_practice_count(cls, practice_count: int) -> 'PlantStage':
        """Stage bands: <=2 seed, <=5 sprout, <=8 bud, otherwise bloom."""
        if practice_count <= 2:
            return cls.SEED
        if practice_count <= 5:
            return cls.SPROUT
        if practice_count <= 8:
            return cls.BUD
        return cls.BLOOM


_STAGE_ORDER = [PlantStage.SEED, PlantStage.SPROUT, PlantStage.BUD, PlantStage.BLOOM]


def plant_id_for(item: str, category: MistakeCategory) -> str:
    """Deterministic plant id for an (item, category) pair."""
    return str(uuid.uuid5(PLANT_NAMESPACE, f"{category.value}:{item}"))


@dataclass
class Badge(SerializableMixin):
    """A badge held by a learner. Ids are unique per learner."""

    __serializable_fields__ = ["id", "name", "kind", "earned_at", "level"]
    __optional_fields__ = ["level"]

    id: str
    name: str
    kind: BadgeKind
    earned_at: datetime.datetime
    level: Optional[int] = None

    def __post_init__(self):
        if isinstance(self.kind, str):
            self.kind = BadgeKind(self.kind)
        self.earned_at = parse_datetime(self.earned_at)


@dataclass
class XPHistoryEntry(SerializableMixin):
    """One XP credit with the total it produced."""

    __serializable_fields__ = ["amount", "reason", "at", "running_total"]

    amount: int
    reason: str
    at: datetime.datetime
    running_total: int

    def __post_init__(self):
        self.at = parse_datetime(self.at)


@dataclass
class XPGrantResult(SerializableMixin):
    """Outcome of one XP credit."""

    __serializable_fields__ = [
        "xp_earned", "total_xp", "current_level", "leveled_up",
        "previous_level", "level_up_reward"
    ]

    xp_earned: int
    total_xp: int
    current_level: int
    leveled_up: bool
    previous_level: Optional[int] = None
    level_up_reward: Optional[LevelUpReward] = None


@dataclass
class GamificationRecord(SerializableMixin):
    """
    A learner's XP, badges and XP history.

    The level is never stored; it is always recomputed from ``xp``.
    """

    __serializable_fields__ = ["user_id", "xp", "badges", "xp_history", "created_at", "updated_at"]
    __optional_fields__ = ["badges", "xp_history", "created_at", "updated_at"]

    user_id: str
    xp: int = 0
    badges: List[Badge] = field(default_factory=list)
    xp_history: List[XPHistoryEntry] = field(default_factory=list)
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    def __post_init__(self):
        self.badges = [b if isinstance(b, Badge) else Badge.from_dict(b) for b in self.badges]
        self.xp_history = [
            e if isinstance(e, XPHistoryEntry) else XPHistoryEntry.from_dict(e)
            for e in self.xp_history
        ]
        self.created_at = parse_datetime(self.created_at)
        self.updated_at = parse_datetime(self.updated_at)

    @classmethod
    def load(cls, user_id: str, document: Optional[Dict[str, Any]], now: datetime.datetime) -> 'GamificationRecord':
        """Rebuild from a stored document, or start a fresh record."""
        if document is None:
            return cls(user_id=user_id, created_at=now, updated_at=now)
        return cls.from_dict(document)

    @property
    def level(self) -> int:
        return calculate_level(self.xp)

    @property
    def level_title(self) -> str:
        return get_level_title(self.level)

    @property
    def level_badge(self) -> str:
        return get_level_badge(self.level)

    @property
    def badge_ids(self) -> List[str]:
        return [b.id for b in self.badges]

    def has_badge(self, badge_id: str) -> bool:
        return any(b.id == badge_id for b in self.badges)

    def award_badge(
        self,
        badge_id: str,
        name: str,
        kind: BadgeKind,
        now: datetime.datetime,
        level: Optional[int] = None
    ) -> bool:
        """Add a badge unless already held. Returns True if it was added."""
        if self.has_badge(badge_id):
            return False
        self.badges.append(Badge(id=badge_id, name=name, kind=kind, earned_at=now, level=level))
        self.updated_at = now
        return True

    def add_xp(self, amount: int, reason: str, now: datetime.datetime) -> XPGrantResult:
        """
        Credit XP, append the history entry and handle level-up.

        Args:
            amount: XP to add, > 0
            reason: Description stored in the history
            now: Timestamp of the credit

        Returns:
            The grant result, including the level-up reward if the level rose
        """
        amount = int(amount)
        if amount <= 0:
            raise ValueError("XP amount must be positive")

        previous_level = self.level
        self.xp += amount
        self.xp_history.append(
            XPHistoryEntry(amount=amount, reason=reason, at=now, running_total=self.xp)
        )
        self.updated_at = now

        new_level = self.level
        if new_level <= previous_level:
            return XPGrantResult(
                xp_earned=amount,
                total_xp=self.xp,
                current_level=new_level,
                leveled_up=False
            )

        reward = level_up_reward(new_level)
        self.award_badge(
            f"level_{new_level}",
            f"{reward.title} reached",
            BadgeKind.LEVEL,
            now,
            level=new_level
        )
        return XPGrantResult(
            xp_earned=amount,
            total_xp=self.xp,
            current_level=new_level,
            leveled_up=True,
            previous_level=previous_level,
            level_up_reward=reward
        )


@dataclass
class XPStatus(SerializableMixin):
    """Read model of a learner's XP and level."""

    __serializable_fields__ = [
        "total_xp", "current_level", "level_title", "level_badge",
        "xp_in_current_level", "xp_required_for_next_level", "progress"
    ]

    total_xp: int
    current_level: int
    level_title: str
    level_badge: str
    xp_in_current_level: int
    xp_required_for_next_level: int
    progress: float

    @classmethod
    def for_xp(cls, total_xp: int) -> 'XPStatus':
        progress = get_level_progress(total_xp)
        return cls(
            total_xp=total_xp,
            current_level=progress.current_level,
            level_title=get_level_title(progress.current_level),
            level_badge=get_level_badge(progress.current_level),
            xp_in_current_level=progress.xp_in_current_level,
            xp_required_for_next_level=progress.xp_required_for_next_level,
            progress=progress.progress
        )


@dataclass
class StreakHistoryEntry(SerializableMixin):
    """One day in the streak history."""

    __serializable_fields__ = ["date", "active", "freeze_used", "reset"]
    __optional_fields__ = ["freeze_used", "reset"]

    date: datetime.date
    active: bool
    freeze_used: bool = False
    reset: bool = False

    def __post_init__(self):
        self.date = parse_date(self.date)


@dataclass
class StreakRecord(SerializableMixin):
    """
    A learner's daily streak.

    ``last_activity_date`` is a calendar date in the ledger's reference
    timezone. ``longest_streak`` never drops below ``streak_days``.
    """

    __serializable_fields__ = [
        "user_id", "streak_days", "longest_streak", "last_activity_date",
        "freeze_count", "history", "updated_at"
    ]
    __optional_fields__ = ["last_activity_date", "history", "updated_at"]

    user_id: str
    streak_days: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[datetime.date] = None
    freeze_count: int = 0
    history: List[StreakHistoryEntry] = field(default_factory=list)
    updated_at: Optional[datetime.datetime] = None

    def __post_init__(self):
        self.last_activity_date = parse_date(self.last_activity_date)
        self.history = [
            h if isinstance(h, StreakHistoryEntry) else StreakHistoryEntry.from_dict(h)
            for h in self.history
        ]
        self.updated_at = parse_datetime(self.updated_at)

    @classmethod
    def load(cls, user_id: str, document: Optional[Dict[str, Any]]) -> 'StreakRecord':
        if document is None:
            return cls(user_id=user_id)
        return cls.from_dict(document)

    def set_streak(self, days: int) -> None:
        self.streak_days = days
        self.longest_streak = max(self.longest_streak, days)


@dataclass
class StreakUpdate(SerializableMixin):
    """Outcome of recording a day's activity."""

    __serializable_fields__ = [
        "streak", "longest_streak", "increased", "reset", "freeze_used",
        "milestone", "milestone_xp"
    ]

    streak: int
    longest_streak: int
    increased: bool
    reset: bool = False
    freeze_used: bool = False
    milestone: Optional[StreakMilestone] = None
    milestone_xp: Optional[XPGrantResult] = None


class InactivityOutcome(enum.Enum):
    """Result of the nightly inactivity check for one learner."""
    NO_STREAK = "no_streak"
    SAFE = "safe"
    FREEZE_USED = "freeze_used"
    RESET = "reset"


@dataclass
class StreakStatus(SerializableMixin):
    """Read model of a learner's streak."""

    __serializable_fields__ = [
        "streak", "longest_streak", "freeze_count", "last_activity_date",
        "is_active_today", "active_days_last_week"
    ]

    streak: int
    longest_streak: int
    freeze_count: int
    last_activity_date: Optional[datetime.date]
    is_active_today: bool
    active_days_last_week: int


@dataclass
class CalendarDay(SerializableMixin):
    """One cell of the streak calendar."""

    __serializable_fields__ = ["date", "active", "freeze_used"]

    date: datetime.date
    active: bool
    freeze_used: bool = False


@dataclass
class ErrorHistoryEntry(SerializableMixin):
    """One occurrence of a mistake."""

    __serializable_fields__ = ["at", "context", "corrected"]
    __optional_fields__ = ["context", "corrected"]

    at: datetime.datetime
    context: Optional[str] = None
    corrected: bool = False

    def __post_init__(self):
        self.at = parse_datetime(self.at)


@dataclass
class Plant(SerializableMixin):
    """
    A recurring mistake tracked in the garden.

    The stage follows the practice count through fixed bands and never
    moves backwards. ``bloomed_at`` is set the first time the plant blooms.
    """

    __serializable_fields__ = [
        "plant_id", "user_id", "item", "category", "stage", "practice_count",
        "mastery_level", "planted_at", "last_practiced", "bloomed_at", "error_history"
    ]
    __optional_fields__ = ["last_practiced", "bloomed_at", "error_history"]

    plant_id: str
    user_id: str
    item: str
    category: MistakeCategory
    stage: PlantStage
    practice_count: int
    mastery_level: float
    planted_at: datetime.datetime
    last_practiced: Optional[datetime.datetime] = None
    bloomed_at: Optional[datetime.datetime] = None
    error_history: List[ErrorHistoryEntry] = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.category, str):
            self.category = MistakeCategory(self.category)
        if isinstance(self.stage, str):
            self.stage = PlantStage(self.stage)
        self.planted_at = parse_datetime(self.planted_at)
        self.last_practiced = parse_datetime(self.last_practiced)
        self.bloomed_at = parse_datetime(self.bloomed_at)
        self.error_history = [
            e if isinstance(e, ErrorHistoryEntry) else ErrorHistoryEntry.from_dict(e)
            for e in self.error_history
        ]

    @classmethod
    def seed(
        cls,
        user_id: str,
        item: str,
        category: MistakeCategory,
        context: Optional[str],
        now: datetime.datetime
    ) -> 'Plant':
        """A new plant at the seed stage with its first error recorded."""
        return cls(
            plant_id=plant_id_for(item, category),
            user_id=user_id,
            item=item,
            category=category,
            stage=PlantStage.SEED,
            practice_count=0,
            mastery_level=0.0,
            planted_at=now,
            error_history=[ErrorHistoryEntry(at=now, context=context)]
        )

    @property
    def is_bloomed(self) -> bool:
        return self.stage is PlantStage.BLOOM

    @property
    def badge_id(self) -> str:
        return f"bloom:{self.category.value}:{self.item}"

    def record_error(self, context: Optional[str], now: datetime.datetime) -> None:
        self.error_history.append(ErrorHistoryEntry(at=now, context=context, corrected=False))

    def practice(self, now: datetime.datetime) -> bool:
        """
        Apply one successful practice.

        Returns:
            True if this practice made the plant bloom for the first time
        """
        self.practice_count += 1
        self.mastery_level = min(1.0, self.practice_count / MASTERY_PRACTICE_COUNT)
        self.last_practiced = now

        banded = PlantStage.for_practice_count(self.practice_count)
        if banded.rank > self.stage.rank:
            self.stage = banded

        if self.stage is PlantStage.BLOOM and self.bloomed_at is None:
            self.bloomed_at = now
            return True
        return False


@dataclass
class SeedResult(SerializableMixin):
    """Outcome of planting a mistake."""

    __serializable_fields__ = ["new_seed", "plant_id", "xp"]

    new_seed: bool
    plant_id: str
    xp: Optional[XPGrantResult] = None


@dataclass
class WaterResult(SerializableMixin):
    """Outcome of one practice attempt on a plant."""

    __serializable_fields__ = ["stage", "mastery_level", "bloomed", "practice_count", "xp_earned"]

    stage: PlantStage
    mastery_level: float
    bloomed: bool
    practice_count: int
    xp_earned: int = 0


@dataclass
class GardenStats(SerializableMixin):
    """Counts per stage and category plus mean mastery."""

    __serializable_fields__ = [
        "total_plants", "seeds", "sprouting", "budding", "bloomed",
        "avg_mastery", "categories"
    ]

    total_plants: int
    seeds: int
    sprouting: int
    budding: int
    bloomed: int
    avg_mastery: float
    categories: Dict[str, int]


@dataclass
class LeaderboardEntry(SerializableMixin):
    """One row of the XP leaderboard."""

    __serializable_fields__ = ["rank", "user_id", "total_xp", "level", "level_title", "level_badge"]

    rank: int
    user_id: str
    total_xp: int
    level: int
    level_title: str
    level_badge: str

    @classmethod
    def for_user(cls, rank: int, user_id: str, total_xp: int) -> 'LeaderboardEntry':
        level = calculate_level(total_xp)
        return cls(
            rank=rank,
            user_id=user_id,
            total_xp=total_xp,
            level=level,
            level_title=get_level_title(level),
            level_badge=get_level_badge(level)
        )


@dataclass
class ActivityResult(SerializableMixin):
    """XP credited for a learner action and the streak update it caused."""

    __serializable_fields__ = ["xp", "streak"]

    xp: List[XPGrantResult]
    streak: StreakUpdate

    @property
    def total_earned(self) -> int:
        return sum(grant.xp_earned for grant in self.xp)
