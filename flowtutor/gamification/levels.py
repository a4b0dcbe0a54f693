"""
Level Calculator

Maps cumulative XP to levels on a triangular schedule: completing level N
costs N * 100 XP, so the cumulative thresholds are 100, 300, 600, 1000, ...
"""

from dataclasses import dataclass

from flowtutor.common.serialization import SerializableMixin

XP_PER_LEVEL_STEP = 100

LEVEL_TITLES = (
    (5, "Newcomer"),
    (10, "Beginner"),
    (20, "Learner"),
    (30, "Skilled"),
    (50, "Expert"),
    (75, "Master"),
    (100, "Grand Master"),
)
TOP_TITLE = "Legend"

LEVEL_BADGES = (
    (5, "🌱"),
    (10, "🌿"),
    (20, "🌳"),
    (30, "🏆"),
    (50, "💎"),
    (75, "👑"),
    (100, "⭐"),
)
TOP_BADGE = "🔥"


def get_xp_for_level(level: int) -> int:
    """Cumulative XP needed to complete ``level``: 100 * L(L+1)/2."""
    if level <= 0:
        return 0
    return XP_PER_LEVEL_STEP * level * (level + 1) // 2


def calculate_level(total_xp: int) -> int:
    """
    Largest level whose cumulative threshold is at most ``total_xp``.

    Negative XP maps to level 0.
    """
    if total_xp < 0:
        return 0

    level = 0
    while get_xp_for_level(level + 1) <= total_xp:
        level += 1
    return level


@dataclass
class LevelProgress(SerializableMixin):
    """Position of an XP total within its level."""

    __serializable_fields__ = [
        "current_level", "xp_in_current_level", "xp_required_for_next_level", "progress"
    ]

    current_level: int
    xp_in_current_level: int
    xp_required_for_next_level: int
    progress: float


def get_level_progress(total_xp: int) -> LevelProgress:
    """
    Progress through the current level.

    Example: 250 XP is level 1 (threshold 100, next 300), progress 0.75.
    """
    total_xp = max(0, total_xp)
    level = calculate_level(total_xp)
    floor = get_xp_for_level(level)
    ceiling = get_xp_for_level(level + 1)

    return LevelProgress(
        current_level=level,
        xp_in_current_level=total_xp - floor,
        xp_required_for_next_level=ceiling - floor,
        progress=(total_xp - floor) / (ceiling - floor)
    )


def get_level_title(level: int) -> str:
    for upper, title in LEVEL_TITLES:
        if level < upper:
            return title
    return TOP_TITLE


def get_level_badge(level: int) -> str:
    for upper, badge in LEVEL_BADGES:
        if level < upper:
            return badge
    return TOP_BADGE
