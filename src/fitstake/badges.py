# src/fitstake/badges.py

import enum
import operator
from typing import NamedTuple

from .config import settings
from .utils.logging import setup_logger

logger = setup_logger(__name__, level=settings.log_level)

class BadgeTier(enum.Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"

class BadgeCategory(enum.Enum):
    STEPS = "steps"
    CHALLENGES = "challenges"
    SOCIAL = "social"
    ACHIEVEMENT = "achievement"
    SPECIAL = "special"

# UserStats attributes a criterion may reference
STAT_FIELDS = (
    "total_step_count",
    "challenges_completed",
    "challenges_joined",
    "challenges_created",
    "total_staked",
    "total_earned",
    "win_rate",
)

COMPARATORS = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "eq": operator.eq,
}

class BadgeCriterion(NamedTuple):
    field: str
    comparator: str
    threshold: float

    def evaluate(self, stats) -> bool:
        """Evaluate against a UserStats snapshot. Unknown fields or comparators never match."""
        if self.field not in STAT_FIELDS:
            logger.error(f"Badge criterion references unknown stat field: {self.field}")
            return False
        compare = COMPARATORS.get(self.comparator)
        if compare is None:
            logger.error(f"Badge criterion uses unknown comparator: {self.comparator}")
            return False
        value = getattr(stats, self.field, None) or 0
        return compare(value, self.threshold)

    @classmethod
    def from_badge(cls, badge) -> "BadgeCriterion":
        return cls(badge.criteria_field, badge.criteria_comparator, badge.criteria_threshold)


PREDEFINED_BADGES = [
    # Steps badges
    dict(badge_id="step_beginner", name="Step Beginner", description="Reach 10,000 total steps",
         icon_name="Footprints", tier=BadgeTier.BRONZE, category=BadgeCategory.STEPS,
         criterion=BadgeCriterion("total_step_count", "gte", 10000)),
    dict(badge_id="step_intermediate", name="Step Enthusiast", description="Reach 100,000 total steps",
         icon_name="Footprints", tier=BadgeTier.SILVER, category=BadgeCategory.STEPS,
         criterion=BadgeCriterion("total_step_count", "gte", 100000)),
    dict(badge_id="step_advanced", name="Step Pro", description="Reach 1,000,000 total steps",
         icon_name="Footprints", tier=BadgeTier.GOLD, category=BadgeCategory.STEPS,
         criterion=BadgeCriterion("total_step_count", "gte", 1000000)),

    # Challenge badges
    dict(badge_id="challenge_joiner", name="Challenge Joiner", description="Join your first challenge",
         icon_name="Trophy", tier=BadgeTier.BRONZE, category=BadgeCategory.CHALLENGES,
         criterion=BadgeCriterion("challenges_joined", "gte", 1)),
    dict(badge_id="challenge_winner", name="Challenge Winner", description="Complete your first challenge",
         icon_name="Medal", tier=BadgeTier.SILVER, category=BadgeCategory.CHALLENGES,
         criterion=BadgeCriterion("challenges_completed", "gte", 1)),
    dict(badge_id="challenge_master", name="Challenge Master", description="Complete 5 challenges",
         icon_name="Award", tier=BadgeTier.GOLD, category=BadgeCategory.CHALLENGES,
         criterion=BadgeCriterion("challenges_completed", "gte", 5)),
    dict(badge_id="challenge_creator", name="Challenge Creator", description="Create your first challenge",
         icon_name="Crown", tier=BadgeTier.SILVER, category=BadgeCategory.CHALLENGES,
         criterion=BadgeCriterion("challenges_created", "gte", 1)),
]
