# src/fitstake/services/stats.py
"""
Cumulative user statistics and badge awards.

Functions here take the caller's session and only flush; the caller owns
the transaction and commits once its whole unit of work is done.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..badges import PREDEFINED_BADGES, BadgeCriterion
from ..config import settings
from ..errors import ValidationError
from ..metrics import badges_awarded_total
from ..models import Badge, User, UserBadge, UserStats, utcnow
from ..utils.logging import setup_logger

logger = setup_logger(__name__, level=settings.log_level)

UPDATABLE_FIELDS = (
    "total_step_count",
    "challenges_completed",
    "challenges_joined",
    "challenges_created",
    "total_staked",
    "total_earned",
)

# Public sort keys for the leaderboard, mapped to UserStats columns.
LEADERBOARD_SORT_FIELDS = {
    "totalStepCount": "total_step_count",
    "challengesCompleted": "challenges_completed",
    "challengesJoined": "challenges_joined",
    "challengesCreated": "challenges_created",
    "totalStaked": "total_staked",
    "totalEarned": "total_earned",
    "winRate": "win_rate",
}


def compute_win_rate(challenges_completed: int, challenges_joined: int) -> float:
    if not challenges_joined:
        return 0.0
    return challenges_completed / challenges_joined


async def get_stats(db: AsyncSession, user_id: int) -> Optional[UserStats]:
    stmt = select(UserStats).where(UserStats.user_id == user_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_or_create_stats(db: AsyncSession, user_id: int) -> UserStats:
    stats = await get_stats(db, user_id)
    if stats is None:
        stats = UserStats(
            user_id=user_id,
            total_step_count=0,
            challenges_completed=0,
            challenges_joined=0,
            challenges_created=0,
            total_staked=0.0,
            total_earned=0.0,
            win_rate=0.0,
            last_updated=utcnow(),
        )
        db.add(stats)
        logger.debug(f"Initialized stats for user {user_id}")
    return stats


async def update_stats(db: AsyncSession, user_id: int, updates: Dict[str, object]) -> UserStats:
    """
    Apply a partial update to a user's stats and award any newly earned badges.

    Only keys present with a non-None value are written; everything else is
    left as stored. ``win_rate`` is always recomputed.
    """
    stats = await get_or_create_stats(db, user_id)

    for key, value in updates.items():
        if value is None:
            continue
        if key not in UPDATABLE_FIELDS:
            logger.warning(f"Ignoring unknown stats field {key!r} for user {user_id}")
            continue
        setattr(stats, key, value)

    stats.win_rate = compute_win_rate(stats.challenges_completed, stats.challenges_joined)
    stats.last_updated = utcnow()
    await db.flush()

    await evaluate_badges(db, user_id)
    return stats


async def record_completion(db: AsyncSession, user_id: int, total_steps: int, stake_earned: float) -> UserStats:
    stats = await get_or_create_stats(db, user_id)
    return await update_stats(db, user_id, {
        "total_step_count": (stats.total_step_count or 0) + total_steps,
        "challenges_completed": (stats.challenges_completed or 0) + 1,
        "total_earned": (stats.total_earned or 0) + stake_earned,
    })


async def record_join(db: AsyncSession, user_id: int, stake_amount: float) -> UserStats:
    stats = await get_or_create_stats(db, user_id)
    return await update_stats(db, user_id, {
        "challenges_joined": (stats.challenges_joined or 0) + 1,
        "total_staked": (stats.total_staked or 0) + stake_amount,
    })


async def record_creation(db: AsyncSession, user_id: int) -> UserStats:
    stats = await get_or_create_stats(db, user_id)
    return await update_stats(db, user_id, {
        "challenges_created": (stats.challenges_created or 0) + 1,
    })


async def evaluate_badges(db: AsyncSession, user_id: int) -> List[str]:
    """Award every catalog badge the user now qualifies for. Returns the new badge ids."""
    stats = await get_stats(db, user_id)
    if stats is None:
        return []

    catalog = (await db.execute(select(Badge).order_by(Badge.id))).scalars().all()
    earned = set((await db.execute(
        select(UserBadge.badge_id).where(UserBadge.user_id == user_id)
    )).scalars().all())

    now = utcnow()
    new_badges = []
    for badge in catalog:
        if badge.badge_id in earned:
            continue
        if BadgeCriterion.from_badge(badge).evaluate(stats):
            new_badges.append(UserBadge(user_id=user_id, badge_id=badge.badge_id, earned_at=now))

    if new_badges:
        db.add_all(new_badges)
        await db.flush()
        for user_badge in new_badges:
            badges_awarded_total.labels(badge_id=user_badge.badge_id).inc()
        logger.info(
            f"User {user_id} awarded {len(new_badges)} new badges: "
            f"{', '.join(b.badge_id for b in new_badges)}"
        )

    return [b.badge_id for b in new_badges]


async def seed_badges(db: AsyncSession) -> int:
    """Insert the predefined catalog when no badges exist yet."""
    count = (await db.execute(select(func.count()).select_from(Badge))).scalar()
    if count:
        return 0

    for definition in PREDEFINED_BADGES:
        criterion = definition["criterion"]
        db.add(Badge(
            badge_id=definition["badge_id"],
            name=definition["name"],
            description=definition["description"],
            icon_name=definition["icon_name"],
            tier=definition["tier"].value,
            category=definition["category"].value,
            criteria_field=criterion.field,
            criteria_comparator=criterion.comparator,
            criteria_threshold=criterion.threshold,
        ))
    await db.flush()
    logger.info(f"Seeded {len(PREDEFINED_BADGES)} badges")
    return len(PREDEFINED_BADGES)


@dataclass
class LeaderboardPage:
    entries: List[Tuple[User, UserStats, int]]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


async def get_leaderboard(db: AsyncSession, sort_by: str = "totalStepCount", sort_order: str = "desc",
                          page: int = 1, limit: int = 10) -> LeaderboardPage:
    """
    All-time leaderboard over every user with recorded stats.

    ``sort_by`` is one of LEADERBOARD_SORT_FIELDS, optionally prefixed with
    ``stats.``. Ties are broken by user id so pages are stable.
    """
    key = sort_by[len("stats."):] if sort_by.startswith("stats.") else sort_by
    if key not in LEADERBOARD_SORT_FIELDS:
        raise ValidationError("Invalid sort field")

    column = getattr(UserStats, LEADERBOARD_SORT_FIELDS[key])
    order = column.asc() if sort_order == "asc" else column.desc()

    badge_counts = (
        select(UserBadge.user_id, func.count(UserBadge.id).label("badge_count"))
        .group_by(UserBadge.user_id)
        .subquery()
    )
    stmt = (
        select(User, UserStats, func.coalesce(badge_counts.c.badge_count, 0))
        .join(UserStats, UserStats.user_id == User.id)
        .outerjoin(badge_counts, badge_counts.c.user_id == User.id)
        .where(UserStats.last_updated.isnot(None))
        .order_by(order, User.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    rows = (await db.execute(stmt)).all()
    total = (await db.execute(
        select(func.count()).select_from(UserStats).where(UserStats.last_updated.isnot(None))
    )).scalar()

    return LeaderboardPage(entries=[tuple(row) for row in rows], total=total, page=page, limit=limit)
