from .base import Base, utcnow
from .challenge import Challenge, Participant, HealthRecord
from .user import User, UserStats, Badge, UserBadge

__all__ = [
    "Base",
    "utcnow",
    "Challenge",
    "Participant",
    "HealthRecord",
    "User",
    "UserStats",
    "Badge",
    "UserBadge",
]
