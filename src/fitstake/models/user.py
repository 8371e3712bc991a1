# src/fitstake/models/user.py

from sqlalchemy import Column, String, DateTime, Float, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import Base, TimestampedModel, utcnow

class User(Base, TimestampedModel):
    __tablename__ = "users"

    privy_id        = Column(String, nullable=False, unique=True)
    wallet_address  = Column(String, nullable=True, unique=True)
    username        = Column(String, nullable=True)

    stats   = relationship("UserStats", back_populates="user", uselist=False, lazy="selectin")
    badges  = relationship("UserBadge", back_populates="user", order_by="UserBadge.earned_at", lazy="selectin")


class UserStats(Base, TimestampedModel):
    __tablename__ = "user_stats"

    user_id              = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    total_step_count     = Column(Integer, nullable=False, default=0)
    challenges_completed = Column(Integer, nullable=False, default=0)
    challenges_joined    = Column(Integer, nullable=False, default=0)
    challenges_created   = Column(Integer, nullable=False, default=0)
    total_staked         = Column(Float, nullable=False, default=0)
    total_earned         = Column(Float, nullable=False, default=0)
    win_rate             = Column(Float, nullable=False, default=0)
    last_updated         = Column(DateTime, nullable=False, default=utcnow)
    version              = Column(Integer, nullable=False)

    user = relationship("User", back_populates="stats")

    __mapper_args__ = {"version_id_col": version}


class Badge(Base, TimestampedModel):
    __tablename__ = "badges"

    badge_id            = Column(String, nullable=False, unique=True)
    name                = Column(String, nullable=False)
    description         = Column(Text, nullable=False)
    icon_name           = Column(String, nullable=False)
    tier                = Column(String, nullable=False)
    category            = Column(String, nullable=False)
    criteria_field      = Column(String, nullable=False)
    criteria_comparator = Column(String, nullable=False)
    criteria_threshold  = Column(Float, nullable=False)


class UserBadge(Base, TimestampedModel):
    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badge"),
    )

    user_id    = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    badge_id   = Column(String, ForeignKey("badges.badge_id"), nullable=False)
    earned_at  = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="badges")
