# src/fitstake/models/challenge.py

from sqlalchemy import Column, String, DateTime, Float, ForeignKey, Boolean, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import Base, TimestampedModel, utcnow

class Challenge(Base, TimestampedModel):
    __tablename__ = "challenges"

    challenge_ref     = Column(String, nullable=False, unique=True)
    settlement_ref    = Column(String, nullable=True, unique=True)
    title             = Column(String(50), nullable=False)
    description       = Column(Text, nullable=False, default="")
    goal_value        = Column(Float, nullable=False)
    goal_unit         = Column(String, nullable=False, default="steps")
    start_date        = Column(DateTime, nullable=False)
    end_date          = Column(DateTime, nullable=False, index=True)
    stake_amount      = Column(Float, nullable=False)
    currency          = Column(String, nullable=False, default="SOL")
    min_participants  = Column(Integer, nullable=False, default=1)
    max_participants  = Column(Integer, nullable=False, default=100)
    total_stake       = Column(Float, nullable=False, default=0)
    creator_id        = Column(Integer, ForeignKey("users.id"), nullable=True)

    is_active                       = Column(Boolean, nullable=False, default=False)
    is_completed                    = Column(Boolean, nullable=False, default=False, index=True)
    on_chain_verification_complete  = Column(Boolean, nullable=False, default=False)

    participants = relationship(
        "Participant",
        back_populates="challenge",
        cascade="all, delete-orphan",
        order_by="Participant.id",
        lazy="selectin",
    )

    @property
    def total_participants(self) -> int:
        return len(self.participants)

    @property
    def completed_count(self) -> int:
        return sum(1 for p in self.participants if p.completed)

    @property
    def success_rate(self) -> float:
        if not self.participants:
            return 0.0
        return self.completed_count / self.total_participants * 100

    def find_participant(self, wallet_address: str):
        for participant in self.participants:
            if participant.wallet_address == wallet_address:
                return participant
        return None


class Participant(Base, TimestampedModel):
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("challenge_id", "wallet_address", name="uq_participant_wallet"),
    )

    challenge_id    = Column(Integer, ForeignKey("challenges.id"), nullable=False)
    wallet_address  = Column(String, nullable=False, index=True)
    user_id         = Column(Integer, ForeignKey("users.id"), nullable=True)
    stake_amount    = Column(Float, nullable=False)
    joined_at       = Column(DateTime, nullable=False, default=utcnow)
    progress        = Column(Float, nullable=False, default=0)
    completed       = Column(Boolean, nullable=False, default=False)
    claimed         = Column(Boolean, nullable=False, default=False)
    credited_at     = Column(DateTime, nullable=True)
    version         = Column(Integer, nullable=False)

    challenge       = relationship("Challenge", back_populates="participants")
    health_records  = relationship(
        "HealthRecord",
        back_populates="participant",
        cascade="all, delete-orphan",
        order_by="HealthRecord.date",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def total_steps(self) -> int:
        return sum(r.steps for r in self.health_records)


class HealthRecord(Base, TimestampedModel):
    __tablename__ = "health_records"

    participant_id  = Column(Integer, ForeignKey("participants.id"), nullable=False, index=True)
    date            = Column(String, nullable=False)
    steps           = Column(Integer, nullable=False, default=0)
    start_time      = Column(DateTime, nullable=True)
    end_time        = Column(DateTime, nullable=True)
    last_updated    = Column(DateTime, nullable=False, default=utcnow)

    participant     = relationship("Participant", back_populates="health_records")
