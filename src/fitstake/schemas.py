"""Request and response models for the HTTP API."""
import enum
from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Platform(str, enum.Enum):
    ATTESTED = "attested"
    AGGREGATED = "aggregated"


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SubRecord(ApiModel):
    count: float = Field(0, allow_inf_nan=False)
    start_time: Optional[str] = Field(None, alias="startTime")
    end_time: Optional[str] = Field(None, alias="endTime")
    id: Optional[str] = None


class TelemetryRecord(ApiModel):
    date: str = Field(..., min_length=1)
    count: float = Field(..., validation_alias=AliasChoices("count", "steps"), allow_inf_nan=False)
    start_time: Optional[str] = Field(None, alias="startTime")
    end_time: Optional[str] = Field(None, alias="endTime")
    sources: Optional[List[str]] = None
    record_count: Optional[int] = Field(None, alias="recordCount")
    records: Optional[List[SubRecord]] = None


class TelemetrySubmission(ApiModel):
    platform: Platform
    health_data: List[TelemetryRecord] = Field(..., alias="healthData")


class AnomalyOut(ApiModel):
    date: str
    steps: int
    reasons: List[str]


class SubmitResponse(ApiModel):
    progress: float
    total_steps: int = Field(..., alias="totalSteps")
    goal_steps: float = Field(..., alias="goalSteps")
    is_completed: bool = Field(..., alias="isCompleted")
    verified_records: int = Field(..., alias="verifiedRecords")
    suspicious_records: int = Field(..., alias="suspiciousRecords")
    anomalies: List[AnomalyOut] = []


class HealthRecordOut(ApiModel):
    date: str
    count: int
    start_time: Optional[datetime] = Field(None, alias="startTime")
    end_time: Optional[datetime] = Field(None, alias="endTime")


class ProgressResponse(ApiModel):
    progress: float
    completed: bool
    claimed: bool
    health_data: List[HealthRecordOut] = Field(..., alias="healthData")


class ChallengeCreate(ApiModel):
    challenge_ref: str = Field(..., alias="challengeId", min_length=1)
    settlement_ref: Optional[str] = Field(None, alias="settlementRef")
    title: str = Field(..., min_length=1, max_length=50)
    description: str = Field("", max_length=250)
    goal_value: float = Field(..., alias="goalValue", gt=0)
    goal_unit: str = Field("steps", alias="goalUnit")
    start_date: datetime = Field(..., alias="startDate")
    end_date: datetime = Field(..., alias="endDate")
    stake_amount: float = Field(..., alias="stakeAmount", ge=0)
    currency: str = "SOL"
    min_participants: int = Field(1, alias="minParticipants", ge=1)
    max_participants: int = Field(100, alias="maxParticipants", ge=1)


class ChallengeOut(ApiModel):
    id: int
    challenge_ref: str = Field(..., alias="challengeId")
    title: str
    goal_value: float = Field(..., alias="goalValue")
    goal_unit: str = Field(..., alias="goalUnit")
    start_date: datetime = Field(..., alias="startDate")
    end_date: datetime = Field(..., alias="endDate")
    stake_amount: float = Field(..., alias="stakeAmount")
    currency: str
    total_stake: float = Field(..., alias="totalStake")
    total_participants: int = Field(..., alias="totalParticipants")
    completed_count: int = Field(..., alias="completedCount")
    is_active: bool = Field(..., alias="isActive")
    is_completed: bool = Field(..., alias="isCompleted")
    on_chain_verification_complete: bool = Field(..., alias="onChainVerificationComplete")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class ClaimRequest(ApiModel):
    transaction_id: Optional[str] = Field(None, alias="transactionId")


class ClaimResponse(ApiModel):
    challenge_id: int = Field(..., alias="challengeId")
    is_completed: bool = Field(..., alias="isCompleted")
    is_claimed: bool = Field(..., alias="isClaimed")
    transaction_id: Optional[str] = Field(None, alias="transactionId")


class UserBadgeOut(ApiModel):
    badge_id: str = Field(..., alias="badgeId")
    earned_at: datetime = Field(..., alias="earnedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class StatsSummary(ApiModel):
    total_step_count: int = Field(0, alias="totalStepCount")
    challenges_completed: int = Field(0, alias="challengesCompleted")
    challenges_joined: int = Field(0, alias="challengesJoined")
    challenges_created: int = Field(0, alias="challengesCreated")
    total_staked: float = Field(0, alias="totalStaked")
    total_earned: float = Field(0, alias="totalEarned")
    win_rate: float = Field(0, alias="winRate")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class StatsResponse(StatsSummary):
    badges: List[UserBadgeOut] = []


class LeaderboardEntry(ApiModel):
    username: Optional[str] = None
    wallet_address: Optional[str] = Field(None, alias="walletAddress")
    stats: StatsSummary
    badge_count: int = Field(0, alias="badgeCount")


class Pagination(ApiModel):
    total: int
    page: int
    limit: int
    pages: int


class LeaderboardResponse(ApiModel):
    leaderboard: List[LeaderboardEntry]
    pagination: Pagination
