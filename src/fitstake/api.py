# src/fitstake/api.py

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import AuthenticationError, NotFoundError
from .models import User
from .models.database import get_session
from .schemas import (
    AnomalyOut,
    ChallengeCreate,
    ChallengeOut,
    ClaimRequest,
    ClaimResponse,
    HealthRecordOut,
    LeaderboardEntry,
    LeaderboardResponse,
    Pagination,
    ProgressResponse,
    StatsResponse,
    StatsSummary,
    SubmitResponse,
    TelemetrySubmission,
    UserBadgeOut,
)
from .services import challenges as challenge_service
from .services import stats as stats_service

router = APIRouter()


async def get_caller_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """Caller identity as resolved by the authentication layer in front of this service."""
    return x_user_id


@router.post("/challenges", response_model=ChallengeOut, status_code=201)
async def create_challenge(
    body: ChallengeCreate,
    caller: Optional[str] = Depends(get_caller_id),
    db: AsyncSession = Depends(get_session),
):
    challenge = await challenge_service.create_challenge(db, caller, body)
    return ChallengeOut.model_validate(challenge)


@router.post("/challenges/{challenge_id}/join", response_model=ChallengeOut)
async def join_challenge(
    challenge_id: int,
    caller: Optional[str] = Depends(get_caller_id),
    db: AsyncSession = Depends(get_session),
):
    challenge = await challenge_service.join_challenge(db, caller, challenge_id)
    return ChallengeOut.model_validate(challenge)


@router.post("/challenges/{challenge_id}/health-data", response_model=SubmitResponse)
async def submit_health_data(
    challenge_id: int,
    body: TelemetrySubmission,
    caller: Optional[str] = Depends(get_caller_id),
    db: AsyncSession = Depends(get_session),
):
    outcome = await challenge_service.submit_health_data(db, caller, challenge_id, body)
    return SubmitResponse(
        progress=outcome.progress.progress,
        total_steps=outcome.progress.total_steps,
        goal_steps=outcome.challenge.goal_value,
        is_completed=outcome.progress.completed,
        verified_records=outcome.verification.verified_records,
        suspicious_records=outcome.verification.suspicious_records,
        anomalies=[
            AnomalyOut(date=a.date, steps=a.steps, reasons=a.reasons)
            for a in outcome.verification.anomalies
        ],
    )


@router.get("/challenges/{challenge_id}/progress", response_model=ProgressResponse)
async def get_progress(
    challenge_id: int,
    caller: Optional[str] = Depends(get_caller_id),
    db: AsyncSession = Depends(get_session),
):
    participant = await challenge_service.get_progress(db, caller, challenge_id)
    return ProgressResponse(
        progress=participant.progress or 0,
        completed=participant.completed,
        claimed=participant.claimed,
        health_data=[
            HealthRecordOut(date=r.date, count=r.steps, start_time=r.start_time, end_time=r.end_time)
            for r in participant.health_records
        ],
    )


@router.post("/challenges/{challenge_id}/claim", response_model=ClaimResponse)
async def claim_reward(
    challenge_id: int,
    body: ClaimRequest,
    caller: Optional[str] = Depends(get_caller_id),
    db: AsyncSession = Depends(get_session),
):
    participant = await challenge_service.claim_reward(db, caller, challenge_id, body.transaction_id)
    return ClaimResponse(
        challenge_id=challenge_id,
        is_completed=participant.completed,
        is_claimed=participant.claimed,
        transaction_id=body.transaction_id,
    )


@router.get("/users/me/stats", response_model=StatsResponse)
async def get_my_stats(
    caller: Optional[str] = Depends(get_caller_id),
    db: AsyncSession = Depends(get_session),
):
    if not caller:
        raise AuthenticationError("Authentication required")
    user = (await db.execute(select(User).where(User.privy_id == caller))).scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")

    stats = await stats_service.get_stats(db, user.id)
    response = StatsResponse(badges=[UserBadgeOut.model_validate(b) for b in user.badges])
    if stats is not None:
        response = response.model_copy(update={
            "total_step_count": stats.total_step_count,
            "challenges_completed": stats.challenges_completed,
            "challenges_joined": stats.challenges_joined,
            "challenges_created": stats.challenges_created,
            "total_staked": stats.total_staked,
            "total_earned": stats.total_earned,
            "win_rate": stats.win_rate,
        })
    return response


@router.get("/leaderboard/all-time", response_model=LeaderboardResponse)
async def get_all_time_leaderboard(
    limit: int = Query(10, ge=1, le=100),
    page: int = Query(1, ge=1),
    sort_by: str = Query("totalStepCount", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_session),
):
    result = await stats_service.get_leaderboard(db, sort_by, sort_order, page, limit)
    return LeaderboardResponse(
        leaderboard=[
            LeaderboardEntry(
                username=user.username,
                wallet_address=user.wallet_address,
                stats=StatsSummary.model_validate(stats),
                badge_count=badge_count,
            )
            for user, stats, badge_count in result.entries
        ],
        pagination=Pagination(total=result.total, page=result.page, limit=result.limit, pages=result.pages),
    )
