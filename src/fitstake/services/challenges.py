# src/fitstake/services/challenges.py

from dataclasses import dataclass
from datetime import timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from ..errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from ..metrics import telemetry_submissions_total
from ..models import Challenge, HealthRecord, Participant, User, utcnow
from ..progress import Progress, calculate_progress
from ..schemas import ChallengeCreate, TelemetrySubmission
from ..utils.logging import setup_logger
from ..verification import VerificationResult, get_verifier
from . import stats as stats_service

logger = setup_logger(__name__, level=settings.log_level)


@dataclass
class SubmissionOutcome:
    challenge: Challenge
    participant: Participant
    progress: Progress
    verification: VerificationResult


async def resolve_wallet_user(db: AsyncSession, privy_id: Optional[str]) -> User:
    """Resolve the caller to a user with a bound funding wallet."""
    if not privy_id:
        raise AuthenticationError("Authentication required")

    user = (await db.execute(select(User).where(User.privy_id == privy_id))).scalar_one_or_none()
    if user is None or not user.wallet_address:
        raise ValidationError("Wallet address not set. Please connect your wallet first.")
    return user


async def get_challenge(db: AsyncSession, challenge_id: int) -> Challenge:
    challenge = await db.get(Challenge, challenge_id)
    if challenge is None:
        raise NotFoundError("Challenge not found")
    return challenge


def get_participant(challenge: Challenge, user: User) -> Participant:
    participant = challenge.find_participant(user.wallet_address)
    if participant is None:
        raise ValidationError("You are not a participant in this challenge")
    return participant


async def submit_health_data(db: AsyncSession, privy_id: Optional[str], challenge_id: int,
                             submission: TelemetrySubmission) -> SubmissionOutcome:
    """
    Verify a telemetry submission and store it as the participant's progress.

    The submitted records fully replace whatever the participant had stored
    before. A concurrent write to the same participant raises ConflictError.
    """
    platform = submission.platform.value
    try:
        user = await resolve_wallet_user(db, privy_id)
        challenge = await get_challenge(db, challenge_id)
        if challenge.is_completed:
            raise ValidationError("Challenge is already completed")
        participant = get_participant(challenge, user)

        verification = get_verifier(submission.platform).verify(submission.health_data)
        progress = calculate_progress((r.steps for r in verification.records), challenge.goal_value)

        now = utcnow()
        participant.health_records = [
            HealthRecord(
                date=record.date,
                steps=record.steps,
                start_time=record.start_time,
                end_time=record.end_time,
                last_updated=now,
            )
            for record in verification.records
        ]
        participant.progress = progress.progress
        participant.completed = progress.completed
        participant.updated_at = now

        try:
            await db.commit()
        except StaleDataError:
            await db.rollback()
            raise ConflictError("Progress was updated concurrently, please resubmit")
    except Exception:
        telemetry_submissions_total.labels(platform=platform, status="rejected").inc()
        raise

    telemetry_submissions_total.labels(platform=platform, status="accepted").inc()
    logger.info(
        f"Stored {len(verification.records)} records for {participant.wallet_address} in challenge "
        f"{challenge.id}: {progress.total_steps}/{challenge.goal_value:g} steps "
        f"({verification.verified_records} verified, {verification.suspicious_records} suspicious)"
    )
    return SubmissionOutcome(challenge, participant, progress, verification)


async def get_progress(db: AsyncSession, privy_id: Optional[str], challenge_id: int) -> Participant:
    user = await resolve_wallet_user(db, privy_id)
    challenge = await get_challenge(db, challenge_id)
    return get_participant(challenge, user)


async def create_challenge(db: AsyncSession, privy_id: Optional[str], data: ChallengeCreate) -> Challenge:
    user = await resolve_wallet_user(db, privy_id)

    if data.end_date <= data.start_date:
        raise ValidationError("End date must be after start date")
    if data.min_participants > data.max_participants:
        raise ValidationError("Minimum participants cannot exceed maximum participants")

    existing = (await db.execute(
        select(Challenge.id).where(Challenge.challenge_ref == data.challenge_ref)
    )).scalar_one_or_none()
    if existing is not None:
        raise ConflictError("Challenge already exists")

    challenge = Challenge(
        challenge_ref=data.challenge_ref,
        settlement_ref=data.settlement_ref,
        title=data.title,
        description=data.description,
        goal_value=data.goal_value,
        goal_unit=data.goal_unit,
        start_date=_naive_utc(data.start_date),
        end_date=_naive_utc(data.end_date),
        stake_amount=data.stake_amount,
        currency=data.currency,
        min_participants=data.min_participants,
        max_participants=data.max_participants,
        total_stake=0.0,
        creator_id=user.id,
        is_active=False,
        is_completed=False,
        on_chain_verification_complete=False,
        participants=[],
    )
    db.add(challenge)
    await db.flush()

    await stats_service.record_creation(db, user.id)
    await db.commit()
    logger.info(f"Created challenge {challenge.id} ({challenge.challenge_ref}) for user {user.id}")
    return challenge


async def join_challenge(db: AsyncSession, privy_id: Optional[str], challenge_id: int) -> Challenge:
    user = await resolve_wallet_user(db, privy_id)
    challenge = await get_challenge(db, challenge_id)

    if challenge.is_completed:
        raise ValidationError("Challenge is already completed")
    if challenge.find_participant(user.wallet_address) is not None:
        raise ValidationError("You are already a participant")
    if challenge.total_participants >= challenge.max_participants:
        raise ValidationError("Challenge has reached max participants")

    challenge.participants.append(Participant(
        wallet_address=user.wallet_address,
        user_id=user.id,
        stake_amount=challenge.stake_amount,
        joined_at=utcnow(),
        progress=0.0,
        completed=False,
        claimed=False,
    ))
    challenge.total_stake = (challenge.total_stake or 0) + challenge.stake_amount
    if challenge.total_participants >= challenge.min_participants:
        challenge.is_active = True

    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("You are already a participant")

    await stats_service.record_join(db, user.id, challenge.stake_amount)
    await db.commit()
    logger.info(f"User {user.id} joined challenge {challenge.id}")
    return challenge


async def claim_reward(db: AsyncSession, privy_id: Optional[str], challenge_id: int,
                       transaction_id: Optional[str]) -> Participant:
    """Mark a completed participant's reward as claimed once the challenge is settled on chain."""
    user = await resolve_wallet_user(db, privy_id)
    challenge = await get_challenge(db, challenge_id)

    if not challenge.is_completed:
        raise ValidationError("Challenge is not completed yet")
    if not challenge.on_chain_verification_complete:
        raise ValidationError("Challenge verification is still in progress. Please try again later.")

    participant = get_participant(challenge, user)
    if not participant.completed:
        raise ValidationError("You did not complete this challenge")
    if participant.claimed:
        raise ValidationError("You have already claimed rewards for this challenge")

    if transaction_id:
        participant.claimed = True
        try:
            await db.commit()
        except StaleDataError:
            await db.rollback()
            raise ConflictError("Participant was updated concurrently, please retry")
        logger.info(f"User {user.id} claimed reward for challenge {challenge.id}: {transaction_id}")
    return participant


def _naive_utc(value):
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
