# src/fitstake/sweep.py
"""
Finalization sweep: closes out ended challenges and reconciles them with the
settlement layer.

A challenge is picked up once its end date has passed and stays eligible
until the settlement layer has confirmed it (``on_chain_verification_complete``)
and every completed participant with a user has been credited. Re-running a
cycle over the same challenge is safe: completions are only credited to user
stats once per participant, and settlement calls are idempotent.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence

from sqlalchemy import or_, select

from .clients.settlement import SettlementClient, SettlementGatewayClient
from .config import settings
from .metrics import settlement_duration, settlement_requests_total, sweep_challenges_total, sweep_duration, sweep_runs_total
from .models import Challenge, Participant, utcnow
from .progress import calculate_progress
from .services import stats as stats_service
from .utils.logging import setup_logger

logger = setup_logger(__name__, level=settings.log_level)


@dataclass
class SweepReport:
    challenge_id: int
    completed_accounts: List[str] = field(default_factory=list)
    failed_batches: int = 0
    pending_credits: int = 0
    verified: bool = False


def batched(items: Sequence[str], size: int) -> Iterator[List[str]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


class FinalizationSweep:
    def __init__(self, session_factory: Optional[Callable] = None,
                 settlement: Optional[SettlementClient] = None,
                 batch_size: Optional[int] = None, concurrency: Optional[int] = None):
        if session_factory is None:
            from .models.database import async_session
            session_factory = async_session
        self.session_factory = session_factory
        self.settlement = settlement or SettlementGatewayClient()
        self.batch_size = batch_size or settings.settlement_batch_size
        self.concurrency = concurrency or settings.sweep_concurrency
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run_once(self) -> Optional[List[SweepReport]]:
        """Run one cycle. Returns None when a cycle is already in progress."""
        if self._lock.locked():
            logger.warning("Finalization sweep already running, skipping this cycle")
            sweep_runs_total.labels(status="skipped").inc()
            return None

        async with self._lock:
            start_time = time.time()
            try:
                challenge_ids = await self.find_pending_challenges()
                if not challenge_ids:
                    logger.debug("No ended challenges to process")
                    sweep_runs_total.labels(status="success").inc()
                    return []

                logger.info(f"Found {len(challenge_ids)} ended challenges to process")
                semaphore = asyncio.Semaphore(self.concurrency)

                async def guarded(challenge_id):
                    async with semaphore:
                        return await self.process_challenge(challenge_id)

                results = await asyncio.gather(*(guarded(cid) for cid in challenge_ids))
                sweep_runs_total.labels(status="success").inc()
                return [r for r in results if r is not None]
            except Exception as e:
                logger.error(f"Error in finalization sweep: {e}")
                sweep_runs_total.labels(status="error").inc()
                return []
            finally:
                sweep_duration.observe(time.time() - start_time)

    async def find_pending_challenges(self) -> List[int]:
        """Ended challenges that are unsettled or still owe a stats credit."""
        uncredited = (
            select(Participant.challenge_id)
            .where(
                Participant.completed == True,  # noqa: E712
                Participant.user_id.isnot(None),
                Participant.credited_at.is_(None),
            )
        )
        async with self.session_factory() as db:
            stmt = (
                select(Challenge.id)
                .where(
                    Challenge.end_date < utcnow(),
                    or_(
                        Challenge.is_completed == False,  # noqa: E712
                        Challenge.on_chain_verification_complete == False,  # noqa: E712
                        Challenge.id.in_(uncredited),
                    ),
                )
                .order_by(Challenge.end_date)
            )
            return list((await db.execute(stmt)).scalars().all())

    async def process_challenge(self, challenge_id: int) -> Optional[SweepReport]:
        """Process one challenge; errors are logged and never propagate to other challenges."""
        try:
            report = await self._process(challenge_id)
        except Exception as e:
            logger.error(f"Error processing challenge {challenge_id}: {e}")
            sweep_challenges_total.labels(status="error").inc()
            return None
        if report is not None:
            sweep_challenges_total.labels(status="verified" if report.verified else "pending").inc()
        return report

    async def _process(self, challenge_id: int) -> Optional[SweepReport]:
        async with self.session_factory() as db:
            challenge = await db.get(Challenge, challenge_id)
            if challenge is None:
                return None
            if not (challenge.is_completed and challenge.on_chain_verification_complete):
                return await self._finalize(db, challenge)

            owed = [
                (p.id, p.user_id, p.total_steps)
                for p in challenge.participants
                if p.completed and p.user_id is not None and p.credited_at is None
            ]

        # Settled already; only stats credits can still be owed.
        report = SweepReport(challenge_id=challenge.id, verified=True)
        for participant_id, user_id, total_steps in owed:
            if not await self.credit_completion(participant_id, user_id, total_steps, challenge.stake_amount):
                report.pending_credits += 1
        logger.info(
            f"Retried {len(owed)} stats credits for settled challenge {challenge.id}, "
            f"{report.pending_credits} still pending"
        )
        return report

    async def _finalize(self, db, challenge: Challenge) -> SweepReport:
        logger.info(f"Processing ended challenge {challenge.id}")
        report = SweepReport(challenge_id=challenge.id)
        to_credit = []

        for participant in challenge.participants:
            result = calculate_progress((r.steps for r in participant.health_records), challenge.goal_value)
            participant.completed = result.completed
            if not result.completed:
                logger.info(
                    f"Participant {participant.wallet_address} failed the challenge with "
                    f"{result.total_steps}/{challenge.goal_value:g} steps"
                )
                continue

            participant.progress = result.progress
            report.completed_accounts.append(participant.wallet_address)
            if participant.credited_at is None and participant.user_id is not None:
                to_credit.append((participant.id, participant.user_id, result.total_steps))
            elif participant.user_id is None:
                logger.info(f"No user associated with participant {participant.id}, skipping stats update")

        challenge.is_completed = True
        await db.commit()

        # A failed credit leaves credited_at unset, which keeps the challenge
        # selectable after settlement is confirmed.
        for participant_id, user_id, total_steps in to_credit:
            if not await self.credit_completion(participant_id, user_id, total_steps, challenge.stake_amount):
                report.pending_credits += 1

        if not report.completed_accounts:
            logger.info(f"No completed participants to submit for challenge {challenge.id}")
            report.verified = True
        else:
            report.failed_batches, report.verified = await self.settle(challenge, report.completed_accounts)

        if report.verified:
            challenge.on_chain_verification_complete = True
            await db.commit()

        logger.info(
            f"Processed challenge {challenge.id}: {len(report.completed_accounts)} completions out of "
            f"{challenge.total_participants} participants, verified={report.verified}, "
            f"pending credits={report.pending_credits}"
        )
        return report

    async def credit_completion(self, participant_id: int, user_id: int,
                                total_steps: int, stake_earned: float) -> bool:
        """
        Credit one completion to the owner's stats in its own transaction.

        Returns True once the participant is credited, including by an
        earlier run. Failures are logged and left for the next cycle.
        """
        async with self.session_factory() as db:
            try:
                participant = await db.get(Participant, participant_id)
                if participant is None:
                    return False
                if participant.credited_at is not None:
                    return True
                await stats_service.record_completion(db, user_id, total_steps, stake_earned)
                participant.credited_at = utcnow()
                await db.commit()
            except Exception as e:
                await db.rollback()
                logger.error(f"Failed to update stats for user {user_id} (participant {participant_id}): {e}")
                return False

        logger.info(f"Stats updated for user {user_id}")
        return True

    async def settle(self, challenge: Challenge, accounts: List[str]):
        """
        Submit completions batch by batch, then finalize.

        Returns ``(failed_batches, verified)``. Only a confirmed finalize call
        counts as verified; a failing batch is logged and skipped.
        """
        if not challenge.settlement_ref:
            logger.error(f"Challenge {challenge.id} has no settlement reference, cannot submit completions")
            return 0, False

        batches = list(batched(accounts, self.batch_size))
        logger.info(
            f"Submitting {len(accounts)} completed accounts for challenge {challenge.id} "
            f"in {len(batches)} batches"
        )

        failed = 0
        for index, batch in enumerate(batches, 1):
            start_time = time.time()
            try:
                signature = await asyncio.to_thread(
                    self.settlement.record_completions, challenge.settlement_ref, batch
                )
                settlement_requests_total.labels(operation="record_completions", status="success").inc()
                logger.info(f"Batch {index}/{len(batches)} for challenge {challenge.id} confirmed: {signature}")
            except Exception as e:
                failed += 1
                settlement_requests_total.labels(operation="record_completions", status="error").inc()
                logger.error(f"Error processing batch {index}/{len(batches)} for challenge {challenge.id}: {e}")
            finally:
                settlement_duration.labels(operation="record_completions").observe(time.time() - start_time)

        start_time = time.time()
        try:
            signature = await asyncio.to_thread(self.settlement.finalize, challenge.settlement_ref)
        except Exception as e:
            settlement_requests_total.labels(operation="finalize", status="error").inc()
            logger.error(f"Error finalizing challenge {challenge.id}: {e}")
            return failed, False
        finally:
            settlement_duration.labels(operation="finalize").observe(time.time() - start_time)

        settlement_requests_total.labels(operation="finalize", status="success").inc()
        logger.info(f"Challenge {challenge.id} finalized on chain: {signature}")
        return failed, True


class SweepScheduler:
    """Runs a sweep on a fixed interval until stopped."""

    def __init__(self, sweep: FinalizationSweep, interval: Optional[float] = None):
        self.sweep = sweep
        self.interval = interval if interval is not None else settings.sweep_interval_seconds
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Finalization sweep scheduled every {self.interval}s")

    async def _run(self) -> None:
        while not self._stop.is_set():
            await self.sweep.run_once()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Finalization sweep stopped")
