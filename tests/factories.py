from datetime import timedelta
from typing import Optional, Sequence

from fitstake.clients.settlement import SettlementClient
from fitstake.errors import SettlementError
from fitstake.models import Challenge, HealthRecord, Participant, User, utcnow


class FakeSettlementClient(SettlementClient):
    def __init__(self, fail_batches: Sequence[int] = (), fail_finalize: bool = False):
        self.fail_batches = set(fail_batches)
        self.fail_finalize = fail_finalize
        self.batches = []
        self.finalized = []

    @property
    def calls(self) -> int:
        return len(self.batches) + len(self.finalized)

    def record_completions(self, challenge_ref, accounts):
        index = len(self.batches)
        self.batches.append(list(accounts))
        if index in self.fail_batches:
            raise SettlementError(f"batch {index} rejected")
        return f"sig-batch-{index}"

    def finalize(self, challenge_ref):
        self.finalized.append(challenge_ref)
        if self.fail_finalize:
            raise SettlementError("finalize rejected")
        return f"sig-finalize-{challenge_ref}"


async def make_user(db, privy_id: str, wallet: Optional[str] = None) -> User:
    user = User(privy_id=privy_id, wallet_address=wallet, username=privy_id)
    db.add(user)
    await db.flush()
    return user


async def make_challenge(db, ref: str = "ch-1", goal: float = 10000, stake: float = 1.5,
                         ended: bool = False, settlement_ref: Optional[str] = "pda-ch-1",
                         **kwargs) -> Challenge:
    now = utcnow()
    if ended:
        start, end = now - timedelta(days=8), now - timedelta(minutes=1)
    else:
        start, end = now - timedelta(days=1), now + timedelta(days=6)
    values = dict(
        challenge_ref=ref,
        settlement_ref=settlement_ref,
        title=f"Challenge {ref}",
        description="",
        goal_value=goal,
        goal_unit="steps",
        start_date=start,
        end_date=end,
        stake_amount=stake,
        currency="SOL",
        min_participants=1,
        max_participants=100,
        total_stake=0.0,
        is_active=True,
        is_completed=False,
        on_chain_verification_complete=False,
        participants=[],
    )
    values.update(kwargs)
    challenge = Challenge(**values)
    db.add(challenge)
    await db.flush()
    return challenge


def add_participant(challenge: Challenge, wallet: str, user: Optional[User] = None,
                    steps: Sequence[int] = (), completed: bool = False) -> Participant:
    participant = Participant(
        wallet_address=wallet,
        user_id=user.id if user is not None else None,
        stake_amount=challenge.stake_amount,
        joined_at=utcnow(),
        progress=0.0,
        completed=completed,
        claimed=False,
        health_records=[
            HealthRecord(date=f"2025-01-{day:02d}", steps=count, last_updated=utcnow())
            for day, count in enumerate(steps, 1)
        ],
    )
    challenge.participants.append(participant)
    return participant
