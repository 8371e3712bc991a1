import httpx
import pytest

from fitstake.errors import ConflictError
from fitstake.main import app
from fitstake.models import Challenge
from fitstake.models.database import get_session
from fitstake.schemas import TelemetrySubmission
from fitstake.services import challenges as challenge_service
from fitstake.services import stats as stats_service

from .factories import add_participant, make_challenge, make_user


@pytest.fixture
async def client(session_factory):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
async def joined(db):
    """A running challenge with goal 10,000 and one participant, did:alice."""
    user = await make_user(db, "did:alice", "wallet-alice")
    challenge = await make_challenge(db, goal=10000)
    add_participant(challenge, "wallet-alice", user)
    await db.commit()
    return challenge


def _submission(platform, *counts):
    return {
        "platform": platform,
        "healthData": [{"date": f"2025-01-{day:02d}", "count": c} for day, c in enumerate(counts, 1)],
    }


async def test_extreme_attested_day_is_zeroed(client, joined) -> None:
    response = await client.post(
        f"/challenges/{joined.id}/health-data",
        json=_submission("attested", 95000),
        headers={"X-User-Id": "did:alice"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["totalSteps"] == 0
    assert body["verifiedRecords"] == 0
    assert body["isCompleted"] is False
    assert len(body["anomalies"]) == 1
    assert "extremely high step count: 95000" in body["anomalies"][0]["reasons"]


async def test_reaching_goal_completes(client, joined) -> None:
    response = await client.post(
        f"/challenges/{joined.id}/health-data",
        json=_submission("attested", 4000, 6000),
        headers={"X-User-Id": "did:alice"},
    )

    body = response.json()
    assert response.status_code == 200
    assert body["progress"] == 1
    assert body["isCompleted"] is True
    assert body["totalSteps"] == 10000
    assert body["goalSteps"] == 10000


async def test_resubmission_replaces_history(client, joined) -> None:
    headers = {"X-User-Id": "did:alice"}
    await client.post(f"/challenges/{joined.id}/health-data", json=_submission("attested", 4000, 5000), headers=headers)
    await client.post(f"/challenges/{joined.id}/health-data", json=_submission("attested", 3000), headers=headers)

    response = await client.get(f"/challenges/{joined.id}/progress", headers=headers)

    body = response.json()
    assert response.status_code == 200
    assert body["progress"] == pytest.approx(0.3)
    assert body["completed"] is False
    assert body["claimed"] is False
    assert body["healthData"] == [{"date": "2025-01-01", "count": 3000, "startTime": None, "endTime": None}]


async def test_concurrent_progress_write_is_a_conflict(session_factory, joined) -> None:
    submission = TelemetrySubmission.model_validate(_submission("attested", 4000))

    async with session_factory() as first, session_factory() as second:
        loaded = await first.get(Challenge, joined.id)
        assert loaded.find_participant("wallet-alice") is not None

        other = (await second.get(Challenge, joined.id)).find_participant("wallet-alice")
        other.progress = 0.5
        await second.commit()

        with pytest.raises(ConflictError) as exc_info:
            await challenge_service.submit_health_data(first, "did:alice", joined.id, submission)

    assert exc_info.value.status_code == 409
    async with session_factory() as session:
        stored = (await session.get(Challenge, joined.id)).find_participant("wallet-alice")
        assert stored.progress == 0.5
        assert stored.health_records == []


async def test_submission_requires_caller(client, joined) -> None:
    response = await client.post(f"/challenges/{joined.id}/health-data", json=_submission("attested", 100))

    assert response.status_code == 401


async def test_submission_to_unknown_challenge(client, joined) -> None:
    response = await client.post(
        "/challenges/9999/health-data", json=_submission("attested", 100), headers={"X-User-Id": "did:alice"}
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "Challenge not found"


async def test_submission_from_non_participant(client, db, joined) -> None:
    await make_user(db, "did:bob", "wallet-bob")
    await db.commit()

    response = await client.post(
        f"/challenges/{joined.id}/health-data", json=_submission("attested", 100), headers={"X-User-Id": "did:bob"}
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "You are not a participant in this challenge"


async def test_submission_without_wallet(client, db, joined) -> None:
    await make_user(db, "did:nowallet")
    await db.commit()

    response = await client.post(
        f"/challenges/{joined.id}/health-data", json=_submission("attested", 100), headers={"X-User-Id": "did:nowallet"}
    )

    assert response.status_code == 400


async def test_submission_to_completed_challenge(client, db, joined) -> None:
    challenge = await db.get(Challenge, joined.id)
    challenge.is_completed = True
    await db.commit()

    response = await client.post(
        f"/challenges/{joined.id}/health-data", json=_submission("attested", 100), headers={"X-User-Id": "did:alice"}
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Challenge is already completed"


async def test_empty_and_malformed_telemetry_rejected(client, joined) -> None:
    headers = {"X-User-Id": "did:alice"}

    empty = await client.post(
        f"/challenges/{joined.id}/health-data", json={"platform": "attested", "healthData": []}, headers=headers
    )
    malformed = await client.post(
        f"/challenges/{joined.id}/health-data",
        json={"platform": "attested", "healthData": [{"date": "2025-01-01", "count": "lots"}]},
        headers=headers,
    )
    unknown_platform = await client.post(
        f"/challenges/{joined.id}/health-data", json=_submission("manual", 100), headers=headers
    )

    assert empty.status_code == 400
    assert malformed.status_code == 422
    assert unknown_platform.status_code == 422


async def test_non_finite_count_is_rejected_as_invalid_input(client, joined) -> None:
    for platform in ("attested", "aggregated"):
        response = await client.post(
            f"/challenges/{joined.id}/health-data",
            content='{"platform": "%s", "healthData": [{"date": "2025-01-01", "count": Infinity}]}' % platform,
            headers={"X-User-Id": "did:alice", "Content-Type": "application/json"},
        )

        assert response.status_code == 422


async def test_create_join_and_stats(client, db, badges) -> None:
    await make_user(db, "did:alice", "wallet-alice")
    await make_user(db, "did:bob", "wallet-bob")
    await db.commit()

    created = await client.post("/challenges", headers={"X-User-Id": "did:alice"}, json={
        "challengeId": "walk-10k",
        "settlementRef": "pda-walk",
        "title": "Walk 10k",
        "goalValue": 10000,
        "startDate": "2025-01-01T00:00:00Z",
        "endDate": "2099-01-08T00:00:00Z",
        "stakeAmount": 0.5,
        "minParticipants": 1,
        "maxParticipants": 1,
    })
    assert created.status_code == 201
    challenge_id = created.json()["id"]

    joined = await client.post(f"/challenges/{challenge_id}/join", headers={"X-User-Id": "did:bob"})
    assert joined.status_code == 200
    assert joined.json()["totalParticipants"] == 1
    assert joined.json()["totalStake"] == 0.5
    assert joined.json()["isActive"] is True

    full = await client.post(f"/challenges/{challenge_id}/join", headers={"X-User-Id": "did:alice"})
    assert full.status_code == 400

    stats = await client.get("/users/me/stats", headers={"X-User-Id": "did:bob"})
    body = stats.json()
    assert body["challengesJoined"] == 1
    assert body["totalStaked"] == 0.5
    assert body["winRate"] == 0
    assert [b["badgeId"] for b in body["badges"]] == ["challenge_joiner"]

    creator = await client.get("/users/me/stats", headers={"X-User-Id": "did:alice"})
    assert creator.json()["challengesCreated"] == 1


async def test_claim_requires_verified_completion(client, db) -> None:
    user = await make_user(db, "did:alice", "wallet-alice")
    challenge = await make_challenge(db, goal=100, ended=True, is_completed=True)
    add_participant(challenge, "wallet-alice", user, steps=[200], completed=True)
    await db.commit()
    headers = {"X-User-Id": "did:alice"}

    pending = await client.post(f"/challenges/{challenge.id}/claim", json={"transactionId": "tx1"}, headers=headers)
    assert pending.status_code == 400

    stored = await db.get(Challenge, challenge.id)
    stored.on_chain_verification_complete = True
    await db.commit()

    claimed = await client.post(f"/challenges/{challenge.id}/claim", json={"transactionId": "tx1"}, headers=headers)
    assert claimed.status_code == 200
    assert claimed.json()["isClaimed"] is True

    again = await client.post(f"/challenges/{challenge.id}/claim", json={"transactionId": "tx1"}, headers=headers)
    assert again.status_code == 400


async def test_health_endpoint(client) -> None:
    response = await client.get("/health")

    assert response.json() == {"status": "healthy"}


async def test_all_time_leaderboard(client, db, badges) -> None:
    for privy_id, steps in (("did:low", 1000), ("did:high", 150000), ("did:mid", 20000)):
        user = await make_user(db, privy_id, f"wallet-{privy_id[4:]}")
        await stats_service.update_stats(db, user.id, {"total_step_count": steps})
    await db.commit()

    response = await client.get("/leaderboard/all-time", params={"limit": 2, "page": 1})

    body = response.json()
    assert response.status_code == 200
    assert [e["username"] for e in body["leaderboard"]] == ["did:high", "did:mid"]
    assert body["leaderboard"][0]["walletAddress"] == "wallet-high"
    assert body["leaderboard"][0]["stats"]["totalStepCount"] == 150000
    assert body["leaderboard"][0]["badgeCount"] == 2
    assert body["pagination"] == {"total": 3, "page": 1, "limit": 2, "pages": 2}

    by_steps_asc = await client.get("/leaderboard/all-time", params={"sortBy": "stats.totalStepCount", "sortOrder": "asc"})
    assert [e["username"] for e in by_steps_asc.json()["leaderboard"]] == ["did:low", "did:mid", "did:high"]


async def test_leaderboard_rejects_invalid_query(client) -> None:
    bad_field = await client.get("/leaderboard/all-time", params={"sortBy": "version"})
    bad_order = await client.get("/leaderboard/all-time", params={"sortOrder": "sideways"})
    bad_page = await client.get("/leaderboard/all-time", params={"page": 0})

    assert bad_field.status_code == 400
    assert bad_field.json()["detail"] == "Invalid sort field"
    assert bad_order.status_code == 422
    assert bad_page.status_code == 422
