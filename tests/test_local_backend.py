from datetime import timezone

import pytest
from conftest import CONTEST_ID, add_problem, profiles

from shodh import auth

from shodh.backend import BackendError
from shodh.backend.base import LEADERBOARD_RPC, SIGNED_IN, SIGNED_OUT
from shodh.db import SEED_FILE, seed_problems
from shodh.models import AuthUser, Problem, Profile, Submission


def submission(user_id, score, problem_id="p1", contest_id=CONTEST_ID):
    return {
        "user_id": user_id,
        "contest_id": contest_id,
        "problem_id": problem_id,
        "code": "print(1)",
        "language": "python",
        "status": "Accepted" if score else "Wrong Answer",
        "score": score,
        "output": "",
    }


@pytest.mark.asyncio
async def test_sign_up_and_sign_in(backend):
    events = []
    backend.on_auth_state_change(events.append)

    signed_up = await backend.sign_up("alice@test.com", "secret1", {"username": "alice"})
    assert signed_up.user.confirmed
    assert signed_up.user.user_metadata == {"username": "alice"}

    auth_session = await backend.sign_in_with_password("alice@test.com", "secret1")
    assert auth_session.user.id == signed_up.user.id
    assert [e.event for e in events] == [SIGNED_IN, SIGNED_IN]

    found = await backend.get_session(auth_session.access_token)
    assert found.user.email == "alice@test.com"


@pytest.mark.asyncio
async def test_sign_in_errors(confirming_backend):
    await confirming_backend.sign_up("alice@test.com", "secret1", {"username": "alice"})

    with pytest.raises(BackendError, match="Email not confirmed"):
        await confirming_backend.sign_in_with_password("alice@test.com", "secret1")
    with pytest.raises(BackendError, match="Invalid login credentials"):
        await confirming_backend.sign_in_with_password("alice@test.com", "nope-nope")

    assert confirming_backend.confirm_email("alice@test.com")
    assert await confirming_backend.sign_in_with_password("alice@test.com", "secret1")
    assert not confirming_backend.confirm_email("nobody@test.com")


@pytest.mark.asyncio
async def test_pending_sign_up_has_no_session(confirming_backend):
    response = await confirming_backend.sign_up("alice@test.com", "secret1", {"username": "alice"})
    assert response.session is None
    assert not response.user.confirmed


@pytest.mark.asyncio
async def test_duplicate_sign_up(backend):
    await backend.sign_up("alice@test.com", "secret1", {})
    with pytest.raises(BackendError, match="already registered"):
        await backend.sign_up("alice@test.com", "secret1", {})


@pytest.mark.asyncio
async def test_sign_out_revokes_every_token(backend):
    await backend.sign_up("alice@test.com", "secret1", {})
    first = await backend.sign_in_with_password("alice@test.com", "secret1")
    second = await backend.sign_in_with_password("alice@test.com", "secret1")
    events = []
    backend.on_auth_state_change(events.append)

    await backend.sign_out(first.access_token)

    assert await backend.get_session(first.access_token) is None
    assert await backend.get_session(second.access_token) is None
    assert [(e.event, e.session) for e in events] == [(SIGNED_OUT, None)]

    again = await backend.sign_in_with_password("alice@test.com", "secret1")
    assert await backend.get_session(again.access_token) is not None


@pytest.mark.asyncio
async def test_garbage_token_has_no_session(backend):
    assert await backend.get_session(None) is None
    assert await backend.get_session("not-a-jwt") is None
    await backend.sign_out("not-a-jwt")


@pytest.mark.asyncio
async def test_select_filters_and_rejects_unknown_names(backend, engine):
    add_problem(engine, title="First")
    add_problem(engine, title="Second")
    add_problem(engine, contest_id="other", title="Elsewhere")

    rows = await backend.select("problems", contest_id=CONTEST_ID)
    assert [r["title"] for r in rows] == ["First", "Second"]
    assert rows[0]["test_cases"] == [{"input": "1 2", "expectedOutput": "3"}]

    with pytest.raises(BackendError, match="does not exist"):
        await backend.select("contests")
    with pytest.raises(BackendError, match="does not exist"):
        await backend.select("problems", slug="x")


@pytest.mark.asyncio
async def test_insert_enforces_constraints(backend):
    await backend.insert("profiles", {"user_id": "u1", "username": "alice"})
    with pytest.raises(BackendError):
        await backend.insert("profiles", {"user_id": "u1", "username": "again"})
    with pytest.raises(BackendError, match="invalid submission status"):
        await backend.insert("submissions", dict(submission("u1", 0), status="Pending"))


@pytest.mark.asyncio
async def test_leaderboard_sums_and_ranks(backend):
    alice = await backend.sign_up("alice@test.com", "secret1", {"username": "alice"})
    bob = await backend.sign_up("bob@test.com", "secret1", {"username": "bobby"})
    await backend.insert("profiles", {"user_id": alice.user.id, "username": "alice"})

    await backend.insert("submissions", submission(alice.user.id, 100))
    await backend.insert("submissions", submission(alice.user.id, 0))
    await backend.insert("submissions", submission(bob.user.id, 100))
    await backend.insert("submissions", submission(bob.user.id, 150, problem_id="p2"))
    await backend.insert("submissions", submission(alice.user.id, 500, contest_id="other"))

    board = await backend.rpc(LEADERBOARD_RPC, {"contest_id_param": CONTEST_ID})

    # bob never got a profile row and is listed under the sign-up name
    assert board == [
        {"user_id": bob.user.id, "username": "bobby", "total_score": 250},
        {"user_id": alice.user.id, "username": "alice", "total_score": 100},
    ]


@pytest.mark.asyncio
async def test_unknown_rpc(backend):
    with pytest.raises(BackendError, match="Could not find the function"):
        await backend.rpc("drop_everything", {})


@pytest.mark.asyncio
async def test_seed_is_idempotent(backend, engine):
    assert seed_problems(engine) == 3
    assert seed_problems(engine) == 3
    rows = await backend.select("problems", contest_id="00000000-0000-0000-0000-000000000001")
    assert len(rows) == 3
    assert SEED_FILE.exists()


def test_row_timestamps_are_utc():
    rows = [
        AuthUser(email="alice@test.com", password_hash="x"),
        Profile(user_id="u1", username="alice"),
        Problem(contest_id=CONTEST_ID, title="A + B"),
        Submission(**submission("u1", 100)),
    ]
    assert all(row.created_at.tzinfo is timezone.utc for row in rows)


@pytest.mark.asyncio
async def test_sign_up_flow_stores_timestamps(confirming_backend, engine):
    result = await auth.sign_up(confirming_backend, "alice@test.com", "secret1", "alice")
    assert result.pending_confirmation

    assert confirming_backend.confirm_email("alice@test.com")
    auth_session = await auth.sign_in(confirming_backend, "alice@test.com", "secret1")
    assert auth_session.user.email_confirmed_at is not None
    assert await confirming_backend.get_session(auth_session.access_token) is not None

    await confirming_backend.insert("profiles", {"user_id": auth_session.user.id, "username": "alice"})
    assert [p.created_at is not None for p in profiles(engine)] == [True]
