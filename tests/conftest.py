from typing import List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine, select

from shodh.backend.base import SIGNED_OUT, AuthEvent, Backend
from shodh.backend.local import LocalBackend
from shodh.models import AuthSession, Identity, Problem, Profile, SignUpResponse

CONTEST_ID = "contest-1"


@pytest.fixture
def engine():
    return create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)


@pytest.fixture
def backend(engine):
    """Local collaborator that confirms accounts immediately."""
    return LocalBackend(engine, require_email_confirmation=False, secret_key="test-secret")


@pytest.fixture
def confirming_backend(engine):
    """Local collaborator that holds accounts until the email is confirmed."""
    return LocalBackend(engine, require_email_confirmation=True, secret_key="test-secret")


def add_problem(engine, contest_id=CONTEST_ID, title="A + B", score=100, problem_id=None) -> Problem:
    problem = Problem(
        contest_id=contest_id,
        title=title,
        description="Add two numbers",
        test_cases=[{"input": "1 2", "expectedOutput": "3"}],
        score=score,
    )
    if problem_id:
        problem.id = problem_id
    with Session(engine) as session:
        session.add(problem)
        session.commit()
        session.refresh(problem)
    return problem


def profiles(engine) -> List[Profile]:
    with Session(engine) as session:
        return list(session.exec(select(Profile)).all())


def make_session(user_id="user-1", email="alice@test.com", token="token-1") -> AuthSession:
    return AuthSession(access_token=token, user=Identity(id=user_id, email=email))


class FakeBackend(Backend):
    """
    In-memory collaborator recording every call. Put a `BackendError` into
    `errors[method]` to make that method fail.
    """

    def __init__(self, session: Optional[AuthSession] = None):
        super().__init__()
        self.session = session
        self.calls = []
        self.errors = {}
        self.tables = {"profiles": [], "problems": [], "submissions": []}
        self.leaderboard = []
        self.sign_up_response = None

    def _call(self, name, *args):
        self.calls.append((name, args))
        if name in self.errors:
            raise self.errors[name]

    def count(self, name) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    async def sign_up(self, email, password, metadata):
        self._call("sign_up", email, password, metadata)
        if self.sign_up_response is not None:
            return self.sign_up_response
        return SignUpResponse(user=Identity(id="new-user", email=email, user_metadata=metadata))

    async def sign_in_with_password(self, email, password):
        self._call("sign_in_with_password", email, password)
        return self.session or make_session(email=email)

    async def sign_out(self, access_token):
        self._call("sign_out", access_token)
        if self.session is not None:
            user_id = self.session.user.id
            self.session = None
            await self.auth_events.publish(AuthEvent(SIGNED_OUT, user_id))

    async def get_session(self, access_token):
        self._call("get_session", access_token)
        return self.session

    async def select(self, table, access_token=None, **equals):
        self._call("select", table, equals)
        return [
            dict(row) for row in self.tables[table]
            if all(row.get(k) == v for k, v in equals.items())
        ]

    async def insert(self, table, row, access_token=None):
        self._call("insert", table, row)
        stored = {"id": f"{table}-{len(self.tables[table]) + 1}", **row}
        self.tables[table].append(stored)
        return stored

    async def rpc(self, name, params, access_token=None):
        self._call("rpc", name, params)
        return [dict(row) for row in self.leaderboard]


@pytest.fixture
def fake():
    return FakeBackend(session=make_session())


@pytest.fixture
def anonymous():
    return FakeBackend(session=None)


class Recorder:
    """Collects navigations and notifications a view emits."""

    def __init__(self):
        self.paths = []
        self.notifications = []

    def navigate(self, path):
        self.paths.append(path)

    def notify(self, notification):
        self.notifications.append(notification)


@pytest.fixture
def recorder():
    return Recorder()

