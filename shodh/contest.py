import asyncio
import contextlib
from typing import Awaitable, Callable, List, Optional, Union

from pydantic import ValidationError

from shodh import config
from shodh.backend import Backend, BackendError
from shodh.backend.base import LEADERBOARD_RPC
from shodh.grader import Grader, RandomGrader
from shodh.models import LeaderboardEntry, Problem
from shodh.session import Navigate, SessionContext, SessionGuard
from shodh.utils import Notification, error_notification, maybe_await, setup_logging

logger = setup_logging(__name__)

Notify = Callable[[Notification], Union[None, Awaitable[None]]]
Changed = Callable[["ContestView"], Union[None, Awaitable[None]]]


class ContestView:
    """
    One open contest page: the session guard, the problem list, the polled
    leaderboard and the submit button. All state lives here and is dropped
    on `unmount`.

    Leaderboard responses are applied in the order their requests were
    issued. A response older than the one already on screen is dropped,
    nothing in flight is ever cancelled.
    """

    def __init__(
        self,
        backend: Backend,
        contest_id: str,
        access_token: Optional[str],
        navigate: Navigate,
        notify: Optional[Notify] = None,
        on_change: Optional[Changed] = None,
        grader: Optional[Grader] = None,
        poll_interval: float = config.POLL_INTERVAL_SECONDS,
    ):
        self.backend = backend
        self.contest_id = contest_id
        self.access_token = access_token
        self._navigate = navigate
        self._notify = notify
        self._on_change = on_change
        self.grader: Grader = grader or RandomGrader()
        self.poll_interval = poll_interval

        self.session: Optional[SessionContext] = None
        self.problems: List[Problem] = []
        self.selected_problem: Optional[Problem] = None
        self.leaderboard: List[LeaderboardEntry] = []
        self.loading = True
        self.submitting = False
        self.mounted = False
        self.redirected_to: Optional[str] = None

        self._poll_task: Optional[asyncio.Task] = None
        self._lb_issued = 0
        self._lb_applied = 0

    async def __aenter__(self):
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.unmount()
        return False

    # lifecycle

    async def mount(self, poll: bool = True) -> bool:
        """Run the guard, then load problems and leaderboard. False means the visitor was redirected."""
        self.loading = True
        guard = SessionGuard(self.backend, self.navigate)
        self.session = await guard.activate(self.access_token)
        if self.session is None:
            self.loading = False
            return False

        self.access_token = self.session.access_token
        self.session.subscribe(self._signed_out)
        self.mounted = True

        await self.fetch_problems()
        await self.fetch_leaderboard()
        self.loading = False
        await self._changed()

        if poll:
            self._poll_task = asyncio.create_task(self._poll_leaderboard())
        return True

    async def unmount(self):
        self.mounted = False
        if self.session is not None:
            self.session.close()
        if self._poll_task is not None:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def navigate(self, path: str):
        if self.redirected_to == path:
            return
        self.redirected_to = path
        await maybe_await(self._navigate(path))

    async def _signed_out(self):
        await self.navigate(config.AUTH_PATH)

    async def sign_out(self):
        if self.session is not None:
            try:
                await self.backend.sign_out(self.session.access_token)
            except BackendError as e:
                logger.error("Signout error: %s", e)
        await self.navigate(config.AUTH_PATH)

    # fetching

    async def fetch_problems(self):
        try:
            rows = await self.backend.select("problems", access_token=self.access_token, contest_id=self.contest_id)
        except BackendError as e:
            logger.error("Failed to load problems for contest %s: %s", self.contest_id, e)
            await self.notify(error_notification("Failed to load problems"))
            return

        self.problems = [Problem.model_validate(row) for row in rows]
        if self.selected_problem is None and self.problems:
            self.selected_problem = self.problems[0]

    async def fetch_leaderboard(self) -> bool:
        """Returns whether the response was applied."""
        self._lb_issued += 1
        ticket = self._lb_issued
        try:
            rows = await self.backend.rpc(
                LEADERBOARD_RPC, {"contest_id_param": self.contest_id}, access_token=self.access_token
            )
        except BackendError as e:
            logger.error("Leaderboard fetch failed for contest %s: %s", self.contest_id, e)
            return False

        if ticket < self._lb_applied:
            logger.debug("Dropping stale leaderboard response %d (have %d)", ticket, self._lb_applied)
            return False
        try:
            entries = [LeaderboardEntry.model_validate(row) for row in rows or []]
        except ValidationError as e:
            logger.error("Malformed leaderboard for contest %s: %s", self.contest_id, e)
            return False
        self._lb_applied = ticket
        self.leaderboard = entries
        if not self.loading:
            await self._changed()
        return True

    async def _poll_leaderboard(self):
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.fetch_leaderboard()
            except Exception as e:
                # keep polling after a failed tick
                logger.exception("Leaderboard poll failed for contest %s: %s", self.contest_id, e)

    # user actions

    def select_problem(self, problem_id: str) -> Optional[Problem]:
        self.selected_problem = next((p for p in self.problems if p.id == problem_id), None)
        return self.selected_problem

    async def submit(self, code: str, language: str = config.DEFAULT_LANGUAGE) -> Optional[dict]:
        """
        Grade and record one submission. Returns the stored row, or None when
        the submission was rejected locally or could not be stored.
        """
        problem = self.selected_problem
        if problem is None or not code.strip():
            await self.notify(error_notification("Please write some code before submitting"))
            return None
        if language not in config.LANGUAGES:
            await self.notify(error_notification(f"Unsupported language: {language}"))
            return None
        if self.submitting:
            await self.notify(error_notification("A submission is already in progress"))
            return None
        if self.session is None:
            await self.navigate(config.AUTH_PATH)
            return None

        self.submitting = True
        try:
            verdict = self.grader.grade(code, language, problem.cases())
            score = verdict.score_for(problem.score)
            try:
                row = await self.backend.insert("submissions", {
                    "user_id": self.session.user_id,
                    "contest_id": self.contest_id,
                    "problem_id": problem.id,
                    "code": code,
                    "language": language,
                    "status": verdict.status.value,
                    "score": score,
                    "output": verdict.output,
                }, access_token=self.access_token)
            except BackendError as e:
                logger.error("Submission failed: %s", e)
                await self.notify(error_notification(e.message))
                return None

            logger.info(
                "User %s submitted %s for problem %s: %s (%d points)",
                self.session.user_id, language, problem.id, verdict.status.value, score,
            )
            if verdict.accepted:
                await self.notify(Notification(verdict.status.value, f"Great! You earned {score} points!"))
            else:
                await self.notify(Notification(verdict.status.value, "Try again!", variant="destructive"))
        finally:
            self.submitting = False

        await self.fetch_leaderboard()
        return row

    # plumbing

    async def notify(self, notification: Notification):
        if self._notify is not None:
            await maybe_await(self._notify(notification))

    async def _changed(self):
        if self._on_change is not None:
            await maybe_await(self._on_change(self))

    def snapshot(self) -> dict:
        session = self.session
        return {
            "contest_id": self.contest_id,
            "loading": self.loading,
            "submitting": self.submitting,
            "user": {"id": session.user_id, "email": session.user.email} if session else None,
            "username": session.username if session else None,
            "problems": [
                {
                    "id": p.id,
                    "title": p.title,
                    "description": p.description,
                    "score": p.score,
                    "test_cases": [tc.model_dump(by_alias=True) for tc in p.cases()],
                }
                for p in self.problems
            ],
            "selected_problem_id": self.selected_problem.id if self.selected_problem else None,
            "leaderboard": [entry.model_dump() for entry in self.leaderboard],
        }
