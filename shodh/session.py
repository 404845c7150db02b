from typing import Awaitable, Callable, Optional, Union

from shodh import config
from shodh.backend import AuthEvent, Backend, BackendError, Subscription
from shodh.models import AuthSession, Identity, Profile
from shodh.utils import maybe_await, setup_logging

logger = setup_logging(__name__)

Navigate = Callable[[str], Union[None, Awaitable[None]]]
SignedOutCallback = Callable[[], Union[None, Awaitable[None]]]


class SessionContext:
    """
    Who is using the view. Owned by exactly one view; `subscribe` ties it to
    the backend's auth-state channel and `close` lets go again.
    """

    def __init__(self, backend: Backend, auth_session: AuthSession):
        self.backend = backend
        self.access_token = auth_session.access_token
        self.user: Identity = auth_session.user
        self.profile: Optional[Profile] = None
        self._subscription: Optional[Subscription] = None
        self._on_signed_out: Optional[SignedOutCallback] = None

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def username(self) -> Optional[str]:
        return self.profile.username if self.profile else None

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def load_profile(self) -> Optional[Profile]:
        try:
            rows = await self.backend.select("profiles", access_token=self.access_token, user_id=self.user_id)
        except BackendError as e:
            logger.error("Profile error: %s", e)
            return None
        if not rows:
            logger.error("Profile error: no profile row for user %s", self.user_id)
            return None
        self.profile = Profile.model_validate(rows[0])
        return self.profile

    def subscribe(self, on_signed_out: SignedOutCallback):
        self.close()
        self._on_signed_out = on_signed_out
        self._subscription = self.backend.on_auth_state_change(self._handle)

    async def _handle(self, event: AuthEvent):
        if event.user_id != self.user_id:
            return
        if event.session is None:
            logger.info("Session for %s ended (%s)", self.user_id, event.event)
            await maybe_await(self._on_signed_out())
            return
        self.access_token = event.session.access_token
        self.user = event.session.user
        await self.load_profile()

    def close(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None


class SessionGuard:
    """Resolves the visitor's session; anyone without one is sent to the auth page."""

    def __init__(self, backend: Backend, navigate: Navigate, auth_path: str = config.AUTH_PATH):
        self.backend = backend
        self.navigate = navigate
        self.auth_path = auth_path

    async def activate(self, access_token: Optional[str]) -> Optional[SessionContext]:
        try:
            auth_session = await self.backend.get_session(access_token)
        except BackendError as e:
            logger.error("Auth error: %s", e)
            auth_session = None

        if auth_session is None:
            await maybe_await(self.navigate(self.auth_path))
            return None

        context = SessionContext(self.backend, auth_session)
        await context.load_profile()
        return context
