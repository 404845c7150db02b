from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from shodh.models import AuthSession, SignUpResponse
from shodh.utils import ShodhError, maybe_await, setup_logging

logger = setup_logging(__name__)

LEADERBOARD_RPC = "get_contest_leaderboard"

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"


class BackendError(ShodhError):
    """A request to the data/auth collaborator failed. Carries the raw message."""


@dataclass
class AuthEvent:
    event: str
    user_id: str
    session: Optional[AuthSession] = None


AuthCallback = Callable[[AuthEvent], Union[None, Awaitable[None]]]


class Subscription:
    def __init__(self, channel: "AuthStateChannel", callback: AuthCallback):
        self._channel = channel
        self.callback = callback
        self.active = True

    def unsubscribe(self):
        if self.active:
            self.active = False
            self._channel._remove(self)


class AuthStateChannel:
    """
    Push channel of session transitions. Subscribers are called in
    subscription order; a failing subscriber is logged and does not stop
    delivery to the others.
    """

    def __init__(self):
        self._subscribers: List[Subscription] = []

    def subscribe(self, callback: AuthCallback) -> Subscription:
        sub = Subscription(self, callback)
        self._subscribers.append(sub)
        return sub

    def _remove(self, sub: Subscription):
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    def __len__(self):
        return len(self._subscribers)

    async def publish(self, event: AuthEvent):
        for sub in list(self._subscribers):
            if not sub.active:
                continue
            try:
                await maybe_await(sub.callback(event))
            except Exception as e:
                logger.exception("Auth state subscriber failed: %s", e, exc_info=e)


class Backend(ABC):
    """
    The request/response collaborator holding every piece of persistent
    state: accounts, profiles, problems, submissions and the leaderboard
    aggregate. All failures surface as `BackendError`.
    """

    def __init__(self):
        self.auth_events = AuthStateChannel()

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        return self.auth_events.subscribe(callback)

    @abstractmethod
    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> SignUpResponse:
        ...

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        ...

    @abstractmethod
    async def sign_out(self, access_token: str) -> None:
        ...

    @abstractmethod
    async def get_session(self, access_token: Optional[str]) -> Optional[AuthSession]:
        ...

    @abstractmethod
    async def select(self, table: str, access_token: Optional[str] = None, **equals) -> List[dict]:
        ...

    @abstractmethod
    async def insert(self, table: str, row: dict, access_token: Optional[str] = None) -> dict:
        ...

    @abstractmethod
    async def rpc(self, name: str, params: dict, access_token: Optional[str] = None) -> List[dict]:
        ...
