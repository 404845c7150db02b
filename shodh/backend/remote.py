import asyncio
from typing import Any, Dict, List, Optional

import requests

from shodh import config
from shodh.backend.base import SIGNED_IN, SIGNED_OUT, AuthEvent, Backend, BackendError
from shodh.models import AuthSession, Identity, SignUpResponse
from shodh.utils import setup_logging

logger = setup_logging(__name__)


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"


def _identity(data: dict) -> Identity:
    return Identity(
        id=data["id"],
        email=data.get("email", ""),
        email_confirmed_at=data.get("email_confirmed_at"),
        user_metadata=data.get("user_metadata") or {},
    )


class RemoteBackend(Backend):
    """
    Hosted collaborator speaking the GoTrue (`/auth/v1`) and PostgREST
    (`/rest/v1`) dialects. Requests are blocking, so each one runs in a
    worker thread. Auth events are published for the calls made through
    this instance; there is no server push.
    """

    def __init__(self, url: str = config.BACKEND_URL, key: str = config.BACKEND_KEY):
        super().__init__()
        if not url:
            raise ValueError("SHODH_BACKEND_URL must be set for the remote backend")
        self.url = url.rstrip("/")
        self.key = key

    def _headers(self, access_token: Optional[str] = None) -> dict:
        return {
            "apikey": self.key,
            "Authorization": f"Bearer {access_token or self.key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, access_token: Optional[str] = None, **kwargs):
        headers = self._headers(access_token)
        headers.update(kwargs.pop("headers", {}))
        try:
            response = await asyncio.to_thread(
                requests.request, method, f"{self.url}{path}", headers=headers, **kwargs
            )
        except requests.RequestException as e:
            raise BackendError(str(e)) from e

        if response.status_code >= 400:
            raise BackendError(_error_message(response))
        if not response.content:
            return None
        return response.json()

    # auth

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> SignUpResponse:
        data = await self._request(
            "POST", "/auth/v1/signup", json={"email": email, "password": password, "data": metadata}
        )
        # with autoconfirm on the body is a full session, otherwise the bare user
        if data.get("access_token"):
            auth_session = AuthSession(access_token=data["access_token"], user=_identity(data["user"]))
            await self.auth_events.publish(AuthEvent(SIGNED_IN, auth_session.user.id, auth_session))
            return SignUpResponse(user=auth_session.user, session=auth_session)
        user = data.get("user") or data
        return SignUpResponse(user=_identity(user) if user.get("id") else None)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        data = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        auth_session = AuthSession(access_token=data["access_token"], user=_identity(data["user"]))
        await self.auth_events.publish(AuthEvent(SIGNED_IN, auth_session.user.id, auth_session))
        return auth_session

    async def sign_out(self, access_token: str) -> None:
        auth_session = await self.get_session(access_token)
        if auth_session is None:
            return
        await self._request("POST", "/auth/v1/logout", access_token=access_token)
        await self.auth_events.publish(AuthEvent(SIGNED_OUT, auth_session.user.id))

    async def get_session(self, access_token: Optional[str]) -> Optional[AuthSession]:
        if not access_token:
            return None
        try:
            data = await self._request("GET", "/auth/v1/user", access_token=access_token)
        except BackendError as e:
            # an expired or revoked token is simply "no session"
            logger.info("Session lookup rejected: %s", e)
            return None
        return AuthSession(access_token=access_token, user=_identity(data))

    # tables

    async def select(self, table: str, access_token: Optional[str] = None, **equals) -> List[dict]:
        params = {"select": "*"}
        params.update({name: f"eq.{value}" for name, value in equals.items()})
        return await self._request("GET", f"/rest/v1/{table}", access_token=access_token, params=params) or []

    async def insert(self, table: str, row: dict, access_token: Optional[str] = None) -> dict:
        rows = await self._request(
            "POST",
            f"/rest/v1/{table}",
            access_token=access_token,
            json=row,
            headers={"Prefer": "return=representation"},
        )
        return rows[0] if rows else {}

    async def rpc(self, name: str, params: dict, access_token: Optional[str] = None) -> List[dict]:
        return await self._request("POST", f"/rest/v1/rpc/{name}", access_token=access_token, json=params) or []
