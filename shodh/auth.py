import base64
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from shodh import config
from shodh.backend import Backend, BackendError
from shodh.models import AuthSession, Identity
from shodh.utils import AuthError, Notification, error_notification, setup_logging

logger = setup_logging(__name__)

router = APIRouter(prefix=config.AUTH_PATH, tags=["auth"])
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
COOKIE_NAME = "access_token"
FLASH_COOKIE = "flash"

SIGNIN_TAB = "signin"
SIGNUP_TAB = "signup"

WELCOME_BACK = Notification("Welcome back!", "Successfully signed in.")


@dataclass
class SignUpResult:
    user: Identity
    notification: Notification
    session: Optional[AuthSession] = None
    active_tab: str = SIGNUP_TAB
    redirect: Optional[str] = None

    @property
    def pending_confirmation(self) -> bool:
        return self.session is None and self.redirect is None


def validate_email(email: str):
    if not EMAIL_RE.match(email):
        raise AuthError("Please enter a valid email address")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def remap_sign_up_error(message: str) -> str:
    if "already registered" in message:
        return "This email is already registered. Please sign in instead."
    if "invalid" in message:
        return "Please enter a valid email address"
    return message


def remap_sign_in_error(message: str) -> str:
    if "Invalid login credentials" in message:
        return "Invalid email or password."
    if "Email not confirmed" in message:
        return "Please confirm your email first."
    return message or "Failed to sign in. Please try again."


async def sign_up(backend: Backend, email: str, password: str, username: str) -> SignUpResult:
    """
    Create an account. Raises `AuthError` for anything the user has to fix.

    When the collaborator confirms the account on the spot, the profile row is
    created right away and the result carries a session and a redirect to `/`.
    Otherwise the result asks the user to confirm by email and switches the
    form to the sign-in tab; the profile is left for later.
    """
    if not email or not password or not username:
        raise AuthError("Please fill in all fields")
    validate_email(email)
    if len(password) < config.MIN_PASSWORD_LENGTH:
        raise AuthError(f"Password must be at least {config.MIN_PASSWORD_LENGTH} characters")

    try:
        response = await backend.sign_up(normalize_email(email), password, {"username": username})
    except BackendError as e:
        logger.error("Signup error: %s", e)
        raise AuthError(remap_sign_up_error(e.message)) from e

    if response.user is None:
        raise AuthError("Failed to create account. Please try again.")

    if response.user.confirmed:
        try:
            await backend.insert(
                "profiles",
                {"user_id": response.user.id, "username": username},
                access_token=response.session.access_token if response.session else None,
            )
        except BackendError as e:
            # the account exists either way; the leaderboard falls back to the sign-up metadata
            logger.error("Profile error: %s", e)
        return SignUpResult(
            user=response.user,
            session=response.session,
            notification=Notification("Account created!", "Welcome to Shodh-a-Code!"),
            redirect="/",
        )

    return SignUpResult(
        user=response.user,
        notification=Notification(
            "Check your email", "We've sent you a confirmation link. Please check your email."
        ),
        active_tab=SIGNIN_TAB,
    )


async def sign_in(backend: Backend, email: str, password: str) -> AuthSession:
    if not email or not password:
        raise AuthError("Please fill in all fields")
    validate_email(email)

    try:
        return await backend.sign_in_with_password(normalize_email(email), password)
    except BackendError as e:
        logger.error("Signin error: %s", e)
        raise AuthError(remap_sign_in_error(e.message)) from e


def get_backend(request: Request) -> Backend:
    return request.app.state.backend


async def get_current_session(request: Request, backend: Backend = Depends(get_backend)):
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        return None
    try:
        return await backend.get_session(token)
    except BackendError as e:
        logger.error("Auth error: %s", e)
        return None


def _render(request: Request, active_tab: str = SIGNIN_TAB, notification: Notification = None, **context):
    # the username field only survives while the sign-up tab is showing
    if active_tab == SIGNIN_TAB:
        context.pop("username", None)
    return templates.TemplateResponse(request, "auth.html", {
        "active_tab": active_tab,
        "notification": notification,
        **context,
    })


def set_flash(response, notification: Notification):
    """Keep a toast for the next page rendered after a redirect."""
    payload = base64.urlsafe_b64encode(json.dumps(notification.to_dict()).encode()).decode()
    response.set_cookie(key=FLASH_COOKIE, value=payload, httponly=True)


def read_flash(request: Request) -> Optional[Notification]:
    value = request.cookies.get(FLASH_COOKIE)
    if not value:
        return None
    try:
        return Notification.from_dict(json.loads(base64.urlsafe_b64decode(value.encode())))
    except (ValueError, TypeError, KeyError) as e:
        logger.warning("Ignoring unreadable flash cookie: %s", e)
        return None


def _login_response(url: str, auth_session: AuthSession, notification: Notification = None) -> RedirectResponse:
    response = RedirectResponse(url=url, status_code=303)
    response.set_cookie(key=COOKIE_NAME, value=auth_session.access_token, httponly=True)
    if notification is not None:
        set_flash(response, notification)
    return response


@router.get("", response_class=HTMLResponse)
def auth_page(request: Request, tab: str = SIGNIN_TAB):
    return _render(request, active_tab=SIGNUP_TAB if tab == SIGNUP_TAB else SIGNIN_TAB)


@router.post("/signin")
async def signin(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    backend: Backend = Depends(get_backend),
):
    try:
        auth_session = await sign_in(backend, email, password)
    except AuthError as e:
        return _render(request, SIGNIN_TAB, error_notification(e.message), email=email)
    return _login_response("/", auth_session, WELCOME_BACK)


@router.post("/signup")
async def signup(
    request: Request,
    username: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    backend: Backend = Depends(get_backend),
):
    try:
        result = await sign_up(backend, email, password, username)
    except AuthError as e:
        return _render(request, SIGNUP_TAB, error_notification(e.message), email=email, username=username)

    if result.session is not None:
        return _login_response(result.redirect or "/", result.session, result.notification)
    if result.redirect:
        response = RedirectResponse(url=result.redirect, status_code=303)
        set_flash(response, result.notification)
        return response
    return _render(request, result.active_tab, result.notification, email=email)


@router.post("/signout")
async def signout(request: Request, backend: Backend = Depends(get_backend)):
    token = request.cookies.get(COOKIE_NAME)
    if token:
        try:
            await backend.sign_out(token)
        except BackendError as e:
            logger.error("Signout error: %s", e)
    response = RedirectResponse(url=config.AUTH_PATH, status_code=303)
    response.delete_cookie(key=COOKIE_NAME)
    return response
