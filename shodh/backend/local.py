from datetime import timedelta
from typing import Any, Dict, List, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, func, select

from shodh import config
from shodh.backend.base import (
    LEADERBOARD_RPC,
    SIGNED_IN,
    SIGNED_OUT,
    AuthEvent,
    Backend,
    BackendError,
)
from shodh.db import init_db, make_engine
from shodh.models import (
    AuthSession,
    AuthUser,
    Identity,
    Problem,
    Profile,
    SignUpResponse,
    Submission,
    SubmissionStatus,
    utcnow,
)
from shodh.utils import setup_logging

logger = setup_logging(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

MODELS = {
    "profiles": Profile,
    "problems": Problem,
    "submissions": Submission,
}


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def _identity(user: AuthUser) -> Identity:
    return Identity(
        id=user.id,
        email=user.email,
        email_confirmed_at=user.email_confirmed_at,
        user_metadata=dict(user.user_metadata or {}),
    )


def _row(obj) -> dict:
    return obj.model_dump()


class LocalBackend(Backend):
    """
    Self-hosted collaborator on SQLite. Accounts are hashed with passlib,
    access tokens are JWTs carrying the user id and a session version that
    sign-out bumps, which invalidates every token issued before it.
    """

    def __init__(
        self,
        engine=None,
        require_email_confirmation: bool = config.REQUIRE_EMAIL_CONFIRMATION,
        secret_key: str = config.SECRET_KEY,
    ):
        super().__init__()
        self.engine = engine if engine is not None else make_engine()
        self.require_email_confirmation = require_email_confirmation
        self.secret_key = secret_key
        init_db(self.engine)

    # auth

    def create_access_token(self, user: AuthUser) -> str:
        expire = utcnow() + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
        to_encode = {"sub": user.id, "email": user.email, "sv": user.session_version, "exp": expire}
        return jwt.encode(to_encode, self.secret_key, algorithm=config.ALGORITHM)

    def _user_from_token(self, session: Session, token: Optional[str]) -> Optional[AuthUser]:
        if not token:
            return None
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[config.ALGORITHM])
        except JWTError:
            return None
        user_id = payload.get("sub")
        if user_id is None:
            return None
        user = session.get(AuthUser, user_id)
        if user is None or payload.get("sv") != user.session_version:
            return None
        return user

    def get_user_by_email(self, session: Session, email: str) -> Optional[AuthUser]:
        return session.exec(select(AuthUser).where(AuthUser.email == email)).first()

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> SignUpResponse:
        if "@" not in email:
            raise BackendError("Unable to validate email address: invalid format")
        if len(password) < config.MIN_PASSWORD_LENGTH:
            raise BackendError(f"Password should be at least {config.MIN_PASSWORD_LENGTH} characters")

        with Session(self.engine) as session:
            if self.get_user_by_email(session, email):
                raise BackendError("User already registered")
            user = AuthUser(
                email=email,
                password_hash=get_password_hash(password),
                user_metadata=dict(metadata or {}),
                email_confirmed_at=None if self.require_email_confirmation else utcnow(),
            )
            session.add(user)
            session.commit()
            session.refresh(user)

            identity = _identity(user)
            if not user.email_confirmed_at:
                logger.info("Created account %s, waiting for email confirmation", user.id)
                return SignUpResponse(user=identity)
            auth_session = AuthSession(access_token=self.create_access_token(user), user=identity)

        logger.info("Created account %s", identity.id)
        await self.auth_events.publish(AuthEvent(SIGNED_IN, identity.id, auth_session))
        return SignUpResponse(user=identity, session=auth_session)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        with Session(self.engine) as session:
            user = self.get_user_by_email(session, email)
            if not user or not verify_password(password, user.password_hash):
                raise BackendError("Invalid login credentials")
            if not user.email_confirmed_at:
                raise BackendError("Email not confirmed")
            auth_session = AuthSession(access_token=self.create_access_token(user), user=_identity(user))

        await self.auth_events.publish(AuthEvent(SIGNED_IN, auth_session.user.id, auth_session))
        return auth_session

    async def sign_out(self, access_token: str) -> None:
        with Session(self.engine) as session:
            user = self._user_from_token(session, access_token)
            if user is None:
                return
            user.session_version += 1
            session.add(user)
            session.commit()
            user_id = user.id

        await self.auth_events.publish(AuthEvent(SIGNED_OUT, user_id))

    async def get_session(self, access_token: Optional[str]) -> Optional[AuthSession]:
        with Session(self.engine) as session:
            user = self._user_from_token(session, access_token)
            if user is None:
                return None
            return AuthSession(access_token=access_token, user=_identity(user))

    def confirm_email(self, email: str) -> bool:
        """Mark an account as confirmed, as the confirmation link would."""
        with Session(self.engine) as session:
            user = self.get_user_by_email(session, email)
            if user is None:
                return False
            user.email_confirmed_at = utcnow()
            session.add(user)
            session.commit()
        return True

    # tables

    def _model(self, table: str):
        model = MODELS.get(table)
        if model is None:
            raise BackendError(f'relation "public.{table}" does not exist')
        return model

    def _check_columns(self, table: str, model, columns):
        for name in columns:
            if name not in model.model_fields:
                raise BackendError(f"column {table}.{name} does not exist")

    async def select(self, table: str, access_token: Optional[str] = None, **equals) -> List[dict]:
        model = self._model(table)
        self._check_columns(table, model, equals)

        query = select(model)
        for name, value in equals.items():
            query = query.where(getattr(model, name) == value)
        try:
            with Session(self.engine) as session:
                rows = session.exec(query.order_by(model.created_at)).all()
                return [_row(r) for r in rows]
        except SQLAlchemyError as e:
            raise BackendError(str(getattr(e, "orig", None) or e)) from e

    async def insert(self, table: str, row: dict, access_token: Optional[str] = None) -> dict:
        model = self._model(table)
        self._check_columns(table, model, row)
        if table == "submissions" and row.get("status") not in {s.value for s in SubmissionStatus}:
            raise BackendError(f"invalid submission status: {row.get('status')!r}")

        try:
            with Session(self.engine) as session:
                obj = model(**row)
                session.add(obj)
                session.commit()
                session.refresh(obj)
                return _row(obj)
        except SQLAlchemyError as e:
            raise BackendError(str(getattr(e, "orig", None) or e)) from e

    # aggregates

    async def rpc(self, name: str, params: dict, access_token: Optional[str] = None) -> List[dict]:
        if name != LEADERBOARD_RPC:
            raise BackendError(f"Could not find the function public.{name}")
        return self.contest_leaderboard(params.get("contest_id_param"))

    def contest_leaderboard(self, contest_id: str) -> List[dict]:
        total = func.sum(Submission.score)
        with Session(self.engine) as session:
            totals = session.exec(
                select(Submission.user_id, total.label("total_score"))
                .where(Submission.contest_id == contest_id)
                .group_by(Submission.user_id)
                .order_by(total.desc(), Submission.user_id)
            ).all()

            user_ids = [t.user_id for t in totals]
            profiles = {
                p.user_id: p.username
                for p in session.exec(select(Profile).where(Profile.user_id.in_(user_ids))).all()
            }
            users = {
                u.id: u
                for u in session.exec(select(AuthUser).where(AuthUser.id.in_(user_ids))).all()
            }

            board = []
            for t in totals:
                board.append({
                    "user_id": t.user_id,
                    "username": profiles.get(t.user_id) or self._fallback_username(users.get(t.user_id)),
                    "total_score": int(t.total_score or 0),
                })
        return board

    @staticmethod
    def _fallback_username(user: Optional[AuthUser]) -> str:
        # users whose profile row was never created still rank
        if user is None:
            return "unknown"
        name = (user.user_metadata or {}).get("username")
        return name or user.email.split("@", 1)[0]
