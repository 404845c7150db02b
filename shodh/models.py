import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlmodel import JSON, Column, Field, SQLModel


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionStatus(str, Enum):
    ACCEPTED = "Accepted"
    WRONG_ANSWER = "Wrong Answer"


# Rows owned by the collaborator. The local backend stores them, the
# front-end only ever sees them as plain dicts coming back from a query.

class AuthUser(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(unique=True, index=True)
    password_hash: str
    user_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    email_confirmed_at: Optional[datetime] = None
    session_version: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(unique=True, index=True)
    username: str
    created_at: datetime = Field(default_factory=utcnow)


class Problem(SQLModel, table=True):
    __tablename__ = "problems"

    id: str = Field(default_factory=new_id, primary_key=True)
    contest_id: str = Field(index=True)
    title: str
    description: str = ""
    test_cases: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    score: int = 100
    created_at: datetime = Field(default_factory=utcnow)

    def cases(self) -> List["TestCase"]:
        return [TestCase.model_validate(tc) for tc in self.test_cases or []]


class Submission(SQLModel, table=True):
    __tablename__ = "submissions"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    contest_id: str = Field(index=True)
    problem_id: str
    code: str
    language: str  # javascript | python | cpp
    status: str  # Accepted | Wrong Answer
    score: int = 0
    output: str = ""
    created_at: datetime = Field(default_factory=utcnow)


# Transient values

class TestCase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    input: str
    expected_output: str = PydanticField(alias="expectedOutput")


class Identity(BaseModel):
    id: str
    email: str
    email_confirmed_at: Optional[datetime] = None
    user_metadata: Dict[str, Any] = PydanticField(default_factory=dict)

    @property
    def confirmed(self) -> bool:
        return self.email_confirmed_at is not None


class AuthSession(BaseModel):
    access_token: str
    user: Identity


class SignUpResponse(BaseModel):
    user: Optional[Identity] = None
    session: Optional[AuthSession] = None


class LeaderboardEntry(BaseModel):
    user_id: str
    username: str
    total_score: int = 0
