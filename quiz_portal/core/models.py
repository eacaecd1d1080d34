"""Domain models for the quiz client.

The quiz API speaks camelCase JSON with ``_id`` identifiers. Every model here
accepts both the wire names and the Python attribute names, and
:meth:`WireModel.to_wire` produces the payload the API expects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from quiz_portal.constants.quiz_constants import (
    DEFAULT_QUESTION_POINTS,
    DEFAULT_QUIZ_DURATION_MINUTES,
)


class QuestionType(str, Enum):
    TRUE_FALSE = "true-false"
    MULTIPLE_CHOICE = "multiple-choice"


class UserRole(str, Enum):
    STUDENT = "student"
    LECTURER = "lecturer"


class SubmissionReason(str, Enum):
    """Why an attempt was finalized."""

    MANUAL = "manual"
    TIME_EXPIRED = "time_expired"
    AWAY_TOO_LONG = "away_too_long"


class AwayAction(str, Enum):
    START = "start"
    END = "end"


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class WireModel(BaseModel):
    """Base class for payloads exchanged with the quiz API."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class User(WireModel):
    id: str | None = Field(default=None, alias="_id")
    name: str = ""
    username: str = ""
    email: str = ""
    role: UserRole = UserRole.STUDENT
    registration_number: str | None = None


class Option(WireModel):
    """Answer option. ``is_correct`` is only present in lecturer and published-result views."""

    id: str | None = Field(default=None, alias="_id")
    text: str
    is_correct: bool | None = None


class Question(WireModel):
    id: str | None = Field(default=None, alias="_id")
    question_text: str
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    options: list[Option] = Field(default_factory=list)
    points: int = DEFAULT_QUESTION_POINTS

    def option_ids(self) -> list[str]:
        return [option.id for option in self.options if option.id is not None]

    def has_option(self, option_id: str) -> bool:
        return any(option.id == option_id for option in self.options)

    def correct_option_ids(self) -> set[str]:
        return {option.id for option in self.options if option.is_correct and option.id is not None}


class Quiz(WireModel):
    id: str | None = Field(default=None, alias="_id")
    title: str
    description: str = ""
    duration: int = DEFAULT_QUIZ_DURATION_MINUTES
    is_published: bool = False
    results_published: bool = False
    questions: list[Question] = Field(default_factory=list)

    def question_by_id(self, question_id: str) -> Question | None:
        return next((q for q in self.questions if q.id == question_id), None)


class QuizDraft(WireModel):
    """Editable quiz fields sent when creating or updating a quiz."""

    title: str
    description: str
    duration: int = DEFAULT_QUIZ_DURATION_MINUTES
    is_published: bool = False


class Answer(WireModel):
    question_id: str
    selected_options: list[str] = Field(default_factory=list)


class Attempt(WireModel):
    id: str | None = Field(default=None, alias="_id")
    quiz: Quiz
    student: User | None = None
    start_time: datetime
    end_time: datetime | None = None
    is_completed: bool = False
    answers: list[Answer] = Field(default_factory=list)
    score: float | None = None
    max_score: float | None = None
    is_score_published: bool = False
    submission_reason: SubmissionReason | None = None
    time_away_seconds: float = 0.0

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class GradedAnswer(WireModel):
    """Answer in a published result; the question arrives populated with option correctness."""

    question: Question = Field(alias="questionId")
    selected_options: list[str] = Field(default_factory=list)


class AttemptResults(WireModel):
    """Result of an attempt: a pending-publication marker or a fully graded attempt."""

    id: str | None = Field(default=None, alias="_id")
    is_score_published: bool = False
    quiz: Quiz | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    score: float | None = None
    max_score: float | None = None
    answers: list[GradedAnswer] = Field(default_factory=list)
    message: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class AwayResponse(WireModel):
    auto_submitted: bool = False
    attempt: Attempt | None = None
    message: str | None = None


class BulkUploadReport(WireModel):
    success_count: int = 0
    error_count: int = 0
    errors: list[str] = Field(default_factory=list)


@dataclass(slots=True)
class AuthSession:
    """Credentials of the signed-in user, passed explicitly to whatever needs them."""

    token: str
    user: User

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> AuthSession:
        token = payload.get("token")
        if not token:
            raise ValueError("Login response did not include a token.")
        return cls(token=str(token), user=User.model_validate(payload))

    @property
    def is_lecturer(self) -> bool:
        return self.user.role is UserRole.LECTURER

    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}
