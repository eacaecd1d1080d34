"""In-memory state behind the practice API server.

The store plays the part of the real quiz backend: it owns users, quizzes and
attempts, grades submissions, tracks away time and gates score publication.
All public methods take the store lock, because FastAPI runs synchronous
endpoints in a worker thread pool.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime, timedelta
import io
import logging
import secrets
from threading import Lock
from typing import Any
from uuid import uuid4

from passlib.context import CryptContext

from quiz_portal.constants.network_constants import PRACTICE_TOKEN_TTL_SECONDS
from quiz_portal.constants.quiz_constants import AWAY_LIMIT_SECONDS, RESULTS_PENDING_MESSAGE
from quiz_portal.core.models import (
    Answer,
    Attempt,
    AttemptResults,
    AwayAction,
    AwayResponse,
    BulkUploadReport,
    GradedAnswer,
    Option,
    Question,
    QuestionType,
    Quiz,
    QuizDraft,
    SubmissionReason,
    User,
    UserRole,
)
from quiz_portal.core.result_evaluator import percentage_score, score_answers
from quiz_portal.core.services.scheduler import Clock, utc_now
from quiz_portal.core.validation import validate_question

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class StoreError(Exception):
    status_code = 400


class NotFoundError(StoreError):
    status_code = 404


class ConflictError(StoreError):
    status_code = 409


class ForbiddenError(StoreError):
    status_code = 403


class AuthenticationError(StoreError):
    status_code = 401


class InvalidDataError(StoreError):
    status_code = 422


@dataclass(slots=True)
class _Account:
    user: User
    password_hash: str


def _hash_password(password: str) -> str:
    return pwd_context.hash(password)


def _verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _new_id() -> str:
    return uuid4().hex


class PracticeStore:
    """Users, quizzes and attempts of the practice backend."""

    def __init__(
        self,
        clock: Clock = utc_now,
        away_limit_seconds: float = AWAY_LIMIT_SECONDS,
        token_ttl_seconds: float = PRACTICE_TOKEN_TTL_SECONDS,
    ) -> None:
        self._lock = Lock()
        self._clock = clock
        self._away_limit = timedelta(seconds=away_limit_seconds)
        self._token_ttl = timedelta(seconds=token_ttl_seconds)
        self._accounts: dict[str, _Account] = {}
        self._tokens: dict[str, tuple[str, datetime]] = {}
        self._quizzes: dict[str, Quiz] = {}
        self._quiz_owners: dict[str, str] = {}
        self._attempts: dict[str, Attempt] = {}
        self._away_started: dict[str, datetime] = {}

    # --- Accounts ---

    def add_user(
        self,
        *,
        name: str,
        username: str,
        email: str,
        password: str,
        role: UserRole = UserRole.STUDENT,
        registration_number: str | None = None,
    ) -> User:
        with self._lock:
            email = email.strip().lower()
            if any(a.user.email == email or a.user.username == username for a in self._accounts.values()):
                raise ConflictError("User already exists")
            user = User(
                id=_new_id(),
                name=name,
                username=username,
                email=email,
                role=role,
                registration_number=registration_number,
            )
            self._accounts[user.id] = _Account(user=user, password_hash=_hash_password(password))
            return user.model_copy()

    def issue_token(self, user_id: str) -> str:
        with self._lock:
            now = self._clock()
            for expired in [t for t, (_, expires_at) in self._tokens.items() if expires_at <= now]:
                del self._tokens[expired]
            token = secrets.token_hex(16)
            self._tokens[token] = (user_id, now + self._token_ttl)
            return token

    def login(self, email: str, password: str) -> tuple[str, User]:
        with self._lock:
            email = email.strip().lower()
            account = next((a for a in self._accounts.values() if a.user.email == email), None)
            if account is None or not _verify_password(password, account.password_hash):
                raise AuthenticationError("Invalid email or password")
            user_id = account.user.id
        return self.issue_token(user_id), account.user.model_copy()

    def user_for_token(self, token: str) -> User | None:
        with self._lock:
            entry = self._tokens.get(token)
            if entry is None:
                return None
            user_id, expires_at = entry
            if expires_at <= self._clock():
                del self._tokens[token]
                return None
            account = self._accounts.get(user_id)
            return account.user.model_copy() if account else None

    def active_token_count(self) -> int:
        with self._lock:
            return len(self._tokens)

    def list_students(self) -> list[User]:
        with self._lock:
            students = [a.user for a in self._accounts.values() if a.user.role is UserRole.STUDENT]
            return [user.model_copy() for user in sorted(students, key=lambda u: u.name.lower())]

    # --- Lecturer: quizzes and questions ---

    def list_quizzes(self, owner_id: str) -> list[Quiz]:
        with self._lock:
            return [
                quiz.model_copy(deep=True)
                for quiz_id, quiz in self._quizzes.items()
                if self._quiz_owners.get(quiz_id) == owner_id
            ]

    def get_quiz(self, quiz_id: str) -> Quiz:
        with self._lock:
            return self._quiz(quiz_id).model_copy(deep=True)

    def create_quiz(self, owner_id: str, draft: QuizDraft) -> Quiz:
        with self._lock:
            quiz = Quiz(id=_new_id(), **draft.model_dump())
            self._quizzes[quiz.id] = quiz
            self._quiz_owners[quiz.id] = owner_id
            logger.info("Quiz %s created: %s", quiz.id, quiz.title)
            return quiz.model_copy(deep=True)

    def update_quiz(self, quiz_id: str, draft: QuizDraft) -> Quiz:
        with self._lock:
            quiz = self._quiz(quiz_id).model_copy(update=draft.model_dump())
            self._quizzes[quiz_id] = quiz
            return quiz.model_copy(deep=True)

    def delete_quiz(self, quiz_id: str) -> None:
        with self._lock:
            self._quiz(quiz_id)
            del self._quizzes[quiz_id]
            self._quiz_owners.pop(quiz_id, None)
            for attempt_id in [a.id for a in self._attempts.values() if a.quiz.id == quiz_id]:
                del self._attempts[attempt_id]

    def owns_quiz(self, owner_id: str, quiz_id: str) -> bool:
        with self._lock:
            self._quiz(quiz_id)
            return self._quiz_owners.get(quiz_id) == owner_id

    def publish_results(self, quiz_id: str) -> Quiz:
        with self._lock:
            quiz = self._quiz(quiz_id)
            quiz.results_published = True
            published = 0
            for attempt in self._attempts.values():
                if attempt.quiz.id == quiz_id and attempt.is_completed:
                    attempt.is_score_published = True
                    published += 1
            logger.info("Results published for quiz %s (%d attempt(s))", quiz_id, published)
            return quiz.model_copy(deep=True)

    def add_question(self, quiz_id: str, question: Question) -> Question:
        with self._lock:
            quiz = self._quiz(quiz_id)
            stored = self._prepare_question(question, question_id=_new_id())
            quiz.questions.append(stored)
            return stored.model_copy(deep=True)

    def update_question(self, question_id: str, question: Question) -> Question:
        with self._lock:
            quiz, index = self._question_location(question_id)
            stored = self._prepare_question(question, question_id=question_id)
            quiz.questions[index] = stored
            return stored.model_copy(deep=True)

    def delete_question(self, question_id: str) -> None:
        with self._lock:
            quiz, index = self._question_location(question_id)
            quiz.questions.pop(index)

    def quiz_for_question(self, question_id: str) -> str:
        with self._lock:
            quiz, _ = self._question_location(question_id)
            return quiz.id

    def bulk_add(self, quiz_id: str, raw_questions: list[dict[str, Any]]) -> BulkUploadReport:
        with self._lock:
            quiz = self._quiz(quiz_id)
            report = BulkUploadReport()
            for number, raw in enumerate(raw_questions, start=1):
                try:
                    parsed = Question.model_validate(raw)
                    quiz.questions.append(self._prepare_question(parsed, question_id=_new_id()))
                except (ValueError, StoreError) as exc:
                    report.error_count += 1
                    report.errors.append(f"Question {number}: {exc}")
                else:
                    report.success_count += 1
            return report

    def attempts_for_quiz(self, quiz_id: str) -> list[Attempt]:
        with self._lock:
            self._quiz(quiz_id)
            attempts = [a for a in self._attempts.values() if a.quiz.id == quiz_id]
            return [a.model_copy(deep=True) for a in sorted(attempts, key=lambda a: a.start_time)]

    def get_attempt(self, attempt_id: str) -> Attempt:
        with self._lock:
            return self._attempt(attempt_id).model_copy(deep=True)

    def results_csv(self, quiz_id: str) -> str:
        with self._lock:
            quiz = self._quiz(quiz_id)
            buffer = io.StringIO()
            writer = csv.writer(buffer)
            writer.writerow(
                [
                    "Student",
                    "Email",
                    "Registration Number",
                    "Score",
                    "Max Score",
                    "Percentage",
                    "Started",
                    "Submitted",
                    "Submission Reason",
                ]
            )
            for attempt in self._attempts.values():
                if attempt.quiz.id != quiz.id:
                    continue
                student = attempt.student or User()
                completed = attempt.is_completed and attempt.score is not None
                writer.writerow(
                    [
                        student.name,
                        student.email,
                        student.registration_number or "",
                        attempt.score if completed else "",
                        attempt.max_score if completed else "",
                        percentage_score(attempt.score, attempt.max_score or 0) if completed else "",
                        attempt.start_time.isoformat(),
                        attempt.end_time.isoformat() if attempt.end_time else "",
                        attempt.submission_reason.value if attempt.submission_reason else "",
                    ]
                )
            return buffer.getvalue()

    def students_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["Name", "Username", "Email", "Registration Number"])
        for student in self.list_students():
            writer.writerow([student.name, student.username, student.email, student.registration_number or ""])
        return buffer.getvalue()

    # --- Student: attempts ---

    def published_quizzes(self) -> list[Quiz]:
        with self._lock:
            return [quiz.model_copy(deep=True) for quiz in self._quizzes.values() if quiz.is_published]

    def published_quiz(self, quiz_id: str) -> Quiz:
        with self._lock:
            quiz = self._quiz(quiz_id)
            if not quiz.is_published:
                raise NotFoundError("Quiz not found")
            return quiz.model_copy(deep=True)

    def start_attempt(self, quiz_id: str, student: User) -> Attempt:
        with self._lock:
            quiz = self._quiz(quiz_id)
            if not quiz.is_published:
                raise NotFoundError("Quiz not found")
            if not quiz.questions:
                raise ConflictError("This quiz has no questions yet")
            for attempt in self._attempts.values():
                if attempt.quiz.id == quiz_id and attempt.student and attempt.student.id == student.id:
                    if attempt.is_completed:
                        raise ConflictError("You have already completed this quiz")
                    return attempt.model_copy(deep=True)

            attempt = Attempt(
                id=_new_id(),
                quiz=quiz.model_copy(deep=True),
                student=student.model_copy(),
                start_time=self._clock(),
            )
            self._attempts[attempt.id] = attempt
            logger.info("Attempt %s started on quiz %s by %s", attempt.id, quiz_id, student.username)
            return attempt.model_copy(deep=True)

    def student_attempt(self, attempt_id: str, student_id: str) -> Attempt:
        with self._lock:
            return self._owned_attempt(attempt_id, student_id).model_copy(deep=True)

    def save_answer(self, attempt_id: str, student_id: str, question_id: str, selected: list[str]) -> Attempt:
        with self._lock:
            attempt = self._open_attempt(attempt_id, student_id)
            question = attempt.quiz.question_by_id(question_id)
            if question is None:
                raise InvalidDataError("Question is not part of this quiz")
            if any(not question.has_option(option_id) for option_id in selected):
                raise InvalidDataError("Selected option does not belong to the question")

            existing = next((a for a in attempt.answers if a.question_id == question_id), None)
            if existing is None:
                attempt.answers.append(Answer(question_id=question_id, selected_options=list(selected)))
            else:
                existing.selected_options = list(selected)
            return attempt.model_copy(deep=True)

    def register_away(self, attempt_id: str, student_id: str, action: AwayAction) -> AwayResponse:
        with self._lock:
            attempt = self._owned_attempt(attempt_id, student_id)
            if attempt.is_completed:
                return AwayResponse(auto_submitted=False, message="Attempt already submitted")
            now = self._clock()
            if action is AwayAction.START:
                self._away_started.setdefault(attempt_id, now)
                return AwayResponse(auto_submitted=False)

            started = self._away_started.pop(attempt_id, None)
            if started is None:
                return AwayResponse(auto_submitted=False)
            away = now - started
            attempt.time_away_seconds += away.total_seconds()
            if away > self._away_limit:
                self._finalize(attempt, SubmissionReason.AWAY_TOO_LONG)
                return AwayResponse(
                    auto_submitted=True,
                    attempt=attempt.model_copy(deep=True),
                    message="Attempt submitted automatically after too long away",
                )
            return AwayResponse(auto_submitted=False)

    def submit_attempt(self, attempt_id: str, student_id: str, reason: SubmissionReason) -> Attempt:
        with self._lock:
            attempt = self._open_attempt(attempt_id, student_id)
            self._finalize(attempt, reason)
            return attempt.model_copy(deep=True)

    def results(self, attempt_id: str, student_id: str) -> AttemptResults:
        with self._lock:
            attempt = self._owned_attempt(attempt_id, student_id)
            if not attempt.is_completed:
                raise ConflictError("Attempt has not been submitted yet")
            if not attempt.is_score_published:
                return AttemptResults(id=attempt.id, is_score_published=False, message=RESULTS_PENDING_MESSAGE)

            selections = {answer.question_id: answer.selected_options for answer in attempt.answers}
            return AttemptResults(
                id=attempt.id,
                is_score_published=True,
                quiz=Quiz(id=attempt.quiz.id, title=attempt.quiz.title, duration=attempt.quiz.duration),
                start_time=attempt.start_time,
                end_time=attempt.end_time,
                score=attempt.score,
                max_score=attempt.max_score,
                answers=[
                    GradedAnswer(
                        question=question.model_copy(deep=True),
                        selected_options=list(selections.get(question.id, [])),
                    )
                    for question in attempt.quiz.questions
                ],
            )

    # --- Internals (callers hold the lock) ---

    def _quiz(self, quiz_id: str) -> Quiz:
        quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            raise NotFoundError("Quiz not found")
        return quiz

    def _attempt(self, attempt_id: str) -> Attempt:
        attempt = self._attempts.get(attempt_id)
        if attempt is None:
            raise NotFoundError("Attempt not found")
        return attempt

    def _owned_attempt(self, attempt_id: str, student_id: str) -> Attempt:
        attempt = self._attempt(attempt_id)
        if attempt.student is None or attempt.student.id != student_id:
            raise ForbiddenError("Not your attempt")
        return attempt

    def _open_attempt(self, attempt_id: str, student_id: str) -> Attempt:
        attempt = self._owned_attempt(attempt_id, student_id)
        if attempt.is_completed:
            raise ConflictError("Attempt already submitted")
        return attempt

    def _question_location(self, question_id: str) -> tuple[Quiz, int]:
        for quiz in self._quizzes.values():
            for index, question in enumerate(quiz.questions):
                if question.id == question_id:
                    return quiz, index
        raise NotFoundError("Question not found")

    @staticmethod
    def _prepare_question(question: Question, question_id: str) -> Question:
        try:
            validated = validate_question(question)
        except ValueError as exc:
            raise InvalidDataError(str(exc)) from exc
        options = [
            Option(id=option.id or _new_id(), text=option.text, is_correct=bool(option.is_correct))
            for option in validated.options
        ]
        return validated.model_copy(update={"id": question_id, "options": options})

    def _finalize(self, attempt: Attempt, reason: SubmissionReason) -> None:
        selections = {answer.question_id: answer.selected_options for answer in attempt.answers}
        score, max_score = score_answers(attempt.quiz.questions, selections)
        attempt.end_time = self._clock()
        attempt.is_completed = True
        attempt.submission_reason = reason
        attempt.score = score
        attempt.max_score = max_score
        attempt.is_score_published = self._quizzes[attempt.quiz.id].results_published
        self._away_started.pop(attempt.id, None)
        logger.info("Attempt %s submitted (%s): %s/%s", attempt.id, reason.value, score, max_score)


DEMO_LECTURER_EMAIL = "lecturer@example.com"
DEMO_STUDENT_EMAIL = "student@example.com"
DEMO_PASSWORD = "password123"


def seed_demo_content(store: PracticeStore) -> Quiz:
    """Add a demo lecturer, a demo student and one published quiz; return the quiz."""
    lecturer = store.add_user(
        name="Demo Lecturer",
        username="lecturer",
        email=DEMO_LECTURER_EMAIL,
        password=DEMO_PASSWORD,
        role=UserRole.LECTURER,
    )
    store.add_user(
        name="Demo Student",
        username="student",
        email=DEMO_STUDENT_EMAIL,
        password=DEMO_PASSWORD,
        registration_number="S0001",
    )
    quiz = store.create_quiz(
        lecturer.id or "",
        QuizDraft(
            title="General Knowledge",
            description="A short warm-up quiz.",
            duration=10,
            is_published=True,
        ),
    )
    store.add_question(
        quiz.id or "",
        Question(
            question_text="What is the capital of France?",
            options=[
                Option(text="Paris", is_correct=True),
                Option(text="London", is_correct=False),
                Option(text="Berlin", is_correct=False),
                Option(text="Madrid", is_correct=False),
            ],
        ),
    )
    store.add_question(
        quiz.id or "",
        Question(
            question_text="The Earth is flat.",
            question_type=QuestionType.TRUE_FALSE,
            options=[Option(text="True", is_correct=False), Option(text="False", is_correct=True)],
            points=2,
        ),
    )
    return store.get_quiz(quiz.id or "")
