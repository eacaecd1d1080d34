"""FastAPI practice server that speaks the quiz platform's HTTP API.

It backs local development and the integration tests of the client services.
Routes live under ``prefix`` (``/api`` by default); errors are returned as
``{"message": ...}`` bodies like the real backend.
"""

from __future__ import annotations

import logging
from threading import Thread
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from quiz_portal.constants.about import APP_NAME, APP_VERSION
from quiz_portal.constants.network_constants import (
    PRACTICE_API_PREFIX,
    PRACTICE_SERVER_HOST,
    PRACTICE_SERVER_PORT,
)
from quiz_portal.constants.quiz_constants import MIN_PASSWORD_LENGTH
from quiz_portal.core.models import (
    Attempt,
    AwayAction,
    Question,
    Quiz,
    QuizDraft,
    SubmissionReason,
    User,
    UserRole,
    WireModel,
)
from quiz_portal.core.validation import QuizValidationError, validate_quiz_draft
from quiz_portal.server.practice_store import PracticeStore, StoreError

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("csv",)


class LoginPayload(BaseModel):
    email: str
    password: str


class RegisterPayload(WireModel):
    name: str
    username: str
    email: str
    password: str
    role: UserRole = UserRole.STUDENT
    registration_number: str | None = None


class AnswerPayload(WireModel):
    question_id: str
    selected_options: list[str] = Field(default_factory=list)


class AwayPayload(BaseModel):
    action: AwayAction


class SubmitPayload(WireModel):
    submission_reason: SubmissionReason = SubmissionReason.MANUAL


class BulkQuestionsPayload(BaseModel):
    questions: list[dict[str, Any]]


def _student_quiz(quiz: Quiz) -> Quiz:
    """Copy of ``quiz`` without option correctness."""
    questions = [
        question.model_copy(
            update={"options": [option.model_copy(update={"is_correct": None}) for option in question.options]}
        )
        for question in quiz.questions
    ]
    return quiz.model_copy(update={"questions": questions})


def _student_attempt(attempt: Attempt) -> Attempt:
    update: dict[str, Any] = {"quiz": _student_quiz(attempt.quiz)}
    if not attempt.is_score_published:
        update.update(score=None, max_score=None)
    return attempt.model_copy(update=update)


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _validation_message(exc: RequestValidationError) -> str:
    """First validation error as ``field: message``, without the ``body`` prefix."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    return f"{location}: {message}" if location else message


def _get_store_dependency(store: PracticeStore):
    def dependency() -> PracticeStore:
        return store

    return dependency


def create_practice_app(store: PracticeStore, prefix: str = PRACTICE_API_PREFIX) -> FastAPI:
    """Create a FastAPI application wired to the provided store."""
    app = FastAPI(title=f"{APP_NAME} Practice API", version=APP_VERSION)
    router = APIRouter(prefix=prefix)
    store_dep = _get_store_dependency(store)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse({"message": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(StoreError)
    async def store_error(_: Request, exc: StoreError) -> JSONResponse:
        return JSONResponse({"message": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"message": _validation_message(exc)}, status_code=422)

    def current_user(
        authorization: str | None = Header(default=None),
        practice: PracticeStore = Depends(store_dep),
    ) -> User:
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Not authorized, no token")
        user = practice.user_for_token(authorization.removeprefix("Bearer ").strip())
        if user is None:
            raise HTTPException(status_code=401, detail="Not authorized, token failed")
        return user

    def lecturer(user: User = Depends(current_user)) -> User:
        if user.role is not UserRole.LECTURER:
            raise HTTPException(status_code=403, detail="Lecturer access required")
        return user

    def student(user: User = Depends(current_user)) -> User:
        if user.role is not UserRole.STUDENT:
            raise HTTPException(status_code=403, detail="Student access required")
        return user

    def owned_quiz(quiz_id: str, user: User, practice: PracticeStore) -> None:
        if not practice.owns_quiz(user.id or "", quiz_id):
            raise HTTPException(status_code=403, detail="Not authorized to manage this quiz")

    def checked_draft(draft: QuizDraft) -> QuizDraft:
        try:
            return validate_quiz_draft(draft)
        except QuizValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    # --- Connectivity and auth ---

    @router.get("/test")
    def test_connection() -> dict[str, object]:
        return {"message": "API is working", "name": APP_NAME, "version": APP_VERSION}

    @router.post("/auth/login")
    def login(payload: LoginPayload, practice: PracticeStore = Depends(store_dep)) -> dict[str, object]:
        token, user = practice.login(payload.email, payload.password)
        return {**user.to_wire(), "token": token}

    @router.post("/auth/register", status_code=201)
    def register(payload: RegisterPayload, practice: PracticeStore = Depends(store_dep)) -> dict[str, object]:
        if payload.role is not UserRole.STUDENT:
            raise HTTPException(status_code=403, detail="Only student accounts can be registered")
        if len(payload.password) < MIN_PASSWORD_LENGTH:
            raise HTTPException(
                status_code=400,
                detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
            )
        user = practice.add_user(
            name=payload.name,
            username=payload.username,
            email=payload.email,
            password=payload.password,
            registration_number=payload.registration_number,
        )
        return {**user.to_wire(), "token": practice.issue_token(user.id or "")}

    # --- Lecturer: quizzes and questions ---

    @router.get("/quizzes")
    def list_quizzes(
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> list[dict[str, Any]]:
        return [quiz.to_wire() for quiz in practice.list_quizzes(user.id or "")]

    @router.post("/quizzes", status_code=201)
    def create_quiz(
        draft: QuizDraft,
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        return practice.create_quiz(user.id or "", checked_draft(draft)).to_wire()

    @router.get("/quizzes/{quiz_id}")
    def get_quiz(
        quiz_id: str,
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        owned_quiz(quiz_id, user, practice)
        return practice.get_quiz(quiz_id).to_wire()

    @router.put("/quizzes/{quiz_id}")
    def update_quiz(
        quiz_id: str,
        draft: QuizDraft,
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        owned_quiz(quiz_id, user, practice)
        return practice.update_quiz(quiz_id, checked_draft(draft)).to_wire()

    @router.delete("/quizzes/{quiz_id}")
    def delete_quiz(
        quiz_id: str,
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, str]:
        owned_quiz(quiz_id, user, practice)
        practice.delete_quiz(quiz_id)
        return {"message": "Quiz removed"}

    @router.put("/quizzes/{quiz_id}/publish-results")
    def publish_results(
        quiz_id: str,
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        owned_quiz(quiz_id, user, practice)
        return practice.publish_results(quiz_id).to_wire()

    @router.post("/quizzes/{quiz_id}/questions", status_code=201)
    def add_question(
        quiz_id: str,
        question: Question,
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        owned_quiz(quiz_id, user, practice)
        return practice.add_question(quiz_id, question).to_wire()

    @router.post("/quizzes/{quiz_id}/questions/bulk")
    def bulk_add_questions(
        quiz_id: str,
        payload: BulkQuestionsPayload,
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        owned_quiz(quiz_id, user, practice)
        report = practice.bulk_add(quiz_id, payload.questions)
        logger.info("Bulk upload to quiz %s: %d added, %d rejected", quiz_id, report.success_count, report.error_count)
        return report.model_dump(mode="json", by_alias=True)

    @router.put("/questions/{question_id}")
    def update_question(
        question_id: str,
        question: Question,
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        owned_quiz(practice.quiz_for_question(question_id), user, practice)
        return practice.update_question(question_id, question).to_wire()

    @router.delete("/questions/{question_id}")
    def delete_question(
        question_id: str,
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, str]:
        owned_quiz(practice.quiz_for_question(question_id), user, practice)
        practice.delete_question(question_id)
        return {"message": "Question removed"}

    # --- Lecturer: results and users ---

    @router.get("/quizzes/{quiz_id}/attempts")
    def list_attempts(
        quiz_id: str,
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> list[dict[str, Any]]:
        owned_quiz(quiz_id, user, practice)
        return [attempt.to_wire() for attempt in practice.attempts_for_quiz(quiz_id)]

    @router.get("/attempts/{attempt_id}")
    def get_attempt_details(
        attempt_id: str,
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        attempt = practice.get_attempt(attempt_id)
        owned_quiz(attempt.quiz.id or "", user, practice)
        return attempt.to_wire()

    @router.get("/quizzes/{quiz_id}/export")
    def export_results(
        quiz_id: str,
        export_format: str = Query(default="csv", alias="format"),
        user: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> Response:
        if export_format not in EXPORT_FORMATS:
            raise HTTPException(status_code=400, detail=f"Unsupported export format '{export_format}'")
        owned_quiz(quiz_id, user, practice)
        return _csv_response(practice.results_csv(quiz_id), f"quiz-{quiz_id}-results.csv")

    @router.get("/users/students")
    def list_students(
        _: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> list[dict[str, Any]]:
        return [user.to_wire() for user in practice.list_students()]

    @router.get("/users/students/export")
    def export_students(
        _: User = Depends(lecturer),
        practice: PracticeStore = Depends(store_dep),
    ) -> Response:
        return _csv_response(practice.students_csv(), "students.csv")

    # --- Student ---

    @router.get("/student/quizzes")
    def list_published_quizzes(
        _: User = Depends(student),
        practice: PracticeStore = Depends(store_dep),
    ) -> list[dict[str, Any]]:
        return [_student_quiz(quiz).to_wire() for quiz in practice.published_quizzes()]

    @router.get("/student/quizzes/{quiz_id}")
    def get_published_quiz(
        quiz_id: str,
        _: User = Depends(student),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        return _student_quiz(practice.published_quiz(quiz_id)).to_wire()

    @router.post("/student/quizzes/{quiz_id}/start", status_code=201)
    def start_attempt(
        quiz_id: str,
        user: User = Depends(student),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        return _student_attempt(practice.start_attempt(quiz_id, user)).to_wire()

    @router.get("/student/attempts/{attempt_id}")
    def get_own_attempt(
        attempt_id: str,
        user: User = Depends(student),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        return _student_attempt(practice.student_attempt(attempt_id, user.id or "")).to_wire()

    @router.put("/student/attempts/{attempt_id}/answer")
    def save_answer(
        attempt_id: str,
        payload: AnswerPayload,
        user: User = Depends(student),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        attempt = practice.save_answer(attempt_id, user.id or "", payload.question_id, payload.selected_options)
        return _student_attempt(attempt).to_wire()

    @router.put("/student/attempts/{attempt_id}/away")
    def register_away(
        attempt_id: str,
        payload: AwayPayload,
        user: User = Depends(student),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        response = practice.register_away(attempt_id, user.id or "", payload.action)
        if response.attempt is not None:
            response.attempt = _student_attempt(response.attempt)
        return response.model_dump(mode="json", by_alias=True, exclude_none=True)

    @router.put("/student/attempts/{attempt_id}/submit")
    def submit_attempt(
        attempt_id: str,
        payload: SubmitPayload,
        user: User = Depends(student),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        attempt = practice.submit_attempt(attempt_id, user.id or "", payload.submission_reason)
        return _student_attempt(attempt).to_wire()

    @router.get("/student/attempts/{attempt_id}/results")
    def get_results(
        attempt_id: str,
        user: User = Depends(student),
        practice: PracticeStore = Depends(store_dep),
    ) -> dict[str, Any]:
        return practice.results(attempt_id, user.id or "").to_wire()

    app.include_router(router)
    return app


def start_practice_server(
    store: PracticeStore,
    host: str = PRACTICE_SERVER_HOST,
    port: int = PRACTICE_SERVER_PORT,
) -> tuple[Thread, uvicorn.Server]:
    """Start the practice server in a background daemon thread."""
    app = create_practice_app(store)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)

    def run_server() -> None:
        server.run()

    thread = Thread(target=run_server, name="QuizPracticeServer", daemon=True)
    thread.start()
    logger.info("Practice server starting on http://%s:%s%s", host, port, PRACTICE_API_PREFIX)
    return thread, server
