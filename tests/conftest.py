from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from quiz_portal.api.auth_service import AuthService
from quiz_portal.api.client import ApiClient
from quiz_portal.core.errors import ApiError, NetworkError
from quiz_portal.core.models import (
    Answer,
    Attempt,
    AwayAction,
    AwayResponse,
    Option,
    Question,
    QuestionType,
    Quiz,
    SubmissionReason,
    User,
)
from quiz_portal.core.services.attempt_session import AttemptSessionController, SessionOutcome
from quiz_portal.server.practice_server import create_practice_app
from quiz_portal.server.practice_store import DEMO_PASSWORD, PracticeStore, seed_demo_content

START = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ManualScheduler:
    """Scheduler driven by a FakeClock; ``advance`` fires due timers in time order."""

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self._timers: dict[str, tuple[datetime, Callable[[], None]]] = {}

    def call_later(self, name: str, delay_seconds: float, callback: Callable[[], None]) -> None:
        self._timers[name] = (self._clock.now + timedelta(seconds=max(0.0, delay_seconds)), callback)

    def cancel(self, name: str) -> bool:
        return self._timers.pop(name, None) is not None

    def cancel_all(self) -> None:
        self._timers.clear()

    def is_scheduled(self, name: str) -> bool:
        return name in self._timers

    def advance(self, seconds: float) -> None:
        target = self._clock.now + timedelta(seconds=seconds)
        while True:
            due = sorted((when, name) for name, (when, _) in self._timers.items() if when <= target)
            if not due:
                break
            when, name = due[0]
            _, callback = self._timers.pop(name)
            self._clock.now = max(self._clock.now, when)
            callback()
        self._clock.now = target


class FakeAttemptGateway:
    """In-memory stand-in for StudentQuizService with switchable failures."""

    def __init__(self, attempt: Attempt) -> None:
        self.attempt = attempt
        self.saved: list[tuple[str, list[str]]] = []
        self.away_calls: list[AwayAction] = []
        self.submissions: list[SubmissionReason] = []
        self.fail_load = False
        self.fail_save = False
        self.fail_submit = False
        self.away_end_response = AwayResponse()

    async def get_attempt(self, attempt_id: str) -> Attempt:
        if self.fail_load:
            raise ApiError("Attempt not found", status_code=404)
        return self.attempt.model_copy(deep=True)

    async def save_answer(self, attempt_id: str, question_id: str, selected_options: list[str]) -> None:
        self.saved.append((question_id, list(selected_options)))
        if self.fail_save:
            raise NetworkError()

    async def register_away(self, attempt_id: str, action: AwayAction) -> AwayResponse:
        self.away_calls.append(action)
        if action is AwayAction.END:
            return self.away_end_response
        return AwayResponse()

    async def submit_attempt(self, attempt_id: str, reason: SubmissionReason) -> Attempt:
        self.submissions.append(reason)
        if self.fail_submit:
            raise NetworkError()
        return self.attempt.model_copy(
            update={"is_completed": True, "submission_reason": reason, "end_time": START},
            deep=True,
        )


def make_quiz(duration: int = 10) -> Quiz:
    return Quiz(
        id="quiz-1",
        title="Capitals",
        description="European capitals",
        duration=duration,
        is_published=True,
        questions=[
            Question(
                id="q1",
                question_text="Capital of France?",
                options=[
                    Option(id="q1-a", text="Paris"),
                    Option(id="q1-b", text="Rome"),
                    Option(id="q1-c", text="Berlin"),
                ],
            ),
            Question(
                id="q2",
                question_text="Madrid is the capital of Spain.",
                question_type=QuestionType.TRUE_FALSE,
                options=[Option(id="q2-t", text="True"), Option(id="q2-f", text="False")],
            ),
            Question(
                id="q3",
                question_text="Which cities are on the Danube?",
                options=[
                    Option(id="q3-a", text="Vienna"),
                    Option(id="q3-b", text="Budapest"),
                    Option(id="q3-c", text="Lisbon"),
                ],
                points=2,
            ),
        ],
    )


def make_attempt(
    *,
    duration: int = 10,
    start_time: datetime = START,
    completed: bool = False,
    answers: list[Answer] | None = None,
) -> Attempt:
    return Attempt(
        id="attempt-1",
        quiz=make_quiz(duration),
        student=User(id="student-1", name="Ada", username="ada", email="ada@example.com"),
        start_time=start_time,
        is_completed=completed,
        answers=answers or [],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def gateway() -> FakeAttemptGateway:
    return FakeAttemptGateway(make_attempt())


@pytest.fixture
def outcomes() -> list[SessionOutcome]:
    return []


@pytest.fixture
def make_controller(gateway, scheduler, clock, outcomes):
    def factory(**options) -> AttemptSessionController:
        return AttemptSessionController(
            "attempt-1",
            gateway,
            scheduler=scheduler,
            clock=clock,
            on_terminated=outcomes.append,
            **options,
        )

    return factory


@pytest.fixture
def practice_store(clock: FakeClock) -> PracticeStore:
    return PracticeStore(clock=clock)


@pytest.fixture
def demo_quiz(practice_store: PracticeStore) -> Quiz:
    return seed_demo_content(practice_store)


@pytest_asyncio.fixture
async def make_client(practice_store: PracticeStore):
    """Factory for ApiClients talking to the practice app in-process, optionally signed in."""
    app = create_practice_app(practice_store)
    clients: list[ApiClient] = []

    async def factory(email: str | None = None, password: str = DEMO_PASSWORD) -> ApiClient:
        client = ApiClient("http://practice/api", transport=httpx.ASGITransport(app=app))
        clients.append(client)
        if email is not None:
            client.authenticate(await AuthService(client).login(email, password))
        return client

    yield factory
    for client in clients:
        await client.aclose()
