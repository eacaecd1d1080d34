"""Controller for one in-progress quiz attempt.

The controller moves through ``LOADING -> ACTIVE -> SUBMITTING -> TERMINATED``
(or ``ERROR`` when the attempt cannot be loaded). It owns the countdown, the
per-question answers, and the away-time fallback, and it decides when and why
the attempt is finalized.

Local answers are authoritative for the UI. Every change is applied locally
first and then saved in the background; a failed save is only logged. The
server catches up on the next successful save or, at the latest, when the
attempt is submitted. Answer saves for the same question may complete out of
order; the submitted state is the one that counts.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
import logging
import math
from typing import Any, Protocol

from quiz_portal.constants.quiz_constants import (
    ALLOW_MULTI_SELECT,
    ALREADY_SUBMITTED_MESSAGE,
    AWAY_LIMIT_SECONDS,
    AWAY_TOO_LONG_MESSAGE,
    COUNTDOWN_TICK_SECONDS,
    LOAD_FAILED_MESSAGE,
    LOW_TIME_WARNING_MINUTES,
    SUBMIT_FAILED_MESSAGE,
    TIME_EXPIRED_MESSAGE,
)
from quiz_portal.core.errors import ApiError
from quiz_portal.core.models import (
    Attempt,
    AwayAction,
    AwayResponse,
    Question,
    QuestionType,
    Quiz,
    SubmissionReason,
)
from quiz_portal.core.services.scheduler import AsyncioScheduler, Clock, Scheduler, utc_now

logger = logging.getLogger(__name__)

COUNTDOWN_TIMER = "countdown"
TICK_TIMER = "tick"
AWAY_TIMER = "away"

SUBMISSION_MESSAGES: dict[SubmissionReason, str] = {
    SubmissionReason.TIME_EXPIRED: TIME_EXPIRED_MESSAGE,
    SubmissionReason.AWAY_TOO_LONG: AWAY_TOO_LONG_MESSAGE,
}


class SessionState(str, Enum):
    LOADING = "loading"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    TERMINATED = "terminated"
    ERROR = "error"


class SessionStateError(RuntimeError):
    """Raised when an operation is not allowed in the controller's current state."""


class AttemptGateway(Protocol):
    """Remote operations the controller needs; implemented by ``StudentQuizService``."""

    async def get_attempt(self, attempt_id: str) -> Attempt: ...

    async def save_answer(self, attempt_id: str, question_id: str, selected_options: list[str]) -> None: ...

    async def register_away(self, attempt_id: str, action: AwayAction) -> AwayResponse: ...

    async def submit_attempt(self, attempt_id: str, reason: SubmissionReason) -> Attempt: ...


@dataclass(slots=True)
class SessionSettings:
    away_limit_seconds: float = AWAY_LIMIT_SECONDS
    tick_seconds: float = COUNTDOWN_TICK_SECONDS
    low_time_warning_minutes: int = LOW_TIME_WARNING_MINUTES
    allow_multi_select: bool = ALLOW_MULTI_SELECT


@dataclass(slots=True, frozen=True)
class Countdown:
    minutes: int
    seconds: int

    @classmethod
    def from_remaining(cls, remaining: timedelta) -> Countdown:
        """Whole seconds rounded up, so the display only reads 00:00 once time is out."""
        total = max(0, math.ceil(remaining.total_seconds()))
        return cls(minutes=total // 60, seconds=total % 60)

    @property
    def is_zero(self) -> bool:
        return self.minutes == 0 and self.seconds == 0

    def __str__(self) -> str:
        return f"{self.minutes:02d}:{self.seconds:02d}"


@dataclass(slots=True)
class AwayInterval:
    started_at: datetime
    ended_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()


@dataclass(slots=True)
class SessionOutcome:
    """What the caller needs to route to the results view."""

    attempt_id: str
    reason: SubmissionReason
    attempt: Attempt | None = None
    message: str | None = None

    @property
    def auto_submitted(self) -> bool:
        return self.reason is not SubmissionReason.MANUAL


class AttemptSessionController:
    """Drives one quiz attempt from load to submission."""

    def __init__(
        self,
        attempt_id: str,
        gateway: AttemptGateway,
        *,
        scheduler: Scheduler | None = None,
        clock: Clock = utc_now,
        settings: SessionSettings | None = None,
        on_change: Callable[[AttemptSessionController], None] | None = None,
        on_terminated: Callable[[SessionOutcome], None] | None = None,
    ) -> None:
        self._attempt_id = attempt_id
        self._gateway = gateway
        self._scheduler = scheduler or AsyncioScheduler()
        self._clock = clock
        self._settings = settings or SessionSettings()
        self._on_change = on_change
        self._on_terminated = on_terminated

        self._state = SessionState.LOADING
        self._attempt: Attempt | None = None
        self._questions: list[Question] = []
        self._answers: dict[str, list[str]] = {}
        self._current_index = 0
        self._confirmation_pending = False
        self._low_time_warning = False
        self._hidden_since: datetime | None = None
        self._last_away: AwayInterval | None = None
        self._error: str | None = None
        self._failed_reason: SubmissionReason | None = None
        self._outcome: SessionOutcome | None = None
        self._closed = False
        self._pending: set[asyncio.Task[Any]] = set()

    # --- Lifecycle ---

    async def load(self) -> SessionState:
        """Fetch the attempt and enter ``ACTIVE``, or ``ERROR`` if it cannot be used."""
        if self._state is not SessionState.LOADING:
            raise SessionStateError("Attempt has already been loaded.")
        try:
            attempt = await self._gateway.get_attempt(self._attempt_id)
        except ApiError as exc:
            logger.error("Failed to load attempt %s: %s", self._attempt_id, exc)
            self._enter_error(exc.message or LOAD_FAILED_MESSAGE)
            return self._state

        if self._closed:
            return self._state
        if attempt.is_completed:
            self._enter_error(ALREADY_SUBMITTED_MESSAGE)
            return self._state

        self._attempt = attempt
        self._questions = list(attempt.quiz.questions)
        self._answers = {question.id: [] for question in self._questions if question.id is not None}
        for answer in attempt.answers:
            if answer.question_id in self._answers:
                self._answers[answer.question_id] = list(answer.selected_options)

        self._state = SessionState.ACTIVE
        logger.info(
            "Attempt %s active with %d question(s), %s remaining",
            self._attempt_id,
            len(self._questions),
            self.countdown(),
        )
        self._notify()
        self._resume_timers(submit_if_expired=True)
        return self._state

    def close(self) -> None:
        """Tear the session down: cancel every timer and ignore late completions."""
        self._closed = True
        self._scheduler.cancel_all()
        self._hidden_since = None

    async def wait_idle(self) -> None:
        """Wait until background saves and submissions have completed."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # --- Read-only state for UI collaborators ---

    @property
    def attempt_id(self) -> str:
        return self._attempt_id

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def attempt(self) -> Attempt | None:
        return self._attempt

    @property
    def quiz(self) -> Quiz | None:
        return self._attempt.quiz if self._attempt else None

    @property
    def questions(self) -> list[Question]:
        return list(self._questions)

    @property
    def question_count(self) -> int:
        return len(self._questions)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_question(self) -> Question | None:
        if not self._questions:
            return None
        return self._questions[self._current_index]

    @property
    def can_go_previous(self) -> bool:
        return self._can_navigate() and self._current_index > 0

    @property
    def can_go_next(self) -> bool:
        return self._can_navigate() and self._current_index < len(self._questions) - 1

    @property
    def confirmation_pending(self) -> bool:
        return self._confirmation_pending

    @property
    def low_time_warning(self) -> bool:
        return self._low_time_warning

    @property
    def is_hidden(self) -> bool:
        return self._hidden_since is not None

    @property
    def last_away_interval(self) -> AwayInterval | None:
        return self._last_away

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def outcome(self) -> SessionOutcome | None:
        return self._outcome

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    def deadline(self) -> datetime | None:
        if self._attempt is None:
            return None
        return self._attempt.start_time + timedelta(minutes=self._attempt.quiz.duration)

    def remaining(self) -> timedelta:
        deadline = self.deadline()
        if deadline is None:
            return timedelta(0)
        return max(timedelta(0), deadline - self._clock())

    def countdown(self) -> Countdown:
        return Countdown.from_remaining(self.remaining())

    def selected_options(self, question_id: str | None = None) -> list[str]:
        if question_id is None:
            question = self.current_question
            if question is None:
                return []
            question_id = question.id
        return list(self._answers.get(question_id, []))

    def is_answered(self, question_id: str) -> bool:
        return bool(self._answers.get(question_id))

    def answered_flags(self) -> list[bool]:
        """One flag per question, in quiz order, for the navigation grid."""
        return [self.is_answered(question.id) for question in self._questions]

    @property
    def answered_count(self) -> int:
        return sum(self.answered_flags())

    # --- Navigation ---

    def go_to(self, index: int) -> bool:
        if not self._can_navigate() or not 0 <= index < len(self._questions):
            return False
        if index != self._current_index:
            self._current_index = index
            self._notify()
        return True

    def next_question(self) -> bool:
        return self.go_to(self._current_index + 1)

    def previous_question(self) -> bool:
        return self.go_to(self._current_index - 1)

    # --- Answers ---

    def select_option(self, option_id: str) -> list[str]:
        """Apply a click on an option of the displayed question and return the new selection."""
        question = self.current_question
        if question is None:
            raise SessionStateError("No question is displayed.")
        if self._allows_multiple(question):
            current = self._answers.get(question.id, [])
            if option_id in current:
                selection = [selected for selected in current if selected != option_id]
            else:
                selection = current + [option_id]
        else:
            selection = [option_id]
        self.set_answer(question.id, selection)
        return selection

    def set_answer(self, question_id: str, option_ids: list[str]) -> None:
        self._require_active()
        question = next((q for q in self._questions if q.id == question_id), None)
        if question is None:
            raise ValueError(f"Question {question_id} is not part of this quiz.")

        selection = list(dict.fromkeys(option_ids))
        unknown = [option_id for option_id in selection if not question.has_option(option_id)]
        if unknown:
            raise ValueError(f"Options {unknown} do not belong to question {question_id}.")
        if len(selection) > 1 and not self._allows_multiple(question):
            raise ValueError("Only one option can be selected for this question.")

        self._answers[question_id] = selection
        self._notify()
        self._spawn(self._save_answer(question_id, list(selection)))

    def clear_answer(self, question_id: str) -> None:
        self.set_answer(question_id, [])

    # --- Visibility ---

    def set_visibility(self, hidden: bool) -> None:
        """Report a page-visibility change from the host window."""
        if hidden:
            self._handle_hidden()
        else:
            self._handle_visible()

    # --- Submission ---

    def request_submit(self) -> None:
        self._require_active()
        self._confirmation_pending = True
        self._notify()

    def cancel_submit(self) -> None:
        if self._confirmation_pending:
            self._confirmation_pending = False
            self._notify()

    def confirm_submit(self) -> None:
        self._require_active()
        if not self._confirmation_pending:
            raise SessionStateError("Submission has not been requested.")
        self._begin_submission(SubmissionReason.MANUAL)

    def retry_submit(self) -> None:
        """Resubmit after a failed submission, keeping the reason it was made for."""
        self._require_active()
        if self._failed_reason is None:
            raise SessionStateError("There is no failed submission to retry.")
        self._begin_submission(self._failed_reason)

    # --- Internals ---

    def _can_navigate(self) -> bool:
        return bool(self._questions) and self._state in (SessionState.ACTIVE, SessionState.SUBMITTING)

    def _allows_multiple(self, question: Question) -> bool:
        return self._settings.allow_multi_select and question.question_type is QuestionType.MULTIPLE_CHOICE

    def _require_active(self) -> None:
        if self._closed:
            raise SessionStateError("Session has been closed.")
        if self._state is not SessionState.ACTIVE:
            raise SessionStateError(f"Operation not allowed while {self._state.value}.")

    def _notify(self) -> None:
        if self._on_change is not None and not self._closed:
            self._on_change(self)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _enter_error(self, message: str) -> None:
        self._state = SessionState.ERROR
        self._error = message
        self._scheduler.cancel_all()
        self._notify()

    def _resume_timers(self, submit_if_expired: bool) -> None:
        if self.remaining() <= timedelta(0):
            if submit_if_expired:
                self._begin_submission(SubmissionReason.TIME_EXPIRED)
            return
        self._arm_countdown()
        self._scheduler.call_later(TICK_TIMER, self._settings.tick_seconds, self._on_tick)

    def _arm_countdown(self) -> None:
        self._scheduler.call_later(COUNTDOWN_TIMER, self.remaining().total_seconds(), self._on_deadline)

    def _on_deadline(self) -> None:
        if self._state is not SessionState.ACTIVE or self._closed:
            return
        if self.remaining() > timedelta(0):
            self._arm_countdown()
            return
        logger.info("Time expired for attempt %s", self._attempt_id)
        self._begin_submission(SubmissionReason.TIME_EXPIRED)

    def _on_tick(self) -> None:
        if self._state is not SessionState.ACTIVE or self._closed:
            return
        countdown = self.countdown()
        if not self._low_time_warning and countdown.minutes < self._settings.low_time_warning_minutes:
            self._low_time_warning = True
        self._notify()
        if not countdown.is_zero:
            self._scheduler.call_later(TICK_TIMER, self._settings.tick_seconds, self._on_tick)

    def _handle_hidden(self) -> None:
        if self._state is not SessionState.ACTIVE or self._closed or self._hidden_since is not None:
            return
        self._hidden_since = self._clock()
        self._spawn(self._register_away(AwayAction.START))
        self._scheduler.call_later(AWAY_TIMER, self._settings.away_limit_seconds, self._on_away_limit)

    def _handle_visible(self) -> None:
        self._scheduler.cancel(AWAY_TIMER)
        if self._hidden_since is None:
            return
        self._last_away = AwayInterval(started_at=self._hidden_since, ended_at=self._clock())
        self._hidden_since = None
        logger.info(
            "Attempt %s was hidden for %.1f seconds",
            self._attempt_id,
            self._last_away.duration_seconds,
        )
        if self._state in (SessionState.ACTIVE, SessionState.SUBMITTING) and not self._closed:
            self._spawn(self._register_away(AwayAction.END))

    def _on_away_limit(self) -> None:
        if self._state is not SessionState.ACTIVE or self._closed:
            return
        logger.info("Attempt %s hidden past the away limit", self._attempt_id)
        self._begin_submission(SubmissionReason.AWAY_TOO_LONG)

    def _begin_submission(self, reason: SubmissionReason) -> None:
        if self._state is not SessionState.ACTIVE or self._closed:
            return
        self._state = SessionState.SUBMITTING
        self._confirmation_pending = False
        self._error = None
        self._scheduler.cancel_all()
        self._notify()
        self._spawn(self._submit(reason))

    async def _save_answer(self, question_id: str, selection: list[str]) -> None:
        try:
            await self._gateway.save_answer(self._attempt_id, question_id, selection)
        except ApiError as exc:
            logger.warning("Failed to save answer for question %s: %s", question_id, exc)

    async def _register_away(self, action: AwayAction) -> None:
        try:
            response = await self._gateway.register_away(self._attempt_id, action)
        except ApiError as exc:
            logger.warning("Failed to register away %s for attempt %s: %s", action.value, self._attempt_id, exc)
            return
        if action is AwayAction.END and response.auto_submitted:
            if self._closed or self._state not in (SessionState.ACTIVE, SessionState.SUBMITTING):
                return
            logger.info("Server auto-submitted attempt %s while it was hidden", self._attempt_id)
            self._terminate(SubmissionReason.AWAY_TOO_LONG, response.attempt)

    async def _submit(self, reason: SubmissionReason) -> None:
        try:
            attempt = await self._gateway.submit_attempt(self._attempt_id, reason)
        except ApiError as exc:
            if self._closed or self._state is not SessionState.SUBMITTING:
                return
            logger.error("Failed to submit attempt %s (%s): %s", self._attempt_id, reason.value, exc)
            self._state = SessionState.ACTIVE
            self._failed_reason = reason
            self._error = exc.message or SUBMIT_FAILED_MESSAGE
            self._notify()
            self._resume_timers(submit_if_expired=False)
            return
        if self._closed or self._state is not SessionState.SUBMITTING:
            return
        self._terminate(reason, attempt)

    def _terminate(self, reason: SubmissionReason, attempt: Attempt | None) -> None:
        self._state = SessionState.TERMINATED
        self._scheduler.cancel_all()
        self._hidden_since = None
        self._confirmation_pending = False
        self._failed_reason = None
        self._error = None
        self._outcome = SessionOutcome(
            attempt_id=self._attempt_id,
            reason=reason,
            attempt=attempt,
            message=SUBMISSION_MESSAGES.get(reason),
        )
        logger.info("Attempt %s finished (%s)", self._attempt_id, reason.value)
        self._notify()
        if self._on_terminated is not None:
            self._on_terminated(self._outcome)
