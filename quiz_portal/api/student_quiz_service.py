"""Student operations: browsing quizzes, taking attempts and reading results."""

from __future__ import annotations

from typing import Any

from quiz_portal.api.client import ApiClient, parse_model, parse_model_list
from quiz_portal.core.models import (
    Attempt,
    AttemptResults,
    AwayAction,
    AwayResponse,
    Quiz,
    SubmissionReason,
)
from quiz_portal.core.services.attempt_session import AttemptSessionController


class StudentQuizService:
    """Remote side of a student's attempts; also the gateway used by the session controller."""

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def list_published_quizzes(self) -> list[Quiz]:
        return parse_model_list(Quiz, await self._client.get_json("/student/quizzes"))

    async def get_quiz_details(self, quiz_id: str) -> Quiz:
        return parse_model(Quiz, await self._client.get_json(f"/student/quizzes/{quiz_id}"))

    async def start_attempt(self, quiz_id: str) -> Attempt:
        return parse_model(Attempt, await self._client.post_json(f"/student/quizzes/{quiz_id}/start"))

    async def get_attempt(self, attempt_id: str) -> Attempt:
        return parse_model(Attempt, await self._client.get_json(f"/student/attempts/{attempt_id}"))

    async def save_answer(self, attempt_id: str, question_id: str, selected_options: list[str]) -> None:
        await self._client.put_json(
            f"/student/attempts/{attempt_id}/answer",
            {"questionId": question_id, "selectedOptions": selected_options},
        )

    async def register_away(self, attempt_id: str, action: AwayAction) -> AwayResponse:
        payload = await self._client.put_json(
            f"/student/attempts/{attempt_id}/away",
            {"action": AwayAction(action).value},
        )
        return parse_model(AwayResponse, payload or {})

    async def submit_attempt(
        self,
        attempt_id: str,
        reason: SubmissionReason = SubmissionReason.MANUAL,
    ) -> Attempt:
        payload = await self._client.put_json(
            f"/student/attempts/{attempt_id}/submit",
            {"submissionReason": SubmissionReason(reason).value},
        )
        return parse_model(Attempt, payload)

    async def get_results(self, attempt_id: str) -> AttemptResults:
        return parse_model(AttemptResults, await self._client.get_json(f"/student/attempts/{attempt_id}/results"))

    def open_session(self, attempt_id: str, **options: Any) -> AttemptSessionController:
        """Build a session controller for ``attempt_id``; call ``load()`` on it to begin."""
        return AttemptSessionController(attempt_id, self, **options)
