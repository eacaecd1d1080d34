"""Lecturer operations on quizzes."""

from __future__ import annotations

from quiz_portal.api.client import ApiClient, parse_model, parse_model_list
from quiz_portal.core.models import Quiz, QuizDraft
from quiz_portal.core.validation import validate_quiz_draft


class QuizService:
    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def list_quizzes(self) -> list[Quiz]:
        return parse_model_list(Quiz, await self._client.get_json("/quizzes"))

    async def get_quiz(self, quiz_id: str) -> Quiz:
        return parse_model(Quiz, await self._client.get_json(f"/quizzes/{quiz_id}"))

    async def create_quiz(self, draft: QuizDraft) -> Quiz:
        draft = validate_quiz_draft(draft)
        return parse_model(Quiz, await self._client.post_json("/quizzes", draft.to_wire()))

    async def update_quiz(self, quiz_id: str, draft: QuizDraft) -> Quiz:
        draft = validate_quiz_draft(draft)
        return parse_model(Quiz, await self._client.put_json(f"/quizzes/{quiz_id}", draft.to_wire()))

    async def delete_quiz(self, quiz_id: str) -> None:
        await self._client.delete(f"/quizzes/{quiz_id}")

    async def publish_results(self, quiz_id: str) -> Quiz:
        """Release graded scores of every attempt on the quiz to its students."""
        return parse_model(Quiz, await self._client.put_json(f"/quizzes/{quiz_id}/publish-results"))
