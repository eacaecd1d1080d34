"""Lecturer operations on questions, including bulk upload."""

from __future__ import annotations

import logging
from pathlib import Path

from quiz_portal.api.client import ApiClient, parse_model
from quiz_portal.core.models import BulkUploadReport, Question
from quiz_portal.core.question_importer import load_questions_from_file
from quiz_portal.core.validation import validate_question

logger = logging.getLogger(__name__)


class QuestionService:
    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def add_question(self, quiz_id: str, question: Question) -> Question:
        question = validate_question(question)
        payload = await self._client.post_json(f"/quizzes/{quiz_id}/questions", question.to_wire())
        return parse_model(Question, payload)

    async def update_question(self, question_id: str, question: Question) -> Question:
        question = validate_question(question)
        payload = await self._client.put_json(f"/questions/{question_id}", question.to_wire())
        return parse_model(Question, payload)

    async def delete_question(self, question_id: str) -> None:
        await self._client.delete(f"/questions/{question_id}")

    async def bulk_add(self, quiz_id: str, questions: list[Question]) -> BulkUploadReport:
        payload = await self._client.post_json(
            f"/quizzes/{quiz_id}/questions/bulk",
            {"questions": [question.to_wire() for question in questions]},
        )
        return parse_model(BulkUploadReport, payload)

    async def upload_file(self, quiz_id: str, file_path: Path) -> BulkUploadReport:
        """Parse a question file locally and upload the valid rows.

        Rows rejected while parsing are counted as errors in the returned report
        next to whatever the server rejects.
        """
        imported = load_questions_from_file(file_path)
        report = await self.bulk_add(quiz_id, imported.questions)
        if imported.errors:
            report = report.model_copy(
                update={
                    "error_count": report.error_count + imported.error_count,
                    "errors": imported.errors + report.errors,
                }
            )
        logger.info(
            "Uploaded %s: %d question(s) added, %d rejected",
            file_path.name,
            report.success_count,
            report.error_count,
        )
        return report
