"""Lecturer views of attempts and result exports."""

from __future__ import annotations

from pathlib import Path

from quiz_portal.api.client import ApiClient, parse_model, parse_model_list
from quiz_portal.core.models import Attempt

EXPORT_FORMATS = ("csv",)


class ResultsService:
    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def list_attempts(self, quiz_id: str) -> list[Attempt]:
        return parse_model_list(Attempt, await self._client.get_json(f"/quizzes/{quiz_id}/attempts"))

    async def get_attempt_details(self, attempt_id: str) -> Attempt:
        return parse_model(Attempt, await self._client.get_json(f"/attempts/{attempt_id}"))

    async def export_results(self, quiz_id: str, export_format: str = "csv") -> bytes:
        if export_format not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {export_format}")
        return await self._client.get_bytes(f"/quizzes/{quiz_id}/export", params={"format": export_format})

    async def save_results_export(self, quiz_id: str, file_path: Path, export_format: str = "csv") -> Path:
        content = await self.export_results(quiz_id, export_format)
        return write_export(file_path, content)


def write_export(file_path: Path, content: bytes) -> Path:
    file_path = file_path.resolve()
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_bytes(content)
    return file_path
