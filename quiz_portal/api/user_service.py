"""Lecturer access to the student roster."""

from __future__ import annotations

from pathlib import Path

from quiz_portal.api.client import ApiClient, parse_model_list
from quiz_portal.api.results_service import write_export
from quiz_portal.core.models import User


class UserService:
    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def list_students(self) -> list[User]:
        return parse_model_list(User, await self._client.get_json("/users/students"))

    async def export_students_csv(self) -> bytes:
        return await self._client.get_bytes("/users/students/export")

    async def save_students_export(self, file_path: Path) -> Path:
        return write_export(file_path, await self.export_students_csv())
