"""Sign-in, registration and connectivity checks."""

from __future__ import annotations

import logging
from typing import Any

from quiz_portal.api.client import ApiClient, ApiError
from quiz_portal.core.models import AuthSession, UserRole
from quiz_portal.core.validation import validate_registration

logger = logging.getLogger(__name__)


class AuthService:
    """Obtains :class:`AuthSession` objects; callers decide where to bind them."""

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def login(self, email: str, password: str) -> AuthSession:
        payload = await self._client.post_json("/auth/login", {"email": email, "password": password})
        session = _session_from(payload)
        logger.info("Signed in as %s (%s)", session.user.username or session.user.email, session.user.role.value)
        return session

    async def register_student(
        self,
        *,
        name: str,
        username: str,
        email: str,
        password: str,
        confirm_password: str,
        registration_number: str | None = None,
    ) -> AuthSession:
        validate_registration(password, confirm_password)
        payload = await self._client.post_json(
            "/auth/register",
            {
                "name": name,
                "username": username,
                "email": email,
                "password": password,
                "role": UserRole.STUDENT.value,
                "registrationNumber": registration_number or None,
            },
        )
        return _session_from(payload)

    async def test_connection(self) -> dict[str, Any]:
        return await self._client.get_json("/test")


def _session_from(payload: Any) -> AuthSession:
    if not isinstance(payload, dict):
        raise ApiError("Unexpected response from server (login)", payload=payload)
    try:
        return AuthSession.from_payload(payload)
    except ValueError as exc:
        raise ApiError(str(exc), payload=payload) from exc
