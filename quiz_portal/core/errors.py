"""Errors raised by calls to the quiz API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import httpx


class ApiError(Exception):
    """Raised for any failed call to the quiz API."""

    def __init__(self, message: str, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    @classmethod
    def from_response(cls, response: httpx.Response) -> ApiError:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        message = None
        if isinstance(payload, dict):
            message = payload.get("message") or payload.get("detail")
        if not isinstance(message, str) or not message:
            message = f"Request failed with status {response.status_code}"
        return cls(message, status_code=response.status_code, payload=payload)

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.message} (HTTP {self.status_code})"


class NetworkError(ApiError):
    """Raised when the API could not be reached at all."""

    def __init__(self, message: str = "Network error") -> None:
        super().__init__(message)
