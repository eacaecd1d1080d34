"""Async HTTP client for the quiz API."""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from quiz_portal.constants.network_constants import DEFAULT_API_BASE_URL, REQUEST_TIMEOUT_SECONDS
from quiz_portal.core.errors import ApiError, NetworkError
from quiz_portal.core.models import AuthSession

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ApiClient:
    """Thin wrapper around ``httpx.AsyncClient`` that attaches the bearer token."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        *,
        auth: AuthSession | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._auth = auth
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def auth(self) -> AuthSession | None:
        return self._auth

    def authenticate(self, session: AuthSession | None) -> None:
        """Bind (or with None, drop) the credentials used for subsequent requests."""
        self._auth = session

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = self._auth.authorization_header() if self._auth else {}
        try:
            response = await self._client.request(
                method,
                path.lstrip("/"),
                json=json,
                params=params,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise NetworkError() from exc
        if response.is_error:
            error = ApiError.from_response(response)
            logger.debug("%s %s rejected: %s", method, path, error)
            raise error
        return response

    async def get_json(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return _json_body(await self.request("GET", path, params=params))

    async def post_json(self, path: str, payload: Any = None) -> Any:
        return _json_body(await self.request("POST", path, json=payload))

    async def put_json(self, path: str, payload: Any = None) -> Any:
        return _json_body(await self.request("PUT", path, json=payload))

    async def delete(self, path: str) -> Any:
        return _json_body(await self.request("DELETE", path))

    async def get_bytes(self, path: str, *, params: dict[str, Any] | None = None) -> bytes:
        response = await self.request("GET", path, params=params)
        return response.content


def parse_model(model: type[ModelT], payload: Any) -> ModelT:
    """Validate an API payload, turning schema mismatches into :class:`ApiError`."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        logger.error("Unexpected %s payload: %s", model.__name__, exc)
        raise ApiError(f"Unexpected response from server ({model.__name__})", payload=payload) from exc


def parse_model_list(model: type[ModelT], payload: Any) -> list[ModelT]:
    try:
        return TypeAdapter(list[model]).validate_python(payload)
    except ValidationError as exc:
        logger.error("Unexpected %s list payload: %s", model.__name__, exc)
        raise ApiError(f"Unexpected response from server ({model.__name__} list)", payload=payload) from exc


def _json_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise ApiError("Server returned a non-JSON response", status_code=response.status_code) from exc
