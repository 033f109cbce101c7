"""Remote API client — wards lookup and the pull/push sync RPC pair.

Authentication is delegated to a ``TokenProvider``: the client asks it for
the current bearer token on every request and tells it when the server
answers 401. Every failure surfaces as a ``RemoteError`` subclass.
"""

import logging
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field, ValidationError

from fieldsurvey.core.config import settings
from fieldsurvey.schemas.entities import Geometry
from fieldsurvey.schemas.responses import WireModel
from fieldsurvey.services.sync.exceptions import (
    MalformedResponseError,
    RemoteAuthError,
    RemoteError,
    RemoteTimeoutError,
    WardNotFoundError,
)

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    """Auth collaborator owned by the host application."""

    def current_token(self) -> str | None: ...

    def on_unauthorized(self) -> None: ...


class StaticTokenProvider:
    """Token provider for a fixed bearer token (service deployments, tests)."""

    def __init__(self, token: str | None = None) -> None:
        self._token = token or None

    def current_token(self) -> str | None:
        return self._token

    def on_unauthorized(self) -> None:
        logger.warning("Remote API rejected the configured token; clearing it")
        self._token = None


# ---------------------------------------------------------------------------
# Wire payloads
# ---------------------------------------------------------------------------


class RemoteWard(WireModel):
    id: str | None = None
    ward_number: int = Field(..., ge=1)
    ward_area_code: int
    geometry: Geometry
    created_at: str | None = None
    updated_at: str | None = None


class RemoteTableChanges(BaseModel):
    created: list[dict[str, Any]] = Field(default_factory=list)
    updated: list[dict[str, Any]] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)


class PullResponse(BaseModel):
    changes: dict[str, RemoteTableChanges] = Field(default_factory=dict)
    timestamp: int


def _unwrap(payload: Any) -> Any:
    """Servers may wrap bodies as ``{"data": ...}``; return the inner value."""
    if isinstance(payload, dict) and "data" in payload and len(payload) <= 2:
        return payload["data"]
    return payload


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RemoteClient:
    """Async client for the survey backend.

    Usage::

        async with RemoteClient(auth=StaticTokenProvider(token)) as client:
            wards = await client.get_wards()
            pulled = await client.pull(last_pulled_at=None, schema_version=1)
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_version: str | None = None,
        auth: TokenProvider | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base = (base_url or settings.API_BASE_URL).rstrip("/")
        version = api_version or settings.API_VERSION
        self._timeout = timeout if timeout is not None else settings.SYNC_REQUEST_TIMEOUT_SECONDS
        self._auth = auth
        self._client = httpx.AsyncClient(
            base_url=f"{base}/{version}",
            timeout=self._timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, *, json: Any = None) -> Any:
        operation = f"{method} {path}"
        headers: dict[str, str] = {}
        token = self._auth.current_token() if self._auth is not None else None
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            raise RemoteTimeoutError(operation, self._timeout) from exc
        except httpx.HTTPError as exc:
            raise RemoteError(None, f"{operation} failed: {exc}") from exc

        if response.status_code == 401:
            if self._auth is not None:
                self._auth.on_unauthorized()
            raise RemoteAuthError(_error_message(response) or "Unauthorized")
        if response.status_code >= 400:
            body = _error_body(response)
            raise RemoteError(
                response.status_code,
                body.get("message") or "Something went wrong",
                body.get("errors"),
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(operation, "body is not JSON") from exc

    # ------------------------------------------------------------------
    # Wards
    # ------------------------------------------------------------------

    async def get_wards(self) -> list[RemoteWard]:
        payload = _unwrap(await self._request("GET", "/wards"))
        if not isinstance(payload, list):
            raise MalformedResponseError("GET /wards", "expected a list of wards")
        try:
            return [RemoteWard.model_validate(item) for item in payload]
        except ValidationError as exc:
            raise MalformedResponseError("GET /wards", str(exc)) from exc

    async def get_ward(self, ward_number: int) -> RemoteWard:
        try:
            payload = _unwrap(await self._request("GET", f"/wards/{ward_number}"))
        except RemoteError as exc:
            if exc.status == 404:
                raise WardNotFoundError(ward_number) from exc
            raise
        try:
            return RemoteWard.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponseError(f"GET /wards/{ward_number}", str(exc)) from exc

    # ------------------------------------------------------------------
    # Sync RPC
    # ------------------------------------------------------------------

    async def pull(self, last_pulled_at: int | None, schema_version: int) -> PullResponse:
        payload = await self._request(
            "POST",
            "/sync/pull",
            json={"lastPulledAt": last_pulled_at, "schemaVersion": schema_version},
        )
        try:
            return PullResponse.model_validate(_unwrap(payload))
        except ValidationError as exc:
            raise MalformedResponseError("POST /sync/pull", str(exc)) from exc

    async def push(self, changes: dict[str, dict[str, list[Any]]], last_pulled_at: int | None) -> None:
        await self._request("POST", "/sync/push", json={"changes": changes, "lastPulledAt": last_pulled_at})


def _error_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_message(response: httpx.Response) -> str | None:
    return _error_body(response).get("message")
