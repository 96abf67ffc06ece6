"""Outbound client for the remote meetings service.

Every HTTP call the front end makes goes through :class:`ApiGateway`. Each
operation performs exactly one request and returns a :class:`GatewayResult`;
HTTP and transport outcomes are classified once, here, so callers only ever
branch on ``result.ok`` / ``result.error.kind``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Final, Literal, cast
from urllib.parse import quote

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from meetingdesk.models import (
    CreateMeetingData,
    LoginCredentials,
    LoginResponse,
    Meeting,
    UpdateMeetingData,
)

logger = logging.getLogger(__name__)

ErrorKind = Literal["unauthorized", "not_found", "validation", "transport", "unknown", "conflict"]

LOGIN_PATH: Final[str] = "/auth/login"

DEFAULT_MESSAGES: Final[dict[str, str]] = {
    "unauthorized": "Your session is not authorized. Please log in again.",
    "not_found": "The requested meeting no longer exists.",
    "validation": "The server rejected the submitted data.",
    "transport": "Could not reach the meetings service.",
    "unknown": "Unexpected response from the meetings service.",
    "conflict": "Another change to this meeting is still in progress.",
}

_MEETING_LIST = TypeAdapter(list[Meeting])


class GatewayError(BaseModel):
    kind: ErrorKind
    message: str
    # Reason reported by the service itself, when the body carried one.
    detail: str | None = None
    status_code: int | None = None


class GatewayFailure(Exception):
    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.detail = detail

    @classmethod
    def from_error(cls, error: GatewayError) -> GatewayFailure:
        return cls(error.kind, error.message, error.status_code, error.detail)


class GatewayResult[T](BaseModel):
    ok: bool
    data: T | None = None
    error: GatewayError | None = None

    def unwrap(self) -> T:
        if self.error is not None:
            raise GatewayFailure.from_error(self.error)
        return cast("T", self.data)


def ok[T](data: T) -> GatewayResult[T]:
    return GatewayResult(ok=True, data=data)


def fail(
    kind: ErrorKind, detail: str | None = None, *, status_code: int | None = None
) -> GatewayResult[Any]:
    return GatewayResult(
        ok=False,
        error=GatewayError(
            kind=kind,
            message=detail or DEFAULT_MESSAGES[kind],
            detail=detail,
            status_code=status_code,
        ),
    )


def classify_status(status_code: int) -> ErrorKind:
    if status_code in (401, 403):
        return "unauthorized"
    if status_code == 404:
        return "not_found"
    if status_code in (400, 409, 422):
        return "validation"
    return "unknown"


def extract_message(body: Any) -> str | None:
    """Pull a human-readable reason out of an error body, if the service sent one."""

    if not isinstance(body, dict):
        return None
    message = body.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    # Validation pipes on the service side report one message per violated constraint.
    if isinstance(message, list):
        parts = [str(m).strip() for m in message if str(m).strip()]
        if parts:
            return "; ".join(parts)
    return None


def meeting_path(meeting_id: int | str) -> str:
    segment = quote(str(meeting_id), safe="")
    # Dot segments would be collapsed by URL normalization.
    if segment in (".", ".."):
        segment = segment.replace(".", "%2E")
    return f"/meetings/{segment}"


def _decode_login(body: Any) -> LoginResponse:
    # A success body without a usable token or user is reported by the session
    # store as bad credentials, not as an unexpected payload.
    try:
        return LoginResponse.model_validate(body)
    except ValidationError:
        logger.warning("Login succeeded with an unusable body")
        return LoginResponse()


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class ApiGateway:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        token_provider: Callable[[], str | None] | None = None,
    ) -> None:
        self._client = client
        self._token_provider = token_provider

    def _headers(self, *, protected: bool) -> dict[str, str]:
        if not protected or self._token_provider is None:
            return {}
        token = self._token_provider()
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        protected: bool = True,
    ) -> GatewayResult[Any]:
        try:
            response = await self._client.request(
                method, path, json=json, headers=self._headers(protected=protected)
            )
        except httpx.TimeoutException:
            logger.warning("%s %s - timed out", method, path)
            return fail("transport")
        except httpx.TransportError as exc:
            logger.warning("%s %s - transport error: %s", method, path, exc)
            return fail("transport")

        body = _json_or_none(response)
        if response.is_success:
            logger.debug("%s %s - %s", method, path, response.status_code)
            return ok(body)

        kind = classify_status(response.status_code)
        logger.warning("%s %s - %s (%s)", method, path, response.status_code, kind)
        return fail(kind, extract_message(body), status_code=response.status_code)

    @staticmethod
    def _decode[T](
        result: GatewayResult[Any], decoder: Callable[[Any], T]
    ) -> GatewayResult[T]:
        if not result.ok:
            return result
        try:
            return ok(decoder(result.data))
        except ValidationError as exc:
            logger.warning("Undecodable response payload: %s", exc)
            return fail("unknown")

    async def login(self, credentials: LoginCredentials) -> GatewayResult[LoginResponse]:
        result = await self._request(
            "POST", LOGIN_PATH, json=credentials.to_wire(), protected=False
        )
        return self._decode(result, _decode_login)

    async def list_meetings(self) -> GatewayResult[list[Meeting]]:
        result = await self._request("GET", "/meetings")
        return self._decode(result, _MEETING_LIST.validate_python)

    async def get_meeting(self, meeting_id: int | str) -> GatewayResult[Meeting]:
        result = await self._request("GET", meeting_path(meeting_id))
        return self._decode(result, Meeting.model_validate)

    async def create_meeting(self, data: CreateMeetingData) -> GatewayResult[Meeting]:
        result = await self._request("POST", "/meetings", json=data.to_wire())
        return self._decode(result, Meeting.model_validate)

    async def update_meeting(
        self, meeting_id: int | str, patch: UpdateMeetingData
    ) -> GatewayResult[Meeting]:
        result = await self._request("PATCH", meeting_path(meeting_id), json=patch.to_wire())
        return self._decode(result, Meeting.model_validate)

    async def delete_meeting(self, meeting_id: int | str) -> GatewayResult[None]:
        result = await self._request("DELETE", meeting_path(meeting_id))
        if not result.ok:
            return result
        return ok(None)
