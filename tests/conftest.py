from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

API_BASE = "http://meetings.test"
VALID_EMAIL = "ada@example.com"
VALID_PASSWORD = "secret"
MALFORMED_EMAIL = "broken@example.com"


def _iso(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


class FakeMeetingsService:
    """In-process stand-in for the remote meetings API."""

    def __init__(self) -> None:
        self.token = "tok-ada-1"
        self.user = {"id": 7, "email": VALID_EMAIL, "name": "Ada Lovelace"}
        self.meetings: dict[int, dict[str, Any]] = {}
        self.next_id = 1
        self.requests: list[dict[str, Any]] = []
        # (method, path) -> (status, body); consumed on first match
        self.forced: dict[tuple[str, str], tuple[int, Any]] = {}
        self.app = self._build_app()

    def add_meeting(self, title: str = "Standup", **overrides: Any) -> dict[str, Any]:
        start = datetime.now(UTC) + timedelta(days=1)
        now = _iso(datetime.now(UTC))
        meeting = {
            "id": self.next_id,
            "title": title,
            "description": f"{title} notes",
            "startTime": _iso(start),
            "endTime": _iso(start + timedelta(hours=1)),
            "location": "Room 1",
            "attendees": ["bob@example.com"],
            "createdBy": self.user["id"],
            "createdAt": now,
            "updatedAt": now,
        }
        meeting.update(overrides)
        self.meetings[meeting["id"]] = meeting
        self.next_id = max(self.next_id, int(meeting["id"])) + 1
        return meeting

    def force(self, method: str, path: str, status: int, body: Any = None) -> None:
        self.forced[(method.upper(), path)] = (status, body)

    def transport(self) -> httpx.ASGITransport:
        return httpx.ASGITransport(app=self.app)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport(), base_url=API_BASE)

    def calls(self, method: str, path: str) -> list[dict[str, Any]]:
        return [r for r in self.requests if r["method"] == method and r["path"] == path]

    def _build_app(self) -> FastAPI:
        app = FastAPI()
        service = self

        @app.middleware("http")
        async def record_and_force(request: Request, call_next):
            service.requests.append(
                {
                    "method": request.method,
                    "path": request.url.path,
                    "authorization": request.headers.get("authorization"),
                }
            )
            forced = service.forced.pop((request.method, request.url.path), None)
            if forced is not None:
                status, body = forced
                if body is None:
                    return Response(status_code=status)
                return JSONResponse(status_code=status, content=body)
            return await call_next(request)

        def _authorized(request: Request) -> bool:
            return request.headers.get("authorization") == f"Bearer {service.token}"

        def _unauthorized() -> JSONResponse:
            return JSONResponse(status_code=401, content={"message": "Unauthorized"})

        def _not_found(meeting_id: int) -> JSONResponse:
            return JSONResponse(
                status_code=404, content={"message": f"Meeting with ID {meeting_id} not found"}
            )

        @app.post("/auth/login")
        async def login(request: Request):
            body = await request.json()
            if body.get("email") == MALFORMED_EMAIL:
                return {"message": "ok"}
            if body.get("email") != VALID_EMAIL or body.get("password") != VALID_PASSWORD:
                return JSONResponse(
                    status_code=401, content={"message": "Invalid email or password"}
                )
            return {"access_token": service.token, "user": service.user}

        @app.get("/meetings")
        async def list_meetings(request: Request):
            if not _authorized(request):
                return _unauthorized()
            return list(service.meetings.values())

        @app.get("/meetings/{meeting_id}")
        async def get_meeting(request: Request, meeting_id: int):
            if not _authorized(request):
                return _unauthorized()
            if meeting_id not in service.meetings:
                return _not_found(meeting_id)
            return service.meetings[meeting_id]

        @app.post("/meetings", status_code=201)
        async def create_meeting(request: Request):
            if not _authorized(request):
                return _unauthorized()
            body = await request.json()
            missing = [
                k
                for k in ("title", "description", "startTime", "endTime", "location", "attendees")
                if not body.get(k)
            ]
            if missing:
                return JSONResponse(
                    status_code=400, content={"message": [f"{k} should not be empty" for k in missing]}
                )
            return service.add_meeting(**body)

        @app.patch("/meetings/{meeting_id}")
        async def update_meeting(request: Request, meeting_id: int):
            if not _authorized(request):
                return _unauthorized()
            if meeting_id not in service.meetings:
                return _not_found(meeting_id)
            body = await request.json()
            meeting = {**service.meetings[meeting_id], **body}
            meeting["updatedAt"] = _iso(datetime.now(UTC))
            service.meetings[meeting_id] = meeting
            return meeting

        @app.delete("/meetings/{meeting_id}")
        async def delete_meeting(request: Request, meeting_id: int):
            if not _authorized(request):
                return _unauthorized()
            if meeting_id not in service.meetings:
                return _not_found(meeting_id)
            del service.meetings[meeting_id]
            return Response(status_code=200)

        return app


@pytest.fixture
def service() -> FakeMeetingsService:
    return FakeMeetingsService()


@pytest.fixture
def home(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("MEETINGDESK_HOME", str(tmp_path))
    monkeypatch.setenv("MEETINGDESK_API_URL", API_BASE)
    return tmp_path
