from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from pathlib import Path
from typing import Any
from urllib.parse import urlencode
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.responses import Response

from meetingdesk.config import FrontendConfig
from meetingdesk.forms import (
    MeetingDraft,
    ValidationResult,
    draft_from_meeting,
    to_patch,
    validate_draft,
)
from meetingdesk.gateway import ApiGateway, GatewayFailure, GatewayResult
from meetingdesk.meetings import CollectionRegistry, MeetingCollection
from meetingdesk.models import CreateSubmission, LoginCredentials, UpdateSubmission
from meetingdesk.session import (
    CookiePolicy,
    MalformedCredentials,
    RequestCookieJar,
    SessionStore,
)

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def _localtime(value: datetime | None, tz: tzinfo = UTC) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(tz).strftime("%b %d, %Y %H:%M")


templates.env.filters["localtime"] = _localtime

router = APIRouter(tags=["ui"])

_FAILURE_STATUS = {"validation": 400, "not_found": 404, "conflict": 409}


@dataclass
class PageContext:
    config: FrontendConfig
    cookies: RequestCookieJar
    store: SessionStore
    registry: CollectionRegistry

    @property
    def tz(self) -> tzinfo:
        return ZoneInfo(self.config.display.timezone)


def _page(request: Request) -> PageContext:
    config: FrontendConfig | None = getattr(request.app.state, "meetingdesk_config", None)
    registry: CollectionRegistry | None = getattr(request.app.state, "collections", None)
    client = getattr(request.app.state, "http_client", None)
    if config is None or registry is None or client is None:
        raise HTTPException(status_code=500, detail="Front end not initialized")

    cookies = RequestCookieJar(request.cookies)
    store = SessionStore(
        cookies,
        policy=CookiePolicy(
            max_age=config.session.lifetime_s,
            secure=config.session.secure_cookies,
            samesite=config.session.samesite,
        ),
    )
    store.bind_gateway(ApiGateway(client, token_provider=store.token))
    store.restore()
    return PageContext(config=config, cookies=cookies, store=store, registry=registry)


def _flash_from_request(request: Request) -> dict[str, Any] | None:
    msg = request.query_params.get("msg")
    if not msg:
        return None
    kind = request.query_params.get("kind") or ""
    return {"message": msg, "kind": kind}


def _with_flash(path: str, msg: str, kind: str = "ok") -> str:
    return f"{path}?{urlencode({'msg': msg, 'kind': kind})}"


def _redirect(ctx: PageContext, url: str) -> RedirectResponse:
    resp = RedirectResponse(url=url, status_code=302)
    ctx.cookies.apply(resp)
    return resp


def _render(
    request: Request,
    ctx: PageContext,
    name: str,
    context: dict[str, Any],
    *,
    status_code: int = 200,
) -> Response:
    session = ctx.store.current()
    base = {
        "user": session.identity if session is not None else None,
        "tz": ctx.tz,
        "flash": _flash_from_request(request),
    }
    resp = templates.TemplateResponse(request, name, {**base, **context}, status_code=status_code)
    ctx.cookies.apply(resp)
    return resp


def _to_login(ctx: PageContext, msg: str | None = None) -> RedirectResponse:
    url = _with_flash("/login", msg, "bad") if msg else "/login"
    return _redirect(ctx, url)


def _expire_session(ctx: PageContext) -> RedirectResponse:
    """The service rejected our token: drop the session and send the user back to login."""

    ctx.registry.discard(ctx.store.token())
    ctx.store.logout()
    return _to_login(ctx, "Session expired")


def _collection(ctx: PageContext) -> MeetingCollection | None:
    session = ctx.store.current()
    if session is None:
        return None
    return ctx.registry.for_token(session.token)


def _is_unauthorized(result: GatewayResult[Any]) -> bool:
    return not result.ok and result.error is not None and result.error.kind == "unauthorized"


def _failure_status(result: GatewayResult[Any]) -> int:
    kind = result.error.kind if result.error is not None else "unknown"
    return _FAILURE_STATUS.get(kind, 502)


def _draft_from_form(
    title: str, description: str, start_time: str, end_time: str, location: str, attendees: str
) -> MeetingDraft:
    return MeetingDraft(
        title=title,
        description=description,
        startTime=start_time,
        endTime=end_time,
        location=location,
        attendees=attendees,
    )


def _render_form(
    request: Request,
    ctx: PageContext,
    *,
    draft: MeetingDraft,
    meeting_id: str | None = None,
    validation: ValidationResult | None = None,
    error: str | None = None,
    status_code: int = 200,
) -> Response:
    editing = meeting_id is not None
    return _render(
        request,
        ctx,
        "meeting_form.html",
        {
            "title": ("Edit Meeting" if editing else "Create New Meeting") + " • MeetingDesk",
            "heading": "Edit Meeting" if editing else "Create New Meeting",
            "submit_label": "Update Meeting" if editing else "Create Meeting",
            "action": f"/meetings/{meeting_id}" if editing else "/meetings",
            "draft": draft,
            "errors": validation.by_field() if validation is not None else {},
            "error": error,
        },
        status_code=status_code,
    )


@router.get("/login", response_class=HTMLResponse)
async def ui_login(request: Request) -> Response:
    ctx = _page(request)
    return _render(request, ctx, "login.html", {"title": "Login • MeetingDesk"})


@router.post("/login", response_model=None)
async def ui_login_post(
    request: Request,
    email: str = Form(default=""),
    password: str = Form(default=""),
) -> Response:
    ctx = _page(request)
    email = email.strip()

    def _fail(message: str, status_code: int) -> Response:
        return _render(
            request,
            ctx,
            "login.html",
            {"title": "Login • MeetingDesk", "error": message, "email": email},
            status_code=status_code,
        )

    if not email or not password:
        return _fail("Email and password are required", 400)

    try:
        await ctx.store.login(LoginCredentials(email=email, password=password))
    except MalformedCredentials as exc:
        return _fail(exc.message, 401)
    except GatewayFailure as exc:
        status = 401 if exc.kind == "unauthorized" else _FAILURE_STATUS.get(exc.kind, 502)
        return _fail(exc.detail or "Login failed", status)

    return _redirect(ctx, _with_flash("/dashboard", "Logged in"))


@router.post("/logout")
async def ui_logout(request: Request) -> RedirectResponse:
    ctx = _page(request)
    ctx.registry.discard(ctx.store.token())
    ctx.store.logout()
    return _redirect(ctx, _with_flash("/login", "Logged out"))


@router.get("/dashboard", response_class=HTMLResponse)
async def ui_dashboard(request: Request) -> Response:
    ctx = _page(request)
    collection = _collection(ctx)
    if collection is None:
        return _to_login(ctx)

    result = await collection.load()
    if _is_unauthorized(result):
        return _expire_session(ctx)

    error = collection.error
    # The error modal is shown once; the next page view starts clean.
    collection.clear_error()
    return _render(
        request,
        ctx,
        "dashboard.html",
        {
            "title": "Dashboard • MeetingDesk",
            "meetings": collection.items,
            "error": error,
        },
    )


@router.get("/meetings/new", response_class=HTMLResponse)
async def ui_meeting_new(request: Request) -> Response:
    ctx = _page(request)
    if ctx.store.current() is None:
        return _to_login(ctx)
    return _render_form(request, ctx, draft=MeetingDraft())


@router.post("/meetings", response_model=None)
async def ui_meeting_create(
    request: Request,
    title: str = Form(default=""),
    description: str = Form(default=""),
    startTime: str = Form(default=""),  # noqa: N803
    endTime: str = Form(default=""),  # noqa: N803
    location: str = Form(default=""),
    attendees: str = Form(default=""),
) -> Response:
    ctx = _page(request)
    collection = _collection(ctx)
    if collection is None:
        return _to_login(ctx)

    draft = _draft_from_form(title, description, startTime, endTime, location, attendees)
    validation = validate_draft(draft, tz=ctx.tz)
    if validation.data is None or validation.errors:
        return _render_form(request, ctx, draft=draft, validation=validation, status_code=422)

    result = await collection.submit(CreateSubmission(validation.data))
    if _is_unauthorized(result):
        return _expire_session(ctx)
    if not result.ok:
        error = collection.error
        collection.clear_error()
        return _render_form(
            request,
            ctx,
            draft=draft,
            error=error,
            status_code=_failure_status(result),
        )

    return _redirect(ctx, _with_flash("/dashboard", "Meeting created"))


@router.get("/meetings/{meeting_id}/edit", response_class=HTMLResponse)
async def ui_meeting_edit(request: Request, meeting_id: str) -> Response:
    ctx = _page(request)
    collection = _collection(ctx)
    if collection is None:
        return _to_login(ctx)

    result = await collection.get(meeting_id)
    if _is_unauthorized(result):
        return _expire_session(ctx)
    if result.data is None:
        message = collection.error or "Error loading meeting."
        collection.clear_error()
        return _redirect(ctx, _with_flash("/dashboard", message, "bad"))

    return _render_form(
        request, ctx, draft=draft_from_meeting(result.data, ctx.tz), meeting_id=meeting_id
    )


@router.post("/meetings/{meeting_id}", response_model=None)
async def ui_meeting_update(
    request: Request,
    meeting_id: str,
    title: str = Form(default=""),
    description: str = Form(default=""),
    startTime: str = Form(default=""),  # noqa: N803
    endTime: str = Form(default=""),  # noqa: N803
    location: str = Form(default=""),
    attendees: str = Form(default=""),
) -> Response:
    ctx = _page(request)
    collection = _collection(ctx)
    if collection is None:
        return _to_login(ctx)

    draft = _draft_from_form(title, description, startTime, endTime, location, attendees)
    validation = validate_draft(draft, tz=ctx.tz)
    if validation.data is None or validation.errors:
        return _render_form(
            request,
            ctx,
            draft=draft,
            meeting_id=meeting_id,
            validation=validation,
            status_code=422,
        )

    result = await collection.submit(UpdateSubmission(meeting_id, to_patch(validation.data)))
    if _is_unauthorized(result):
        return _expire_session(ctx)
    if not result.ok:
        error = collection.error
        collection.clear_error()
        return _render_form(
            request,
            ctx,
            draft=draft,
            meeting_id=meeting_id,
            error=error,
            status_code=_failure_status(result),
        )

    return _redirect(ctx, _with_flash("/dashboard", "Meeting updated"))


@router.get("/meetings/{meeting_id}/delete", response_class=HTMLResponse)
async def ui_meeting_confirm_delete(request: Request, meeting_id: str) -> Response:
    ctx = _page(request)
    collection = _collection(ctx)
    if collection is None:
        return _to_login(ctx)

    meeting = collection.find(meeting_id)
    if meeting is None:
        result = await collection.get(meeting_id)
        if _is_unauthorized(result):
            return _expire_session(ctx)
        if not result.ok:
            message = collection.error or "Error loading meeting."
            collection.clear_error()
            return _redirect(ctx, _with_flash("/dashboard", message, "bad"))
        meeting = result.data

    return _render(
        request,
        ctx,
        "confirm_delete.html",
        {"title": "Delete Meeting • MeetingDesk", "meeting": meeting},
    )


@router.post("/meetings/{meeting_id}/delete")
async def ui_meeting_delete(request: Request, meeting_id: str) -> RedirectResponse:
    ctx = _page(request)
    collection = _collection(ctx)
    if collection is None:
        return _to_login(ctx)

    result = await collection.delete(meeting_id)
    if _is_unauthorized(result):
        return _expire_session(ctx)
    if not result.ok:
        message = collection.error or "Error deleting meeting."
        collection.clear_error()
        return _redirect(ctx, _with_flash("/dashboard", message, "bad"))

    return _redirect(ctx, _with_flash("/dashboard", "Meeting deleted"))
