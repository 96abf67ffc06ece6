from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.staticfiles import StaticFiles

from meetingdesk import __version__
from meetingdesk.config import apply_env_overrides, load_frontend_config
from meetingdesk.guard import RouteGuardMiddleware
from meetingdesk.home import ensure_meetingdesk_layout, resolve_meetingdesk_home
from meetingdesk.meetings import CollectionRegistry
from meetingdesk.ui.router import STATIC_DIR as UI_STATIC_DIR
from meetingdesk.ui.router import router as ui_router
from meetingdesk.ui.router import templates

logger = logging.getLogger(__name__)


def create_app(*, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    """Build the front end.

    ``transport`` replaces the network transport of the outbound meetings
    client (tests mount a fake service here).
    """

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        home = resolve_meetingdesk_home()
        paths = ensure_meetingdesk_layout(home)
        config = apply_env_overrides(load_frontend_config(paths))

        # Configure Logging
        log_path = paths.log_path
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=config.logging.max_size_mb * 1024 * 1024,
            backupCount=config.logging.backup_count,
            encoding="utf-8",
        )
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        file_handler.setFormatter(formatter)

        root = logging.getLogger()
        root.setLevel(config.logging.level.upper())
        # Avoid adding duplicate handlers if reloaded
        if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
            root.addHandler(file_handler)

        logger.info("MeetingDesk front end starting up")
        logger.info(f"Meetings service: {config.api.base_url}")

        client = httpx.AsyncClient(
            base_url=config.api.base_url,
            timeout=config.api.timeout_s,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

        app.state.meetingdesk_home = home
        app.state.meetingdesk_paths = paths
        app.state.meetingdesk_config = config
        app.state.http_client = client
        app.state.collections = CollectionRegistry(client)

        try:
            yield
        finally:
            await client.aclose()

    app = FastAPI(title="MeetingDesk", version=__version__, lifespan=_lifespan)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info(f"{request.method} {request.url.path} - {response.status_code}")
        return response

    app.add_middleware(RouteGuardMiddleware)

    def _error_page(request: Request, status_code: int, message: str) -> HTMLResponse:
        return templates.TemplateResponse(
            request,
            "error.html",
            {
                "title": f"{status_code} • MeetingDesk",
                "status_code": status_code,
                "message": message,
            },
            status_code=status_code,
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> HTMLResponse:
        message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        return _error_page(request, exc.status_code, message)

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception) -> HTMLResponse:
        # Avoid leaking internals to the page; the traceback goes to the log.
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_page(request, 500, "Internal server error")

    if UI_STATIC_DIR.is_dir():
        app.mount("/static", StaticFiles(directory=str(UI_STATIC_DIR)), name="static")
    else:
        logger.warning(
            "UI static directory is missing (%s); /static will not be served", UI_STATIC_DIR
        )
    app.include_router(ui_router)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return app
