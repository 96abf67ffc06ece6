from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Final, Literal

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from meetingdesk.session import TOKEN_COOKIE

logger = logging.getLogger(__name__)

LOGIN_PATH: Final[str] = "/login"
DASHBOARD_PATH: Final[str] = "/dashboard"
PUBLIC_ROUTES: Final[frozenset[str]] = frozenset({LOGIN_PATH})


@dataclass(frozen=True)
class GuardDecision:
    action: Literal["allow", "redirect"]
    location: str | None = None

    @property
    def allowed(self) -> bool:
        return self.action == "allow"


ALLOW: Final[GuardDecision] = GuardDecision("allow")


def _redirect(location: str) -> GuardDecision:
    return GuardDecision("redirect", location)


def evaluate(path: str, has_token: bool) -> GuardDecision:
    """Decide a navigation from the path and token presence alone.

    Token validity is not checked here; an expired token is caught when the
    meetings service answers 401.
    """

    if path == "/":
        return _redirect(DASHBOARD_PATH if has_token else LOGIN_PATH)

    is_public = path in PUBLIC_ROUTES
    if is_public and has_token:
        return _redirect(DASHBOARD_PATH)
    if not is_public and not has_token:
        return _redirect(LOGIN_PATH)
    return ALLOW


def is_exempt_path(path: str) -> bool:
    if path == "/healthz":
        return True
    if path == "/favicon.ico":
        return True
    if path == "/openapi.json":
        return True
    if path.startswith("/docs"):
        return True
    if path.startswith("/static/"):
        return True
    return False


class RouteGuardMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if is_exempt_path(path):
            return await call_next(request)

        decision = evaluate(path, bool(request.cookies.get(TOKEN_COOKIE)))
        if decision.allowed:
            return await call_next(request)

        logger.debug("Guard redirect %s -> %s", path, decision.location)
        return RedirectResponse(url=decision.location or LOGIN_PATH, status_code=302)
