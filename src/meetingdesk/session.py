"""Client session: the auth token and user identity kept in two cookies.

State machine::

    unloaded -> loading -> {authenticated, anonymous}
    authenticated -> anonymous      (logout, or identity fails to decode)
    anonymous -> authenticated      (successful login)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Final, Literal, Protocol
from urllib.parse import quote, unquote

from starlette.responses import Response

from meetingdesk.gateway import ApiGateway
from meetingdesk.models import LoginCredentials, Session, UserIdentity

logger = logging.getLogger(__name__)

TOKEN_COOKIE: Final[str] = "auth_token"
USER_COOKIE: Final[str] = "user"


class SessionState(StrEnum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


_TRANSITIONS: Final[dict[SessionState, frozenset[SessionState]]] = {
    SessionState.UNLOADED: frozenset({SessionState.LOADING}),
    SessionState.LOADING: frozenset({SessionState.AUTHENTICATED, SessionState.ANONYMOUS}),
    SessionState.AUTHENTICATED: frozenset({SessionState.ANONYMOUS}),
    SessionState.ANONYMOUS: frozenset({SessionState.AUTHENTICATED}),
}


class SessionStateError(RuntimeError):
    pass


class MalformedCredentials(Exception):
    """Login succeeded at the transport level but the response lacked a token or user."""

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class CookiePolicy:
    max_age: int = 60 * 60 * 24
    secure: bool = False
    samesite: Literal["strict", "lax"] = "strict"
    httponly: bool = True


class CookieJar(Protocol):
    def get(self, name: str) -> str | None: ...

    def set(self, name: str, value: str, policy: CookiePolicy) -> None: ...

    def delete(self, name: str) -> None: ...


@dataclass
class InMemoryCookieJar:
    values: dict[str, str] = field(default_factory=dict)
    policies: dict[str, CookiePolicy] = field(default_factory=dict)

    def get(self, name: str) -> str | None:
        return self.values.get(name)

    def set(self, name: str, value: str, policy: CookiePolicy) -> None:
        self.values[name] = value
        self.policies[name] = policy

    def delete(self, name: str) -> None:
        self.values.pop(name, None)
        self.policies.pop(name, None)


class RequestCookieJar:
    """Reads the incoming request's cookies; queues writes for the outgoing response."""

    def __init__(self, incoming: Mapping[str, str]) -> None:
        self._incoming = dict(incoming)
        self._written: dict[str, tuple[str, CookiePolicy]] = {}
        self._deleted: set[str] = set()

    def get(self, name: str) -> str | None:
        if name in self._deleted:
            return None
        if name in self._written:
            return self._written[name][0]
        return self._incoming.get(name)

    def set(self, name: str, value: str, policy: CookiePolicy) -> None:
        self._deleted.discard(name)
        self._written[name] = (value, policy)

    def delete(self, name: str) -> None:
        self._written.pop(name, None)
        if name in self._incoming:
            self._deleted.add(name)

    @property
    def dirty(self) -> bool:
        return bool(self._written or self._deleted)

    def apply(self, response: Response) -> None:
        for name, (value, policy) in self._written.items():
            response.set_cookie(
                name,
                value,
                max_age=policy.max_age,
                secure=policy.secure,
                httponly=policy.httponly,
                samesite=policy.samesite,
            )
        for name in self._deleted:
            response.delete_cookie(name)


class _PersistedUser(UserIdentity):
    expires_at: datetime | None = None


def encode_identity(session: Session) -> str:
    payload = {
        "id": session.user_id,
        "email": session.email,
        "name": session.display_name,
    }
    if session.expiry is not None:
        payload["expires_at"] = session.expiry.isoformat()
    return quote(json.dumps(payload, separators=(",", ":")), safe="")


def decode_identity(token: str, raw: str) -> Session:
    """Rebuild a Session from cookie values. Raises ValueError if the identity is corrupt."""

    user = _PersistedUser.model_validate(json.loads(unquote(raw)))
    expiry = user.expires_at
    if expiry is not None and expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=UTC)
    return Session(
        user_id=user.id,
        email=user.email,
        display_name=user.name,
        token=token,
        expiry=expiry,
    )


class SessionStore:
    """Single owner of the client session.

    Only restore/login/logout mutate it; every other component reads it through
    :meth:`current` or :meth:`token`.
    """

    def __init__(
        self,
        cookies: CookieJar,
        gateway: ApiGateway | None = None,
        *,
        policy: CookiePolicy | None = None,
    ) -> None:
        self._cookies = cookies
        self._gateway = gateway
        self._policy = policy or CookiePolicy()
        self._state = SessionState.UNLOADED
        self._session: Session | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    def bind_gateway(self, gateway: ApiGateway) -> None:
        self._gateway = gateway

    def _transition(self, target: SessionState) -> None:
        if target == self._state:
            return
        if target not in _TRANSITIONS[self._state]:
            raise SessionStateError(f"Cannot move session from {self._state} to {target}")
        self._state = target

    def _clear(self) -> None:
        self._cookies.delete(TOKEN_COOKIE)
        self._cookies.delete(USER_COOKIE)

    def current(self) -> Session | None:
        return self._session

    def token(self) -> str | None:
        return self._session.token if self._session is not None else None

    def has_token(self) -> bool:
        return bool(self._cookies.get(TOKEN_COOKIE))

    def restore(self, now: datetime | None = None) -> Session | None:
        if self._state != SessionState.UNLOADED:
            return self._session

        self._transition(SessionState.LOADING)

        token = self._cookies.get(TOKEN_COOKIE)
        raw_user = self._cookies.get(USER_COOKIE)

        session: Session | None = None
        if token and raw_user:
            try:
                session = decode_identity(token, raw_user)
            except ValueError as exc:
                logger.warning("Discarding unreadable session cookie: %s", exc)
            else:
                if session.is_expired(now):
                    logger.info("Discarding expired session for user %s", session.user_id)
                    session = None

        if session is None:
            self._clear()
            self._session = None
            self._transition(SessionState.ANONYMOUS)
            return None

        self._session = session
        self._transition(SessionState.AUTHENTICATED)
        return session

    async def login(self, credentials: LoginCredentials, now: datetime | None = None) -> Session:
        """Authenticate against the meetings service and persist the session.

        Raises GatewayFailure when the service rejects the request or cannot be
        reached, and MalformedCredentials when it answers without a token/user.
        Nothing is persisted in either case.
        """

        if self._gateway is None:
            raise SessionStateError("Session store has no gateway to log in with")
        if self._state == SessionState.UNLOADED:
            self.restore(now)
        if self._state == SessionState.AUTHENTICATED:
            raise SessionStateError("Already logged in; log out first")

        response = (await self._gateway.login(credentials)).unwrap()
        if not response.access_token or response.user is None:
            logger.info("Login response for %s lacked a token or user", credentials.email)
            raise MalformedCredentials()

        issued_at = now or datetime.now(UTC)
        session = Session(
            user_id=response.user.id,
            email=response.user.email,
            display_name=response.user.name,
            token=response.access_token,
            expiry=issued_at + timedelta(seconds=self._policy.max_age),
        )
        self._cookies.set(TOKEN_COOKIE, session.token, self._policy)
        self._cookies.set(USER_COOKIE, encode_identity(session), self._policy)
        self._session = session
        self._transition(SessionState.AUTHENTICATED)
        logger.info("User %s logged in", session.user_id)
        return session

    def logout(self) -> None:
        if self._state == SessionState.UNLOADED:
            self.restore()
        self._clear()
        if self._session is not None:
            logger.info("User %s logged out", self._session.user_id)
        self._session = None
        self._transition(SessionState.ANONYMOUS)
