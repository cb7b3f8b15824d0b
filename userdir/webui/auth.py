from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Dict, Optional

import jwt
from fastapi import Request
from fastapi.responses import RedirectResponse, Response

from userdir.config import dlog, AppConfig
from userdir.models import SessionUser
from userdir.session import SessionStore


def resolve_session_secret(config: AppConfig) -> str:
    if config.session_secret:
        return config.session_secret
    dlog("session_secret", "SESSION_SECRET not set; using a random per-process secret (sessions reset on restart).")
    return secrets.token_urlsafe(32)


COOKIE_ALGORITHM = "HS256"


def encode_cookie(secret: str, payload: str) -> str:
    return jwt.encode({"data": payload}, secret, algorithm=COOKIE_ALGORITHM)


def decode_cookie(secret: str, value: Optional[str]) -> Optional[str]:
    """Payload of a signed cookie, or None when it is missing or tampered with."""
    if not value:
        return None
    try:
        claims = jwt.decode(value, secret, algorithms=[COOKIE_ALGORITHM])
    except jwt.InvalidTokenError as e:
        dlog("session_cookie_rejected", str(e))
        return None
    data = claims.get("data")
    return data if isinstance(data, str) else None


class CookieStorage:
    """Key/value storage over signed cookies.

    Writes are queued and only reach the browser through apply(response).
    """

    def __init__(self, request: Request, secret: str, *, secure: bool = False, max_age: Optional[int] = None) -> None:
        self.request = request
        self.secret = secret
        self.secure = secure
        self.max_age = max_age
        self.pending: Dict[str, Optional[str]] = {}

    def get_item(self, key: str) -> Optional[str]:
        if key in self.pending:
            return self.pending[key]
        return decode_cookie(self.secret, self.request.cookies.get(key))

    def set_item(self, key: str, value: str) -> None:
        self.pending[key] = value

    def remove_item(self, key: str) -> None:
        self.pending[key] = None

    def apply(self, response: Response) -> Response:
        for key, value in self.pending.items():
            if value is None:
                response.delete_cookie(key, path="/")
            else:
                response.set_cookie(
                    key,
                    encode_cookie(self.secret, value),
                    max_age=self.max_age,
                    path="/",
                    httponly=True,
                    samesite="lax",
                    secure=self.secure,
                )
        return response


@dataclass
class PageSession:
    storage: CookieStorage
    sessions: SessionStore
    user: Optional[SessionUser]

    @property
    def is_admin(self) -> bool:
        return bool(self.user and self.user.is_admin)

    def respond(self, response: Response) -> Response:
        return self.storage.apply(response)

    def redirect(self, url: str) -> Response:
        return self.respond(RedirectResponse(url=url, status_code=303))


def page_session(request: Request, config: AppConfig, secret: str) -> PageSession:
    """Check the login cookie for this request; expired records are cleared."""
    storage = CookieStorage(
        request,
        secret,
        secure=config.session_cookie_secure,
        max_age=int(config.session_ttl_seconds),
    )
    sessions = SessionStore(storage, ttl_seconds=config.session_ttl_seconds, key=config.session_cookie)
    status = sessions.check_auth()
    return PageSession(storage=storage, sessions=sessions, user=status.user)
