from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from userdir.config import dlog
from userdir.models import SessionUser


SESSION_KEY = "auth_session"
DEFAULT_TTL_SECONDS = 24 * 60 * 60


class MemoryStorage:
    """Dict-backed key/value storage with the same surface as CookieStorage."""

    def __init__(self) -> None:
        self.items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


@dataclass(frozen=True)
class Session:
    user: SessionUser
    issued_at: float

    def to_json(self) -> str:
        return json.dumps({"user": self.user.to_dict(), "issued_at": self.issued_at}, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> "Session":
        data = json.loads(raw)
        user = data["user"]
        return cls(
            user=SessionUser(
                account=str(user["account"]),
                display_name=str(user.get("display_name") or ""),
                role=str(user.get("role") or "user"),
            ),
            issued_at=float(data["issued_at"]),
        )


@dataclass(frozen=True)
class AuthStatus:
    is_logged_in: bool
    user: Optional[SessionUser] = None


class SessionStore:
    """Time-stamped login record kept in client-side storage.

    Expired records are only removed when check_auth() runs into them.
    """

    def __init__(
        self,
        storage,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        key: str = SESSION_KEY,
    ) -> None:
        self.storage = storage
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.key = key

    def create_session(self, user: SessionUser) -> Session:
        session = Session(user=user, issued_at=self.clock())
        self.storage.set_item(self.key, session.to_json())
        return session

    def read_session(self) -> Optional[Session]:
        try:
            raw = self.storage.get_item(self.key)
            if not raw:
                return None
            return Session.from_json(raw)
        except Exception as e:
            dlog("session_read_error", str(e))
            return None

    def is_valid(self, session: Session) -> bool:
        return self.clock() - session.issued_at < self.ttl_seconds

    def check_auth(self) -> AuthStatus:
        session = self.read_session()
        if session is not None and self.is_valid(session):
            return AuthStatus(is_logged_in=True, user=session.user)
        if session is not None or self._has_raw_record():
            self.destroy_session()
        return AuthStatus(is_logged_in=False, user=None)

    def destroy_session(self) -> None:
        try:
            self.storage.remove_item(self.key)
        except Exception as e:
            dlog("session_destroy_error", str(e))

    def current_user(self) -> Optional[SessionUser]:
        session = self.read_session()
        return session.user if session else None

    def is_admin(self) -> bool:
        user = self.current_user()
        return bool(user and user.is_admin)

    def _has_raw_record(self) -> bool:
        try:
            return bool(self.storage.get_item(self.key))
        except Exception:
            return False
