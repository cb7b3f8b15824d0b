from __future__ import annotations

import os
import json
import secrets
import time
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from userdir.config import AppConfig, public_app_config
from userdir.directory import DirectoryClient
from userdir.importer import ImportCandidate


STAGING_MAX_AGE_SECONDS = 60 * 60


@dataclass
class AuditEvent:
    ts: float
    title: str
    actor: str | None = None
    detail: str | None = None


class AuditLog:
    """In-memory ring buffer for recent account and import events."""

    def __init__(self, max_events: int = 200, path: Optional[str] = None) -> None:
        self.max_events = max_events
        self.events: List[AuditEvent] = []
        self.path = path
        self._load()

    def add(self, title: str, actor: str | None = None, detail: str | None = None) -> None:
        self.events.append(AuditEvent(ts=time.time(), title=title, actor=actor, detail=detail))
        if len(self.events) > self.max_events:
            self.events = self.events[-self.max_events :]
        self._persist_last()

    def snapshot(self) -> List[Dict[str, Any]]:
        return [
            {"ts": e.ts, "title": e.title, "actor": e.actor, "detail": e.detail}
            for e in reversed(self.events)
        ]

    # ---------- persistence helpers ----------
    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    data = json.loads(line)
                    self.events.append(
                        AuditEvent(
                            ts=float(data.get("ts") or time.time()),
                            title=data.get("title") or "Event",
                            actor=data.get("actor"),
                            detail=data.get("detail"),
                        )
                    )
            self.events = self.events[-self.max_events :]
        except (OSError, ValueError):
            # corrupt log; start empty
            self.events = []

    def _persist_last(self) -> None:
        if not self.path or not self.events:
            return
        last = self.events[-1]
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(
                    json.dumps(
                        {"ts": last.ts, "title": last.title, "actor": last.actor, "detail": last.detail},
                        ensure_ascii=False,
                    )
                    + "\n"
                )
        except OSError:
            # audit persistence must not break account changes
            return


@dataclass
class StagedImport:
    owner: str
    filename: str
    candidates: List[ImportCandidate]
    dropped: List[Any] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    running: bool = False


class ImportStaging:
    """Parsed uploads waiting for the admin to confirm the import."""

    def __init__(self, max_age_seconds: float = STAGING_MAX_AGE_SECONDS) -> None:
        self.max_age_seconds = max_age_seconds
        self.items: Dict[str, StagedImport] = {}

    def stage(self, staged: StagedImport) -> str:
        self._expire()
        token = secrets.token_urlsafe(16)
        self.items[token] = staged
        return token

    def get(self, token: str, owner: str) -> Optional[StagedImport]:
        self._expire()
        staged = self.items.get(token or "")
        if staged is None or staged.owner != owner:
            return None
        return staged

    def discard(self, token: str, owner: str) -> bool:
        staged = self.get(token, owner)
        if staged is None or staged.running:
            return False
        del self.items[token]
        return True

    def _expire(self) -> None:
        cutoff = time.time() - self.max_age_seconds
        for token in [t for t, s in self.items.items() if s.created_at < cutoff and not s.running]:
            del self.items[token]


@dataclass
class AppRuntimeState:
    start_time: float
    config: AppConfig
    config_public: Dict[str, Any]
    directory: DirectoryClient
    session_secret: str
    events: AuditLog = field(default_factory=AuditLog)
    imports: ImportStaging = field(default_factory=ImportStaging)


def init_app_state(config: AppConfig, directory: DirectoryClient, session_secret: str) -> AppRuntimeState:
    """Capture startup time and a redacted config snapshot."""
    return AppRuntimeState(
        start_time=time.time(),
        config=config,
        config_public=public_app_config(config),
        directory=directory,
        session_secret=session_secret,
        events=AuditLog(path=config.audit_log_file),
        imports=ImportStaging(),
    )
