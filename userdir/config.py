import os
import json
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional


# Debug flag: default off. Enable via CLI arg "--userdir-debug" or env USERDIR_DEBUG=1.
DEBUG = "--userdir-debug" in sys.argv or os.environ.get("USERDIR_DEBUG") == "1"


def dlog(label: str, data):
    if not DEBUG:
        return
    try:
        printable = data if isinstance(data, str) else json.dumps(data, indent=2, ensure_ascii=False)
    except Exception:
        printable = str(data)
    print(f"[userdir-debug] {label}: {printable}")


def _truthy(val: Optional[str]) -> bool:
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "yes", "on"}


DEFAULT_DIRECTORY_FILE = os.path.join("data", "users.json")
DEFAULT_SESSION_COOKIE = "auth_session"


@dataclass(frozen=True)
class AppConfig:
    backend: str
    table: str
    directory_file: Optional[str]
    rest_url: Optional[str]
    rest_key: Optional[str]
    store_timeout: float
    session_secret: Optional[str]
    session_ttl_hours: float
    session_cookie: str
    session_cookie_secure: bool
    audit_log_file: Optional[str]

    @property
    def session_ttl_seconds(self) -> float:
        return self.session_ttl_hours * 60 * 60


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from e


def load_app_config() -> AppConfig:
    """Read directory, session and audit settings from env."""
    backend = (os.environ.get("DIRECTORY_BACKEND") or "json").strip().lower()
    if backend not in {"json", "rest"}:
        raise RuntimeError(f"DIRECTORY_BACKEND must be 'json' or 'rest', got {backend!r}")

    rest_url = (os.environ.get("DIRECTORY_REST_URL") or "").strip() or None
    rest_key = (os.environ.get("DIRECTORY_REST_KEY") or "").strip() or None
    if backend == "rest" and not (rest_url and rest_key):
        raise RuntimeError(
            "Directory store not configured: DIRECTORY_BACKEND=rest requires "
            "DIRECTORY_REST_URL and DIRECTORY_REST_KEY."
        )

    cfg = AppConfig(
        backend=backend,
        table=(os.environ.get("DIRECTORY_TABLE") or "users").strip() or "users",
        directory_file=os.environ.get("DIRECTORY_FILE") or DEFAULT_DIRECTORY_FILE,
        rest_url=rest_url,
        rest_key=rest_key,
        store_timeout=_float_env("STORE_TIMEOUT", 30.0),
        session_secret=os.environ.get("SESSION_SECRET") or None,
        session_ttl_hours=_float_env("SESSION_TTL_HOURS", 24.0),
        session_cookie=(os.environ.get("SESSION_COOKIE") or DEFAULT_SESSION_COOKIE).strip() or DEFAULT_SESSION_COOKIE,
        session_cookie_secure=_truthy(os.environ.get("SESSION_COOKIE_SECURE")),
        audit_log_file=os.environ.get("AUDIT_LOG_FILE") or None,
    )
    dlog("app_config", public_app_config(cfg))
    return cfg


def public_app_config(config: AppConfig) -> Dict[str, Any]:
    """Return a redacted view suitable for the health endpoint."""
    return {
        "backend": config.backend,
        "table": config.table,
        "directory_file": config.directory_file if config.backend == "json" else None,
        "rest_url": config.rest_url,
        "has_rest_key": bool(config.rest_key),
        "has_session_secret": bool(config.session_secret),
        "session_ttl_hours": config.session_ttl_hours,
        "session_cookie": config.session_cookie,
        "audit_log_persisted": bool(config.audit_log_file),
    }
