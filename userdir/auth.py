from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from userdir.config import dlog
from userdir.directory import DirectoryClient
from userdir.errors import ConflictError, DirectoryError, ValidationError
from userdir.models import SessionUser, role_for_registration
from userdir.passwords import MIN_PASSWORD_LENGTH, hash_password, verify_password
from userdir.session import SessionStore


MIN_ACCOUNT_LENGTH = 3
INVALID_CREDENTIALS = "Invalid account or password"


@dataclass(frozen=True)
class AuthResult:
    success: bool
    user: Optional[SessionUser] = None
    error: Optional[str] = None
    field: Optional[str] = None


def validate_registration(identity: str, display_name: str, password: str, confirm_password: str) -> None:
    if not identity:
        raise ValidationError("Please enter an account", field="account")
    if len(identity) < MIN_ACCOUNT_LENGTH:
        raise ValidationError(f"Account must be at least {MIN_ACCOUNT_LENGTH} characters", field="account")
    if not display_name:
        raise ValidationError("Please enter a display name", field="display_name")
    if not password:
        raise ValidationError("Please enter a password", field="password")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password")
    if password != confirm_password:
        raise ValidationError("The two passwords do not match", field="confirm_password")


def login_user(directory: DirectoryClient, sessions: SessionStore, identity: str, password: str) -> AuthResult:
    identity = (identity or "").strip()
    if not identity:
        return AuthResult(success=False, error="Please enter an account", field="account")
    if not password:
        return AuthResult(success=False, error="Please enter a password", field="password")

    try:
        account = directory.find_by_account(identity)
    except DirectoryError as e:
        dlog("login_lookup_error", e.message)
        return AuthResult(success=False, error="Could not look up the account, please try again later")

    if account is None or not verify_password(password, account.password_hash):
        return AuthResult(success=False, error=INVALID_CREDENTIALS, field="password")

    user = SessionUser.from_account(account)
    sessions.create_session(user)
    dlog("login", {"account": user.account, "role": user.role})
    return AuthResult(success=True, user=user)


def register_user(
    directory: DirectoryClient,
    sessions: SessionStore,
    identity: str,
    display_name: str,
    password: str,
    confirm_password: str,
) -> AuthResult:
    """Create a self-registered account, then log it in."""
    identity = (identity or "").strip()
    display_name = (display_name or "").strip()
    try:
        validate_registration(identity, display_name, password or "", confirm_password or "")
        if directory.account_in_use(identity):
            raise ConflictError("This account is already in use, please choose another")
        directory.insert({
            "account": identity,
            "display_name": display_name,
            "password_hash": hash_password(password),
            "role": role_for_registration(identity),
        })
    except ValidationError as e:
        return AuthResult(success=False, error=e.message, field=e.field)
    except DirectoryError as e:
        dlog("register_error", e.message)
        return AuthResult(success=False, error=e.message)

    return login_user(directory, sessions, identity, password)


def logout_user(sessions: SessionStore) -> AuthResult:
    sessions.destroy_session()
    return AuthResult(success=True)
