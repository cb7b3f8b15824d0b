from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from userdir.config import dlog
from userdir.directory import DirectoryClient
from userdir.errors import NotFoundError
from userdir.models import Account, SessionUser, blank_to_none, utc_now_iso


# Shown in the password field; the real password is never sent back.
PASSWORD_MASK = "••••••••"


@dataclass(frozen=True)
class Profile:
    id: str
    account: str
    display_name: str
    phone: str
    address: str
    password_placeholder: str = PASSWORD_MASK


def _own_account(directory: DirectoryClient, user: SessionUser) -> Account:
    account = directory.find_by_account(user.account)
    if account is None:
        raise NotFoundError("Could not find your account")
    return account


def load_profile(directory: DirectoryClient, user: SessionUser) -> Profile:
    account = _own_account(directory, user)
    return Profile(
        id=account.id,
        account=account.account,
        display_name=account.display_name,
        phone=account.phone or "",
        address=account.address or "",
    )


def save_profile(
    directory: DirectoryClient,
    user: SessionUser,
    phone: Optional[str],
    address: Optional[str],
) -> Profile:
    """Persist the editable subset only: phone, address and the update stamp."""
    account = _own_account(directory, user)
    updated = directory.update(
        account.id,
        {
            "phone": blank_to_none(phone),
            "address": blank_to_none(address),
            "updated_at": utc_now_iso(),
        },
    )
    dlog("profile_saved", {"account": user.account})
    return Profile(
        id=updated.id,
        account=updated.account,
        display_name=updated.display_name,
        phone=updated.phone or "",
        address=updated.address or "",
    )
