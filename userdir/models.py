from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)

ROLE_LABELS = {ROLE_ADMIN: "Administrator", ROLE_USER: "User"}

ACCOUNT_COLUMNS = (
    "id",
    "account",
    "display_name",
    "password_hash",
    "phone",
    "address",
    "role",
    "created_at",
    "updated_at",
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def role_for_registration(identity: str) -> str:
    """Self-registered identities get admin only when the handle is 'admin'."""
    return ROLE_ADMIN if identity.lower() == "admin" else ROLE_USER


@dataclass
class Account:
    id: str
    account: str
    display_name: str
    password_hash: str = ""
    phone: Optional[str] = None
    address: Optional[str] = None
    role: str = ROLE_USER
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Account":
        return cls(
            id=str(row.get("id")),
            account=row.get("account") or "",
            display_name=row.get("display_name") or "",
            password_hash=row.get("password_hash") or "",
            phone=row.get("phone"),
            address=row.get("address"),
            role=row.get("role") or ROLE_USER,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def role_label(self) -> str:
        return ROLE_LABELS.get(self.role, self.role)

    def to_public(self, include_private: bool = False) -> Dict[str, Any]:
        """Dict view for the JSON API; never includes the password hash."""
        data: Dict[str, Any] = {
            "id": self.id,
            "account": self.account,
            "display_name": self.display_name,
            "role": self.role,
            "created_at": self.created_at,
        }
        if include_private:
            data.update({
                "phone": self.phone,
                "address": self.address,
                "updated_at": self.updated_at,
                "has_password": bool(self.password_hash),
            })
        return data


@dataclass(frozen=True)
class SessionUser:
    account: str
    display_name: str
    role: str

    @classmethod
    def from_account(cls, account: Account) -> "SessionUser":
        return cls(account=account.account, display_name=account.display_name, role=account.role)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_dict(self) -> Dict[str, str]:
        return {"account": self.account, "display_name": self.display_name, "role": self.role}
