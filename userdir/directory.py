from __future__ import annotations

from typing import Any, Dict, List, Optional

from userdir.config import dlog
from userdir.errors import NotFoundError
from userdir.models import ACCOUNT_COLUMNS, Account
from userdir.store import TableStore


class DirectoryClient:
    """CRUD over the user table.

    Uniqueness of the account identity is a check-then-act done here, not a
    store constraint, so two concurrent inserts of the same identity can both
    succeed on the JSON backend.
    """

    def __init__(self, store: TableStore, table: str = "users") -> None:
        self.store = store
        self.table = table

    def find_by_account(self, identity: str) -> Optional[Account]:
        row = self.store.select_one(self.table, {"account": identity})
        return Account.from_row(row) if row else None

    def get(self, account_id: str) -> Account:
        row = self.store.select_one(self.table, {"id": account_id})
        if not row:
            raise NotFoundError("Account not found.")
        return Account.from_row(row)

    def account_in_use(self, identity: str, exclude_id: Optional[str] = None) -> bool:
        where_not = {"id": exclude_id} if exclude_id else None
        rows = self.store.select(self.table, where={"account": identity}, where_not=where_not)
        return bool(rows)

    def insert(self, record: Dict[str, Any]) -> Account:
        row = self.store.insert(self.table, _columns_only(record))
        dlog("directory_insert", {"account": row.get("account"), "id": row.get("id")})
        return Account.from_row(row)

    def update(self, account_id: str, patch: Dict[str, Any]) -> Account:
        row = self.store.update(self.table, {"id": account_id}, _columns_only(patch))
        dlog("directory_update", {"id": account_id, "fields": sorted(patch.keys())})
        return Account.from_row(row)

    def delete(self, account_id: str) -> None:
        self.store.delete(self.table, {"id": account_id})
        dlog("directory_delete", {"id": account_id})

    def list_all(self) -> List[Account]:
        rows = self.store.select(self.table, order_by="created_at", descending=True)
        return [Account.from_row(r) for r in rows]


def _columns_only(record: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in record.items() if k in ACCOUNT_COLUMNS and k != "id"}
