from __future__ import annotations

import os
import json
import tempfile
import uuid
from copy import deepcopy
from typing import Any, Dict, List, Mapping, Optional

import requests

from userdir.config import dlog, AppConfig
from userdir.errors import ConflictError, MultipleRowsError, NotFoundError, StoreError
from userdir.models import utc_now_iso


STORE_SCHEMA_VERSION = 1

Row = Dict[str, Any]
Where = Mapping[str, Any]


class TableStore:
    """Generic table-query interface the directory is reached through."""

    def select(
        self,
        table: str,
        where: Optional[Where] = None,
        where_not: Optional[Where] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Row]:
        raise NotImplementedError

    def select_one(self, table: str, where: Where, where_not: Optional[Where] = None) -> Optional[Row]:
        rows = self.select(table, where=where, where_not=where_not)
        if len(rows) > 1:
            raise MultipleRowsError(f"Expected at most one row in '{table}', found {len(rows)}.")
        return rows[0] if rows else None

    def insert(self, table: str, record: Row) -> Row:
        raise NotImplementedError

    def update(self, table: str, where: Where, patch: Row) -> Row:
        raise NotImplementedError

    def delete(self, table: str, where: Where) -> None:
        raise NotImplementedError


def _matches(row: Row, where: Optional[Where], where_not: Optional[Where]) -> bool:
    for key, value in (where or {}).items():
        if row.get(key) != value:
            return False
    for key, value in (where_not or {}).items():
        if row.get(key) == value:
            return False
    return True


class JsonFileTableStore(TableStore):
    """Rows held in memory and written to one JSON file after every change.

    With no path it is a purely in-memory table, which is what the tests use.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path
        self.tables: Dict[str, List[Row]] = {}

    def load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except Exception as e:
            raise StoreError(f"Could not read directory file {self.path}: {e}") from e

        if raw.get("version") != STORE_SCHEMA_VERSION:
            raise StoreError(f"Incompatible directory file version: {raw.get('version')}")
        tables = raw.get("tables")
        if not isinstance(tables, dict):
            raise StoreError("Directory file 'tables' is not an object.")
        self.tables = {name: [dict(r) for r in rows if isinstance(r, dict)] for name, rows in tables.items()}
        dlog("json_store_loaded", {name: len(rows) for name, rows in self.tables.items()})

    def save(self, tables: Optional[Dict[str, List[Row]]] = None) -> None:
        if not self.path:
            return
        payload = {"version": STORE_SCHEMA_VERSION, "tables": self.tables if tables is None else tables}
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", delete=False, dir=os.path.dirname(self.path) or ".", encoding="utf-8"
            ) as tmp:
                json.dump(payload, tmp, ensure_ascii=False)
                tmp.flush()
                os.fsync(tmp.fileno())
                temp_name = tmp.name
            os.replace(temp_name, self.path)
        except OSError as e:
            dlog("json_store_save_error", str(e))
            raise StoreError(f"Could not write directory file: {e}") from e

    def select(self, table, where=None, where_not=None, order_by=None, descending=False):
        rows = [deepcopy(r) for r in self.tables.get(table, []) if _matches(r, where, where_not)]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is not None, r.get(order_by) or ""), reverse=descending)
        return rows

    def insert(self, table, record):
        row = dict(record)
        row.setdefault("id", uuid.uuid4().hex)
        row.setdefault("created_at", utc_now_iso())
        self._commit(table, self.tables.get(table, []) + [row])
        return deepcopy(row)

    def update(self, table, where, patch):
        rows = self.tables.get(table, [])
        matched = [i for i, r in enumerate(rows) if _matches(r, where, None)]
        if not matched:
            raise NotFoundError("No matching row to update.")
        if len(matched) > 1:
            raise MultipleRowsError(f"Update matched {len(matched)} rows; expected one.")
        row = dict(rows[matched[0]])
        row.update({k: v for k, v in patch.items() if k != "id"})
        updated = list(rows)
        updated[matched[0]] = row
        self._commit(table, updated)
        return deepcopy(row)

    def delete(self, table, where):
        rows = self.tables.get(table, [])
        self._commit(table, [r for r in rows if not _matches(r, where, None)])

    def _commit(self, table: str, rows: List[Row]) -> None:
        # Memory only changes once the file write went through.
        candidate = dict(self.tables)
        candidate[table] = rows
        self.save(candidate)
        self.tables = candidate


def _filter_params(where: Optional[Where], where_not: Optional[Where]) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for key, value in (where or {}).items():
        params[key] = f"eq.{value}"
    for key, value in (where_not or {}).items():
        params[key] = f"neq.{value}"
    return params


class RestTableStore(TableStore):
    """PostgREST-style table API (the shape Supabase exposes under /rest/v1)."""

    def __init__(self, *, base_url: str, api_key: str, timeout: float = 30.0, session=None) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._http = session or requests.Session()

    def _url(self, table: str) -> str:
        return f"{self._base_url}/rest/v1/{table}"

    def _headers(self, *, representation: bool = False) -> Dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if representation:
            headers["Prefer"] = "return=representation"
        return headers

    def _request(self, method: str, table: str, *, params=None, body=None, representation=False):
        dlog("rest_store_request", {"method": method, "table": table, "params": params})
        try:
            resp = self._http.request(
                method,
                self._url(table),
                params=params,
                json=body,
                headers=self._headers(representation=representation),
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise StoreError(f"Could not reach the directory service: {e}") from e

        if resp.status_code >= 400:
            try:
                err_json = resp.json()
                if isinstance(err_json, dict):
                    err_msg = err_json.get("message") or err_json.get("error") or resp.text
                else:
                    err_msg = resp.text
            except ValueError:
                err_msg = resp.text
            dlog("rest_store_error", {"status": resp.status_code, "message": err_msg})
            if resp.status_code == 409:
                raise ConflictError(err_msg)
            raise StoreError(err_msg or f"Directory service error ({resp.status_code})")

        if not resp.content:
            return []
        try:
            return resp.json()
        except ValueError as e:
            raise StoreError(f"Invalid JSON from directory service: {e}") from e

    def select(self, table, where=None, where_not=None, order_by=None, descending=False):
        params = {"select": "*"}
        params.update(_filter_params(where, where_not))
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        data = self._request("GET", table, params=params)
        return list(data or [])

    def insert(self, table, record):
        data = self._request("POST", table, body=record, representation=True)
        if not data:
            raise StoreError("Directory service returned no row for insert.")
        return data[0]

    def update(self, table, where, patch):
        data = self._request("PATCH", table, params=_filter_params(where, None), body=patch, representation=True)
        if not data:
            raise NotFoundError("No matching row to update.")
        if len(data) > 1:
            raise MultipleRowsError(f"Update matched {len(data)} rows; expected one.")
        return data[0]

    def delete(self, table, where):
        self._request("DELETE", table, params=_filter_params(where, None))


def build_table_store(config: AppConfig) -> TableStore:
    if config.backend == "rest":
        dlog("directory_store", {"backend": "rest", "url": config.rest_url})
        return RestTableStore(base_url=config.rest_url or "", api_key=config.rest_key or "", timeout=config.store_timeout)
    store = JsonFileTableStore(path=config.directory_file)
    store.load()
    dlog("directory_store", {"backend": "json", "path": config.directory_file})
    return store
