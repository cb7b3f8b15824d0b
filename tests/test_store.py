import json

import pytest
import requests

from userdir.directory import DirectoryClient
from userdir.errors import ConflictError, MultipleRowsError, NotFoundError, StoreError
from userdir.store import JsonFileTableStore, RestTableStore


def test_json_store_persists_and_reloads(tmp_path):
    path = tmp_path / "data" / "users.json"
    store = JsonFileTableStore(path=str(path))
    row = store.insert("users", {"account": "alice", "display_name": "Alice"})

    assert row["id"] and row["created_at"]
    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["version"] == 1
    assert raw["tables"]["users"][0]["account"] == "alice"

    reloaded = JsonFileTableStore(path=str(path))
    reloaded.load()
    assert reloaded.select_one("users", {"account": "alice"})["id"] == row["id"]


def test_json_store_rejects_unknown_version(tmp_path):
    path = tmp_path / "users.json"
    path.write_text(json.dumps({"version": 99, "tables": {}}), encoding="utf-8")
    with pytest.raises(StoreError):
        JsonFileTableStore(path=str(path)).load()


def test_select_one_errors_on_multiple_matches():
    store = JsonFileTableStore()
    store.insert("users", {"account": "dup"})
    store.insert("users", {"account": "dup"})
    with pytest.raises(MultipleRowsError):
        store.select_one("users", {"account": "dup"})


def test_update_is_partial_and_missing_rows_raise():
    store = JsonFileTableStore()
    row = store.insert("users", {"account": "alice", "password_hash": "h1", "phone": "1"})

    updated = store.update("users", {"id": row["id"]}, {"phone": "2"})

    assert updated["phone"] == "2"
    assert updated["password_hash"] == "h1"
    with pytest.raises(NotFoundError):
        store.update("users", {"id": "missing"}, {"phone": "3"})


def test_directory_lists_newest_first_and_matches_identity_exactly():
    store = JsonFileTableStore()
    store.insert("users", {"account": "old", "created_at": "2024-01-01T00:00:00+00:00"})
    store.insert("users", {"account": "new", "created_at": "2024-06-01T00:00:00+00:00"})
    directory = DirectoryClient(store)

    assert [a.account for a in directory.list_all()] == ["new", "old"]
    assert directory.find_by_account("Old") is None
    assert directory.find_by_account("old").account == "old"


def test_account_in_use_excludes_given_id():
    directory = DirectoryClient(JsonFileTableStore())
    alice = directory.insert({"account": "alice", "display_name": "Alice"})

    assert directory.account_in_use("alice") is True
    assert directory.account_in_use("alice", exclude_id=alice.id) is False
    assert directory.account_in_use("bob") is False


def test_delete_is_permanent():
    directory = DirectoryClient(JsonFileTableStore())
    alice = directory.insert({"account": "alice", "display_name": "Alice"})
    directory.delete(alice.id)
    with pytest.raises(NotFoundError):
        directory.get(alice.id)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or (json.dumps(payload) if payload is not None else "")
        self.content = self.text.encode("utf-8")

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeHttp:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


def _rest(responses):
    http = FakeHttp(responses)
    return http, RestTableStore(base_url="https://example.supabase.co/", api_key="anon", session=http)


def test_rest_select_builds_postgrest_query():
    http, store = _rest([FakeResponse(payload=[{"id": 1, "account": "alice"}])])

    rows = store.select("users", where={"account": "alice"}, where_not={"id": 7}, order_by="created_at", descending=True)

    assert rows == [{"id": 1, "account": "alice"}]
    call = http.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://example.supabase.co/rest/v1/users"
    assert call["params"] == {"select": "*", "account": "eq.alice", "id": "neq.7", "order": "created_at.desc"}
    assert call["headers"]["apikey"] == "anon"
    assert call["headers"]["Authorization"] == "Bearer anon"


def test_rest_insert_and_update_ask_for_representation():
    http, store = _rest([
        FakeResponse(201, payload=[{"id": 1, "account": "alice"}]),
        FakeResponse(200, payload=[{"id": 1, "account": "alice", "phone": "9"}]),
    ])

    assert store.insert("users", {"account": "alice"})["id"] == 1
    assert store.update("users", {"id": 1}, {"phone": "9"})["phone"] == "9"
    assert http.calls[0]["headers"]["Prefer"] == "return=representation"
    assert http.calls[1]["method"] == "PATCH"
    assert http.calls[1]["params"] == {"id": "eq.1"}


def test_rest_errors_pass_message_through():
    _, store = _rest([
        FakeResponse(409, payload={"message": "duplicate key value"}),
        FakeResponse(500, payload={"message": "boom"}),
        requests.ConnectionError("unreachable"),
    ])

    with pytest.raises(ConflictError, match="duplicate key value"):
        store.insert("users", {"account": "alice"})
    with pytest.raises(StoreError, match="boom"):
        store.select("users")
    with pytest.raises(StoreError, match="Could not reach"):
        store.delete("users", {"id": 1})


def test_rest_update_with_no_match_is_not_found():
    _, store = _rest([FakeResponse(200, payload=[])])
    with pytest.raises(NotFoundError):
        store.update("users", {"id": 5}, {"phone": "1"})


def test_failed_write_keeps_memory_unchanged(tmp_path, monkeypatch):
    store = JsonFileTableStore(path=str(tmp_path / "users.json"))
    row = store.insert("users", {"account": "alice", "phone": "1"})

    def disk_full(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("userdir.store.os.replace", disk_full)
    with pytest.raises(StoreError):
        store.insert("users", {"account": "bob"})
    with pytest.raises(StoreError):
        store.update("users", {"id": row["id"]}, {"phone": "2"})
    with pytest.raises(StoreError):
        store.delete("users", {"id": row["id"]})

    assert [r["account"] for r in store.select("users")] == ["alice"]
    assert store.select_one("users", {"id": row["id"]})["phone"] == "1"


def test_rest_error_body_that_is_not_an_object_uses_text():
    _, store = _rest([FakeResponse(500, payload=["boom"], text="upstream exploded")])
    with pytest.raises(StoreError, match="upstream exploded"):
        store.select("users")
