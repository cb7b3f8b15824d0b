import importlib
import io
import sys

import jwt
import pandas as pd
from fastapi.testclient import TestClient

from userdir.passwords import hash_password


def _reload_app(monkeypatch, tmp_path, extra_env=None):
    keys_to_clear = [
        "DIRECTORY_BACKEND",
        "DIRECTORY_FILE",
        "DIRECTORY_REST_URL",
        "DIRECTORY_REST_KEY",
        "DIRECTORY_TABLE",
        "SESSION_SECRET",
        "SESSION_TTL_HOURS",
        "SESSION_COOKIE",
        "SESSION_COOKIE_SECURE",
        "AUDIT_LOG_FILE",
    ]
    for key in keys_to_clear:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DIRECTORY_FILE", str(tmp_path / "users.json"))
    monkeypatch.setenv("SESSION_SECRET", "test-secret-for-signing-session-cookies")
    if extra_env:
        for k, v in extra_env.items():
            monkeypatch.setenv(k, str(v))

    for mod in list(sys.modules.keys()):
        if mod == "userdir_admin" or mod.startswith("userdir.webui"):
            sys.modules.pop(mod, None)

    import userdir_admin

    importlib.reload(userdir_admin)
    return userdir_admin


def _register(client, account, name=None, password="secret"):
    return client.post(
        "/register",
        data={
            "account": account,
            "display_name": name or account.title(),
            "password": password,
            "confirm_password": password,
        },
        follow_redirects=False,
    )


def _seed(module, account, role="user", password="secret", **extra):
    record = {"account": account, "display_name": account.title(), "password_hash": hash_password(password), "role": role}
    record.update(extra)
    return module.directory.insert(record)


def test_health_reports_redacted_config(monkeypatch, tmp_path):
    module = _reload_app(monkeypatch, tmp_path)
    resp = TestClient(module.app).get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["config"]["backend"] == "json"
    assert data["config"]["has_session_secret"] is True
    assert "test-secret" not in resp.text


def test_pages_require_login(monkeypatch, tmp_path):
    module = _reload_app(monkeypatch, tmp_path)
    client = TestClient(module.app)
    for path in ("/", "/home", "/settings", "/import"):
        resp = client.get(path, follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"] == "/login"
    assert client.get("/api/accounts").status_code == 401


def test_register_logs_in_and_shows_directory(monkeypatch, tmp_path):
    module = _reload_app(monkeypatch, tmp_path)
    client = TestClient(module.app)

    resp = _register(client, "alice", "Alice")
    assert resp.status_code == 303
    assert resp.headers["location"] == "/home"

    home = client.get("/home")
    assert home.status_code == 200
    assert "Signed in as alice" in home.text
    assert "Add account" not in home.text
    assert "Phone" not in home.text


def test_login_failure_and_success(monkeypatch, tmp_path):
    module = _reload_app(monkeypatch, tmp_path)
    _seed(module, "bob", password="hunter22")
    client = TestClient(module.app)

    bad = client.post("/login", data={"account": "bob", "password": "nope"}, follow_redirects=False)
    assert bad.status_code == 400
    assert "Invalid account or password" in bad.text

    ok = client.post("/login", data={"account": "bob", "password": "hunter22"}, follow_redirects=False)
    assert ok.status_code == 303
    assert client.get("/home").status_code == 200

    out = client.post("/logout", follow_redirects=False)
    assert out.headers["location"] == "/login"
    assert client.get("/home", follow_redirects=False).status_code == 303


def test_tampered_session_cookie_is_ignored(monkeypatch, tmp_path):
    module = _reload_app(monkeypatch, tmp_path)
    client = TestClient(module.app)
    _register(client, "alice")
    header, payload, signature = client.cookies.get("auth_session").split(".")
    forged = jwt.encode({"data": "{}"}, "some-other-secret-0123456789abcdef", algorithm="HS256").split(".")[1]
    tampered = f"{header}.{forged}.{signature}"
    client.cookies.clear()

    resp = client.get("/home", headers={"Cookie": f"auth_session={tampered}"}, follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/login"


def test_non_admin_is_redirected_away_from_import_and_account_changes(monkeypatch, tmp_path):
    module = _reload_app(monkeypatch, tmp_path)
    client = TestClient(module.app)
    _register(client, "alice")

    assert client.get("/import", follow_redirects=False).headers["location"] == "/home"
    resp = client.post("/accounts", data={"account": "eve", "display_name": "Eve", "password": "pass"}, follow_redirects=False)
    assert resp.headers["location"] == "/home"
    assert module.directory.find_by_account("eve") is None
    assert client.get("/api/events").status_code == 403


def test_admin_add_edit_delete_accounts(monkeypatch, tmp_path):
    module = _reload_app(monkeypatch, tmp_path)
    client = TestClient(module.app)
    _register(client, "admin", "Boss")

    home = client.get("/home")
    assert "Add account" in home.text
    assert "Phone" in home.text
    assert 'id="userModal"' in client.get("/home?modal=add").text

    created = client.post(
        "/accounts",
        data={"account": "carol", "display_name": "Carol", "password": "pass1", "phone": "0912", "role": "user", "q": "car"},
        follow_redirects=False,
    )
    assert created.status_code == 303
    assert created.headers["location"] == "/home?q=car"
    carol = module.directory.find_by_account("carol")
    assert carol.phone == "0912"

    dup = client.post("/accounts", data={"account": "carol", "display_name": "Carol 2", "password": "pass1"})
    assert dup.status_code == 400
    assert "This account is already in use" in dup.text

    edit = client.post("/accounts/action", data={"kind": "edit", "id": carol.id})
    assert edit.status_code == 200
    assert "Edit account" in edit.text
    assert 'value="0912"' in edit.text

    saved = client.post(
        "/accounts",
        data={"id": carol.id, "account": "carol", "display_name": "Carol C", "password": "", "role": "admin"},
        follow_redirects=False,
    )
    assert saved.status_code == 303
    updated = module.directory.get(carol.id)
    assert updated.display_name == "Carol C"
    assert updated.role == "admin"
    assert updated.password_hash == carol.password_hash

    deleted = client.post("/accounts/action", data={"kind": "delete", "id": carol.id}, follow_redirects=False)
    assert deleted.status_code == 303
    assert module.directory.find_by_account("carol") is None

    titles = [e["title"] for e in client.get("/api/events").json()["events"]]
    assert titles[:3] == ["Account deleted", "Account updated", "Account created"]


def test_search_and_pagination(monkeypatch, tmp_path):
    module = _reload_app(monkeypatch, tmp_path)
    for i in range(23):
        _seed(module, f"member{i:02d}", created_at=f"2024-01-01T00:00:{i:02d}+00:00")
    client = TestClient(module.app)
    _register(client, "zed")

    data = client.get("/api/accounts", params={"page": 3}).json()
    assert data["total"] == 24
    assert data["total_pages"] == 3
    assert data["page"] == 3
    assert len(data["accounts"]) == 4
    assert "phone" not in data["accounts"][0]

    out_of_range = client.get("/api/accounts", params={"page": 9}).json()
    assert out_of_range["page"] == 1

    searched = client.get("/api/accounts", params={"q": "MEMBER1"}).json()
    assert searched["total"] == 10
    assert searched["page"] == 1

    page = client.get("/home", params={"q": "member", "page": 2})
    assert page.status_code == 200
    assert "member12" in page.text
    assert "member22" not in page.text


def test_settings_updates_phone_and_address_only(monkeypatch, tmp_path):
    module = _reload_app(monkeypatch, tmp_path)
    client = TestClient(module.app)
    _register(client, "alice", "Alice")
    before = module.directory.find_by_account("alice")

    page = client.get("/settings")
    assert "••••••••" in page.text
    assert before.password_hash not in page.text

    resp = client.post("/settings", data={"phone": "0987", "address": " Main St "})
    assert resp.status_code == 200
    assert "Your settings were saved" in resp.text

    after = module.directory.find_by_account("alice")
    assert after.phone == "0987"
    assert after.address == "Main St"
    assert after.updated_at is not None
    assert after.password_hash == before.password_hash
    assert after.display_name == "Alice"


def _workbook(rows):
    buf = io.BytesIO()
    pd.DataFrame(rows).to_excel(buf, index=False)
    return buf.getvalue()


def test_admin_import_preview_and_commit(monkeypatch, tmp_path):
    module = _reload_app(monkeypatch, tmp_path)
    client = TestClient(module.app)
    _register(client, "admin")
    _seed(module, "dave")

    content = _workbook([
        {"會員帳號": "amy", "會員姓名": "Amy", "帳號密碼": "abcd", "電話": "0912"},
        {"會員帳號": "dave", "會員姓名": "Dave", "帳號密碼": "abcd", "電話": ""},
        {"會員帳號": "tiny", "會員姓名": "Tiny", "帳號密碼": "ab", "電話": ""},
    ])
    xlsx_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    preview = client.post("/import/preview", files={"file": ("members.xlsx", content, xlsx_type)})
    assert preview.status_code == 200
    assert "Row 4: password too short" in preview.text
    assert module.directory.find_by_account("amy") is None

    token = next(iter(module.state.imports.items))
    report = client.post("/import/commit", data={"token": token})
    assert report.status_code == 200
    assert "Succeeded: 1, failed: 0, skipped: 1" in report.text
    assert module.directory.find_by_account("amy").phone == "0912"

    again = client.post("/import/commit", data={"token": token})
    assert again.status_code == 404


def test_import_rejects_non_excel_upload(monkeypatch, tmp_path):
    module = _reload_app(monkeypatch, tmp_path)
    client = TestClient(module.app)
    _register(client, "admin")

    resp = client.post("/import/preview", files={"file": ("members.csv", b"a,b\n", "text/csv")})
    assert resp.status_code == 400
    assert "Please choose an Excel file" in resp.text


def test_import_commit_is_refused_while_the_same_import_runs(monkeypatch, tmp_path):
    module = _reload_app(monkeypatch, tmp_path)
    client = TestClient(module.app)
    _register(client, "admin")

    content = _workbook([{"account": "amy", "name": "Amy", "password": "abcd"}])
    xlsx_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    client.post("/import/preview", files={"file": ("members.xlsx", content, xlsx_type)})
    token, staged = next(iter(module.state.imports.items.items()))
    staged.running = True

    busy = client.post("/import/commit", data={"token": token})
    assert busy.status_code == 409
    assert "already running" in busy.text
    assert module.directory.find_by_account("amy") is None

    staged.running = False
    done = client.post("/import/commit", data={"token": token})
    assert done.status_code == 200
    assert module.directory.find_by_account("amy") is not None


def test_cookie_signed_with_another_secret_reads_as_absent():
    from userdir.webui.auth import decode_cookie, encode_cookie

    secret = "cookie-secret-0123456789abcdef0123"
    value = encode_cookie(secret, '{"user": 1}')

    assert decode_cookie(secret, value) == '{"user": 1}'
    assert decode_cookie("another-secret-0123456789abcdef01", value) is None
    assert decode_cookie(secret, "not-a-token") is None
    assert decode_cookie(secret, None) is None
