"""HTML pages for the directory admin, built from plain strings."""

from __future__ import annotations

from datetime import datetime
from html import escape
from typing import List, Optional, Sequence
from urllib.parse import urlencode

from userdir.forms import ERROR_DISPLAY_SECONDS, AccountFormWorkflow, RowAction
from userdir.importer import DroppedRow, ImportReport
from userdir.listing import ListingState
from userdir.models import ROLE_LABELS, ROLES, Account, SessionUser
from userdir.profile import Profile


STYLE = r"""
    :root {
      --bg: #050b15;
      --panel: #0f1629;
      --panel-2: #111b31;
      --text: #e8eef7;
      --muted: #9cb3d3;
      --accent: #6dd5fa;
      --accent-2: #a8ff78;
      --danger: #ff6b6b;
      --warn: #f7c266;
      --success: #4ade80;
      --border: rgba(255, 255, 255, 0.06);
      --shadow: 0 14px 48px rgba(0, 0, 0, 0.4);
      --card-radius: 14px;
      --font: "Inter", "Manrope", "Segoe UI", system-ui, -apple-system, sans-serif;
    }
    * { box-sizing: border-box; }
    body { margin: 0; font-family: var(--font); background: var(--bg); color: var(--text); min-height: 100vh; }
    a { color: var(--accent); text-decoration: none; }
    .page { max-width: 1200px; margin: 0 auto; padding: 28px 22px 48px; }
    .narrow { max-width: 440px; }
    header { display: flex; align-items: center; justify-content: space-between; gap: 14px; margin-bottom: 18px; }
    header h1 { margin: 0; font-size: 20px; }
    nav { display: flex; gap: 10px; align-items: center; flex-wrap: wrap; }
    nav a, nav button {
      padding: 8px 12px; border: 1px solid var(--border); border-radius: 12px;
      color: var(--text); background: rgba(255, 255, 255, 0.02); font: inherit; cursor: pointer;
    }
    nav .who { color: var(--muted); font-size: 13px; }
    .card {
      background: linear-gradient(160deg, var(--panel), var(--panel-2));
      border: 1px solid var(--border); border-radius: var(--card-radius);
      padding: 16px; box-shadow: var(--shadow); margin-bottom: 14px;
    }
    label { display: block; margin: 10px 0 4px; color: var(--muted); font-size: 13px; }
    input, select {
      width: 100%; padding: 9px 10px; border-radius: 10px; border: 1px solid var(--border);
      background: rgba(255, 255, 255, 0.04); color: var(--text); font: inherit;
    }
    .btn {
      padding: 8px 14px; border-radius: 10px; border: 1px solid var(--border); cursor: pointer;
      background: linear-gradient(135deg, var(--accent), var(--accent-2)); color: #051025; font-weight: 600;
    }
    .btn-secondary { background: rgba(255, 255, 255, 0.06); color: var(--text); }
    .btn-danger { background: var(--danger); color: #fff; }
    .row { display: flex; gap: 10px; align-items: center; flex-wrap: wrap; }
    table { width: 100%; border-collapse: collapse; }
    th, td { padding: 9px 8px; border-bottom: 1px solid var(--border); text-align: left; font-size: 14px; }
    th { color: var(--muted); font-weight: 600; }
    .alert { padding: 10px 12px; border-radius: 10px; margin: 10px 0; }
    .alert.error { background: rgba(255, 107, 107, 0.12); color: var(--danger); }
    .alert.success { background: rgba(74, 222, 128, 0.12); color: var(--success); }
    .alert.warn { background: rgba(247, 194, 102, 0.12); color: var(--warn); }
    .empty-state { padding: 28px; text-align: center; color: var(--muted); }
    .pagination { display: flex; gap: 6px; margin-top: 12px; flex-wrap: wrap; }
    .pagination a, .pagination span { padding: 6px 10px; border-radius: 8px; border: 1px solid var(--border); }
    .pagination .current { background: var(--accent); color: #051025; }
    .pagination .disabled { color: var(--muted); }
    .modal { position: fixed; inset: 0; background: rgba(0, 0, 0, 0.6); display: grid; place-items: center; }
    .modal .card { width: min(520px, 92vw); }
    .hint { color: var(--muted); font-size: 12px; }
    .progress { height: 10px; border-radius: 6px; background: rgba(255, 255, 255, 0.06); overflow: hidden; }
    .progress > div { height: 100%; background: linear-gradient(90deg, var(--accent), var(--accent-2)); }
    .result-item.success { color: var(--success); }
    .result-item.skipped { color: var(--warn); }
    .result-item.error { color: var(--danger); }
"""

AUTO_DISMISS_SCRIPT = """
  <script>
    setTimeout(function () {
      document.querySelectorAll(".alert.auto-dismiss").forEach(function (el) { el.remove(); });
    }, %d);
  </script>
""" % (ERROR_DISPLAY_SECONDS * 1000)


def _e(value: Optional[object]) -> str:
    return escape("" if value is None else str(value), quote=True)


def _format_time(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return value


def _alert(message: Optional[str], kind: str = "error", auto_dismiss: bool = True) -> str:
    if not message:
        return ""
    cls = f"alert {kind}" + (" auto-dismiss" if auto_dismiss else "")
    return f'<div class="{cls}" role="alert">{_e(message)}</div>'


def _nav(user: Optional[SessionUser]) -> str:
    if not user:
        return ""
    links = ['<a href="/home">Accounts</a>', '<a href="/settings">Settings</a>']
    if user.is_admin:
        links.append('<a href="/import">Import</a>')
    return f"""
    <nav>
      <span class="who">Signed in as {_e(user.account)}</span>
      {''.join(links)}
      <form method="post" action="/logout" style="margin:0"><button type="submit">Log out</button></form>
    </nav>"""


def layout(title: str, body: str, user: Optional[SessionUser] = None, narrow: bool = False) -> str:
    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>{_e(title)} · User Directory</title>
  <style>{STYLE}</style>
</head>
<body>
  <div class="page{' narrow' if narrow else ''}">
    <header>
      <h1>{_e(title)}</h1>
      {_nav(user)}
    </header>
    {body}
  </div>
  {AUTO_DISMISS_SCRIPT}
</body>
</html>
"""


def login_page(error: Optional[str] = None, account: str = "") -> str:
    body = f"""
    <div class="card">
      {_alert(error)}
      <form method="post" action="/login">
        <label for="account">Account</label>
        <input id="account" name="account" value="{_e(account)}" autofocus required />
        <label for="password">Password</label>
        <input id="password" name="password" type="password" required />
        <div class="row" style="margin-top:14px">
          <button class="btn" type="submit">Log in</button>
          <a href="/register">Create an account</a>
        </div>
      </form>
    </div>"""
    return layout("Log in", body, narrow=True)


def register_page(error: Optional[str] = None, account: str = "", display_name: str = "") -> str:
    body = f"""
    <div class="card">
      {_alert(error)}
      <form method="post" action="/register">
        <label for="account">Account</label>
        <input id="account" name="account" value="{_e(account)}" minlength="3" autofocus required />
        <label for="display_name">Display name</label>
        <input id="display_name" name="display_name" value="{_e(display_name)}" required />
        <label for="password">Password</label>
        <input id="password" name="password" type="password" minlength="4" required />
        <label for="confirm_password">Confirm password</label>
        <input id="confirm_password" name="confirm_password" type="password" minlength="4" required />
        <div class="row" style="margin-top:14px">
          <button class="btn" type="submit">Register</button>
          <a href="/login">Back to log in</a>
        </div>
      </form>
    </div>"""
    return layout("Register", body, narrow=True)


def home_url(query: str, **extra) -> str:
    params = {"q": query} if query else {}
    params.update({k: v for k, v in extra.items() if v is not None})
    return "/home" + (f"?{urlencode(params)}" if params else "")


def _account_row(account: Account, is_admin: bool, query: str) -> str:
    created = _format_time(account.created_at)
    cells = [f"<td>{_e(account.account)}</td>", f"<td>{_e(account.display_name)}</td>"]
    if is_admin:
        cells += [
            "<td>••••••••</td>" if account.password_hash else "<td></td>",
            f"<td>{_e(account.phone or '')}</td>",
            f"<td>{_e(account.address or '')}</td>",
        ]
    cells += [f"<td>{_e(account.role_label)}</td>", f"<td>{_e(created)}</td>"]
    if is_admin:
        confirm = _e(f"Delete account '{account.account}'? This cannot be undone.")
        cells.append(f"""
        <td class="row">
          <form method="post" action="/accounts/action" style="margin:0">
            <input type="hidden" name="kind" value="{RowAction.EDIT.value}" />
            <input type="hidden" name="id" value="{_e(account.id)}" />
            <input type="hidden" name="q" value="{_e(query)}" />
            <button class="btn btn-secondary" type="submit">Edit</button>
          </form>
          <form method="post" action="/accounts/action" style="margin:0" onsubmit="return confirm('{confirm}')">
            <input type="hidden" name="kind" value="{RowAction.DELETE.value}" />
            <input type="hidden" name="id" value="{_e(account.id)}" />
            <input type="hidden" name="q" value="{_e(query)}" />
            <button class="btn btn-danger" type="submit">Delete</button>
          </form>
        </td>""")
    return f"<tr>{''.join(cells)}</tr>"


def _accounts_table(listing: ListingState, is_admin: bool) -> str:
    if listing.is_empty:
        text = "No accounts match your search" if listing.query else "There are no accounts yet"
        return f'<div class="empty-state">{_e(text)}</div>'
    headers = ["Account", "Display name"]
    if is_admin:
        headers += ["Password", "Phone", "Address"]
    headers += ["Role", "Created"]
    if is_admin:
        headers.append("Actions")
    head = "".join(f"<th>{_e(h)}</th>" for h in headers)
    rows = "".join(_account_row(a, is_admin, listing.query) for a in listing.page_slice)
    return f'<table class="accounts-table"><thead><tr>{head}</tr></thead><tbody>{rows}</tbody></table>'


def _pagination(listing: ListingState) -> str:
    total = listing.total_pages
    if total <= 1:
        return ""
    window = listing.window
    current = listing.page
    parts: List[str] = []

    def link(page: int, label: str) -> str:
        return f'<a href="{_e(home_url(listing.query, page=page))}">{_e(label)}</a>'

    parts.append(link(current - 1, "‹ Prev") if current > 1 else '<span class="disabled">‹ Prev</span>')
    if window.show_first:
        parts.append(link(1, "1"))
    if window.leading_ellipsis:
        parts.append('<span class="disabled">…</span>')
    for page in window.pages:
        if page == current:
            parts.append(f'<span class="current">{page}</span>')
        else:
            parts.append(link(page, str(page)))
    if window.trailing_ellipsis:
        parts.append('<span class="disabled">…</span>')
    if window.show_last:
        parts.append(link(total, str(total)))
    parts.append(link(current + 1, "Next ›") if current < total else '<span class="disabled">Next ›</span>')
    return f'<div class="pagination">{"".join(parts)}</div>'


def _account_modal(workflow: AccountFormWorkflow, query: str) -> str:
    if not workflow.is_open:
        return ""
    f = workflow.fields
    title = "Edit account" if workflow.is_edit else "Add account"
    role_options = "".join(
        f'<option value="{r}"{" selected" if f.role == r else ""}>{_e(ROLE_LABELS[r])}</option>' for r in ROLES
    )
    hint = '<div class="hint">Leave blank to keep the current password</div>' if workflow.is_edit else ""
    required = " required" if workflow.password_required else ""
    return f"""
    <div class="modal" id="userModal">
      <div class="card">
        <h2 style="margin-top:0">{title}</h2>
        {_alert(workflow.error)}
        <form method="post" action="/accounts">
          <input type="hidden" name="id" value="{_e(workflow.editing_id or '')}" />
          <input type="hidden" name="q" value="{_e(query)}" />
          <label for="modalAccount">Account</label>
          <input id="modalAccount" name="account" value="{_e(f.account)}" required autofocus />
          <label for="modalName">Display name</label>
          <input id="modalName" name="display_name" value="{_e(f.display_name)}" required />
          <label for="modalPassword">Password</label>
          <input id="modalPassword" name="password" type="password"{required} />
          {hint}
          <label for="modalPhone">Phone</label>
          <input id="modalPhone" name="phone" value="{_e(f.phone)}" />
          <label for="modalAddress">Address</label>
          <input id="modalAddress" name="address" value="{_e(f.address)}" />
          <label for="modalRole">Role</label>
          <select id="modalRole" name="role">{role_options}</select>
          <div class="row" style="margin-top:14px">
            <button class="btn" type="submit">Save</button>
            <a class="btn btn-secondary" href="{_e(home_url(query))}">Cancel</a>
          </div>
        </form>
      </div>
    </div>"""


def home_page(
    user: SessionUser,
    listing: Optional[ListingState],
    workflow: Optional[AccountFormWorkflow] = None,
    error: Optional[str] = None,
) -> str:
    query = listing.query if listing else ""
    admin_controls = ""
    if user.is_admin:
        admin_controls = f'<a class="btn" href="{_e(home_url(query, modal="add"))}">Add account</a>'
    if listing is None:
        table = ""
        count = ""
    else:
        table = _accounts_table(listing, user.is_admin) + _pagination(listing)
        count = f'<span class="hint">{len(listing.filtered)} account(s)</span>'
    clear = '<a href="/home">Clear</a>' if query else ""
    body = f"""
    <div class="card">
      <form method="get" action="/home" class="row">
        <input name="q" value="{_e(query)}" placeholder="Search account or display name" style="flex:1" />
        <button class="btn btn-secondary" type="submit">Search</button>
        {clear}
        {admin_controls}
      </form>
      {_alert(error)}
      {count}
      {table}
    </div>
    {_account_modal(workflow, query) if workflow else ""}"""
    return layout("Account directory", body, user=user)


def settings_page(
    user: SessionUser,
    profile: Optional[Profile],
    error: Optional[str] = None,
    success: Optional[str] = None,
) -> str:
    if profile is None:
        form = ""
    else:
        form = f"""
      <form method="post" action="/settings">
        <label for="account">Account</label>
        <input id="account" value="{_e(profile.account)}" disabled />
        <label for="name">Display name</label>
        <input id="name" value="{_e(profile.display_name)}" disabled />
        <label for="password">Password</label>
        <input id="password" type="password" value="{_e(profile.password_placeholder)}" disabled />
        <label for="phone">Phone</label>
        <input id="phone" name="phone" value="{_e(profile.phone)}" />
        <label for="address">Address</label>
        <input id="address" name="address" value="{_e(profile.address)}" />
        <div class="row" style="margin-top:14px"><button class="btn" type="submit">Save settings</button></div>
      </form>"""
    body = f"""
    <div class="card">
      {_alert(error)}
      {_alert(success, "success")}
      {form}
    </div>"""
    return layout("Personal settings", body, user=user, narrow=True)


def _dropped_rows(dropped: Sequence[DroppedRow]) -> str:
    if not dropped:
        return ""
    items = "".join(f"<li>Row {d.row_number}: {_e(d.reason)}</li>" for d in dropped)
    return f'<div class="alert warn">Skipped while reading:<ul>{items}</ul></div>'


def import_page(
    user: SessionUser,
    error: Optional[str] = None,
    preview: Optional[Sequence[dict]] = None,
    dropped: Sequence[DroppedRow] = (),
    token: Optional[str] = None,
    filename: Optional[str] = None,
    report: Optional[ImportReport] = None,
) -> str:
    if report is not None:
        percent = int(round(report.progress * 100))
        items = "".join(
            f'<div class="result-item {_e(entry.status)}">{_e(entry.message)}</div>' for entry in report.log
        )
        content = f"""
      <p>{_e(f"Processed {report.processed} / {report.total}")}</p>
      <div class="progress"><div style="width:{percent}%"></div></div>
      {_alert(report.summary(), "success", auto_dismiss=False)}
      <div class="import-results">{items}</div>
      <div class="row" style="margin-top:14px">
        <a class="btn" href="/import">Import another file</a>
        <a class="btn btn-secondary" href="/home">Back to accounts</a>
      </div>"""
    elif preview is not None:
        rows = "".join(
            f"<tr><td>{_e(r['row'])}</td><td>{_e(r['account'])}</td><td>{_e(r['display_name'])}</td>"
            f"<td>{_e(r['phone'])}</td><td>{_e(r['address'])}</td></tr>"
            for r in preview
        )
        content = f"""
      <p>{_e(filename or "")}: <strong id="rowCount">{len(preview)}</strong> row(s) ready to import</p>
      {_dropped_rows(dropped)}
      <table id="previewTable">
        <thead><tr><th>Row</th><th>Account</th><th>Display name</th><th>Phone</th><th>Address</th></tr></thead>
        <tbody>{rows}</tbody>
      </table>
      <div class="row" style="margin-top:14px">
        <form method="post" action="/import/commit" style="margin:0">
          <input type="hidden" name="token" value="{_e(token)}" />
          <button class="btn" type="submit" onclick="this.disabled=true;this.form.submit();">Import</button>
        </form>
        <form method="post" action="/import/cancel" style="margin:0">
          <input type="hidden" name="token" value="{_e(token)}" />
          <button class="btn btn-secondary" type="submit">Cancel</button>
        </form>
      </div>"""
    else:
        content = """
      <form method="post" action="/import/preview" enctype="multipart/form-data" id="fileUploadArea">
        <label for="fileInput">Excel file (.xlsx or .xls)</label>
        <input id="fileInput" name="file" type="file" accept=".xlsx,.xls" required />
        <p class="hint">Columns: account, display name, password (at least 4 characters), phone, address.</p>
        <div class="row" style="margin-top:14px"><button class="btn" type="submit">Preview</button></div>
      </form>"""
    body = f"""
    <div class="card">
      {_alert(error, auto_dismiss=False)}
      {content}
    </div>"""
    return layout("Import accounts", body, user=user)
