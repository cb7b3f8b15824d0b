from __future__ import annotations

import time
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.concurrency import run_in_threadpool

from userdir.auth import login_user, logout_user, register_user
from userdir.errors import DirectoryError, ValidationError
from userdir.forms import AccountFields, AccountFormWorkflow, FormState, RowAction, RowCommand
from userdir.importer import import_rows, parse_rows, preview_rows, read_workbook
from userdir.listing import ListingState, go_to_page, load_listing
from userdir.profile import load_profile, save_profile
from userdir.webui.auth import PageSession, page_session
from userdir.webui.state import AppRuntimeState, StagedImport
from userdir.webui import templates


def _int_param(value: Optional[str], default: int = 1) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def create_web_router(state: AppRuntimeState) -> APIRouter:
    """Create the HTML pages plus the small JSON API."""
    router = APIRouter()
    config = state.config
    directory = state.directory
    events = state.events

    def _session(request: Request) -> PageSession:
        return page_session(request, config, state.session_secret)

    def _html(ps: PageSession, content: str, status_code: int = 200) -> HTMLResponse:
        return ps.respond(HTMLResponse(content=content, status_code=status_code))

    def _listing(query: str, page: int = 1) -> tuple[Optional[ListingState], Optional[str]]:
        try:
            listing = load_listing(directory, query)
        except DirectoryError as e:
            return None, f"Failed to load accounts: {e.message}"
        return go_to_page(listing, page), None

    def _render_home(ps: PageSession, query: str, workflow=None, error=None, page: int = 1, status_code=200):
        listing, load_error = _listing(query, page)
        return _html(ps, templates.home_page(ps.user, listing, workflow, error or load_error), status_code)

    @router.get("/", include_in_schema=False)
    async def index(request: Request):
        ps = _session(request)
        return ps.redirect("/home" if ps.user else "/login")

    @router.get("/health")
    async def health():
        return {
            "status": "ok",
            "uptime_seconds": int(time.time() - state.start_time),
            "config": state.config_public,
        }

    # ---------- login / registration ----------
    @router.get("/login", response_class=HTMLResponse, include_in_schema=False)
    async def login_form(request: Request):
        ps = _session(request)
        if ps.user:
            return ps.redirect("/home")
        return _html(ps, templates.login_page())

    @router.post("/login", include_in_schema=False)
    async def login_submit(request: Request):
        ps = _session(request)
        form = await request.form()
        account = str(form.get("account") or "")
        result = login_user(directory, ps.sessions, account, str(form.get("password") or ""))
        if not result.success:
            return _html(ps, templates.login_page(result.error, account.strip()), status_code=400)
        events.add("Logged in", actor=result.user.account)
        return ps.redirect("/home")

    @router.get("/register", response_class=HTMLResponse, include_in_schema=False)
    async def register_form(request: Request):
        ps = _session(request)
        if ps.user:
            return ps.redirect("/home")
        return _html(ps, templates.register_page())

    @router.post("/register", include_in_schema=False)
    async def register_submit(request: Request):
        ps = _session(request)
        form = await request.form()
        account = str(form.get("account") or "")
        display_name = str(form.get("display_name") or "")
        result = register_user(
            directory,
            ps.sessions,
            account,
            display_name,
            str(form.get("password") or ""),
            str(form.get("confirm_password") or ""),
        )
        if not result.success:
            page = templates.register_page(result.error, account.strip(), display_name.strip())
            return _html(ps, page, status_code=400)
        events.add("Account registered", actor=result.user.account, detail=f"role={result.user.role}")
        return ps.redirect("/home")

    @router.post("/logout", include_in_schema=False)
    async def logout(request: Request):
        ps = _session(request)
        actor = ps.user.account if ps.user else None
        logout_user(ps.sessions)
        if actor:
            events.add("Logged out", actor=actor)
        return ps.redirect("/login")

    # ---------- directory ----------
    @router.get("/home", response_class=HTMLResponse, include_in_schema=False)
    async def home(request: Request):
        ps = _session(request)
        if not ps.user:
            return ps.redirect("/login")
        params = request.query_params
        query = (params.get("q") or "").strip()
        workflow = None
        if ps.is_admin and params.get("modal") == "add":
            workflow = AccountFormWorkflow(directory)
            workflow.open_add()
        elif ps.is_admin and params.get("modal") == "edit" and params.get("id"):
            workflow = AccountFormWorkflow(directory)
            workflow.open_edit(params["id"])
        return _render_home(ps, query, workflow, page=_int_param(params.get("page")))

    @router.post("/accounts", include_in_schema=False)
    async def account_submit(request: Request):
        ps = _session(request)
        if not ps.user:
            return ps.redirect("/login")
        if not ps.is_admin:
            return ps.redirect("/home")
        form = await request.form()
        query = str(form.get("q") or "").strip()
        account_id = str(form.get("id") or "").strip()

        workflow = AccountFormWorkflow(directory)
        if account_id:
            workflow.open_edit(account_id)
        else:
            workflow.open_add()
        fields = AccountFields.from_mapping(form)
        saved = workflow.submit(fields) if workflow.state != FormState.EDIT_OPEN else None
        if saved is None:
            return _render_home(ps, query, workflow, status_code=400)

        events.add(
            "Account updated" if account_id else "Account created",
            actor=ps.user.account,
            detail=f"{saved.account} ({saved.role})",
        )
        return ps.redirect(templates.home_url(query))

    @router.post("/accounts/action", include_in_schema=False)
    async def account_action(request: Request):
        ps = _session(request)
        if not ps.user:
            return ps.redirect("/login")
        if not ps.is_admin:
            return ps.redirect("/home")
        form = await request.form()
        query = str(form.get("q") or "").strip()
        try:
            command = RowCommand.parse(str(form.get("kind") or ""), str(form.get("id") or ""))
        except ValidationError as e:
            return _render_home(ps, query, error=e.message, status_code=400)

        workflow = AccountFormWorkflow(directory)
        ok = workflow.dispatch(command)
        if command.kind == RowAction.EDIT:
            return _render_home(ps, query, workflow, status_code=200 if ok else 404)
        if not ok:
            return _render_home(ps, query, error=workflow.error, status_code=400)
        events.add("Account deleted", actor=ps.user.account, detail=command.id)
        return ps.redirect(templates.home_url(query))

    # ---------- settings ----------
    @router.get("/settings", response_class=HTMLResponse, include_in_schema=False)
    async def settings_form(request: Request):
        ps = _session(request)
        if not ps.user:
            return ps.redirect("/login")
        try:
            profile = load_profile(directory, ps.user)
        except DirectoryError as e:
            return _html(ps, templates.settings_page(ps.user, None, error=f"Failed to load your data: {e.message}"))
        return _html(ps, templates.settings_page(ps.user, profile))

    @router.post("/settings", include_in_schema=False)
    async def settings_submit(request: Request):
        ps = _session(request)
        if not ps.user:
            return ps.redirect("/login")
        form = await request.form()
        try:
            profile = save_profile(directory, ps.user, str(form.get("phone") or ""), str(form.get("address") or ""))
        except DirectoryError as e:
            page = templates.settings_page(ps.user, None, error=f"Save failed: {e.message}")
            return _html(ps, page, status_code=400)
        events.add("Settings saved", actor=ps.user.account)
        return _html(ps, templates.settings_page(ps.user, profile, success="Your settings were saved"))

    # ---------- import ----------
    def _import_guard(ps: PageSession) -> Optional[RedirectResponse]:
        if not ps.user:
            return ps.redirect("/login")
        if not ps.is_admin:
            return ps.redirect("/home")
        return None

    @router.get("/import", response_class=HTMLResponse, include_in_schema=False)
    async def import_form(request: Request):
        ps = _session(request)
        blocked = _import_guard(ps)
        if blocked:
            return blocked
        return _html(ps, templates.import_page(ps.user))

    @router.post("/import/preview", include_in_schema=False)
    async def import_preview(request: Request):
        ps = _session(request)
        blocked = _import_guard(ps)
        if blocked:
            return blocked
        form = await request.form()
        upload = form.get("file")
        if upload is None or not hasattr(upload, "read"):
            return _html(ps, templates.import_page(ps.user, error="Please choose a file"), status_code=400)
        filename = upload.filename or ""
        data = await upload.read()
        try:
            parsed = parse_rows(read_workbook(data, filename))
        except ValidationError as e:
            return _html(ps, templates.import_page(ps.user, error=e.message), status_code=400)
        if not parsed.candidates:
            page = templates.import_page(ps.user, error="Could not parse any rows, please check the file format")
            return _html(ps, page, status_code=400)

        token = state.imports.stage(
            StagedImport(owner=ps.user.account, filename=filename, candidates=parsed.candidates, dropped=parsed.dropped)
        )
        page = templates.import_page(
            ps.user,
            preview=preview_rows(parsed.candidates),
            dropped=parsed.dropped,
            token=token,
            filename=filename,
        )
        return _html(ps, page)

    @router.post("/import/commit", include_in_schema=False)
    async def import_commit(request: Request):
        ps = _session(request)
        blocked = _import_guard(ps)
        if blocked:
            return blocked
        form = await request.form()
        token = str(form.get("token") or "")
        staged = state.imports.get(token, ps.user.account)
        if staged is None:
            page = templates.import_page(ps.user, error="This import has expired, please upload the file again")
            return _html(ps, page, status_code=404)
        if staged.running:
            return _html(ps, templates.import_page(ps.user, error="This import is already running"), status_code=409)

        staged.running = True
        try:
            report = await run_in_threadpool(import_rows, directory, staged.candidates)
        finally:
            staged.running = False
        state.imports.discard(token, ps.user.account)
        events.add("Import finished", actor=ps.user.account, detail=f"{staged.filename}: {report.summary()}")
        return _html(ps, templates.import_page(ps.user, report=report))

    @router.post("/import/cancel", include_in_schema=False)
    async def import_cancel(request: Request):
        ps = _session(request)
        blocked = _import_guard(ps)
        if blocked:
            return blocked
        form = await request.form()
        state.imports.discard(str(form.get("token") or ""), ps.user.account)
        return ps.redirect("/import")

    # ---------- JSON API ----------
    @router.get("/api/accounts")
    async def api_accounts(request: Request):
        ps = _session(request)
        if not ps.user:
            return ps.respond(JSONResponse({"status": "error", "detail": "Not logged in"}, status_code=401))
        query = (request.query_params.get("q") or "").strip()
        listing, error = _listing(query, _int_param(request.query_params.get("page")))
        if listing is None:
            return ps.respond(JSONResponse({"status": "error", "detail": error}, status_code=502))
        return ps.respond(JSONResponse({
            "status": "ok",
            "query": listing.query,
            "page": listing.page,
            "page_size": listing.page_size,
            "total_pages": listing.total_pages,
            "total": len(listing.filtered),
            "accounts": [a.to_public(include_private=ps.is_admin) for a in listing.page_slice],
        }))

    @router.get("/api/events")
    async def api_events(request: Request):
        ps = _session(request)
        if not ps.user:
            return ps.respond(JSONResponse({"status": "error", "detail": "Not logged in"}, status_code=401))
        if not ps.is_admin:
            return ps.respond(JSONResponse({"status": "error", "detail": "Admins only"}, status_code=403))
        return ps.respond(JSONResponse({
            "status": "ok",
            "events": events.snapshot(),
            "persisted": bool(events.path),
        }))

    return router
