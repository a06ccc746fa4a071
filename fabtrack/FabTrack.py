import logging
from datetime import datetime
from pathlib import Path

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.datastructures import FormData
from starlette.middleware.sessions import SessionMiddleware

import portal_settings as settings
from schemas.payloads import SignupPayload
from schemas.records import parse_timestamp
from services import fabtrack_api as api
from services.backend_client import BackendClient, BackendError, BackendUnauthorized
from services.log_export import export_body, export_filename, render_log_entries
from services.request_composer import MAX_QUANTITY, MIN_QUANTITY, ComposerDraft, filter_catalog
from services.review_workflow import DraftValidationError, ItemsNotLoaded, ReviewState, SubmissionInProgress
from services.session_service import (
    PortalSession,
    clear_session,
    load_session,
    open_session,
    refresh_session,
)
from services.workspace_store import Workspace, discard_workspace, get_workspace

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"
WORKSPACE_KEY = "fabtrack_workspace"
FLASH_KEY = "fabtrack_flash"
ADMIN_TABS = ("pending", "approved", "equipment")
DASHBOARD_TABS = ("all", "pending", "overdue")
PORTAL_LOGGER = logging.getLogger("fabtrack.portal")
AUTH_LOGGER = logging.getLogger("fabtrack.auth")

app = FastAPI(title="FabTrack")
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.SESSION_SIGNING_SECRET,
    session_cookie="fabtrack_session",
    same_site="lax",
    https_only=settings.SESSION_COOKIE_HTTPS_ONLY,
)

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def _format_timestamp(value, fmt: str = "%b %d, %Y %H:%M") -> str:
    parsed = parse_timestamp(value)
    if parsed is None:
        return str(value or "-")
    return parsed.strftime(fmt)


STATUS_BADGES = {
    "Pending": "badge-warning",
    "Approved": "badge-success",
    "Rejected": "badge-danger",
    "Returned": "badge-muted",
    "Overdue": "badge-danger",
}

templates.env.filters["timestamp"] = _format_timestamp
templates.env.filters["status_badge"] = lambda status: STATUS_BADGES.get(status, "badge-default")


class LoginRequired(Exception):
    pass


class RoleRequired(Exception):
    def __init__(self, redirect_to: str):
        super().__init__(redirect_to)
        self.redirect_to = redirect_to


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=303)


def _flash(request: Request, message: str, category: str = "info") -> None:
    messages = list(request.session.get(FLASH_KEY) or [])
    messages.append({"category": category, "message": message})
    request.session[FLASH_KEY] = messages[-10:]


def _render(request: Request, template: str, context: dict | None = None, status_code: int = 200):
    page = {
        "session": load_session(request.session),
        "flash": request.session.pop(FLASH_KEY, None) or [],
    }
    page.update(context or {})
    return templates.TemplateResponse(request, template, page, status_code=status_code)


def _end_session(request: Request) -> None:
    discard_workspace(request.session.get(WORKSPACE_KEY))
    clear_session(request.session)
    request.session.pop(WORKSPACE_KEY, None)


@app.exception_handler(LoginRequired)
async def _login_required_handler(request: Request, exc: LoginRequired):
    return _redirect("/login")


@app.exception_handler(RoleRequired)
async def _role_required_handler(request: Request, exc: RoleRequired):
    return _redirect(exc.redirect_to)


@app.exception_handler(BackendUnauthorized)
async def _backend_unauthorized_handler(request: Request, exc: BackendUnauthorized):
    AUTH_LOGGER.info("Session invalidated after 401 path=%s", request.url.path)
    _end_session(request)
    return _redirect("/login?expired=true")


def get_backend_transport() -> httpx.AsyncBaseTransport | None:
    return None


def get_portal_session(request: Request) -> PortalSession | None:
    return load_session(request.session)


def require_session(session: PortalSession | None = Depends(get_portal_session)) -> PortalSession:
    if session is None:
        raise LoginRequired()
    return session


def require_admin(session: PortalSession = Depends(require_session)) -> PortalSession:
    if not session.is_admin:
        raise RoleRequired("/dashboard")
    return session


def require_student(session: PortalSession = Depends(require_session)) -> PortalSession:
    if session.is_admin:
        raise RoleRequired("/dashboard")
    return session


def get_public_backend(transport: httpx.AsyncBaseTransport | None = Depends(get_backend_transport)) -> BackendClient:
    return BackendClient(
        settings.FABTRACK_API_BASE_URL,
        timeout=settings.FABTRACK_API_TIMEOUT_SECONDS,
        transport=transport,
    )


def get_backend(
    session: PortalSession = Depends(require_session),
    transport: httpx.AsyncBaseTransport | None = Depends(get_backend_transport),
) -> BackendClient:
    return BackendClient(
        settings.FABTRACK_API_BASE_URL,
        session.token,
        timeout=settings.FABTRACK_API_TIMEOUT_SECONDS,
        transport=transport,
    )


async def get_current_workspace(request: Request) -> Workspace:
    workspace_id, workspace = get_workspace(request.session.get(WORKSPACE_KEY), settings.WORKSPACE_TTL_SECONDS)
    request.session[WORKSPACE_KEY] = workspace_id
    return workspace


def _indexed_fields(form: FormData, prefix: str) -> dict[int, str]:
    out: dict[int, str] = {}
    for key, value in form.multi_items():
        if not key.startswith(prefix):
            continue
        try:
            out[int(key[len(prefix):])] = str(value)
        except ValueError:
            continue
    return out


def _int_values(values: list) -> list[int]:
    out: list[int] = []
    for value in values:
        try:
            out.append(int(str(value)))
        except ValueError:
            continue
    return out


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/")
def home(request: Request):
    return _render(request, "index.html")


@app.get("/login")
def login_page(request: Request, session: PortalSession | None = Depends(get_portal_session)):
    if session is not None:
        return _redirect(session.home_path)
    expired = request.query_params.get("expired") == "true"
    return _render(request, "login.html", {"expired": expired, "email": ""})


@app.post("/login")
async def login_submit(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    backend: BackendClient = Depends(get_public_backend),
):
    email = email.strip()
    if not email or not password:
        return _render(request, "login.html", {"email": email, "error": "Email and password are required."}, 400)
    try:
        result = await api.login(backend, email, password)
    except BackendError as exc:
        AUTH_LOGGER.warning("Login failed status=%s", exc.status_code)
        if exc.status_code in (400, 401, 403):
            error = "Please check your credentials and try again."
        else:
            error = exc.message or "Login failed. Please try again."
        return _render(request, "login.html", {"email": email, "error": error}, 401 if exc.status_code == 401 else 400)

    _end_session(request)
    session = open_session(request.session, result.token, role=result.role, user=result.user)
    _flash(request, "You have been logged in successfully.", "success")
    return _redirect(session.home_path)


@app.get("/signup")
def signup_page(request: Request):
    return _render(request, "signup.html", {"form": {}})


@app.post("/signup")
async def signup_submit(request: Request, backend: BackendClient = Depends(get_public_backend)):
    form = await request.form()
    fields = {key: str(form.get(key) or "").strip() for key in ("name", "email", "major", "yearGroup")}
    password = str(form.get("password") or "")
    confirm = str(form.get("confirmPassword") or "")

    errors = [f"{label} is required." for key, label in (
        ("name", "Full name"),
        ("email", "Email"),
        ("major", "Major"),
        ("yearGroup", "Year group"),
    ) if not fields[key]]
    if not password:
        errors.append("Password is required.")
    elif password != confirm:
        errors.append("Passwords do not match.")
    if errors:
        return _render(request, "signup.html", {"form": fields, "errors": errors}, 400)

    try:
        await api.signup(backend, SignupPayload(password=password, role="Student", **fields))
    except BackendError as exc:
        message = exc.message if exc.status_code else "Registration failed. Please try again later."
        return _render(request, "signup.html", {"form": fields, "errors": [message]}, 400)

    _flash(request, "Your account has been created successfully. Please log in.", "success")
    return _redirect("/login")


@app.post("/logout")
async def logout(request: Request):
    _end_session(request)
    return _redirect("/login")


@app.get("/profile")
def profile(request: Request, session: PortalSession = Depends(require_session)):
    return _render(request, "profile.html")


@app.get("/dashboard")
async def dashboard(
    request: Request,
    session: PortalSession = Depends(require_session),
    backend: BackendClient = Depends(get_backend),
    workspace: Workspace = Depends(get_current_workspace),
):
    try:
        user = await api.get_current_user(backend)
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        PORTAL_LOGGER.warning("Whoami refresh failed, keeping token identity: %s", exc.message)
    else:
        session = refresh_session(request.session, session, user)

    await workspace.all_requests.refresh(lambda: api.list_all_requests(backend), "Failed to load requests.")
    await workspace.pending_requests.refresh(lambda: api.list_pending_requests(backend), "Failed to load pending requests.")

    tab = request.query_params.get("tab") or "all"
    if tab not in DASHBOARD_TABS or (tab == "overdue" and not session.is_admin):
        tab = "all"
    overdue = [record for record in workspace.all_requests.rows if record.is_overdue()]
    return _render(
        request,
        "dashboard.html",
        {
            "tab": tab,
            "all_requests": workspace.all_requests,
            "pending_requests": workspace.pending_requests,
            "overdue_requests": overdue,
        },
    )


@app.get("/borrow")
async def borrow_page(
    request: Request,
    session: PortalSession = Depends(require_student),
    backend: BackendClient = Depends(get_backend),
    workspace: Workspace = Depends(get_current_workspace),
):
    await workspace.catalog.refresh(lambda: api.list_equipment(backend), "Failed to load equipment. Please try again.")
    query = request.query_params.get("q") or ""
    equipment = filter_catalog(workspace.catalog.rows, query)
    visible_ids = {item.id for item in equipment}
    composer = workspace.composer
    return _render(
        request,
        "borrow.html",
        {
            "catalog": workspace.catalog,
            "equipment": equipment,
            "hidden_lines": {
                equipment_id: line for equipment_id, line in composer.lines.items() if equipment_id not in visible_ids
            },
            "equipment_names": {item.id: item.name for item in workspace.catalog.rows},
            "query": query,
            "draft": composer,
            "min_quantity": MIN_QUANTITY,
            "max_quantity": MAX_QUANTITY,
            "min_collection": datetime.now().strftime("%Y-%m-%dT%H:%M"),
        },
    )


async def _apply_composer_form(request: Request, composer: ComposerDraft) -> None:
    form = await request.form()
    composer.apply_form(
        _int_values(form.getlist("selected")),
        quantities=_indexed_fields(form, "quantity_"),
        descriptions=_indexed_fields(form, "description_"),
        collection_datetime=str(form.get("collectionDateTime") or ""),
    )


@app.post("/borrow")
async def borrow_submit(
    request: Request,
    session: PortalSession = Depends(require_student),
    backend: BackendClient = Depends(get_backend),
    workspace: Workspace = Depends(get_current_workspace),
):
    composer = workspace.composer
    await _apply_composer_form(request, composer)
    try:
        await composer.submit(lambda payload: api.submit_borrow_request(backend, payload))
    except DraftValidationError as exc:
        for message in exc.messages:
            _flash(request, message, "error")
        return _redirect("/borrow")
    except SubmissionInProgress as exc:
        _flash(request, str(exc), "error")
        return _redirect("/borrow")
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        _flash(request, exc.message or "There was an error submitting your request.", "error")
        return _redirect("/borrow")

    _flash(request, "Your equipment request has been submitted successfully.", "success")
    return _redirect("/dashboard")


@app.post("/borrow/items/{equipment_id}/remove")
async def borrow_remove_item(
    request: Request,
    equipment_id: int,
    session: PortalSession = Depends(require_student),
    workspace: Workspace = Depends(get_current_workspace),
):
    await _apply_composer_form(request, workspace.composer)
    workspace.composer.remove(equipment_id)
    return _redirect("/borrow")


@app.get("/admin")
async def admin_page(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
    workspace: Workspace = Depends(get_current_workspace),
):
    tab = request.query_params.get("tab") or "pending"
    if tab not in ADMIN_TABS:
        tab = "pending"
    review = workspace.review
    await review.refresh_pending(lambda: api.list_pending_requests(backend))
    await review.refresh_approved(lambda: api.list_approved_requests(backend))
    if tab == "equipment":
        await workspace.catalog.refresh(lambda: api.list_equipment(backend), "Failed to load equipment.")
    return _render(
        request,
        "admin.html",
        {
            "tab": tab,
            "review": review,
            "catalog": workspace.catalog,
        },
    )


async def _apply_review_form(request: Request, review: ReviewState, request_id: int) -> str:
    form = await request.form()
    return_date = str(form.get("returnDate") or "")
    review.apply_form(
        request_id,
        serial_numbers=_indexed_fields(form, "serial_"),
        descriptions=_indexed_fields(form, "description_"),
        return_date=return_date,
    )
    return return_date


def _pending_anchor(request_id: int) -> str:
    return f"/admin?tab=pending#request-{request_id}"


@app.post("/admin/requests/{request_id}/expand")
async def admin_expand_request(
    request: Request,
    request_id: int,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
    workspace: Workspace = Depends(get_current_workspace),
):
    try:
        await workspace.review.expand(request_id, lambda rid: api.list_request_items(backend, rid))
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        _flash(request, exc.message or "Failed to load request items.", "error")
    return _redirect(_pending_anchor(request_id))


@app.post("/admin/requests/{request_id}/collapse")
async def admin_collapse_request(
    request: Request,
    request_id: int,
    session: PortalSession = Depends(require_admin),
    workspace: Workspace = Depends(get_current_workspace),
):
    workspace.review.collapse(request_id)
    return _redirect(_pending_anchor(request_id))


@app.post("/admin/requests/{request_id}/items/{item_id}/toggle")
async def admin_toggle_item(
    request: Request,
    request_id: int,
    item_id: int,
    session: PortalSession = Depends(require_admin),
    workspace: Workspace = Depends(get_current_workspace),
):
    try:
        await _apply_review_form(request, workspace.review, request_id)
        workspace.review.toggle_item(request_id, item_id)
    except ItemsNotLoaded:
        _flash(request, "Load the request items before changing them.", "error")
    return _redirect(_pending_anchor(request_id))


@app.post("/admin/requests/{request_id}/approve-all")
async def admin_approve_all(
    request: Request,
    request_id: int,
    session: PortalSession = Depends(require_admin),
    workspace: Workspace = Depends(get_current_workspace),
):
    try:
        await _apply_review_form(request, workspace.review, request_id)
        workspace.review.set_all(request_id, True)
    except ItemsNotLoaded:
        _flash(request, "Load the request items before changing them.", "error")
    return _redirect(_pending_anchor(request_id))


@app.post("/admin/requests/{request_id}/reject-all")
async def admin_reject_all(
    request: Request,
    request_id: int,
    session: PortalSession = Depends(require_admin),
    workspace: Workspace = Depends(get_current_workspace),
):
    try:
        await _apply_review_form(request, workspace.review, request_id)
        workspace.review.set_all(request_id, False)
    except ItemsNotLoaded:
        _flash(request, "Load the request items before changing them.", "error")
    return _redirect(_pending_anchor(request_id))


@app.post("/admin/requests/{request_id}/approve")
async def admin_approve_request(
    request: Request,
    request_id: int,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
    workspace: Workspace = Depends(get_current_workspace),
):
    review = workspace.review
    try:
        return_date = await _apply_review_form(request, review, request_id)
        await review.submit_approval(
            request_id,
            return_date,
            lambda rid, payload: api.approve_request(backend, rid, payload),
            lambda: api.list_approved_requests(backend),
        )
    except ItemsNotLoaded:
        _flash(request, "Load the request items before approving.", "error")
        return _redirect(_pending_anchor(request_id))
    except DraftValidationError as exc:
        for message in exc.messages:
            _flash(request, message, "error")
        return _redirect(_pending_anchor(request_id))
    except SubmissionInProgress as exc:
        _flash(request, str(exc), "error")
        return _redirect(_pending_anchor(request_id))
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        _flash(request, exc.message or "There was an error approving the request.", "error")
        return _redirect(_pending_anchor(request_id))

    _flash(request, "The borrow request has been approved successfully.", "success")
    return _redirect("/admin?tab=pending")


@app.post("/admin/requests/{request_id}/return")
async def admin_mark_returned(
    request: Request,
    request_id: int,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
    workspace: Workspace = Depends(get_current_workspace),
):
    try:
        await workspace.review.mark_returned(
            request_id,
            lambda rid: api.mark_returned(backend, rid),
            lambda: api.list_approved_requests(backend),
        )
    except SubmissionInProgress as exc:
        _flash(request, str(exc), "error")
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        _flash(request, exc.message or "There was an error processing the return.", "error")
    else:
        _flash(request, "The borrowed items have been marked as returned.", "success")
    return _redirect("/admin?tab=approved")


@app.post("/admin/reminders")
async def admin_send_reminders(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    try:
        body = await api.send_reminders(backend)
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        _flash(request, exc.message or "Failed to send reminders.", "error")
    else:
        message = body.get("message") if isinstance(body, dict) else None
        _flash(request, message or "Reminders sent.", "success")
    return _redirect("/admin?tab=approved")


@app.post("/admin/equipment")
async def admin_create_equipment(
    request: Request,
    name: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    name = name.strip()
    if not name:
        _flash(request, "Equipment name is required.", "error")
        return _redirect("/admin?tab=equipment")
    try:
        await api.create_equipment(backend, name)
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        _flash(request, exc.message or "Failed to add equipment.", "error")
    else:
        _flash(request, f"Equipment {name} was added.", "success")
    return _redirect("/admin?tab=equipment")


@app.post("/admin/equipment/{equipment_id}")
async def admin_update_equipment(
    request: Request,
    equipment_id: int,
    name: str = Form(""),
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    name = name.strip()
    if not name:
        _flash(request, "Equipment name is required.", "error")
        return _redirect("/admin?tab=equipment")
    try:
        await api.update_equipment(backend, equipment_id, name)
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        _flash(request, exc.message or "Failed to update equipment.", "error")
    else:
        _flash(request, "Equipment updated.", "success")
    return _redirect("/admin?tab=equipment")


@app.post("/admin/equipment/{equipment_id}/delete")
async def admin_delete_equipment(
    request: Request,
    equipment_id: int,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    try:
        await api.delete_equipment(backend, equipment_id)
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        _flash(request, exc.message or "Failed to delete equipment.", "error")
    else:
        _flash(request, "Equipment deleted.", "success")
    return _redirect("/admin?tab=equipment")


@app.get("/logs")
async def logs_page(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    try:
        payload = await api.fetch_logs(backend)
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        _flash(request, exc.message or "Failed to load logs.", "error")
        return _redirect("/admin")
    return _render(request, "logs.html", {"entries": render_log_entries(payload), "has_data": payload is not None})


@app.get("/logs/download")
async def logs_download(
    request: Request,
    session: PortalSession = Depends(require_admin),
    backend: BackendClient = Depends(get_backend),
):
    try:
        payload = await api.fetch_logs(backend)
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        _flash(request, exc.message or "Failed to load logs.", "error")
        return _redirect("/logs")
    return Response(
        content=export_body(payload),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


def main() -> None:
    uvicorn.run(app, host=settings.PORTAL_HOST, port=settings.PORTAL_PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
