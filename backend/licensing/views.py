"""HTML controllers: the applicant wizard and the admin review panel.

Handlers are thin. Each step POST validates the submitted form, stores
the typed answers in the session and redirects to the next step; a failed
validation re-renders the same page with the submitted values and
field-scoped messages. The summary POST hands the collected answers to
`ApplicationService` and clears the wizard on success.

Route guards run before the CSRF check, which runs before rate limiting;
all three are declared as route dependencies in that order.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlmodel import Session

from . import models
from .auth import (
    csrf_protect,
    csrf_token,
    form_data,
    get_principal,
    peek_csrf_token,
    require_admin,
    require_user,
    sign_in,
    sign_out,
)
from .config import settings
from .database import get_session
from .errors import AppError, ValidationError
from .forms import ACTIVITIES, BUSINESS_TYPES, LICENSE_TYPES, FieldError, validate_form
from .services import ApplicationService, AuthService
from .wizard import DETAIL_STEPS, PERSONAL, SUMMARY, WizardState, WizardStep, next_step
from .utils.rate_limit import rate_limited

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

ADMIN_LIST_URL = "/admin/applications"
ADMIN_LIST_LIMIT = 100
SUBMISSION_FAILED = "An error occurred while submitting your application. Please try again."
ANSWERS_TOO_LONG = "Your answers are too long to save. Shorten them and try again."

logger = logging.getLogger("licensing.views")
router = APIRouter()


def log_event(event: str, request: Request, **fields: Any) -> None:
    """Write one structured application event line."""
    payload = {
        "event": event,
        "request_id": getattr(request.state, "request_id", None),
        "client": request.client.host if request.client else "unknown",
    }
    payload.update(fields)
    logger.info("application_event %s", json.dumps(payload, ensure_ascii=True, default=str))


def _error_dicts(errors: Iterable[Any]) -> List[Dict[str, Any]]:
    out = []
    for error in errors:
        out.append(error.as_dict() if isinstance(error, FieldError) else dict(error))
    return out


def render(
    request: Request,
    template: str,
    status_code: int = 200,
    issue_token: bool = True,
    **context: Any,
) -> HTMLResponse:
    """Render `template` with the values every page expects.

    `errors` is a list of `{field, message, value}` dicts; `field_errors`
    maps each field to its first message for inline display. With
    `issue_token=False` the page only reuses an existing CSRF token and
    never writes one into the session.
    """
    errors = _error_dicts(context.pop("errors", []))
    field_errors: Dict[str, str] = {}
    for error in errors:
        field_errors.setdefault(error.get("field") or "form", error["message"])
    context.setdefault("values", {})
    context.update(
        request=request,
        errors=errors,
        field_errors=field_errors,
        csrf_token=csrf_token(request) if issue_token else peek_csrf_token(request),
        app_name=settings.APP_NAME,
        current_user=get_principal(request, "user"),
        current_admin=get_principal(request, "admin"),
        business_types=BUSINESS_TYPES,
        license_types=LICENSE_TYPES,
        activity_choices=ACTIVITIES,
    )
    return templates.TemplateResponse(request, template, context, status_code=status_code)


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=303)


def _admin_list_url(**params: str) -> str:
    return f"{ADMIN_LIST_URL}?{urlencode(params)}" if params else ADMIN_LIST_URL


def _submitted_values(form: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in form.items() if k != "_csrf"}


@router.get("/", response_class=HTMLResponse)
def home(request: Request):
    log_event("homepage_visited", request)
    return render(request, "index.html")


@router.get("/login", response_class=HTMLResponse)
def login_page(request: Request):
    if get_principal(request, "user"):
        return _redirect(PERSONAL.path)
    return render(request, "login.html")


@router.post(
    "/login",
    response_class=HTMLResponse,
    dependencies=[Depends(csrf_protect(template="login.html")), Depends(rate_limited("forms"))],
)
def login(request: Request, form: Dict[str, Any] = Depends(form_data), db: Session = Depends(get_session)):
    email = str(form.get("email") or "")
    principal = AuthService(db).authenticate(email, str(form.get("password") or ""), "user")
    if principal is None:
        logger.info("user login failed for %s", email)
        return render(
            request,
            "login.html",
            status_code=401,
            errors=[{"field": "form", "message": "Invalid email or password", "value": None}],
            values={"email": email},
        )
    sign_in(request, principal)
    return _redirect(PERSONAL.path)


@router.get("/logout")
def logout(request: Request):
    sign_out(request, "user")
    WizardState.clear(request.session)
    return _redirect("/login")


def _register_step(step: WizardStep) -> None:
    """Attach the GET and POST handlers for one detail step."""

    def show(request: Request):
        state = WizardState.load(request.session)
        if not state.can_visit(step):
            return _redirect(state.first_incomplete().path)
        return render(request, step.template, step=step, values=state.step_data(step))

    def submit(request: Request, form: Dict[str, Any] = Depends(form_data)):
        state = WizardState.load(request.session)
        if not state.can_visit(step):
            return _redirect(state.first_incomplete().path)
        validated, errors = validate_form(step.form, form)
        if errors:
            return render(
                request,
                step.template,
                status_code=400,
                step=step,
                errors=errors,
                values=_submitted_values(form),
            )
        state.merge(step, validated)
        if not state.save(request.session):
            return render(
                request,
                step.template,
                status_code=400,
                step=step,
                errors=[{"field": "form", "message": ANSWERS_TOO_LONG, "value": None}],
                values=_submitted_values(form),
            )
        log_event(step.event, request)
        return _redirect(next_step(step).path)

    router.add_api_route(
        step.path,
        show,
        methods=["GET"],
        response_class=HTMLResponse,
        dependencies=[Depends(require_user)],
        name=f"{step.key}_details",
    )
    router.add_api_route(
        step.path,
        submit,
        methods=["POST"],
        response_class=HTMLResponse,
        dependencies=[
            Depends(require_user),
            Depends(csrf_protect(template=step.template)),
            Depends(rate_limited("forms")),
        ],
        name=f"{step.key}_details_submit",
    )


for _step in DETAIL_STEPS:
    _register_step(_step)


def _render_summary(request: Request, state: WizardState, status_code: int = 200, errors=()) -> HTMLResponse:
    return render(
        request,
        SUMMARY.template,
        status_code=status_code,
        step=SUMMARY,
        errors=list(errors),
        personal=state.personal,
        business=state.business,
        license=state.license,
    )


@router.get("/summary", response_class=HTMLResponse, dependencies=[Depends(require_user)])
def summary(request: Request):
    state = WizardState.load(request.session)
    if not state.can_visit(SUMMARY):
        return _redirect(state.first_incomplete().path)
    return _render_summary(request, state)


@router.post(
    "/summary",
    response_class=HTMLResponse,
    dependencies=[
        Depends(require_user),
        Depends(csrf_protect(template=SUMMARY.template)),
        Depends(rate_limited("forms")),
    ],
)
def submit_summary(
    request: Request,
    form: Dict[str, Any] = Depends(form_data),
    db: Session = Depends(get_session),
):
    state = WizardState.load(request.session)
    if not state.can_visit(SUMMARY):
        return _redirect(state.first_incomplete().path)
    declaration, errors = validate_form(SUMMARY.form, form)
    if errors:
        return _render_summary(request, state, status_code=400, errors=errors)
    try:
        result = ApplicationService(db).process_application_from_form_data(
            state.as_form_data(), declaration.declaration
        )
    except ValidationError as exc:
        logger.warning("application submission rejected: %s", exc.message)
        return _render_summary(request, state, status_code=400, errors=exc.details or [
            {"field": "form", "message": exc.message, "value": None}
        ])
    except AppError as exc:
        logger.error("application submission failed: %s (%s)", exc.message, exc.code)
        return _render_summary(request, state, status_code=500, errors=[
            {"field": "form", "message": SUBMISSION_FAILED, "value": None}
        ])
    request.session["application_id"] = result["applicationId"]
    WizardState.clear(request.session)
    log_event("application_submitted", request, application_id=result["applicationId"])
    return _redirect("/confirmation")


@router.get("/confirmation", response_class=HTMLResponse)
def confirmation(request: Request):
    return render(request, "confirmation.html", application_id=request.session.get("application_id"))


@router.get("/admin/login", response_class=HTMLResponse)
def admin_login_page(request: Request):
    if get_principal(request, "admin"):
        return _redirect(ADMIN_LIST_URL)
    return render(request, "admin_login.html")


@router.post(
    "/admin/login",
    response_class=HTMLResponse,
    dependencies=[Depends(csrf_protect(template="admin_login.html")), Depends(rate_limited("forms"))],
)
def admin_login(request: Request, form: Dict[str, Any] = Depends(form_data), db: Session = Depends(get_session)):
    email = str(form.get("email") or "")
    principal = AuthService(db).authenticate(email, str(form.get("password") or ""), "admin")
    if principal is None:
        logger.warning("admin login failed for %s", email)
        return render(
            request,
            "admin_login.html",
            status_code=401,
            errors=[{"field": "form", "message": "Invalid email or password", "value": None}],
            values={"email": email},
        )
    sign_in(request, principal)
    return _redirect(ADMIN_LIST_URL)


@router.get("/admin/logout")
def admin_logout(request: Request):
    request.session.clear()
    return _redirect("/admin/login")


@router.get(ADMIN_LIST_URL, response_class=HTMLResponse, dependencies=[Depends(require_admin)])
def admin_applications(
    request: Request,
    status: Optional[str] = None,
    success: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_session),
):
    svc = ApplicationService(db)
    try:
        result = svc.get_applications(limit=ADMIN_LIST_LIMIT, status=status or None)
    except ValidationError as exc:
        # unknown filter value: show everything with the reason
        error = exc.message
        status = None
        result = svc.get_applications(limit=ADMIN_LIST_LIMIT)
    return render(
        request,
        "admin_applications.html",
        applications=result["applications"],
        statuses=models.APPLICATION_STATUSES,
        current_status=status,
        success=success,
        error=error,
    )


@router.post(
    ADMIN_LIST_URL + "/{application_id}/status",
    dependencies=[
        Depends(require_admin),
        Depends(csrf_protect(redirect_url=_admin_list_url(error="Invalid CSRF token"))),
        Depends(rate_limited("forms")),
    ],
)
def admin_update_status(
    application_id: str,
    form: Dict[str, Any] = Depends(form_data),
    db: Session = Depends(get_session),
):
    status = form.get("status")
    if status not in models.FINAL_STATUSES:
        return PlainTextResponse("Invalid status", status_code=400)
    try:
        ApplicationService(db).update_application_status(application_id, status)
    except AppError as exc:
        logger.error("admin status change for %s failed: %s", application_id, exc.message)
        return _redirect(_admin_list_url(error="Failed to update application status"))
    return _redirect(_admin_list_url(success=f"Application {status} successfully"))
