"""FastAPI application entrypoint and JSON API controllers.

This module builds the application: sessions, CORS, request logging and
security headers, exception handlers, the HTML views from `views`, and
the JSON API. Controllers are intentionally thin: they accept requests,
delegate to `ApplicationService`, and wrap results in the
`{success, data|error, message}` envelope.

Endpoints implemented here:
- GET /api/health
- GET /api/applications
- GET /api/applications/{application_id}
- POST /api/applications
- PATCH /api/applications/{application_id}/status
- DELETE /api/applications/{application_id}
"""

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from . import views
from .config import settings
from .database import check_connection, create_db_and_tables, engine, get_session
from .errors import AppError, CsrfError, LoginRequired
from .schemas import StatusUpdateIn
from .services import ApplicationService, AuthService
from .utils.rate_limit import rate_limited

logger = logging.getLogger("licensing.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

SECURITY_HEADERS = {
    "X-Robots-Tag": "noindex, nofollow",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "same-origin",
}
HTTP_ERROR_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    429: "RATE_LIMIT_EXCEEDED",
}


@asynccontextmanager
async def lifespan(_app: FastAPI):
    create_db_and_tables()
    with Session(engine) as session:
        AuthService(session).ensure_default_users()
    logger.info("%s %s started (env=%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENV)
    yield


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    SessionMiddleware,
    secret_key=settings.SESSION_SECRET,
    session_cookie=settings.SESSION_COOKIE,
    max_age=settings.SESSION_MAX_AGE,
    same_site="strict",
    https_only=settings.is_production,
)

# Wide-open CORS is only for local API testers; otherwise a single origin.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.ALLOW_DEV_CORS else [settings.CORS_ORIGIN],
    allow_credentials=not settings.ALLOW_DEV_CORS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "client": request.client.host if request.client else "unknown",
            },
            ensure_ascii=True,
        ),
    )
    return response


def _is_api(request: Request) -> bool:
    return request.url.path.startswith("/api")


def envelope_error(status_code: int, code: str, message: str, details=None, headers=None) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "error": code, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _render_error(request: Request, status_code: int, title: str, message: str, headers=None) -> Response:
    response = views.render(request, "error.html", status_code=status_code, title=title, message=message)
    if headers:
        response.headers.update(headers)
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if _is_api(request):
        return envelope_error(exc.status_code, exc.code, exc.message, getattr(exc, "details", None))
    if isinstance(exc, LoginRequired):
        return RedirectResponse(exc.login_url, status_code=303)
    if isinstance(exc, CsrfError):
        if exc.redirect_url:
            return RedirectResponse(exc.redirect_url, status_code=303)
        if exc.template:
            return views.render(
                request,
                exc.template,
                status_code=exc.status_code,
                issue_token=False,
                errors=[{"field": "form", "message": "Your form has expired. Please try again.", "value": None}],
            )
        return PlainTextResponse(exc.message, status_code=exc.status_code)
    if exc.status_code >= 500:
        logger.error("unhandled application error %s: %s", exc.code, exc.message)
        return _render_error(request, exc.status_code, "Sorry, there is a problem with the service", "Try again later.")
    return _render_error(request, exc.status_code, exc.message, "Check the address and try again.")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")),
            "message": err.get("msg"),
            "value": err.get("input"),
        }
        for err in exc.errors()
    ]
    if _is_api(request):
        return envelope_error(400, "VALIDATION_ERROR", "Validation failed", json.loads(json.dumps(details, default=str)))
    return _render_error(request, 400, "Invalid request", "The request could not be understood.")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    headers = getattr(exc, "headers", None)
    if _is_api(request):
        code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
        message = "Route not found" if exc.status_code == 404 else str(exc.detail)
        return envelope_error(exc.status_code, code, message, headers=headers)
    if exc.status_code == 404:
        return _render_error(request, 404, "Page not found", "If you typed the web address, check it is correct.")
    return _render_error(request, exc.status_code, "Something went wrong", str(exc.detail), headers=headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    if _is_api(request):
        return envelope_error(500, "INTERNAL_ERROR", "Internal server error")
    return PlainTextResponse("Internal server error", status_code=500)


api = APIRouter(prefix="/api", tags=["api"])


@api.get("/health")
def health():
    """Report liveness, version and database connectivity."""
    database_ok = check_connection()
    return {
        "success": True,
        "data": {
            "status": "healthy" if database_ok else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.APP_VERSION,
            "database": "connected" if database_ok else "unavailable",
        },
        "message": "Service is healthy" if database_ok else "Database unavailable",
    }


@api.get("/applications", dependencies=[Depends(rate_limited("api"))])
def list_applications(
    limit: int = 50,
    offset: int = 0,
    status: Optional[str] = None,
    db: Session = Depends(get_session),
):
    """Return a page of applications, newest first."""
    result = ApplicationService(db).get_applications(limit=limit, offset=offset, status=status)
    return {
        "success": True,
        "data": [record.to_wire() for record in result["applications"]],
        "pagination": result["pagination"],
    }


@api.get("/applications/{application_id}", dependencies=[Depends(rate_limited("api"))])
def get_application(application_id: str, db: Session = Depends(get_session)):
    record = ApplicationService(db).get_application(application_id)
    return {"success": True, "data": record.to_wire()}


@api.post("/applications", status_code=201, dependencies=[Depends(rate_limited("api"))])
def create_application(payload: Dict[str, Any] = Body(...), db: Session = Depends(get_session)):
    """Create an application from a nested JSON payload.

    The body carries `personalDetails`, `businessDetails`,
    `licenseDetails` and `declaration`.
    """
    result = ApplicationService(db).create_application(payload)
    return {"success": True, "data": result, "message": "Application created successfully"}


@api.patch("/applications/{application_id}/status", dependencies=[Depends(rate_limited("api"))])
def update_application_status(application_id: str, payload: StatusUpdateIn, db: Session = Depends(get_session)):
    result = ApplicationService(db).update_application_status(application_id, payload.status)
    return {"success": True, "data": result, "message": "Application status updated successfully"}


@api.delete("/applications/{application_id}", dependencies=[Depends(rate_limited("api"))])
def delete_application(application_id: str, db: Session = Depends(get_session)):
    result = ApplicationService(db).delete_application(application_id)
    return {"success": True, "data": result, "message": "Application deleted successfully"}


app.include_router(api)
app.include_router(views.router)
