"""Session authentication helpers and FastAPI security dependencies.

Principals live in the signed session cookie under `principals`, one
slot per role, so a browser can hold a user and an admin sign-in at the
same time. `require_user` and `require_admin` are route dependencies that
return the `Principal` or raise `LoginRequired`, which the application
turns into a redirect to the matching login page.

CSRF tokens are generated once per session and checked on every
state-changing form post with `csrf_protect`.
"""

import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import Depends, Request

from .errors import CsrfError, LoginRequired
from .schemas import Principal

PRINCIPALS_KEY = "principals"
CSRF_SESSION_KEY = "csrf_token"
CSRF_FORM_FIELD = "_csrf"
CSRF_HEADER = "X-CSRF-Token"
LOGIN_URLS = {"user": "/login", "admin": "/admin/login"}

logger = logging.getLogger("licensing.auth")


def get_principal(request: Request, role: str) -> Optional[Principal]:
    """Return the principal signed in for `role`, or None."""
    data = (request.session.get(PRINCIPALS_KEY) or {}).get(role)
    if not isinstance(data, dict):
        return None
    try:
        return Principal(**data)
    except (TypeError, ValueError):
        return None


def sign_in(request: Request, principal: Principal) -> None:
    principals = dict(request.session.get(PRINCIPALS_KEY) or {})
    principals[principal.role] = principal.model_dump()
    request.session[PRINCIPALS_KEY] = principals
    logger.info("%s signed in as %s", principal.email, principal.role)


def sign_out(request: Request, role: str) -> None:
    principals = dict(request.session.get(PRINCIPALS_KEY) or {})
    principals.pop(role, None)
    request.session[PRINCIPALS_KEY] = principals


def require_role(role: str):
    """Build a dependency that admits only principals holding `role`."""
    def dependency(request: Request) -> Principal:
        principal = get_principal(request, role)
        if principal is None or not principal.has_role(role):
            raise LoginRequired(LOGIN_URLS[role])
        return principal

    return dependency


require_user = require_role("user")
require_admin = require_role("admin")


def csrf_token(request: Request) -> str:
    """Return the session's CSRF token, creating it on first use."""
    token = request.session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_hex(32)
        request.session[CSRF_SESSION_KEY] = token
    return token


def peek_csrf_token(request: Request) -> str:
    """Return the session's CSRF token, or "" when none has been issued."""
    return request.session.get(CSRF_SESSION_KEY) or ""


async def form_data(request: Request) -> Dict[str, Any]:
    """Parsed form body; repeated fields become lists."""
    form = await request.form()
    data: Dict[str, Any] = {}
    for key in form.keys():
        values = form.getlist(key)
        data[key] = values if len(values) > 1 else values[0]
    return data


def csrf_protect(template: Optional[str] = None, redirect_url: Optional[str] = None):
    """Build a dependency rejecting posts whose token does not match the session.

    On failure `CsrfError` is raised carrying either the template to
    re-render empty or the URL to redirect to; the session is left alone.
    """
    async def dependency(request: Request, form: Dict[str, Any] = Depends(form_data)) -> None:
        expected = request.session.get(CSRF_SESSION_KEY)
        submitted = form.get(CSRF_FORM_FIELD) or request.headers.get(CSRF_HEADER)
        if isinstance(submitted, list):
            submitted = submitted[0]
        if not expected or not submitted or not secrets.compare_digest(str(submitted), str(expected)):
            logger.warning("csrf token rejected for %s %s", request.method, request.url.path)
            raise CsrfError(template=template, redirect_url=redirect_url)

    return dependency
