"""Error taxonomy shared by the service layer and HTTP controllers.

Every error raised towards a controller is an `AppError` carrying an HTTP
status code and a machine-readable `code`. Controllers never need to inspect
lower-layer exceptions: the service layer maps them onto one of these classes
before they leave it.
"""

from typing import Any, Dict, List, Optional


class AppError(Exception):
    """Unexpected failure; reported to clients as an internal error."""
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error", code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(AppError):
    """Malformed or missing input. `details` lists field-scoped problems."""
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Validation failed", details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.details = details or []


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class UnauthorizedError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized access"):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Access forbidden"):
        super().__init__(message)


class LoginRequired(UnauthorizedError):
    """Raised by route guards; HTML controllers answer it with a redirect."""

    def __init__(self, login_url: str):
        super().__init__("Authentication required")
        self.login_url = login_url


class CsrfError(ForbiddenError):
    """Missing or mismatched CSRF token.

    `template` names the form to re-render (empty) with the rejection; when
    it is None the client is redirected to `redirect_url` instead.
    """
    code = "INVALID_CSRF_TOKEN"

    def __init__(self, template: Optional[str] = None, redirect_url: Optional[str] = None):
        super().__init__("Invalid CSRF token")
        self.template = template
        self.redirect_url = redirect_url
