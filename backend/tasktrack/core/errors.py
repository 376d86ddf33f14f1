"""
Domain errors raised by services and translated to HTTP responses in main.py.

Each error carries the status code it maps to, so routes never have to
build HTTPException objects for expected failures.
"""

from typing import Any, Dict, List, Optional


class AppError(Exception):
    status_code = 500
    detail = "Internal server error"
    headers: Optional[Dict[str, str]] = None

    def __init__(self, detail: Optional[str] = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail}


class ValidationError(AppError):
    """Malformed or missing input. Lists every offending field, not just the first."""

    status_code = 400
    detail = "Validation failed"

    def __init__(self, errors: List[Dict[str, str]], detail: Optional[str] = None):
        self.errors = errors
        super().__init__(detail)

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "errors": self.errors}


class AuthenticationError(AppError):
    status_code = 401
    headers = {"WWW-Authenticate": "Bearer"}


class InvalidCredentials(AuthenticationError):
    # Same message for unknown email and wrong password - prevents user enumeration
    detail = "Incorrect email or password"


class InvalidToken(AuthenticationError):
    detail = "Could not validate credentials"


class InvalidAssertion(AuthenticationError):
    detail = "External identity could not be verified"


class NotFound(AppError):
    status_code = 404
    detail = "Not found"


class DuplicateIdentity(AppError):
    status_code = 409
    detail = "Email already registered"


class PayloadTooLarge(AppError):
    status_code = 413
    detail = "File too large"


class UnsupportedMediaType(AppError):
    status_code = 415
    detail = "Invalid file type. Only JPEG, PNG and GIF are allowed."


class DependencyUnavailable(AppError):
    status_code = 503
    detail = "Service dependency unavailable"
