"""
core/errors.py -- Domain error taxonomy shared by auth/ and api/.

Services raise these; they never raise HTTPException. The API layer maps each
class to a status code and the structured ErrorResponse envelope, so the
mapping lives in exactly one place (api/main.py exception handlers).

  ConflictError  -> 409  duplicate signup
  NotFoundError  -> 404  missing user/token/OTP, invalid OTP or refresh token,
                         malformed email
  InternalError  -> 500  unexpected failure; public message is generic

Layer rule: core/ is the kernel and imports nothing from the project.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that are safe to report to API clients."""

    status_code = 500
    code = "error"
    default_message = "An error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ConflictError(AppError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class InternalError(AppError):
    """Unexpected failure. The message never includes the underlying cause --
    chain the original exception with `raise ... from exc` and log it instead."""

    status_code = 500
    code = "internal_error"
    default_message = "An unexpected error occurred."
