"""
auth/errors.py -- Typed error taxonomy for account and session operations.

Every business-rule failure raised by auth/ and media/ is an AccountError
subclass carrying the HTTP status code and a machine-readable code. The
transport layer (api/main.py) translates them into the error envelope with a
single exception handler, so route handlers never build error responses by
hand and no stack detail ever reaches a client.

Layer rule: no imports from api/ or media/. This module is imported by both.
"""

from __future__ import annotations


class AccountError(Exception):
    """Base class for every failure the account service reports to callers."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Something went wrong."

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(AccountError):
    """Malformed or missing caller input."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid request."


class ConflictError(AccountError):
    """Uniqueness violation (username or email already taken)."""

    status_code = 409
    code = "conflict"
    default_message = "User with email or username already exists."


class NotFoundError(AccountError):
    status_code = 404
    code = "not_found"
    default_message = "User does not exist."


class AuthError(AccountError):
    """Bad credentials, or an invalid, expired or replayed token.

    The message is deliberately coarse: callers must not be able to tell an
    expired token from a forged one.
    """

    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized request."


class UploadError(AccountError):
    """The media store did not produce a usable URL.

    400 when the store answered without a URL, 502 on transport failure,
    504 when the upload timed out.
    """

    status_code = 400
    code = "upload_failed"
    default_message = "Error while uploading file."


class InternalError(AccountError):
    """Store or invariant failure beyond the caller's control."""
