"""
API request and response models for the account service REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.

Password fields are capped at 72 bytes of UTF-8, which is all bcrypt will
hash. The character cap catches ASCII cheaply; _password_bytes catches
multibyte input that fits in 72 characters but not in 72 bytes.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import PublicUser
from auth.tokens import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_PASSWORD_LENGTH = MAX_PASSWORD_BYTES
MAX_USERNAME_LENGTH = 64
MAX_EMAIL_LENGTH = 255
MAX_FULL_NAME_LENGTH = 255


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


def _password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/users/login.

    Either username or email identifies the account. Both blank is rejected by
    the session manager with a 400, not by schema validation, so the client
    gets the same error envelope as every other business rule.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, max_length=MAX_USERNAME_LENGTH)
    email: Optional[str] = Field(default=None, max_length=MAX_EMAIL_LENGTH)
    password: str = Field(default="", max_length=MAX_PASSWORD_LENGTH)

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: str) -> str:
        return _password_bytes(value)


class RefreshRequest(BaseModel):
    """Optional body for POST /api/v1/users/refresh-token.

    Browser clients send the refresh token as a cookie; mobile clients that
    cannot keep cookies send it here.
    """

    refresh_token: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    old_password: str = Field(default="", max_length=MAX_PASSWORD_LENGTH)
    new_password: str = Field(default="", max_length=MAX_PASSWORD_LENGTH)

    @field_validator("old_password", "new_password")
    @classmethod
    def check_password_bytes(cls, value: str) -> str:
        return _password_bytes(value)


class UpdateAccountRequest(BaseModel):
    """Request body for PATCH /api/v1/users/update-account."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(default="", max_length=MAX_FULL_NAME_LENGTH)
    email: str = Field(default="", max_length=MAX_EMAIL_LENGTH)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Sanitized user record. Has no password or refresh token field to leak."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    full_name: str
    avatar_url: str
    cover_image_url: str
    created_at: str
    updated_at: str

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            avatar_url=user.avatar_url,
            cover_image_url=user.cover_image_url,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password


class LoginResponse(TokenResponse):
    user: UserResponse


class ApiResponse(BaseModel):
    """Success envelope returned by every account endpoint."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    data: Any
    message: str = "Success"
    success: bool = True


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    error: ErrorDetail
    success: bool = False


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
