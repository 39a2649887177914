"""
api/routes/v1/users.py -- Account and session REST endpoints.

Routes:
  POST  /api/v1/users/register         -- multipart signup with avatar (+ optional cover image)
  POST  /api/v1/users/login            -- username/email + password; sets token cookies
  POST  /api/v1/users/logout           -- clears stored refresh token and cookies (requires auth)
  POST  /api/v1/users/refresh-token    -- rotate the pair using the refresh cookie or body token
  POST  /api/v1/users/change-password  -- verify old password, set new one (requires auth)
  GET   /api/v1/users/current-user     -- sanitized record of the caller (requires auth)
  PATCH /api/v1/users/update-account   -- full_name + email (requires auth)
  PATCH /api/v1/users/avatar           -- replace avatar image (requires auth)
  PATCH /api/v1/users/cover-image      -- replace cover image (requires auth)

Every handler is a plain def: FastAPI runs it in the thread pool, so bcrypt,
store I/O and media uploads never block the event loop.

Handlers do no business logic. They spool uploads, call the SessionManager,
and wrap the result in the ApiResponse envelope. Business-rule failures are
AccountError subclasses raised by the SessionManager and rendered by the
exception handler in api/main.py.

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  Cache-Control: no-store on every response that carries tokens.
  Uploads are restricted to image content types and MAX_UPLOAD_BYTES.
"""

import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    MAX_EMAIL_LENGTH,
    MAX_FULL_NAME_LENGTH,
    MAX_PASSWORD_LENGTH,
    MAX_USERNAME_LENGTH,
    ApiResponse,
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    TokenResponse,
    UpdateAccountRequest,
    UserResponse,
)
from auth.dependencies import extract_refresh_token, get_current_user, get_session_manager
from auth.errors import ValidationError
from auth.models import PublicUser
from auth.session import SessionManager
from auth.tokens import TokenPair, clear_auth_cookies, set_auth_cookies
from core.config import Settings
from media.models import FileRef
from media.uploader import ALLOWED_CONTENT_TYPES

# Auth policy:
# - POST  /users/register:        public
# - POST  /users/login:           public, rate-limited
# - POST  /users/refresh-token:   public -- the refresh token is the credential
# - everything else:              requires an access token (get_current_user)
router = APIRouter(prefix="/users")

_CHUNK_SIZE = 64 * 1024


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _envelope(status_code: int, data: Any, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse(status_code=status_code, data=data, message=message).model_dump(),
    )


def _user_payload(user: PublicUser) -> dict:
    return UserResponse.from_public(user).model_dump()


def _spool_upload(upload: UploadFile | None, settings: Settings) -> FileRef | None:
    """Copy an uploaded file to local disk and describe it with a FileRef.

    A missing part, or a part with an empty filename (what browsers send when
    no file was chosen), is absence -- None -- not an error.
    """
    if upload is None or not upload.filename:
        return None
    content_type = (upload.content_type or "").lower()
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ValidationError(f"Unsupported image type for {upload.filename!r}.")

    settings.upload_tmp_dir.mkdir(parents=True, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile(
        delete=False,
        dir=settings.upload_tmp_dir,
        prefix="upload-",
        suffix=ALLOWED_CONTENT_TYPES[content_type],
    )
    path = Path(tmp.name)
    written = 0
    try:
        with tmp:
            while chunk := upload.file.read(_CHUNK_SIZE):
                written += len(chunk)
                if written > settings.max_upload_bytes:
                    raise ValidationError(
                        f"File must be {settings.max_upload_bytes // (1024 * 1024)} MB or smaller."
                    )
                tmp.write(chunk)
    except BaseException:
        path.unlink(missing_ok=True)
        raise
    return FileRef(path=path, filename=upload.filename, content_type=content_type)


@contextmanager
def _spooled(settings: Settings, *uploads: UploadFile | None) -> Iterator[list[FileRef | None]]:
    """Spool every upload and remove whatever is left on disk afterwards.

    The media uploader deletes files it consumes; this catches the ones an
    early validation failure never handed to it.
    """
    refs: list[FileRef | None] = []
    try:
        for upload in uploads:
            refs.append(_spool_upload(upload, settings))
        yield refs
    finally:
        for ref in refs:
            if ref is not None:
                ref.path.unlink(missing_ok=True)
        for upload in uploads:
            if upload is not None:
                upload.file.close()


def _token_response(request: Request, status_code: int, data: dict, message: str, tokens: TokenPair) -> JSONResponse:
    resp = _envelope(status_code, data, message)
    sessions = get_session_manager(request)
    set_auth_cookies(resp, tokens, sessions.tokens, secure=_settings(request).secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/register", status_code=201)
def register(
    request: Request,
    full_name: str = Form(default="", max_length=MAX_FULL_NAME_LENGTH),
    email: str = Form(default="", max_length=MAX_EMAIL_LENGTH),
    username: str = Form(default="", max_length=MAX_USERNAME_LENGTH),
    password: str = Form(default="", max_length=MAX_PASSWORD_LENGTH),
    avatar: Optional[UploadFile] = File(default=None),
    cover_image: Optional[UploadFile] = File(default=None),
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Create an account. Returns the sanitized user record."""
    sessions.check_registration(full_name, email, username, password)
    with _spooled(_settings(request), avatar, cover_image) as (avatar_ref, cover_ref):
        user = sessions.register(
            full_name=full_name,
            email=email,
            username=username,
            password=password,
            avatar=avatar_ref,
            cover_image=cover_ref,
        )
    return _envelope(201, _user_payload(user), "User registered successfully")


@router.post("/login", response_model=ApiResponse)
@limiter.limit(login_rate_limit)  # below @router: the registered endpoint is the limiting wrapper
def login(
    request: Request,
    body: LoginRequest,
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Authenticate with username or email plus password; set both token cookies."""
    result = sessions.login(body.password, username=body.username, email=body.email)
    data = LoginResponse(
        user=UserResponse.from_public(result.user),
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
    ).model_dump()
    return _token_response(request, 200, data, "User logged in successfully", result.tokens)


@router.post("/refresh-token", response_model=ApiResponse)
def refresh_token(
    request: Request,
    body: Optional[RefreshRequest] = None,
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Rotate the token pair. The presented refresh token is dead after this call."""
    presented = extract_refresh_token(request, body.refresh_token if body else None)
    tokens = sessions.refresh(presented)
    data = TokenResponse(access_token=tokens.access_token, refresh_token=tokens.refresh_token).model_dump()
    return _token_response(request, 200, data, "Access token refreshed", tokens)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/logout", response_model=ApiResponse)
def logout(
    request: Request,
    current_user: PublicUser = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Invalidate the stored refresh token and clear both cookies."""
    sessions.logout(current_user.id)
    resp = _envelope(200, {}, "User logged out")
    clear_auth_cookies(resp, secure=_settings(request).secure_cookies)
    return resp


@router.post("/change-password", response_model=ApiResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: PublicUser = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Change the caller's password. Ends every session when revocation is enabled."""
    sessions.change_password(current_user.id, body.old_password, body.new_password)
    resp = _envelope(200, {}, "Password changed successfully")
    if sessions.revoke_sessions_on_password_change:
        clear_auth_cookies(resp, secure=_settings(request).secure_cookies)
    return resp


@router.get("/current-user", response_model=ApiResponse)
def read_current_user(
    current_user: PublicUser = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    user = sessions.get_current_user(current_user.id)
    return _envelope(200, _user_payload(user), "Current user fetched successfully")


@router.patch("/update-account", response_model=ApiResponse)
def update_account(
    body: UpdateAccountRequest,
    current_user: PublicUser = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    user = sessions.update_profile(current_user.id, body.full_name, body.email)
    return _envelope(200, _user_payload(user), "Account details updated successfully")


@router.patch("/avatar", response_model=ApiResponse)
def update_avatar(
    request: Request,
    avatar: Optional[UploadFile] = File(default=None),
    current_user: PublicUser = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    with _spooled(_settings(request), avatar) as (avatar_ref,):
        user = sessions.update_avatar(current_user.id, avatar_ref)
    return _envelope(200, _user_payload(user), "Avatar image updated successfully")


@router.patch("/cover-image", response_model=ApiResponse)
def update_cover_image(
    request: Request,
    cover_image: Optional[UploadFile] = File(default=None),
    current_user: PublicUser = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    with _spooled(_settings(request), cover_image) as (cover_ref,):
        user = sessions.update_cover_image(current_user.id, cover_ref)
    return _envelope(200, _user_payload(user), "Cover image updated successfully")
