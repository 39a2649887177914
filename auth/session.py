"""
auth/session.py -- Account and session state machine.

SessionManager composes the UserStore, TokenIssuer, PasswordHasher and a
media uploader into the operations the API exposes: register, login, logout,
refresh, change_password, profile/avatar/cover updates, and access-token
authentication.

Session model:
  Each account has at most one active refresh token, stored in the user
  record. login() overwrites it unconditionally (any token held by another
  client dies immediately). refresh() rotates it with a compare-and-set keyed
  on the presented value, so a refresh token is single-use: once rotated, the
  old value is rejected even though its signature and expiry are still valid,
  and two concurrent refreshes with the same token produce exactly one winner.
  logout() clears it.

Sanitization:
  Every method that returns a user returns a PublicUser built from the stored
  record. password_hash and refresh_token never leave this module.

Blocking work (bcrypt, store I/O, uploads) is synchronous here; the API runs
these calls from plain def routes, which FastAPI executes in its thread pool.

Layer rule: no imports from api/. media/ is used only through the
MediaUploader protocol.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from auth.errors import AuthError, ConflictError, InternalError, NotFoundError, UploadError, ValidationError
from auth.models import PublicUser, User
from auth.store import UserStore
from auth.tokens import MAX_PASSWORD_BYTES, PasswordHasher, TokenIssuer, TokenKind, TokenPair
from media.models import FileRef, MediaAsset
from media.uploader import MediaUploader

logger = logging.getLogger("vidstream.auth.session")


@dataclass(frozen=True)
class LoginResult:
    user: PublicUser
    tokens: TokenPair


def _clean(value: str | None) -> str:
    return (value or "").strip()


def normalize_email(value: str | None) -> str:
    return _clean(value).lower()


def normalize_username(value: str | None) -> str:
    return _clean(value).lower()


class SessionManager:
    """Orchestrates account mutations and the refresh-token rotation protocol."""

    def __init__(
        self,
        store: UserStore,
        tokens: TokenIssuer,
        hasher: PasswordHasher,
        media: MediaUploader,
        *,
        revoke_sessions_on_password_change: bool = True,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.hasher = hasher
        self.media = media
        self.revoke_sessions_on_password_change = revoke_sessions_on_password_change

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def check_registration(self, full_name: str, email: str, username: str, password: str) -> None:
        """Run the field and uniqueness checks of register() without touching files.

        The HTTP layer calls this before spooling uploads, so a bad form is
        reported as such rather than as a bad file.
        """
        if not all((_clean(full_name), normalize_email(email), normalize_username(username), _clean(password))):
            raise ValidationError("All fields are required")
        self._check_password_length(password)
        found = self.store.find_by_username_or_email(
            username=normalize_username(username), email=normalize_email(email)
        )
        if found is not None:
            raise ConflictError("User with email or username already exists")

    def register(
        self,
        full_name: str,
        email: str,
        username: str,
        password: str,
        avatar: FileRef | None,
        cover_image: FileRef | None = None,
    ) -> PublicUser:
        """Create an account and return its sanitized record.

        Validation order: required fields, then uniqueness, then the avatar
        file. Uploads happen only after every cheap check has passed.
        """
        self.check_registration(full_name, email, username, password)
        full_name = _clean(full_name)
        email = normalize_email(email)
        username = normalize_username(username)

        if avatar is None:
            raise ValidationError("Avatar file is required")

        avatar_url = self._upload_required(avatar, "avatar")
        cover_image_url = ""
        if cover_image is not None:
            try:
                cover_image_url = self._upload_required(cover_image, "cover image")
            except UploadError as exc:
                # The cover is optional; an unusable upload leaves it blank.
                logger.warning("Cover image upload failed during registration of %s: %s", username, exc.message)

        try:
            user_id = self.store.create_user(
                User(
                    username=username,
                    email=email,
                    full_name=full_name,
                    avatar_url=avatar_url,
                    cover_image_url=cover_image_url,
                    password_hash=self.hasher.hash(password),
                )
            )
        except IntegrityError as exc:
            raise ConflictError("User with email or username already exists") from exc

        created = self.store.get_by_id(user_id)
        if created is None:
            raise InternalError("Something went wrong while registering the user")
        logger.info("Registered user %s (%s)", created.username, created.id)
        return PublicUser.from_user(created)

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, password: str, username: str | None = None, email: str | None = None) -> LoginResult:
        """Verify credentials, rotate the refresh token, and return a new pair."""
        username = normalize_username(username)
        email = normalize_email(email)
        if not username and not email:
            raise ValidationError("username or email is required")

        user = self.store.find_by_username_or_email(username=username, email=email)
        if user is None:
            raise NotFoundError("User does not exist")

        if not self.hasher.verify(password or "", user.password_hash):
            logger.info("Failed login for %s", user.username)
            raise AuthError("Invalid user credentials")

        tokens, updated = self._issue_and_store(user)
        logger.info("User %s logged in", updated.username)
        return LoginResult(user=PublicUser.from_user(updated), tokens=tokens)

    def logout(self, user_id: str) -> None:
        """Clear the stored refresh token. Idempotent; an unknown id is a no-op."""
        if self.store.update_fields(user_id, refresh_token=None) is not None:
            logger.info("User %s logged out", user_id)

    # ------------------------------------------------------------------
    # Refresh rotation
    # ------------------------------------------------------------------

    def refresh(self, presented_refresh_token: str | None) -> TokenPair:
        """Exchange a valid, current refresh token for a new pair.

        The presented token must verify with the refresh key AND equal the
        stored token. The swap to the new token is a compare-and-set on the
        presented value, so a concurrent refresh that rotated first makes
        this call fail instead of issuing a second live pair.
        """
        if not presented_refresh_token:
            raise AuthError("Unauthorized request")

        try:
            claims = self.tokens.verify(presented_refresh_token, TokenKind.REFRESH)
        except AuthError as exc:
            raise AuthError("Invalid refresh token") from exc

        user = self.store.get_by_id(claims["sub"])
        if user is None:
            raise AuthError("Invalid refresh token")

        if presented_refresh_token != user.refresh_token:
            logger.warning("Rejected stale or reused refresh token for user %s", user.id)
            raise AuthError("Refresh token is expired or used")

        tokens = self.tokens.issue_pair(user)
        if not self.store.compare_and_set_refresh_token(user.id, presented_refresh_token, tokens.refresh_token):
            logger.warning("Lost refresh rotation race for user %s", user.id)
            raise AuthError("Refresh token is expired or used")

        logger.info("Rotated refresh token for user %s", user.id)
        return tokens

    # ------------------------------------------------------------------
    # Authenticated reads and account mutations
    # ------------------------------------------------------------------

    def authenticate(self, access_token: str | None) -> PublicUser:
        """Resolve an access token to the account it was issued for."""
        if not access_token:
            raise AuthError("Unauthorized request")
        claims = self.tokens.verify(access_token, TokenKind.ACCESS)
        user = self.store.get_by_id(claims["sub"])
        if user is None:
            raise AuthError("Invalid access token")
        return PublicUser.from_user(user)

    def get_current_user(self, user_id: str) -> PublicUser:
        return PublicUser.from_user(self._require_user(user_id))

    def change_password(self, user_id: str, old_password: str, new_password: str) -> None:
        """Replace the password after verifying the old one.

        With revoke_sessions_on_password_change (the default) the stored
        refresh token is cleared in the same write, ending every session.
        """
        if not _clean(new_password):
            raise ValidationError("New password is required")
        self._check_password_length(new_password)
        user = self._require_user(user_id)
        if not self.hasher.verify(old_password or "", user.password_hash):
            raise AuthError("Invalid old password")

        fields: dict = {"password_hash": self.hasher.hash(new_password)}
        if self.revoke_sessions_on_password_change:
            fields["refresh_token"] = None
        self._update(user_id, **fields)
        logger.info("Password changed for user %s (sessions revoked: %s)", user_id, "refresh_token" in fields)

    def update_profile(self, user_id: str, full_name: str, email: str) -> PublicUser:
        full_name = _clean(full_name)
        email = normalize_email(email)
        if not full_name or not email:
            raise ValidationError("All fields are required")
        self._require_user(user_id)
        if self.store.email_taken(email, exclude_user_id=user_id):
            raise ConflictError("Email is already in use")
        try:
            updated = self._update(user_id, full_name=full_name, email=email)
        except IntegrityError as exc:
            raise ConflictError("Email is already in use") from exc
        return PublicUser.from_user(updated)

    def update_avatar(self, user_id: str, avatar: FileRef | None) -> PublicUser:
        if avatar is None:
            raise ValidationError("Avatar file is missing")
        self._require_user(user_id)
        url = self._upload_required(avatar, "avatar")
        return PublicUser.from_user(self._update(user_id, avatar_url=url))

    def update_cover_image(self, user_id: str, cover_image: FileRef | None) -> PublicUser:
        if cover_image is None:
            raise ValidationError("Cover image file is missing")
        self._require_user(user_id)
        url = self._upload_required(cover_image, "cover image")
        return PublicUser.from_user(self._update(user_id, cover_image_url=url))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_password_length(self, password: str) -> None:
        if not self.hasher.fits(password):
            raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

    def _require_user(self, user_id: str) -> User:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User does not exist")
        return user

    def _update(self, user_id: str, **fields) -> User:
        updated = self.store.update_fields(user_id, **fields)
        if updated is None:
            raise NotFoundError("User does not exist")
        return updated

    def _issue_and_store(self, user: User) -> tuple[TokenPair, User]:
        """Mint a pair and persist its refresh token, overwriting any previous one."""
        tokens = self.tokens.issue_pair(user)
        updated = self.store.update_fields(user.id, refresh_token=tokens.refresh_token)
        if updated is None:
            raise InternalError("Something went wrong while generating access and refresh tokens")
        return tokens, updated

    def _upload_required(self, ref: FileRef, label: str) -> str:
        asset: MediaAsset = self.media.upload(ref)
        if not asset.url:
            raise UploadError(f"Error while uploading {label}")
        return asset.url
