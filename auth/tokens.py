"""
auth/tokens.py -- JWT issuance/verification, password hashing, and cookie utilities.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets and carry a "type" claim, so an access token can never
       be replayed as a refresh token or vice versa. Every token carries a
       random jti: two tokens minted for the same user in the same second are
       still distinct, which is what makes rotation observable. Verification
       raises AuthError on any failure -- the caller cannot tell an expired
       token from a forged one.

  Passwords: bcrypt via direct usage (no passlib wrapper). Bcrypt is the right
       choice for low-entropy secrets because its cost factor makes brute force
       expensive. checkpw() compares in constant time. The cost factor comes
       from Settings.bcrypt_rounds so tests can run at the minimum cost.

  Configuration: nothing here reads global settings. TokenIssuer and
       PasswordHasher are built from a Settings instance at startup
       (from_settings) and injected into the SessionManager.

Layer rule: no imports from api/ or media/. Import from core/ is allowed --
core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt

from auth.errors import AuthError

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

logger = logging.getLogger("vidstream.auth.tokens")

_ALGORITHM = "HS256"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

# bcrypt reads at most 72 bytes of input; bcrypt 5 refuses longer passwords.
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


class PasswordHasher:
    """One-way salted password hashing with a configurable bcrypt cost."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    @classmethod
    def from_settings(cls, settings: Settings) -> PasswordHasher:
        return cls(rounds=settings.bcrypt_rounds)

    @staticmethod
    def fits(plain: str) -> bool:
        """True if the UTF-8 encoding of plain is within bcrypt's 72-byte input."""
        return len(plain.encode("utf-8")) <= MAX_PASSWORD_BYTES

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        Raises ValueError for input over MAX_PASSWORD_BYTES. The session manager
        checks fits() first and reports a ValidationError instead.
        """
        if not self.fits(plain):
            raise ValueError(f"Password cannot be longer than {MAX_PASSWORD_BYTES} bytes.")
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        A malformed stored hash makes bcrypt raise ValueError; that is a
        failed verification, not a server error. So is a plaintext too long
        to ever have been hashed.
        """
        if not self.fits(plain):
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenIssuer:
    """Creates and verifies signed, time-bounded access and refresh tokens.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        pair = issuer.issue_pair(user)
        claims = issuer.verify(pair.refresh_token, TokenKind.REFRESH)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl_seconds: int = 3600,
        refresh_ttl_seconds: int = 10 * 24 * 3600,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh tokens must be signed with different secrets.")
        self._secrets = {TokenKind.ACCESS: access_secret, TokenKind.REFRESH: refresh_secret}
        self.ttl_seconds = {TokenKind.ACCESS: access_ttl_seconds, TokenKind.REFRESH: refresh_ttl_seconds}

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenIssuer:
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl_seconds=settings.access_token_expire_seconds,
            refresh_ttl_seconds=settings.refresh_token_expire_seconds,
        )

    def _encode(self, kind: TokenKind, user_id: str, claims: dict[str, Any]) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            "sub": user_id,
            "user_id": user_id,
            "type": kind.value,
            "iat": now,
            "exp": now + timedelta(seconds=self.ttl_seconds[kind]),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secrets[kind], algorithm=_ALGORITHM)

    def issue_access_token(self, user_id: str, claims: dict[str, Any] | None = None) -> str:
        """Short-lived token authorizing individual requests."""
        return self._encode(TokenKind.ACCESS, user_id, claims or {})

    def issue_refresh_token(self, user_id: str) -> str:
        """Long-lived token used only to mint new pairs. Carries no profile data."""
        return self._encode(TokenKind.REFRESH, user_id, {})

    def issue_pair(self, user: User) -> TokenPair:
        if not user.id:
            raise ValueError("Cannot issue tokens for a user without an id.")
        access = self.issue_access_token(
            user.id,
            {"username": user.username, "email": user.email, "full_name": user.full_name},
        )
        return TokenPair(access_token=access, refresh_token=self.issue_refresh_token(user.id))

    def verify(self, token: str, kind: TokenKind) -> dict[str, Any]:
        """Decode and verify a token of the given kind. Returns its claims.

        Raises AuthError on a bad signature, malformed structure, expiry
        (checked by python-jose against the current clock), a type claim that
        does not match kind, or a missing subject.
        """
        try:
            payload = jwt.decode(token, self._secrets[kind], algorithms=[_ALGORITHM])
        except JWTError as exc:
            logger.debug("Rejected %s token: %s", kind.value, exc)
            raise AuthError(f"Invalid {kind.value} token") from exc
        if payload.get("type") != kind.value or not isinstance(payload.get("sub"), str) or not payload["sub"]:
            raise AuthError(f"Invalid {kind.value} token")
        return payload


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, tokens: TokenPair, issuer: TokenIssuer, secure: bool = True) -> None:
    """Write both tokens as httpOnly cookies on the response.

    httponly=True: JS cannot read the cookies (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS. Disabled only for local http development.
    max_age: matches each token's lifetime so cookie and token expire together.
    """
    for key, value, kind in (
        (ACCESS_COOKIE, tokens.access_token, TokenKind.ACCESS),
        (REFRESH_COOKIE, tokens.refresh_token, TokenKind.REFRESH),
    ):
        response.set_cookie(
            key,
            value=value,
            httponly=True,
            samesite="lax",
            secure=secure,
            max_age=issuer.ttl_seconds[kind],
            path="/",
        )


def clear_auth_cookies(response, secure: bool = True) -> None:
    """Expire both token cookies. Attributes must match the ones used to set them."""
    for key in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(key, path="/", secure=secure, httponly=True, samesite="lax")
