"""
auth/models.py -- Domain dataclasses for account entities.

Pattern: Data class (pure data container, zero logic). Stores and the session
manager do the work; these classes only own the domain shape.

User is the persisted record and carries secrets (password_hash,
refresh_token). PublicUser is the sanitized view handed to every caller --
SessionManager never returns a User.

Layer rule: no imports from api/ or media/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered account.

    username is stored lowercased and never changes after creation.
    refresh_token holds the single active refresh token for the account, or
    None when no session is active (never logged in, or logged out).
    """

    username: str
    email: str
    full_name: str
    avatar_url: str
    password_hash: str
    cover_image_url: str = ""
    id: str | None = None
    refresh_token: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class PublicUser:
    """User with the credential and session-secret fields stripped."""

    id: str
    username: str
    email: str
    full_name: str
    avatar_url: str
    cover_image_url: str
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> PublicUser:
        return cls(
            id=user.id or "",
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            avatar_url=user.avatar_url,
            cover_image_url=user.cover_image_url or "",
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )
