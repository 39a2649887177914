"""
tests/conftest.py -- Shared test fixtures for the account service tests.

This module provides:
  - _make_test_store(): creates an isolated in-memory user DB
  - RecordingUploader: media uploader double that records calls and can fail
  - store, sessions, uploader: per-test SessionManager over a fresh store
  - image, make_sessions: factories for FileRefs and custom SessionManagers
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - api_client: TestClient over the real app with a fresh store per test module

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any api/auth/core import so
get_settings() builds the test configuration: DEBUG auto-generates signing
secrets, BCRYPT_ROUNDS=4 keeps hashing fast, and a generous login limit
keeps the rate limiter out of the way of ordinary tests.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from pathlib import Path

# CRITICAL: Set env before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
# TestClient talks plain http to "testserver"; Secure cookies would never be sent back.
os.environ.setdefault("SECURE_COOKIES", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.errors import UploadError
from auth.session import SessionManager
from auth.store import UserStore
from auth.tokens import PasswordHasher, TokenIssuer
from core.config import get_settings
from media.models import FileRef, MediaAsset
from media.uploader import LocalMediaUploader

ACCESS_SECRET = "a" * 40
REFRESH_SECRET = "r" * 40

# Smallest valid PNG header; the local uploader only copies bytes.
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


# ---------------------------------------------------------------------------
# Store and service helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so tests and test
                   modules don't share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true")


class RecordingUploader:
    """Media uploader double.

    Records the filename of every upload. Filenames listed in fail_on raise
    UploadError; filenames in empty_on succeed with an empty URL.
    """

    def __init__(self, fail_on: tuple[str, ...] = (), empty_on: tuple[str, ...] = ()) -> None:
        self.uploaded: list[str] = []
        self.fail_on = set(fail_on)
        self.empty_on = set(empty_on)

    def upload(self, ref: FileRef) -> MediaAsset:
        self.uploaded.append(ref.filename)
        if ref.filename in self.fail_on:
            raise UploadError("Media store unavailable.", status_code=502)
        if ref.filename in self.empty_on:
            return MediaAsset(url="")
        return MediaAsset(url=f"https://media.test/{ref.filename}")


def _image(filename: str) -> FileRef:
    """A FileRef for RecordingUploader; nothing reads the path."""
    return FileRef(path=Path("/nonexistent") / filename, filename=filename, content_type="image/png")


def _make_sessions(
    store: UserStore,
    media: RecordingUploader | None = None,
    *,
    revoke_sessions_on_password_change: bool = True,
    access_ttl_seconds: int = 3600,
    refresh_ttl_seconds: int = 864000,
) -> SessionManager:
    return SessionManager(
        store,
        TokenIssuer(ACCESS_SECRET, REFRESH_SECRET, access_ttl_seconds, refresh_ttl_seconds),
        PasswordHasher(rounds=4),
        media or RecordingUploader(),
        revoke_sessions_on_password_change=revoke_sessions_on_password_change,
    )


def _patch_lifespan(sessions: SessionManager):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test services into app.state so TestClient routes see an
    isolated test DB and a local media directory instead of production state.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.user_store = sessions.store
        app.state.media = sessions.media
        app.state.sessions = sessions
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    """Fresh in-memory store per test."""
    s = _make_test_store(uuid.uuid4().hex)
    yield s
    s.close()


@pytest.fixture
def uploader() -> RecordingUploader:
    return RecordingUploader(fail_on=("broken.png",), empty_on=("empty.png",))


@pytest.fixture
def sessions(store: UserStore, uploader: RecordingUploader) -> SessionManager:
    return _make_sessions(store, uploader)


@pytest.fixture(scope="module")
def api_client(request, tmp_path_factory) -> Generator[tuple[TestClient, SessionManager], None, None]:
    """Yield (client, sessions) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, but each test module gets its own store and
    media directory. Tokens are signed with the app's configured secrets.
    """
    settings = get_settings()
    user_store = _make_test_store(request.module.__name__.replace(".", "_"))
    media = LocalMediaUploader(tmp_path_factory.mktemp("media"), "http://testserver/media")
    sessions = SessionManager(
        user_store,
        TokenIssuer.from_settings(settings),
        PasswordHasher.from_settings(settings),
        media,
        revoke_sessions_on_password_change=settings.revoke_sessions_on_password_change,
    )

    app.router.lifespan_context = _patch_lifespan(sessions)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, sessions

    user_store.close()


@pytest.fixture
def image():
    """Factory for FileRefs handed to RecordingUploader."""
    return _image


@pytest.fixture
def make_sessions():
    """Factory for SessionManagers with non-default policy or token lifetimes."""
    return _make_sessions
