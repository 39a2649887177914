"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. The session manager
and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  The refresh_token column is the only cross-request coordination point in
  the service. compare_and_set_refresh_token() performs the check and the
  write in one UPDATE ... WHERE refresh_token = :expected statement, so two
  concurrent refreshes presenting the same token cannot both win -- the
  database serializes the writes and the loser matches zero rows.

  username and email carry UNIQUE constraints. Callers check for conflicts up
  front for a friendly error, but the constraint is the real guard against a
  concurrent duplicate registration; create_user() and update_fields() let
  IntegrityError propagate so the caller can map it.

DB path: auth/vidstream_accounts.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/ or media/.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import nullcontext
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import User

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'vidstream_accounts.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex, opaque to callers
    Column("username", String(64), nullable=False, unique=True),  # lowercased
    Column("email", String(255), nullable=False, unique=True),  # lowercased
    Column("full_name", String(255), nullable=False),
    Column("avatar_url", Text, nullable=False),
    Column("cover_image_url", Text, nullable=False, server_default=""),
    Column("password_hash", Text, nullable=False),
    Column("refresh_token", Text),  # NULL = no active session
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases silently keep their
    "memory" journal mode.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore()
        user_id = store.create_user(User(username="alice", email="a@x.com", ...))
        user = store.get_by_id(user_id)
        store.close()
    """

    # Columns update_fields() may touch. id, username and created_at are
    # immutable; updated_at is stamped automatically.
    _MUTABLE_FIELDS: frozenset = frozenset(
        {"email", "full_name", "avatar_url", "cover_image_url", "password_hash", "refresh_token"}
    )

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        # SQLite allows one writer at a time and fails a WAL read-to-write
        # upgrade with SQLITE_BUSY_SNAPSHOT instead of waiting. Serializing
        # writes in-process keeps concurrent requests on the busy-timeout path.
        self._write_lock = threading.Lock() if db_url.startswith("sqlite") else nullcontext()
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists. Cheap liveness probe."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def find_by_username_or_email(self, username: str | None = None, email: str | None = None) -> User | None:
        """Return the first user matching either identifier, or None.

        Identifiers are compared as stored (callers normalise to lowercase).
        Passing neither identifier returns None rather than matching everything.
        """
        conditions = []
        if username:
            conditions.append(_users.c.username == username)
        if email:
            conditions.append(_users.c.email == email)
        if not conditions:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(or_(*conditions)).limit(1)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_taken(self, email: str, exclude_user_id: str | None = None) -> bool:
        """Return True if another account already owns this email."""
        stmt = select(_users.c.id).where(_users.c.email == email)
        if exclude_user_id is not None:
            stmt = stmt.where(_users.c.id != exclude_user_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt.limit(1)).first() is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned id.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. Callers map that to a conflict: it means a concurrent request
        registered the same identity between the pre-check and the insert.
        """
        user_id = uuid.uuid4().hex
        now = _now_iso()
        with self._write_lock, self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    username=user.username,
                    email=user.email,
                    full_name=user.full_name,
                    avatar_url=user.avatar_url,
                    cover_image_url=user.cover_image_url or "",
                    password_hash=user.password_hash,
                    refresh_token=user.refresh_token,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def update_fields(self, user_id: str, **fields) -> User | None:
        """Apply a partial update and return the updated record.

        Only keys in _MUTABLE_FIELDS are accepted. Unknown keys raise
        ValueError rather than being silently ignored. Returns None when
        user_id does not exist.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown or immutable user fields: {sorted(unknown)!r}")
        values = dict(fields, updated_at=_now_iso())
        with self._write_lock, self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_by_id(user_id)

    def compare_and_set_refresh_token(self, user_id: str, expected: str, new_value: str | None) -> bool:
        """Atomically replace the stored refresh token if it still equals expected.

        Returns True if this call performed the swap, False if the stored value
        had already changed (rotated by a concurrent refresh, cleared by logout)
        or the user does not exist.
        """
        with self._write_lock, self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.refresh_token == expected))
                .values(refresh_token=new_value, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        full_name=row.full_name,
        avatar_url=row.avatar_url,
        cover_image_url=row.cover_image_url or "",
        password_hash=row.password_hash,
        refresh_token=row.refresh_token,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
