"""
api/limiter.py -- The slowapi Limiter shared by the app and the users router.

api/main.py registers it on app.state for SlowAPIMiddleware; the users router
attaches per-route limits to it. Counters live in process memory, so there
must be exactly one instance.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Per-IP budget for POST /users/login (LOGIN_RATE_LIMIT)."""
    return get_settings().login_rate_limit
