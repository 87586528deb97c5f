"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware, exposed on app.state) and by
web/routes.py (POST /login limit). A single shared instance means every route
shares the same in-memory counter store.

The POST /login limit is read per request from the value installed by
configure_login_limit(), which init_app_state() calls with the app's Settings.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

DEFAULT_LOGIN_RATE_LIMIT = "10/minute"

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

_login_limit = DEFAULT_LOGIN_RATE_LIMIT


def configure_login_limit(value: str) -> None:
    global _login_limit
    _login_limit = value.strip() or DEFAULT_LOGIN_RATE_LIMIT


def login_rate_limit() -> str:
    return _login_limit
