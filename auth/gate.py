"""
auth/gate.py -- Per-request access policy.

Evaluated once per request by the access_gate middleware in api/main.py, in
this order:

  1. Directory not configured  -> allow (degraded mode: no auth at all)
  2. Public path               -> allow (/healthz, /login, /logout, login assets)
  3. Write request to /api/    -> allow when no WRITE_API_TOKEN is set, or
                                  when the X-API-Token header matches it;
                                  otherwise fall through to 4
  4. Valid session cookie      -> allow; else 302 to /login?next=<path>

A write request is any method other than GET/HEAD. Step 3 exists for
machine-to-machine imports that have no browser session.

sanitize_next() is the open-redirect guard for every ?next= value.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from auth.sessions import SESSION_COOKIE, SessionCodec
from core.config import Settings

PUBLIC_PATHS = frozenset(
    {
        "/healthz",
        "/login",
        "/logout",
        "/layout.js",
        "/header.html",
        "/footer.html",
        "/favicon.ico",
    }
)
SAFE_METHODS = frozenset({"GET", "HEAD"})
API_PREFIX = "/api/"
API_TOKEN_HEADER = "X-API-Token"


def sanitize_next(value: Optional[str]) -> str:
    """Return value if it is an in-app absolute path, else "/".

    Rejected: empty, relative paths, absolute URLs (https://evil), and
    protocol-relative forms (//evil, /\\evil) that browsers resolve off-site.
    """
    if not value or not value.startswith("/"):
        return "/"
    if value.startswith("//") or value.startswith("/\\"):
        return "/"
    if any(ch in value for ch in "\r\n\t"):
        return "/"
    return value


def login_redirect_url(target: str) -> str:
    return "/login?" + urlencode({"next": sanitize_next(target)})


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: str
    username: str = ""
    redirect_to: Optional[str] = None


class AccessGate:
    def __init__(self, settings: Settings, codec: SessionCodec) -> None:
        self._settings = settings
        self._codec = codec

    @property
    def degraded(self) -> bool:
        return not self._settings.directory_enabled

    def session_user(self, token: Optional[str]) -> Optional[str]:
        username, ok = self._codec.validate(token or "")
        return username if ok else None

    def evaluate(
        self,
        method: str,
        path: str,
        query: str = "",
        session_token: Optional[str] = None,
        api_token: Optional[str] = None,
    ) -> GateDecision:
        if self.degraded:
            return GateDecision(True, "degraded")
        if path in PUBLIC_PATHS:
            return GateDecision(True, "public")

        if method.upper() not in SAFE_METHODS and path.startswith(API_PREFIX):
            expected = self._settings.write_api_token
            if not expected:
                return GateDecision(True, "write_open")
            if api_token and hmac.compare_digest(api_token.encode(), expected.encode()):
                return GateDecision(True, "write_token")

        username = self.session_user(session_token)
        if username is not None:
            return GateDecision(True, "session", username=username)

        target = f"{path}?{query}" if query else path
        return GateDecision(False, "login_required", redirect_to=login_redirect_url(target))

    def check(self, request) -> GateDecision:
        """Evaluate a Starlette request."""
        return self.evaluate(
            request.method,
            request.url.path,
            request.url.query,
            session_token=request.cookies.get(SESSION_COOKIE),
            api_token=request.headers.get(API_TOKEN_HEADER),
        )
