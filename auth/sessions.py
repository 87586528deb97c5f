"""
auth/sessions.py -- Signed, stateless session tokens and the session cookie.

Token format (every base64 is URL-safe, unpadded):

    base64( username "|" issued_at "|" base64( HMAC-SHA256(secret, "username|issued_at") ) )

Nothing is stored server-side. A token proves that this process (or another
one sharing SESSION_SECRET) issued it for that username, and it expires
session_ttl_seconds after issue. Logout clears the cookie; there is no
revocation list.

Validation fails closed: any decoding error, wrong field count, non-integer
timestamp, expired timestamp or MAC mismatch yields ("", False). Only the
canonical encoding of a token is accepted, so flipping any character of a
valid token invalidates it.

Layer rule: no imports from api/, web/, directory/ or inventory/.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import time
from collections.abc import Callable

logger = logging.getLogger("licensedesk.auth")

SESSION_COOKIE = "cp_session"
_SEP = "|"
# Epoch seconds; anything wider is not a timestamp this codec issued.
_MAX_TIMESTAMP_DIGITS = 12


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    """Strict URL-safe decode of unpadded input. Raises ValueError on anything odd."""
    if not value or "=" in value:
        raise ValueError("not unpadded base64url")
    raw = value.encode("ascii")
    padded = raw + b"=" * (-len(raw) % 4)
    try:
        decoded = base64.b64decode(padded, altchars=b"-_", validate=True)
    except binascii.Error as exc:
        raise ValueError(str(exc)) from exc
    if _b64encode(decoded) != value:
        raise ValueError("non-canonical base64url")
    return decoded


class SessionCodec:
    """Issue and validate session tokens for one secret and TTL.

    clock returns the current epoch time in seconds; tests inject a fake.
    """

    def __init__(self, secret: str, ttl_seconds: int, clock: Callable[[], float] = time.time) -> None:
        if not secret:
            raise ValueError("session secret must not be empty")
        self._secret = secret.encode()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _sign(self, payload: str) -> bytes:
        return hmac.new(self._secret, payload.encode(), hashlib.sha256).digest()

    def issue(self, username: str) -> str:
        if not username or _SEP in username:
            raise ValueError("username must be non-empty and must not contain '|'")
        payload = f"{username}{_SEP}{int(self._clock())}"
        token = f"{payload}{_SEP}{_b64encode(self._sign(payload))}"
        return _b64encode(token.encode())

    def validate(self, token: str) -> tuple[str, bool]:
        """Return (username, True) for a genuine unexpired token, else ("", False)."""
        if not token:
            return "", False
        try:
            raw = _b64decode(token).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return "", False
        parts = raw.split(_SEP)
        if len(parts) != 3:
            return "", False
        username, issued_raw, sig_b64 = parts
        if not username or not (issued_raw.isascii() and issued_raw.isdigit()):
            return "", False
        if len(issued_raw) > _MAX_TIMESTAMP_DIGITS:
            return "", False
        if self._clock() - int(issued_raw) > self.ttl_seconds:
            return "", False
        try:
            signature = _b64decode(sig_b64)
        except ValueError:
            return "", False
        expected = self._sign(f"{username}{_SEP}{issued_raw}")
        if not hmac.compare_digest(expected, signature):
            return "", False
        return username, True


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, max_age: int, secure: bool) -> None:
    """Write the session token as an httpOnly, SameSite=Lax cookie on the response.

    max_age matches the token TTL so the browser drops the cookie when the
    token would stop validating anyway.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        path="/",
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/", httponly=True, samesite="lax")
