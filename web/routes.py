"""
web/routes.py -- Login and logout pages for LicenseDesk.

These routes serve server-rendered HTML and redirects. They share app.state
with the API routes (same verifier, session codec, settings) but never
return JSON.

Routes:
  GET  /login   -- login form (already signed in -> redirect to ?next=)
  POST /login   -- verify against the directory, set the session cookie
  GET  /logout  -- clear the session cookie, redirect to /login

All three are public paths in auth.gate, so they are reachable without a
session.
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from api.limiter import limiter, login_rate_limit
from auth.credentials import CredentialVerifier
from auth.gate import AccessGate, sanitize_next
from auth.sessions import SESSION_COOKIE, SessionCodec, clear_session_cookie, set_session_cookie
from core.config import Settings, normalize_login
from directory.client import DirectoryUnavailable

logger = logging.getLogger("licensedesk.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# Whitelist mapping for ?error= query params on /login.
# The raw query param is NEVER passed to templates, only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid login or no access.",
    "directory": "The directory service is unavailable. Try again later.",
    "missing": "Enter your login and password.",
}


def _login_failure(next_url: str, error: str) -> RedirectResponse:
    query = urlencode({"next": next_url, "error": error})
    resp = RedirectResponse(f"/login?{query}", status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# GET /login
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request, next: Optional[str] = None) -> HTMLResponse:
    """Render the login form, or bounce an already signed-in user to ?next=."""
    settings: Settings = request.app.state.settings
    gate: AccessGate = request.app.state.gate
    next_url = sanitize_next(next)

    if settings.directory_enabled and gate.session_user(request.cookies.get(SESSION_COOKIE)):
        return RedirectResponse(next_url, status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""), None)
    resp = templates.TemplateResponse(
        request,
        "login.html",
        {
            "next_url": next_url,
            "error_msg": error_msg,
            "directory_enabled": settings.directory_enabled,
        },
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# POST /login
# ---------------------------------------------------------------------------


@router.post("/login", response_class=HTMLResponse)
@limiter.limit(login_rate_limit)
def login_post(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    next: str = Form(""),
) -> RedirectResponse:
    """Verify credentials and issue a session cookie for the normalized login.

    Not-found, wrong password and not-on-allow-list all produce the same
    bad_credentials redirect.
    """
    settings: Settings = request.app.state.settings
    verifier: CredentialVerifier = request.app.state.verifier
    codec: SessionCodec = request.app.state.codec
    next_url = sanitize_next(next or request.query_params.get("next"))

    if not username.strip() or not password:
        return _login_failure(next_url, "missing")

    try:
        ok = verifier.verify(username, password)
    except DirectoryUnavailable as exc:
        logger.error("Login for %r failed, directory unavailable: %s", username, exc)
        return _login_failure(next_url, "directory")
    if not ok:
        return _login_failure(next_url, "bad_credentials")

    token = codec.issue(normalize_login(username))
    resp = RedirectResponse(next_url, status_code=302)
    set_session_cookie(resp, token, max_age=codec.ttl_seconds, secure=settings.session_cookie_secure)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# GET /logout
# ---------------------------------------------------------------------------


@router.get("/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the session cookie and redirect to the login page."""
    resp = RedirectResponse("/login", status_code=302)
    clear_session_cookie(resp)
    return resp
