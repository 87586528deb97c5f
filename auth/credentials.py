"""
auth/credentials.py -- Directory-backed login verification.

No password is ever stored. verify() proves a password by binding to the
directory as the user's own DN; the bind result is the only evidence used.

Outcomes:
  True                  -- bind as the user succeeded
  False                 -- empty input, not on AUTH_USERS, no such user,
                           wrong password, or directory not configured
  DirectoryUnavailable  -- transport / protocol failure; the login page
                           shows a generic directory error

"No such user" and "wrong password" are deliberately indistinguishable to
the caller so the login form cannot be used to enumerate accounts.
"""

from __future__ import annotations

import logging

from core.config import Settings, normalize_login
from directory.client import DirectoryClient

logger = logging.getLogger("licensedesk.auth")


def is_allowed(login: str, allowed: frozenset[str]) -> bool:
    """True when the allow-list is empty or contains the normalized login."""
    if not allowed:
        return True
    return normalize_login(login) in allowed


class CredentialVerifier:
    def __init__(self, settings: Settings, client: DirectoryClient) -> None:
        self._settings = settings
        self._client = client

    def verify(self, raw_username: str, password: str) -> bool:
        if not self._settings.directory_enabled:
            return False
        if not raw_username or not raw_username.strip() or not password:
            return False
        login = normalize_login(raw_username)
        # "|" separates session token fields.
        if not login or "|" in login:
            return False
        if not is_allowed(login, self._settings.allowed_logins):
            logger.warning("Login rejected by AUTH_USERS policy: %s", login)
            return False

        dn = self._client.find_user_dn(login)
        if dn is None:
            logger.warning("Login failed for %s: user not found", login)
            return False
        if not self._client.check_password(dn, password):
            logger.warning("Login failed for %s: bad credentials", login)
            return False
        logger.info("Login succeeded for %s", login)
        return True
