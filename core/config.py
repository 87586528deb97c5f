"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for LicenseDesk happen here. No module should
call os.getenv() or os.environ.get() directly. The lifespan in api/main.py
calls get_settings() once and hands the Settings object to every component
constructor (directory client, reconciler, scheduler, session codec, gate).

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. ldap_base_dn -> LDAP_BASE_DN).

  @model_validator(mode="after"): Cross-field validation. The session secret
      is only mandatory when the directory is configured, because without a
      directory the access gate runs in degraded mode and never issues tokens.

Security notes:
  SESSION_SECRET shorter than 32 chars is rejected outright. HMAC-SHA256
  relies on key entropy.

  With the directory configured and DEBUG off, a missing SESSION_SECRET is a
  hard startup failure. A random per-process key would log everyone out on
  every restart.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, directory/, or inventory/.
"""

import logging
import re
import secrets
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("licensedesk.config")

DEFAULT_USERS_FILTER = (
    "(&(|(objectClass=user)(objectClass=person))"
    "(!(objectClass=computer))"
    "(!(userAccountControl:1.2.840.113556.1.4.803:=2)))"
)
DEFAULT_COMPUTERS_FILTER = "(&(objectClass=computer)(!(userAccountControl:1.2.840.113556.1.4.803:=2)))"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: Any) -> timedelta:
    """Parse an interval such as "24h", "1h30m", "90s" or a bare number of seconds.

    Raises ValueError for anything else, including zero and negative values.
    """
    if isinstance(value, timedelta):
        result = value
    elif isinstance(value, (int, float)):
        result = timedelta(seconds=value)
    else:
        raw = str(value).strip().lower()
        if raw.isdigit():
            result = timedelta(seconds=int(raw))
        else:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(raw):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if not raw or pos != len(raw):
                raise ValueError(f"invalid duration: {value!r}")
            result = timedelta(seconds=seconds)
    if result.total_seconds() <= 0:
        raise ValueError(f"duration must be positive: {value!r}")
    return result


def normalize_login(raw: str) -> str:
    """Reduce DOMAIN\\user, user@domain and USER to the bare lowercase login."""
    login = raw.strip()
    _, sep, tail = login.partition("\\")
    if sep and tail:
        login = tail
    if "@" in login:
        login = login.split("@", 1)[0]
    return login.strip().lower()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Empty strings mean "not configured".
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "info"
    data_dir: str = "./data"
    db_path: str = ""
    # Full SQLAlchemy URL; wins over data_dir/db_path when set.
    database_url: str = ""
    static_dir: str = "./static"
    http_host: str = "0.0.0.0"
    http_port: int = 8080

    # ------------------------------------------------------------------
    # Sessions and login policy
    # ------------------------------------------------------------------

    session_secret: str = ""
    session_cookie_secure: bool = False
    session_ttl_seconds: int = 8 * 60 * 60
    auth_users: str = ""
    login_rate_limit: str = "10/minute"
    write_api_token: str = ""

    # ------------------------------------------------------------------
    # Directory (LDAP / Active Directory)
    # ------------------------------------------------------------------

    ldap_url: str = ""
    ldap_base_dn: str = ""
    ldap_bind_dn: str = ""
    ldap_bind_password: str = ""
    ldap_user_attr: str = "sAMAccountName"
    ldap_users_filter: str = ""
    ldap_computers_base_dn: str = ""
    ldap_computers_filter: str = ""
    ldap_ca_file: str = ""
    ldap_tls_insecure_skip_verify: bool = False
    ldap_timeout_seconds: int = 10
    ldap_page_size: int = 500
    ldap_sync_every: timedelta = timedelta(hours=24)
    ldap_sync_on_startup: bool = True

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def directory_enabled(self) -> bool:
        return bool(self.ldap_url.strip() and self.ldap_base_dn.strip())

    @property
    def allowed_logins(self) -> frozenset[str]:
        """Normalized AUTH_USERS entries. Empty means every directory user may log in."""
        return frozenset(n for n in (normalize_login(part) for part in self.auth_users.split(",")) if n)

    @property
    def users_filter(self) -> str:
        return self.ldap_users_filter.strip() or DEFAULT_USERS_FILTER

    @property
    def computers_filter(self) -> str:
        return self.ldap_computers_filter.strip() or DEFAULT_COMPUTERS_FILTER

    @property
    def computers_base_dn(self) -> str:
        return self.ldap_computers_base_dn.strip() or self.ldap_base_dn.strip()

    @property
    def db_url(self) -> str:
        if self.database_url:
            return self.database_url
        data_dir = Path(self.data_dir)
        path = Path(self.db_path) if self.db_path.strip() else Path("licensedesk.sqlite")
        if not path.is_absolute():
            path = data_dir / path
        return f"sqlite:///{path}"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("ldap_sync_every", mode="before")
    @classmethod
    def parse_sync_every(cls, value: Any) -> timedelta:
        return parse_duration(value)

    @model_validator(mode="after")
    def validate_session_secret(self) -> "Settings":
        """Enforce the SESSION_SECRET policy.

        Directory configured, DEBUG off: refuse to start without a secret.
        Otherwise: auto-generate a random secret (tokens will not survive a
            restart, which only matters in dev or degraded mode).
        Always: reject secrets shorter than 32 characters.
        """
        if not self.session_secret:
            if self.directory_enabled and not self.debug:
                raise ValueError(
                    "SESSION_SECRET is required when LDAP_URL and LDAP_BASE_DN are set. "
                    "Set SESSION_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            self.session_secret = secrets.token_hex(32)
            if self.directory_enabled:
                logger.warning("Using auto-generated SESSION_SECRET. Sessions will not persist across restarts.")
        if len(self.session_secret) < 32:
            raise ValueError("SESSION_SECRET must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or construct Settings(...)
    directly and pass it to the component under test.
    """
    return Settings()
