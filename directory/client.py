"""
directory/client.py -- Read-only LDAP / Active Directory client.

Every public call opens its own connection, binds, does its work and unbinds.
Nothing is pooled: reconciliation runs once a day and logins are rare, so a
fresh connection per call keeps failure handling simple.

Failure model:
  DirectoryUnavailable  -- connect, service bind, or search failed. Callers
                           treat it as retryable: the reconciler skips the
                           pass, the login page shows a generic error.
  empty list / None     -- the directory answered but nothing matched.
  False                 -- check_password() with a wrong password.

TLS: certificates are verified against the system trust store by default.
LDAP_CA_FILE adds an extra trust anchor for an internal CA;
LDAP_TLS_INSECURE_SKIP_VERIFY=true turns verification off explicitly.

Layer rule: directory/ may import from core/ only.
"""

from __future__ import annotations

import logging
import ssl
from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional

from ldap3 import NONE, SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from core.config import Settings
from directory.models import DirectoryComputerRecord, DirectoryUserRecord

logger = logging.getLogger("licensedesk.directory")

_USER_EXTRA_ATTRS = ["mail", "displayName", "cn", "givenName", "sn"]
_COMPUTER_ATTRS = ["cn", "dNSHostName", "description"]
_USER_CLASS_FILTER = "(|(objectClass=user)(objectClass=person))"

# ldap3 result codes that still mean "the search ran".
_RESULT_SUCCESS = 0
_RESULT_SIZE_LIMIT_EXCEEDED = 4

ConnectionFactory = Callable[[Server, Optional[str], Optional[str]], Any]


class DirectoryUnavailable(Exception):
    """The directory could not be reached, bound to, or searched."""


# ---------------------------------------------------------------------------
# Entry helpers
# ---------------------------------------------------------------------------


def _attr(attributes: Any, name: str) -> str:
    """Return the first value of an attribute as a trimmed string, "" if absent.

    ldap3 returns str for single-valued schema attributes and lists otherwise;
    without schema info every value is a list. Lookup is case-insensitive.
    """
    if not attributes:
        return ""
    value = attributes.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in attributes.items():
            if key.lower() == lowered:
                value = candidate
                break
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return str(value).strip()


def pick_display_name(attributes: Any) -> str:
    """displayName, then cn, then "givenName sn", then whichever part exists."""
    for name in ("displayName", "cn"):
        value = _attr(attributes, name)
        if value:
            return value
    given = _attr(attributes, "givenName")
    surname = _attr(attributes, "sn")
    if given and surname:
        return f"{given} {surname}"
    return given or surname


def _entries(response: Optional[list]) -> list[dict]:
    """Drop referrals and anything else that is not a search result entry."""
    return [e for e in (response or []) if e.get("type", "searchResEntry") == "searchResEntry"]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class DirectoryClient:
    """Thin wrapper around ldap3 configured from Settings.

    connection_factory(server, user, password) builds an unbound connection.
    Tests pass a fake; production uses _default_connection.
    """

    def __init__(self, settings: Settings, connection_factory: Optional[ConnectionFactory] = None) -> None:
        self._settings = settings
        self._connection_factory = connection_factory or self._default_connection

    @property
    def enabled(self) -> bool:
        return self._settings.directory_enabled

    # ------------------------------------------------------------------
    # Connection plumbing
    # ------------------------------------------------------------------

    def _tls(self) -> Tls:
        s = self._settings
        if s.ldap_tls_insecure_skip_verify:
            logger.warning("LDAP TLS certificate verification is disabled")
            return Tls(validate=ssl.CERT_NONE)
        ca_file: Optional[str] = None
        ca_path: Optional[str] = None
        if s.ldap_ca_file:
            if Path(s.ldap_ca_file).is_file():
                ca_file = s.ldap_ca_file
                # A custom CA replaces the default store in ssl; keep the
                # system directory as well so public CAs still verify.
                system_capath = ssl.get_default_verify_paths().capath
                if system_capath and Path(system_capath).is_dir():
                    ca_path = system_capath
            else:
                logger.warning("LDAP_CA_FILE %s is not readable, using system trust store only", s.ldap_ca_file)
        return Tls(validate=ssl.CERT_REQUIRED, ca_certs_file=ca_file, ca_certs_path=ca_path)

    def _server(self) -> Server:
        return Server(
            self._settings.ldap_url.strip(),
            tls=self._tls(),
            get_info=NONE,
            connect_timeout=self._settings.ldap_timeout_seconds,
        )

    def _default_connection(self, server: Server, user: Optional[str], password: Optional[str]) -> Connection:
        return Connection(
            server,
            user=user,
            password=password,
            read_only=True,
            raise_exceptions=False,
            receive_timeout=self._settings.ldap_timeout_seconds,
        )

    def _service_connection(self):
        """Open a connection bound as the service identity (anonymous if none)."""
        s = self._settings
        if not s.directory_enabled:
            raise DirectoryUnavailable("directory is not configured")
        bind_dn = s.ldap_bind_dn.strip() or None
        password = s.ldap_bind_password if bind_dn else None
        try:
            conn = self._connection_factory(self._server(), bind_dn, password)
            bound = conn.bind()
        except LDAPException as exc:
            raise DirectoryUnavailable(f"cannot connect to {s.ldap_url}: {exc}") from exc
        if not bound:
            reason = _describe(conn)
            _unbind(conn)
            raise DirectoryUnavailable(f"service bind failed: {reason}")
        return conn

    def _paged_search(self, base_dn: str, search_filter: str, attributes: list[str]) -> list[dict]:
        conn = self._service_connection()
        try:
            response = conn.extend.standard.paged_search(
                search_base=base_dn,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes,
                paged_size=self._settings.ldap_page_size,
                generator=False,
            )
            result = getattr(conn, "result", None) or {}
            if result.get("result", _RESULT_SUCCESS) != _RESULT_SUCCESS:
                raise DirectoryUnavailable(f"search under {base_dn} failed: {_describe(conn)}")
            return _entries(response)
        except LDAPException as exc:
            raise DirectoryUnavailable(f"search under {base_dn} failed: {exc}") from exc
        finally:
            _unbind(conn)

    # ------------------------------------------------------------------
    # Bulk fetches (reconciliation input)
    # ------------------------------------------------------------------

    def fetch_users(self) -> list[DirectoryUserRecord]:
        """Return every enabled user account under the base DN.

        Entries without the identifying attribute are skipped.
        """
        s = self._settings
        user_attr = s.ldap_user_attr
        entries = self._paged_search(s.ldap_base_dn.strip(), s.users_filter, [user_attr, *_USER_EXTRA_ATTRS])
        records: list[DirectoryUserRecord] = []
        for entry in entries:
            attributes = entry.get("attributes") or {}
            login = _attr(attributes, user_attr)
            if not login:
                continue
            records.append(
                DirectoryUserRecord(
                    login=login,
                    display_name=pick_display_name(attributes),
                    email=_attr(attributes, "mail").lower(),
                )
            )
        logger.info("Fetched %d users from directory", len(records))
        return records

    def fetch_computers(self) -> list[DirectoryComputerRecord]:
        s = self._settings
        entries = self._paged_search(s.computers_base_dn, s.computers_filter, list(_COMPUTER_ATTRS))
        records: list[DirectoryComputerRecord] = []
        for entry in entries:
            attributes = entry.get("attributes") or {}
            name = _attr(attributes, "cn")
            if not name:
                continue
            records.append(
                DirectoryComputerRecord(
                    name=name,
                    host_address=_attr(attributes, "dNSHostName"),
                    description=_attr(attributes, "description"),
                )
            )
        logger.info("Fetched %d computers from directory", len(records))
        return records

    # ------------------------------------------------------------------
    # Credential checks (login)
    # ------------------------------------------------------------------

    def find_user_dn(self, login: str) -> Optional[str]:
        """Return the DN of the user whose identifying attribute equals login."""
        s = self._settings
        search_filter = f"(&{_USER_CLASS_FILTER}({s.ldap_user_attr}={escape_filter_chars(login)}))"
        conn = self._service_connection()
        try:
            conn.search(
                search_base=s.ldap_base_dn.strip(),
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=[s.ldap_user_attr],
                size_limit=1,
            )
            result = getattr(conn, "result", None) or {}
            if result.get("result", _RESULT_SUCCESS) not in (_RESULT_SUCCESS, _RESULT_SIZE_LIMIT_EXCEEDED):
                raise DirectoryUnavailable(f"user lookup failed: {_describe(conn)}")
            entries = _entries(conn.response)
        except LDAPException as exc:
            raise DirectoryUnavailable(f"user lookup failed: {exc}") from exc
        finally:
            _unbind(conn)
        if not entries:
            return None
        return entries[0].get("dn") or None

    def check_password(self, dn: str, password: str) -> bool:
        """Bind as dn with password. A successful bind is the only proof accepted."""
        # An empty password would turn into an unauthenticated bind, which
        # many servers accept.
        if not dn or not password:
            return False
        try:
            conn = self._connection_factory(self._server(), dn, password)
            ok = bool(conn.bind())
        except LDAPException as exc:
            raise DirectoryUnavailable(f"user bind failed: {exc}") from exc
        if not ok:
            logger.info("Bind rejected for %s: %s", dn, _describe(conn))
        _unbind(conn)
        return ok


def _describe(conn: Any) -> str:
    result = getattr(conn, "result", None) or {}
    return f"{result.get('description', 'unknown')} ({result.get('result', '?')})"


def _unbind(conn: Any) -> None:
    try:
        conn.unbind()
    except LDAPException:
        logger.debug("unbind failed", exc_info=True)
