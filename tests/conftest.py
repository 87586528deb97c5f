"""
tests/conftest.py -- Shared test fixtures for LicenseDesk.

This module provides:
  - make_settings(): Settings built from kwargs only (no .env, no real LDAP)
  - FakeDirectory: an in-memory LDAP server that hands out ldap3-shaped
    connections to DirectoryClient through its connection_factory hook
  - make_store(): isolated named shared-memory SQLite InventoryStore
  - _patch_lifespan(): wires test settings/store/client into app.state,
    bypassing the real startup (and the background scheduler)
  - app_client / open_client: TestClient with the directory enabled / absent

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

DEBUG must be set before any core import so a stray get_settings() call
never refuses to start for lack of a SESSION_SECRET.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager, contextmanager
from types import SimpleNamespace
from typing import Optional

os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from ldap3.core.exceptions import LDAPSocketOpenError

from api.limiter import limiter
from api.main import app, init_app_state
from core.config import Settings
from directory.client import DirectoryClient
from inventory.store import InventoryStore
from web.routes import router as web_router

# Mount the web router once (asgi.py does this in production).
if not any(getattr(route, "path", None) == "/login" for route in app.routes):
    app.include_router(web_router, tags=["Web UI"])

SERVICE_DN = "CN=svc-licensedesk,OU=Service,DC=corp,DC=test"
SERVICE_PASSWORD = "svc-password"
SESSION_SECRET = "s" * 48


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    """Settings from explicit values only. Directory disabled unless overridden."""
    values = {"debug": True, "session_secret": SESSION_SECRET}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def directory_settings(**overrides) -> Settings:
    values = {
        "ldap_url": "ldap://dc1.corp.test",
        "ldap_base_dn": "DC=corp,DC=test",
        "ldap_bind_dn": SERVICE_DN,
        "ldap_bind_password": SERVICE_PASSWORD,
    }
    values.update(overrides)
    return make_settings(**values)


# ---------------------------------------------------------------------------
# Fake LDAP server
# ---------------------------------------------------------------------------

_ASSERTION = re.compile(r"\((\w+)=([^()]*)\)\)$")


class FakeConnection:
    """Implements the slice of ldap3.Connection that DirectoryClient uses."""

    def __init__(self, directory: "FakeDirectory", user: Optional[str], password: Optional[str]) -> None:
        self._directory = directory
        self.user = user
        self.password = password
        self.bound = False
        self.response: list[dict] = []
        self.result: dict = {"result": 0, "description": "success"}
        self.extend = SimpleNamespace(standard=SimpleNamespace(paged_search=self._paged_search))

    def bind(self) -> bool:
        d = self._directory
        if d.unreachable:
            raise LDAPSocketOpenError("socket connection error while opening: [Errno 111] Connection refused")
        d.binds.append(self.user)
        if self.user is None:
            self.bound = True
        elif self.user == SERVICE_DN:
            self.bound = d.service_bind_ok and self.password == SERVICE_PASSWORD
        else:
            entry = d.entry_by_dn(self.user)
            self.bound = entry is not None and bool(self.password) and entry["password"] == self.password
        if not self.bound:
            self.result = {"result": 49, "description": "invalidCredentials"}
        return self.bound

    def unbind(self) -> bool:
        self.bound = False
        return True

    def search(self, search_base, search_filter, search_scope=None, attributes=None, size_limit=0) -> bool:
        d = self._directory
        d.searches.append({"base": search_base, "filter": search_filter, "attributes": attributes})
        match = _ASSERTION.search(search_filter)
        found = []
        if match:
            attr, value = match.group(1), match.group(2)
            for entry in d.users:
                candidate = entry["attributes"].get(attr)
                if candidate and str(candidate).lower() == _unescape(value).lower():
                    found.append(_response_entry(entry))
        if size_limit:
            found = found[:size_limit]
        self.response = found
        return bool(found)

    def _paged_search(
        self, search_base, search_filter, search_scope=None, attributes=None, paged_size=100, generator=True
    ):
        d = self._directory
        d.searches.append(
            {"base": search_base, "filter": search_filter, "attributes": attributes, "paged_size": paged_size}
        )
        if d.search_error:
            self.result = {"result": 1, "description": "operationsError"}
            return []
        entries = d.computers if search_filter.startswith("(&(objectClass=computer)") else d.users
        response = [_response_entry(e) for e in entries]
        # A continuation reference mixed in, as AD returns for other domains.
        response.append({"type": "searchResRef", "uri": ["ldap://other.corp.test/DC=other"]})
        self.result = {"result": 0, "description": "success"}
        return response


def _unescape(value: str) -> str:
    return re.sub(r"\\([0-9a-fA-F]{2})", lambda m: chr(int(m.group(1), 16)), value)


def _response_entry(entry: dict) -> dict:
    return {"type": "searchResEntry", "dn": entry["dn"], "attributes": dict(entry["attributes"])}


class FakeDirectory:
    """In-memory directory. Mutate users/computers between passes to simulate churn."""

    def __init__(self) -> None:
        self.users: list[dict] = []
        self.computers: list[dict] = []
        self.unreachable = False
        self.service_bind_ok = True
        self.search_error = False
        self.binds: list[Optional[str]] = []
        self.searches: list[dict] = []

    def add_user(self, login: str, password: str = "secret", **attributes) -> dict:
        attrs = {"sAMAccountName": login, **attributes}
        entry = {"dn": f"CN={login},OU=Staff,DC=corp,DC=test", "password": password, "attributes": attrs}
        self.users.append(entry)
        return entry

    def add_computer(self, name: str, **attributes) -> dict:
        attrs = {"cn": name, **attributes}
        entry = {"dn": f"CN={name},OU=Workstations,DC=corp,DC=test", "password": "", "attributes": attrs}
        self.computers.append(entry)
        return entry

    def remove_user(self, login: str) -> None:
        self.users = [u for u in self.users if u["attributes"].get("sAMAccountName") != login]

    def entry_by_dn(self, dn: str) -> Optional[dict]:
        for entry in self.users:
            if entry["dn"] == dn:
                return entry
        return None

    def factory(self, server, user, password) -> FakeConnection:
        return FakeConnection(self, user, password)


@pytest.fixture
def fake_directory() -> FakeDirectory:
    directory = FakeDirectory()
    directory.add_user("alice", password="alice-pw", displayName="Alice Liddell", mail="Alice@Corp.Test")
    directory.add_user("bob", password="bob-pw", cn="Bob Builder", mail="bob@corp.test")
    return directory


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(db_suffix: str = "") -> InventoryStore:
    """Isolated named shared-memory SQLite store; a fresh name per call."""
    name = f"test_inventory_{db_suffix}_{uuid.uuid4().hex}"
    return InventoryStore(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


@pytest.fixture
def store() -> Generator[InventoryStore, None, None]:
    s = make_store("unit")
    yield s
    s.close()


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: InventoryStore, client: DirectoryClient):
    """Return a lifespan that wires test components into app.state.

    The sync scheduler is built but never started; scheduler behaviour is
    covered in test_scheduler.py.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_app_state(app, settings, store, client)
        yield

    return test_lifespan


@contextmanager
def running_app(
    settings: Settings, store: InventoryStore, directory: FakeDirectory
) -> Generator[TestClient, None, None]:
    client = DirectoryClient(settings, connection_factory=directory.factory)
    app.router.lifespan_context = _patch_lifespan(settings, store, client)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    limiter.reset()


@pytest.fixture
def app_client(store, fake_directory) -> Generator[TestClient, None, None]:
    """Directory enabled, no write token, no session cookie."""
    with running_app(directory_settings(), store, fake_directory) as client:
        yield client


@pytest.fixture
def open_client(store, fake_directory) -> Generator[TestClient, None, None]:
    """Directory not configured: degraded mode, every request passes the gate."""
    with running_app(make_settings(), store, fake_directory) as client:
        yield client


def session_headers(client: TestClient, username: str) -> dict[str, str]:
    """Cookie header carrying a valid session token for username."""
    token = client.app.state.codec.issue(username)
    return {"Cookie": f"cp_session={token}"}
