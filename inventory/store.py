"""
inventory/store.py -- SQLAlchemy-backed persistence layer for LicenseDesk.

Uses SQLAlchemy Core (not ORM) so the dataclasses in inventory/models.py
remain the authoritative domain representation.

Pattern: Repository + Data Mapper. InventoryStore is the repository; the
_row_to_* functions translate raw rows into domain dataclasses. Route
handlers and the reconciler never touch SQL directly.

Transactions: every multi-statement operation (license import, manual user
import, meetings snapshot) runs inside engine.begin() and is all-or-nothing.
The reconciler drives the LDAP primitives itself through transaction() so a
full pass (deactivate all, upsert fetched, recount) commits or rolls back as
one unit.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = InventoryStore("sqlite:///data/licensedesk.sqlite")
    imported, warnings = store.import_licenses([{"key": "AAA-111"}])
    store.assign_license(user_id=1, license_id=1)
    users, licenses = store.list_active_users(), store.list_licenses()
    store.close()
"""

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine, make_url

from inventory.errors import LicenseNotFound, UserNotFound
from inventory.models import (
    SOURCE_LDAP,
    SOURCE_MANUAL,
    License,
    LocalComputer,
    LocalUser,
    Meeting,
    MeetingsState,
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identity", Text, nullable=False, unique=True),
    Column("name", Text, nullable=False, server_default=""),
    Column("email", Text, nullable=False, server_default=""),
    Column("login", String(255), nullable=False, server_default=""),
    Column("source", String(16), nullable=False, server_default=SOURCE_MANUAL),
    Column("active", Boolean, nullable=False, server_default=text("1")),
    Column("updated_at", String(32), nullable=False, server_default=""),
    Index("idx_users_active", "active"),
)

_computers = Table(
    "computers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identity", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("host_address", String(255), nullable=False, server_default=""),
    Column("description", Text, nullable=False, server_default=""),
    Column("source", String(16), nullable=False, server_default=SOURCE_LDAP),
    Column("active", Boolean, nullable=False, server_default=text("1")),
    Column("updated_at", String(32), nullable=False, server_default=""),
    Index("idx_computers_active", "active"),
)

_licenses = Table(
    "licenses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("key", Text, nullable=False, unique=True),
    Column("assigned_user_id", Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    Column("comment", Text, nullable=False, server_default=""),
    Column("pc", Text, nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False, server_default=""),
)

_meetings_meta = Table(
    "meetings_meta",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("exported_at", String(64), nullable=False, server_default=""),
    CheckConstraint("id = 1", name="ck_meetings_meta_singleton"),
)

_meetings = Table(
    "meetings",
    metadata,
    Column("id", String(255), primary_key=True),
    Column("subject", Text, nullable=False, server_default=""),
    Column("start", String(64), nullable=False, server_default=""),
    Column("end", String(64), nullable=False, server_default=""),
    Column("location", Text, nullable=False, server_default=""),
    Column("is_recurring", Boolean, nullable=False, server_default=text("0")),
    Column("is_canceled", Boolean, nullable=False, server_default=text("0")),
    Column("link", Text, nullable=False, server_default=""),
    Column("participants", Text, nullable=False, server_default=""),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def manual_identity(name: str, email: str) -> str:
    """Identity for a manually imported user: email wins, then name. "" if neither."""
    email = email.strip().lower()
    if email:
        return f"email:{email}"
    name = name.strip().lower()
    if name:
        return f"name:{name}"
    return ""


def ldap_identity(value: str) -> str:
    return f"ldap:{value.strip().lower()}"


def _field(item, name: str, default=""):
    """Read a field from either a mapping or an object (pydantic model, dataclass)."""
    if isinstance(item, dict):
        value = item.get(name, default)
    else:
        value = getattr(item, name, default)
    return default if value is None else value


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Per-connection PRAGMAs. SQLite does not carry them across pooled connections."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def _ensure_sqlite_dir(db_url: str) -> None:
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    if url.query.get("uri"):
        return
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class InventoryStore:
    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a threadpool and the scheduler
            # runs passes in a worker thread; pooled connections cross threads.
            connect_args["check_same_thread"] = False
            _ensure_sqlite_dir(db_url)
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(self.engine)
        with self.engine.begin() as conn:
            exists = conn.execute(select(_meetings_meta.c.id).where(_meetings_meta.c.id == 1)).first()
            if exists is None:
                conn.execute(_meetings_meta.insert().values(id=1, exported_at=""))

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection inside BEGIN; commit on exit, roll back on exception."""
        with self.engine.begin() as conn:
            yield conn

    def ping(self) -> None:
        """Raise if the database cannot answer a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Directory-sourced users (reconciler primitives, caller owns the txn)
    # ------------------------------------------------------------------

    def count_active_ldap_users(self, conn: Connection) -> int:
        return conn.execute(
            select(func.count())
            .select_from(_users)
            .where(_users.c.source == SOURCE_LDAP, _users.c.active.is_(True))
        ).scalar_one()

    def mark_ldap_users_inactive(self, conn: Connection) -> int:
        result = conn.execute(_users.update().where(_users.c.source == SOURCE_LDAP).values(active=False))
        return result.rowcount

    def upsert_ldap_user(self, conn: Connection, login: str, name: str, email: str) -> None:
        """Insert or reactivate the user keyed by ldap:<login>.

        Existing rows keep their id, so licenses assigned to them stay linked.
        """
        login = login.strip()
        if not login:
            raise ValueError("empty directory login")
        identity = ldap_identity(login)
        values = {
            "name": name.strip(),
            "email": email.strip().lower(),
            "login": login,
            "source": SOURCE_LDAP,
            "active": True,
            "updated_at": _now_iso(),
        }
        existing = conn.execute(select(_users.c.id).where(_users.c.identity == identity)).first()
        if existing is None:
            conn.execute(_users.insert().values(identity=identity, **values))
        else:
            conn.execute(_users.update().where(_users.c.id == existing.id).values(**values))

    # ------------------------------------------------------------------
    # Directory-sourced computers
    # ------------------------------------------------------------------

    def count_active_ldap_computers(self, conn: Connection) -> int:
        return conn.execute(
            select(func.count())
            .select_from(_computers)
            .where(_computers.c.source == SOURCE_LDAP, _computers.c.active.is_(True))
        ).scalar_one()

    def mark_ldap_computers_inactive(self, conn: Connection) -> int:
        result = conn.execute(
            _computers.update().where(_computers.c.source == SOURCE_LDAP).values(active=False)
        )
        return result.rowcount

    def upsert_ldap_computer(self, conn: Connection, name: str, host_address: str, description: str) -> None:
        name = name.strip()
        if not name:
            raise ValueError("empty computer name")
        identity = ldap_identity(name)
        values = {
            "name": name,
            "host_address": host_address.strip(),
            "description": description.strip(),
            "source": SOURCE_LDAP,
            "active": True,
            "updated_at": _now_iso(),
        }
        existing = conn.execute(select(_computers.c.id).where(_computers.c.identity == identity)).first()
        if existing is None:
            conn.execute(_computers.insert().values(identity=identity, **values))
        else:
            conn.execute(_computers.update().where(_computers.c.id == existing.id).values(**values))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def list_active_users(self) -> list[LocalUser]:
        """Active users ordered by name, email, id."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select()
                .where(_users.c.active.is_(True))
                .order_by(_users.c.name, _users.c.email, _users.c.id)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def list_users_all(self) -> list[LocalUser]:
        """Every user, active first, so the UI can render historical assignments."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().order_by(_users.c.active.desc(), _users.c.name, _users.c.email, _users.c.id)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def get_user_by_identity(self, identity: str) -> Optional[LocalUser]:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.identity == identity)).fetchone()
        return _row_to_user(row) if row is not None else None

    def import_manual_users(self, items: Iterable) -> tuple[int, list[str]]:
        """Upsert manually supplied users keyed by email (or name).

        Each item needs name and/or email. Items with neither become warnings.
        Returns (imported, warnings).
        """
        imported = 0
        warnings: list[str] = []
        now = _now_iso()
        with self.engine.begin() as conn:
            for item in items:
                name = str(_field(item, "name")).strip()
                email = str(_field(item, "email")).strip().lower()
                identity = manual_identity(name, email)
                if not identity:
                    warnings.append("skipped user without name and email")
                    continue
                values = {"name": name, "email": email, "active": True, "updated_at": now}
                existing = conn.execute(select(_users.c.id).where(_users.c.identity == identity)).first()
                if existing is None:
                    conn.execute(
                        _users.insert().values(identity=identity, login="", source=SOURCE_MANUAL, **values)
                    )
                else:
                    conn.execute(_users.update().where(_users.c.id == existing.id).values(**values))
                imported += 1
        return imported, warnings

    # ------------------------------------------------------------------
    # Computers
    # ------------------------------------------------------------------

    def list_computers(self) -> list[LocalComputer]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _computers.select()
                .where(_computers.c.active.is_(True))
                .order_by(_computers.c.name, _computers.c.id)
            ).fetchall()
        return [_row_to_computer(r) for r in rows]

    # ------------------------------------------------------------------
    # Licenses
    # ------------------------------------------------------------------

    def list_licenses(self) -> list[License]:
        with self.engine.connect() as conn:
            rows = conn.execute(_licenses.select().order_by(_licenses.c.id)).fetchall()
        return [_row_to_license(r) for r in rows]

    def get_license(self, license_id: int) -> Optional[License]:
        with self.engine.connect() as conn:
            row = conn.execute(_licenses.select().where(_licenses.c.id == license_id)).fetchone()
        return _row_to_license(row) if row is not None else None

    def import_licenses(self, items: Iterable) -> tuple[int, list[str]]:
        """Insert new license keys. Blank and duplicate keys become warnings.

        A key counts as a duplicate if it already exists in the table or
        appeared earlier in the same batch. Returns (imported, warnings).
        """
        imported = 0
        warnings: list[str] = []
        now = _now_iso()
        with self.engine.begin() as conn:
            seen = set(conn.execute(select(_licenses.c.key)).scalars())
            for item in items:
                key = str(_field(item, "key")).strip()
                if not key:
                    warnings.append("skipped license without key")
                    continue
                if key in seen:
                    warnings.append(f"duplicate key: {key}")
                    continue
                conn.execute(
                    _licenses.insert().values(
                        key=key,
                        assigned_user_id=None,
                        comment=str(_field(item, "comment")).strip(),
                        pc=str(_field(item, "pc")).strip(),
                        created_at=now,
                    )
                )
                seen.add(key)
                imported += 1
        return imported, warnings

    def assign_license(self, user_id: int, license_id: int) -> None:
        """Point a license at an active user, replacing any previous holder.

        Raises UserNotFound if the user does not exist or is inactive,
        LicenseNotFound if the license does not exist.
        """
        with self.engine.begin() as conn:
            user = conn.execute(
                select(_users.c.id).where(_users.c.id == user_id, _users.c.active.is_(True))
            ).first()
            if user is None:
                raise UserNotFound()
            result = conn.execute(
                _licenses.update().where(_licenses.c.id == license_id).values(assigned_user_id=user_id)
            )
            if result.rowcount == 0:
                raise LicenseNotFound()

    def update_license(self, license_id: int, comment: str, pc: str) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                _licenses.update()
                .where(_licenses.c.id == license_id)
                .values(comment=comment.strip(), pc=pc.strip())
            )
            if result.rowcount == 0:
                raise LicenseNotFound()

    def unassign_license(self, license_id: int) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                _licenses.update().where(_licenses.c.id == license_id).values(assigned_user_id=None)
            )
            if result.rowcount == 0:
                raise LicenseNotFound()

    # ------------------------------------------------------------------
    # Meetings snapshot
    # ------------------------------------------------------------------

    def replace_meetings(self, exported_at: str, items: Iterable) -> tuple[int, list[str]]:
        """Replace the whole meetings snapshot.

        Items with a blank id are skipped. A repeated id keeps its first
        occurrence and the rest become warnings. Returns (stored, warnings).
        """
        count = 0
        warnings: list[str] = []
        seen: set[str] = set()
        with self.engine.begin() as conn:
            conn.execute(
                _meetings_meta.update().where(_meetings_meta.c.id == 1).values(exported_at=exported_at.strip())
            )
            conn.execute(_meetings.delete())
            for item in items:
                meeting_id = str(_field(item, "id")).strip()
                if not meeting_id:
                    continue
                if meeting_id in seen:
                    warnings.append(f"duplicate meeting id: {meeting_id}")
                    continue
                seen.add(meeting_id)
                conn.execute(
                    _meetings.insert().values(
                        id=meeting_id,
                        subject=str(_field(item, "subject")).strip(),
                        start=str(_field(item, "start")).strip(),
                        end=str(_field(item, "end")).strip(),
                        location=str(_field(item, "location")).strip(),
                        is_recurring=bool(_field(item, "is_recurring", False)),
                        is_canceled=bool(_field(item, "is_canceled", False)),
                        link=str(_field(item, "link")).strip(),
                        participants=str(_field(item, "participants")).strip(),
                    )
                )
                count += 1
        return count, warnings

    def get_meetings_state(self) -> MeetingsState:
        with self.engine.connect() as conn:
            exported_at = conn.execute(
                select(_meetings_meta.c.exported_at).where(_meetings_meta.c.id == 1)
            ).scalar_one_or_none()
            rows = conn.execute(_meetings.select().order_by(_meetings.c.start, _meetings.c.id)).fetchall()
        return MeetingsState(exported_at=exported_at or "", items=[_row_to_meeting(r) for r in rows])


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> LocalUser:
    return LocalUser(
        id=row.id,
        identity=row.identity,
        name=row.name,
        email=row.email,
        login=row.login,
        source=row.source,
        active=bool(row.active),
        updated_at=row.updated_at,
    )


def _row_to_computer(row) -> LocalComputer:
    return LocalComputer(
        id=row.id,
        identity=row.identity,
        name=row.name,
        host_address=row.host_address,
        description=row.description,
        source=row.source,
        active=bool(row.active),
        updated_at=row.updated_at,
    )


def _row_to_license(row) -> License:
    return License(
        id=row.id,
        key=row.key,
        assigned_user_id=row.assigned_user_id,
        comment=row.comment,
        pc=row.pc,
        created_at=row.created_at,
    )


def _row_to_meeting(row) -> Meeting:
    return Meeting(
        id=row.id,
        subject=row.subject,
        start=row.start,
        end=row.end,
        location=row.location,
        is_recurring=bool(row.is_recurring),
        is_canceled=bool(row.is_canceled),
        link=row.link,
        participants=row.participants,
    )
