"""
inventory/models.py -- Domain dataclasses for the LicenseDesk inventory.

Pure data containers. All persistence logic lives in inventory/store.py.

id is None before a record is written to the database.
"""

from dataclasses import dataclass, field
from typing import Optional

SOURCE_LDAP = "ldap"
SOURCE_MANUAL = "manual"


@dataclass
class LocalUser:
    """A person that can hold licenses.

    identity is the upsert key: "ldap:<login>" for directory users,
    "email:<email>" or "name:<name>" for manually imported ones. Rows are
    never deleted by synchronization, only flagged inactive, so license links
    to departed users survive.
    """

    identity: str
    name: str = ""
    email: str = ""
    login: str = ""
    source: str = SOURCE_MANUAL
    active: bool = True
    updated_at: str = ""
    id: Optional[int] = None


@dataclass
class LocalComputer:
    identity: str
    name: str = ""
    host_address: str = ""
    description: str = ""
    source: str = SOURCE_LDAP
    active: bool = True
    updated_at: str = ""
    id: Optional[int] = None


@dataclass
class License:
    """A license key, optionally assigned to one user.

    Reassignment overwrites assigned_user_id; no history is kept.
    """

    key: str
    assigned_user_id: Optional[int] = None
    comment: str = ""
    pc: str = ""
    created_at: str = ""
    id: Optional[int] = None


@dataclass
class Meeting:
    id: str
    subject: str = ""
    start: str = ""
    end: str = ""
    location: str = ""
    is_recurring: bool = False
    is_canceled: bool = False
    link: str = ""
    participants: str = ""


@dataclass
class MeetingsState:
    exported_at: str = ""
    items: list[Meeting] = field(default_factory=list)
