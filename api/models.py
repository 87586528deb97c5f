"""
API request and response models for LicenseDesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in inventory/models.py, which own
the domain representation. Route handlers map between the two via the
from_domain() factories below.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from inventory.models import License, LocalComputer, LocalUser, Meeting, MeetingsState

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class UserImportItem(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = ""
    email: str = ""


class UsersImportRequest(BaseModel):
    """Request body for POST /api/users/import (manual mode only)."""

    users: list[UserImportItem] = Field(default_factory=list)


class LicenseImportItem(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = ""
    comment: str = ""
    pc: str = ""


class LicensesImportRequest(BaseModel):
    """Request body for POST /api/licenses/import."""

    licenses: list[LicenseImportItem] = Field(default_factory=list)


class AssignRequest(BaseModel):
    user_id: Optional[int] = None
    license_id: Optional[int] = None


class UpdateLicenseRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    license_id: Optional[int] = None
    comment: str = ""
    pc: str = ""


class UnassignRequest(BaseModel):
    license_id: Optional[int] = None


class MeetingItem(BaseModel):
    """One meeting in an imported calendar snapshot. Also used in responses."""

    id: str = ""
    subject: str = ""
    start: str = ""
    end: str = ""
    location: str = ""
    is_recurring: bool = False
    is_canceled: bool = False
    link: str = ""
    participants: str = ""

    @classmethod
    def from_domain(cls, meeting: Meeting) -> "MeetingItem":
        return cls(
            id=meeting.id,
            subject=meeting.subject,
            start=meeting.start,
            end=meeting.end,
            location=meeting.location,
            is_recurring=meeting.is_recurring,
            is_canceled=meeting.is_canceled,
            link=meeting.link,
            participants=meeting.participants,
        )


class MeetingsImportRequest(BaseModel):
    """Request body for POST /api/meetings/import. Replaces the whole snapshot."""

    exported_at: str = ""
    items: list[MeetingItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserRow(BaseModel):
    """Active user as listed in GET /api/state."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str

    @classmethod
    def from_domain(cls, user: LocalUser) -> "UserRow":
        return cls(id=user.id, name=user.name, email=user.email)


class UserFullRow(BaseModel):
    """Any user, including inactive ones, as listed in GET /api/users/all."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    login: str
    source: str
    active: bool

    @classmethod
    def from_domain(cls, user: LocalUser) -> "UserFullRow":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            login=user.login,
            source=user.source,
            active=user.active,
        )


class ComputerRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    host_address: str
    description: str

    @classmethod
    def from_domain(cls, computer: LocalComputer) -> "ComputerRow":
        return cls(
            id=computer.id,
            name=computer.name,
            host_address=computer.host_address,
            description=computer.description,
        )


class LicenseRow(BaseModel):
    """A license. assigned_user_id may point at an inactive user."""

    model_config = ConfigDict(frozen=True)

    id: int
    key: str
    assigned_user_id: Optional[int]
    comment: str
    pc: str

    @classmethod
    def from_domain(cls, lic: License) -> "LicenseRow":
        return cls(
            id=lic.id,
            key=lic.key,
            assigned_user_id=lic.assigned_user_id,
            comment=lic.comment,
            pc=lic.pc,
        )


class StateResponse(BaseModel):
    """Response for GET /api/state: active users plus every license."""

    model_config = ConfigDict(frozen=True)

    users: list[UserRow]
    licenses: list[LicenseRow]


class UsersAllResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[UserFullRow]


class ComputersResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    computers: list[ComputerRow]


class UsersImportResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users_imported: int
    warnings: list[str] = Field(default_factory=list)


class LicensesImportResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    licenses_imported: int
    warnings: list[str] = Field(default_factory=list)


class MeetingsImportResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    meetings_imported: int


class MeetingsStateResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    exported_at: str
    items: list[MeetingItem]

    @classmethod
    def from_domain(cls, state: MeetingsState) -> "MeetingsStateResponse":
        return cls(exported_at=state.exported_at, items=[MeetingItem.from_domain(m) for m in state.items])


class StatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "ok"


class ErrorResponse(BaseModel):
    """Error envelope returned on every 4xx/5xx JSON response."""

    model_config = ConfigDict(frozen=True)

    error: str


class HealthResponse(BaseModel):
    """Response for GET /healthz."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
