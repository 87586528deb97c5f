"""
api/routes/directory.py -- User and computer listings, manual user import.

Routes:
  GET  /api/users/all     -- every user, inactive included
  GET  /api/computers     -- active computers
  POST /api/users/import  -- manual upsert; refused while the directory is configured
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from api.models import (
    ComputerRow,
    ComputersResponse,
    UserFullRow,
    UsersAllResponse,
    UsersImportRequest,
    UsersImportResponse,
)
from core.config import Settings
from inventory.store import InventoryStore

logger = logging.getLogger("licensedesk.api")

router = APIRouter()


@router.get("/users/all", response_model=UsersAllResponse)
def list_users_all(request: Request) -> UsersAllResponse:
    store: InventoryStore = request.app.state.store
    return UsersAllResponse(users=[UserFullRow.from_domain(u) for u in store.list_users_all()])


@router.get("/computers", response_model=ComputersResponse)
def list_computers(request: Request) -> ComputersResponse:
    store: InventoryStore = request.app.state.store
    return ComputersResponse(computers=[ComputerRow.from_domain(c) for c in store.list_computers()])


@router.post("/users/import", response_model=UsersImportResponse)
def import_users(request: Request, body: UsersImportRequest) -> UsersImportResponse:
    """Manual fallback for installs without a directory.

    With LDAP configured the directory is the only source of users, so this
    endpoint refuses to run.
    """
    settings: Settings = request.app.state.settings
    if settings.directory_enabled:
        raise HTTPException(
            status_code=400,
            detail="LDAP is enabled: users are synchronized from the directory (manual import disabled)",
        )
    if not body.users:
        raise HTTPException(status_code=400, detail="provide at least one user")
    store: InventoryStore = request.app.state.store
    imported, warnings = store.import_manual_users(body.users)
    for warning in warnings:
        logger.warning("import users: %s", warning)
    logger.info("import users: imported=%d warnings=%d", imported, len(warnings))
    return UsersImportResponse(users_imported=imported, warnings=warnings)
