"""
api/routes/licenses.py -- License inventory routes.

Routes:
  GET  /api/state             -- active users + all licenses
  POST /api/licenses/import   -- bulk insert keys; duplicates become warnings
  POST /api/assign            -- point a license at an active user
  POST /api/license/update    -- set comment and pc
  POST /api/license/unassign  -- clear the assigned user

UserNotFound / LicenseNotFound raised by the store are turned into 400
responses by the InventoryError handler in api/main.py.
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from api.models import (
    AssignRequest,
    LicenseRow,
    LicensesImportRequest,
    LicensesImportResponse,
    StateResponse,
    StatusResponse,
    UnassignRequest,
    UpdateLicenseRequest,
    UserRow,
)
from inventory.store import InventoryStore

logger = logging.getLogger("licensedesk.api")

router = APIRouter()


@router.get("/state", response_model=StateResponse)
def get_state(request: Request) -> StateResponse:
    """Everything the front-end needs to render the assignment table."""
    store: InventoryStore = request.app.state.store
    return StateResponse(
        users=[UserRow.from_domain(u) for u in store.list_active_users()],
        licenses=[LicenseRow.from_domain(lic) for lic in store.list_licenses()],
    )


@router.post("/licenses/import", response_model=LicensesImportResponse)
def import_licenses(request: Request, body: LicensesImportRequest) -> LicensesImportResponse:
    if not body.licenses:
        raise HTTPException(status_code=400, detail="provide at least one license")
    store: InventoryStore = request.app.state.store
    imported, warnings = store.import_licenses(body.licenses)
    for warning in warnings:
        logger.warning("import licenses: %s", warning)
    logger.info("import licenses: imported=%d warnings=%d", imported, len(warnings))
    return LicensesImportResponse(licenses_imported=imported, warnings=warnings)


@router.post("/assign", response_model=StatusResponse)
def assign_license(request: Request, body: AssignRequest) -> StatusResponse:
    if not body.user_id or not body.license_id:
        raise HTTPException(status_code=400, detail="user_id and license_id are required")
    store: InventoryStore = request.app.state.store
    store.assign_license(body.user_id, body.license_id)
    logger.info("license %d assigned to user %d", body.license_id, body.user_id)
    return StatusResponse()


@router.post("/license/update", response_model=StatusResponse)
def update_license(request: Request, body: UpdateLicenseRequest) -> StatusResponse:
    if not body.license_id:
        raise HTTPException(status_code=400, detail="license_id is required")
    store: InventoryStore = request.app.state.store
    store.update_license(body.license_id, body.comment, body.pc)
    return StatusResponse()


@router.post("/license/unassign", response_model=StatusResponse)
def unassign_license(request: Request, body: UnassignRequest) -> StatusResponse:
    if not body.license_id:
        raise HTTPException(status_code=400, detail="license_id is required")
    store: InventoryStore = request.app.state.store
    store.unassign_license(body.license_id)
    logger.info("license %d unassigned", body.license_id)
    return StatusResponse()
