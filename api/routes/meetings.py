"""
api/routes/meetings.py -- Calendar snapshot import and read-back.

The snapshot is replaced wholesale on every import (one transaction).
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from api.models import MeetingsImportRequest, MeetingsImportResponse, MeetingsStateResponse
from inventory.store import InventoryStore

logger = logging.getLogger("licensedesk.api")

router = APIRouter()


@router.post("/meetings/import", response_model=MeetingsImportResponse)
def import_meetings(request: Request, body: MeetingsImportRequest) -> MeetingsImportResponse:
    if not body.items:
        raise HTTPException(status_code=400, detail="provide at least one meeting")
    store: InventoryStore = request.app.state.store
    count, warnings = store.replace_meetings(body.exported_at, body.items)
    for warning in warnings:
        logger.warning("import meetings: %s", warning)
    logger.info("import meetings: imported=%d warnings=%d", count, len(warnings))
    return MeetingsImportResponse(meetings_imported=count)


@router.get("/meetings", response_model=MeetingsStateResponse)
def get_meetings(request: Request) -> MeetingsStateResponse:
    store: InventoryStore = request.app.state.store
    return MeetingsStateResponse.from_domain(store.get_meetings_state())
