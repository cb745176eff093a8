"""
Google Calendar Integration Routes
OAuth connection of a shop calendar, two-way sync and conflict resolution
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import require_tenant_admin
from ..config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET
from ..database import get_db
from ..exceptions import IntegrationNotConfiguredError, SyncInProgressError
from ..models import Usuario
from ..services.google_calendar_service import (
    RESOLUTIONS,
    CalendarSettings,
    GoogleCalendarService,
    SyncConflict,
    build_auth_url,
    exchange_authorization_code,
)
from ..services.integration_config import load_integration_config, save_integration_config
from ..shared.dates import ms_epoch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/google", tags=["Google Calendar"])
calendar_router = APIRouter(prefix="/api/google-calendar", tags=["Google Calendar"])


class CallbackRequest(BaseModel):
    code: str


class ConflictPayload(BaseModel):
    appointment_id: str
    event_id: str
    event_summary: str = ""
    local_start: datetime
    local_end: datetime
    remote_start: datetime
    remote_end: datetime
    type: str = "time_overlap"
    resolution: str = "manual"


class ResolveConflictRequest(BaseModel):
    conflict: ConflictPayload
    resolution: str


async def get_calendar_service(
    current_user: Usuario = Depends(require_tenant_admin),
    db: Session = Depends(get_db),
) -> GoogleCalendarService:
    """Initialized calendar service of the admin's shop"""
    service = GoogleCalendarService(db, current_user.barbearia_id)
    try:
        await service.initialize()
    except IntegrationNotConfiguredError as e:
        raise HTTPException(status_code=400, detail="Google Calendar not connected") from e
    return service


# ============================================================================
# OAUTH
# ============================================================================


@router.get("/auth-url")
async def get_auth_url(current_user: Usuario = Depends(require_tenant_admin)):
    """Initiate Google Calendar OAuth flow"""
    if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
        raise HTTPException(status_code=500, detail="Google Calendar not configured")

    logger.info(f"Google Calendar OAuth initiated for shop: {current_user.barbearia_id}")
    return {"authUrl": build_auth_url(current_user.barbearia_id)}


@router.post("/callback")
async def handle_callback(
    data: CallbackRequest,
    current_user: Usuario = Depends(require_tenant_admin),
    db: Session = Depends(get_db),
):
    """Exchange the code sent by the frontend and store the shop's tokens"""
    tokens = await exchange_authorization_code(data.code)
    if not tokens or not tokens.get("access_token"):
        raise HTTPException(status_code=400, detail="Failed to exchange authorization code")

    existing = load_integration_config(db, "google_calendar", current_user.barbearia_id) or {}
    settings = CalendarSettings.from_config(existing)
    settings.access_token = tokens["access_token"]
    # Google omits refresh_token on re-consent of an already authorized app
    settings.refresh_token = tokens.get("refresh_token") or settings.refresh_token
    settings.token_expiry_date = ms_epoch() + int(tokens.get("expires_in", 3600)) * 1000

    save_integration_config(
        db, "google_calendar", settings.to_config(), current_user.barbearia_id, ativo=True
    )
    logger.info(f"✅ Google Calendar connected for shop {current_user.barbearia_id}")
    return {"success": True, "calendarId": settings.calendar_id}


@router.get("/health")
async def health_check(
    current_user: Usuario = Depends(require_tenant_admin),
    db: Session = Depends(get_db),
):
    service = GoogleCalendarService(db, current_user.barbearia_id)
    try:
        await service.initialize()
    except IntegrationNotConfiguredError:
        return {"configured": False, "healthy": False}
    return {"configured": True, "healthy": await service.test_connection()}


# ============================================================================
# SYNC
# ============================================================================


@calendar_router.post("/sync")
async def sync_calendar(service: GoogleCalendarService = Depends(get_calendar_service)):
    try:
        result = await service.sync_with_local_appointments()
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail="Sync already in progress") from e
    return result.to_dict()


@calendar_router.post("/conflicts/resolve")
async def resolve_conflict(
    data: ResolveConflictRequest,
    service: GoogleCalendarService = Depends(get_calendar_service),
):
    if data.resolution not in RESOLUTIONS:
        raise HTTPException(status_code=400, detail=f"Resolution must be one of {', '.join(RESOLUTIONS)}")

    resolved = await service.resolve_conflict(SyncConflict(**data.conflict.model_dump()), data.resolution)
    if not resolved:
        raise HTTPException(status_code=422, detail="Conflict could not be resolved")
    return {"success": True}


@calendar_router.get("/test")
async def test_connection(service: GoogleCalendarService = Depends(get_calendar_service)):
    return {"connected": await service.test_connection()}


@calendar_router.get("/calendars")
async def get_calendars(service: GoogleCalendarService = Depends(get_calendar_service)):
    return {"calendars": await service.get_calendar_list()}
