"""Integration status overview for the admin panel"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import require_tenant_admin
from ..database import get_db
from ..exceptions import IntegrationNotConfiguredError
from ..models import Usuario
from ..services.ai_service import AIService
from ..services.google_calendar_service import GoogleCalendarService
from ..services.n8n_service import N8NService
from ..services.payment_service import PaymentService
from ..services.push_notification_service import PushSettings
from ..services.whatsapp_service import WhatsAppService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Status"])


async def _google_calendar_status(db: Session, barbearia_id: str) -> dict:
    service = GoogleCalendarService(db, barbearia_id)
    try:
        await service.initialize()
    except IntegrationNotConfiguredError:
        return {"configured": False, "healthy": False}
    return {"configured": True, "healthy": await service.test_connection()}


def _ai_status(db: Session) -> dict:
    try:
        settings = AIService(db).initialize()
    except IntegrationNotConfiguredError:
        return {"configured": False, "healthy": False}
    return {"configured": True, "healthy": bool(settings.api_key), "provider": settings.provider}


@router.get("/status")
async def get_integrations_status(
    current_user: Usuario = Depends(require_tenant_admin),
    db: Session = Depends(get_db),
):
    """configured/healthy for every integration of the shop"""
    stripe_health = PaymentService(db).health_check()
    push_configured = PushSettings.from_env().configured
    status = {
        "whatsapp": await WhatsAppService(db, current_user.barbearia_id).health_check(),
        "googleCalendar": await _google_calendar_status(db, current_user.barbearia_id),
        "ai": _ai_status(db),
        "n8n": await N8NService(db).health_check(),
        "payments": {"configured": stripe_health["configured"], "healthy": stripe_health["status"] == "ok"},
        "pushNotifications": {"configured": push_configured, "healthy": push_configured},
    }
    healthy = [name for name, s in status.items() if s["healthy"]]
    logger.info(f"📊 Integration status for shop {current_user.barbearia_id}: healthy={healthy}")
    return status
