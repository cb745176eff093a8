"""
WhatsApp Routes
Meta webhook verification/delivery and admin messaging endpoints
"""

import json
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import require_tenant_admin
from ..config import WHATSAPP_APP_SECRET
from ..database import get_db
from ..exceptions import IntegrationNotConfiguredError
from ..models import Usuario
from ..rate_limiter import create_rate_limiter
from ..services.whatsapp_service import WhatsAppService
from ..webhook_security import verify_meta_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/whatsapp", tags=["WhatsApp"])

rate_limit_webhook = create_rate_limiter(limit=300, window_seconds=60, key_prefix="whatsapp_webhook")


class SendMessageRequest(BaseModel):
    to: str
    type: Literal["text", "template"] = "text"
    message: Optional[str] = None
    templateName: Optional[str] = None
    parameters: Optional[list[str]] = None


class TemplateCreate(BaseModel):
    nome: str
    templateId: str
    categoria: Optional[str] = None
    conteudo: Optional[dict] = None


@router.get("/webhook")
async def verify_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    db: Session = Depends(get_db),
):
    """Meta subscription handshake; echoes hub.challenge as plain text"""
    result = WhatsAppService(db).verify_webhook(mode, token, challenge)
    if result is None:
        raise HTTPException(status_code=403, detail="Verification failed")
    return PlainTextResponse(result)


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_webhook),
):
    body = await verify_meta_webhook(request, WHATSAPP_APP_SECRET)
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e

    if not isinstance(payload, dict) or not payload.get("object"):
        raise HTTPException(status_code=404, detail="Not a WhatsApp event")

    processed = await WhatsAppService(db).handle_webhook(payload)
    logger.info(f"📨 WhatsApp webhook processed: {processed}")
    return PlainTextResponse("EVENT_RECEIVED")


@router.post("/send")
async def send_message(
    data: SendMessageRequest,
    current_user: Usuario = Depends(require_tenant_admin),
    db: Session = Depends(get_db),
):
    service = WhatsAppService(db, current_user.barbearia_id)
    try:
        if data.type == "template":
            if not data.templateName:
                raise HTTPException(status_code=400, detail="templateName is required")
            sent = await service.send_template_message(data.to, data.templateName, data.parameters)
        else:
            if not data.message:
                raise HTTPException(status_code=400, detail="message is required")
            sent = await service.send_text_message(data.to, data.message)
    except IntegrationNotConfiguredError as e:
        raise HTTPException(status_code=400, detail="WhatsApp not configured") from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if not sent:
        raise HTTPException(status_code=502, detail="Failed to send WhatsApp message")
    return {"success": True}


@router.get("/health")
async def health_check(
    current_user: Usuario = Depends(require_tenant_admin),
    db: Session = Depends(get_db),
):
    return await WhatsAppService(db, current_user.barbearia_id).health_check()


@router.get("/messages")
async def get_message_history(
    phone: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    current_user: Usuario = Depends(require_tenant_admin),
    db: Session = Depends(get_db),
):
    try:
        messages = WhatsAppService(db, current_user.barbearia_id).get_message_history(phone, limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return [
        {
            "id": m.id,
            "whatsappMessageId": m.whatsapp_message_id,
            "from": m.from_number,
            "to": m.to_number,
            "contactName": m.contact_name,
            "type": m.message_type,
            "content": m.message_content,
            "direction": m.direction,
            "status": m.status,
            "timestamp": m.timestamp.isoformat() if m.timestamp else None,
        }
        for m in messages
    ]


@router.get("/stats")
async def get_message_stats(
    days: int = Query(30, ge=1, le=365),
    current_user: Usuario = Depends(require_tenant_admin),
    db: Session = Depends(get_db),
):
    return WhatsAppService(db, current_user.barbearia_id).get_message_stats(days)


@router.get("/templates")
async def get_templates(
    current_user: Usuario = Depends(require_tenant_admin),
    db: Session = Depends(get_db),
):
    return [
        {"id": t.id, "nome": t.nome, "templateId": t.template_id, "categoria": t.categoria, "conteudo": t.conteudo}
        for t in WhatsAppService(db, current_user.barbearia_id).get_templates()
    ]


@router.post("/templates", status_code=201)
async def create_template(
    data: TemplateCreate,
    current_user: Usuario = Depends(require_tenant_admin),
    db: Session = Depends(get_db),
):
    template = WhatsAppService(db, current_user.barbearia_id).create_template(
        data.nome, data.templateId, data.categoria, data.conteudo
    )
    return {"id": template.id, "nome": template.nome, "templateId": template.template_id}
