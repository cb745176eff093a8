"""
AI Assistant Routes
Customer chat, conversation history/escalation and admin analytics helpers
"""

import logging
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import ADMIN_ROLES, get_current_user, require_tenant_admin
from ..database import get_db
from ..exceptions import AIProviderError, ConversationNotFoundError, IntegrationNotConfiguredError
from ..models import Usuario
from ..models_integrations import ConversaAI
from ..services.ai_service import AIService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["AI Assistant"])


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    conversationId: Optional[str] = None


class EscalateRequest(BaseModel):
    reason: str = Field(min_length=1)


class SentimentRequest(BaseModel):
    message: str


class SuggestionsRequest(BaseModel):
    preferences: dict = Field(default_factory=dict)


class MarketingRequest(BaseModel):
    type: Literal["social", "email", "sms"]
    context: dict = Field(default_factory=dict)


def get_ai_service(db: Session = Depends(get_db)) -> AIService:
    """AIService with the global ai integration loaded"""
    service = AIService(db)
    try:
        service.initialize()
    except IntegrationNotConfiguredError as e:
        raise HTTPException(status_code=503, detail="AI assistant not configured") from e
    return service


def _conversation_response(conversation: ConversaAI) -> dict:
    return {
        "id": conversation.id,
        "status": conversation.status,
        "messages": conversation.messages or [],
        "createdAt": conversation.created_at.isoformat() if conversation.created_at else None,
        "updatedAt": conversation.updated_at.isoformat() if conversation.updated_at else None,
    }


def _owned_conversation(service: AIService, conversation_id: str, user: Usuario) -> ConversaAI:
    conversation = service.get_conversation_history(conversation_id)
    if not conversation or (conversation.user_id != user.id and user.tipo not in ADMIN_ROLES):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


# ============================================================================
# CHAT
# ============================================================================


@router.post("/chat")
async def chat(
    data: ChatRequest,
    current_user: Usuario = Depends(get_current_user),
    service: AIService = Depends(get_ai_service),
):
    if data.conversationId:
        _owned_conversation(service, data.conversationId, current_user)
    try:
        return await service.process_message(current_user.id, data.message, data.conversationId)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail="Conversation not found") from e
    except AIProviderError as e:
        raise HTTPException(status_code=502, detail="AI provider unavailable") from e


@router.get("/conversations")
async def get_my_conversations(
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    # Listing history works even when the provider is not configured
    return [_conversation_response(c) for c in AIService(db).get_user_conversations(current_user.id)]


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _conversation_response(_owned_conversation(AIService(db), conversation_id, current_user))


@router.post("/conversations/{conversation_id}/escalate")
async def escalate_conversation(
    conversation_id: str,
    data: EscalateRequest,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Hand the conversation over to a human attendant"""
    service = AIService(db)
    _owned_conversation(service, conversation_id, current_user)
    service.escalate_to_human(conversation_id, data.reason)
    return {"success": True, "status": "escalated"}


# ============================================================================
# CLIENT HELPERS
# ============================================================================


@router.post("/suggestions")
async def appointment_suggestions(
    data: SuggestionsRequest,
    current_user: Usuario = Depends(get_current_user),
    service: AIService = Depends(get_ai_service),
):
    return {"suggestions": await service.generate_appointment_suggestions(current_user.id, data.preferences)}


@router.get("/recommendations")
async def personalized_recommendations(
    current_user: Usuario = Depends(get_current_user),
    service: AIService = Depends(get_ai_service),
):
    return await service.generate_personalized_recommendations(current_user.id)


# ============================================================================
# ADMIN ANALYTICS
# ============================================================================


@router.post("/sentiment")
async def analyze_sentiment(
    data: SentimentRequest,
    _: Usuario = Depends(require_tenant_admin),
    service: AIService = Depends(get_ai_service),
):
    return await service.analyze_customer_sentiment(data.message)


@router.get("/schedule-optimization")
async def optimize_schedule(
    day: date = Query(..., alias="date"),
    current_user: Usuario = Depends(require_tenant_admin),
    service: AIService = Depends(get_ai_service),
):
    return await service.optimize_schedule(current_user.barbearia_id, day)


@router.get("/insights")
async def business_insights(
    period: Literal["week", "month", "quarter"] = "month",
    current_user: Usuario = Depends(require_tenant_admin),
    service: AIService = Depends(get_ai_service),
):
    return await service.analyze_business_insights(current_user.barbearia_id, period)


@router.post("/marketing")
async def marketing_content(
    data: MarketingRequest,
    current_user: Usuario = Depends(require_tenant_admin),
    service: AIService = Depends(get_ai_service),
):
    return await service.generate_marketing_content(current_user.barbearia_id, data.type, data.context)
