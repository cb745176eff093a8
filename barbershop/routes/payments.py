"""
Payment Routes
Stripe PaymentIntent endpoints for appointment payments
"""

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import ADMIN_ROLES, get_current_user, require_admin
from ..database import get_db
from ..exceptions import IntegrationNotConfiguredError
from ..models import Agendamento, Usuario
from ..services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["Payments"])


class CreateIntentRequest(BaseModel):
    appointmentId: Optional[str] = None
    amount: Optional[int] = Field(None, gt=0)  # centavos
    currency: Optional[str] = None
    description: Optional[str] = None
    customerEmail: Optional[str] = None
    metadata: Optional[dict] = None


class ConfirmRequest(BaseModel):
    paymentIntentId: str
    paymentMethodId: Optional[str] = None


class CancelRequest(BaseModel):
    paymentIntentId: str


class RefundRequest(BaseModel):
    paymentIntentId: str
    amount: Optional[int] = Field(None, gt=0)
    reason: Optional[str] = None


def get_payment_service(db: Session = Depends(get_db)) -> PaymentService:
    return PaymentService(db)


def _stripe_call(operation, *args, **kwargs):
    """Run a Stripe operation and translate SDK/config failures into HTTP errors"""
    try:
        return operation(*args, **kwargs)
    except IntegrationNotConfiguredError as e:
        logger.error("❌ Stripe payment requested but STRIPE_SECRET_KEY is not set")
        raise HTTPException(status_code=500, detail="Stripe not configured") from e
    except stripe.StripeError as e:
        logger.error(f"❌ Stripe error: {e}")
        raise HTTPException(status_code=500, detail=e.user_message or str(e)) from e


@router.post("/create-intent")
def create_payment_intent(
    data: CreateIntentRequest,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    """Intent for one of the user's appointments, or for an explicit amount"""
    if data.appointmentId:
        appointment = db.query(Agendamento).filter(Agendamento.id == data.appointmentId).first()
        if not appointment or appointment.cliente_id != current_user.id:
            raise HTTPException(status_code=404, detail="Agendamento não encontrado")
        return _stripe_call(service.create_appointment_payment_intent, appointment)

    if not data.amount:
        raise HTTPException(status_code=400, detail="amount or appointmentId is required")
    return _stripe_call(
        service.create_payment_intent,
        amount=data.amount,
        currency=data.currency,
        description=data.description,
        customer_email=data.customerEmail or current_user.email,
        metadata={**(data.metadata or {}), "usuario_id": current_user.id},
    )


@router.post("/confirm")
def confirm_payment(
    data: ConfirmRequest,
    _: Usuario = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return _stripe_call(service.confirm_payment, data.paymentIntentId, data.paymentMethodId)


@router.post("/cancel")
def cancel_payment(
    data: CancelRequest,
    _: Usuario = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return _stripe_call(service.cancel_payment, data.paymentIntentId)


@router.post("/refund")
def create_refund(
    data: RefundRequest,
    _: Usuario = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    return _stripe_call(service.create_refund, data.paymentIntentId, data.amount, data.reason)


@router.get("/status/{payment_intent_id}")
def get_payment_status(
    payment_intent_id: str,
    _: Usuario = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return _stripe_call(service.get_payment_status, payment_intent_id)


@router.get("/customer/{email}")
def get_customer_payments(
    email: str,
    current_user: Usuario = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    if email != current_user.email and current_user.tipo not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Access denied")
    return _stripe_call(service.get_customer_payments, email)


@router.get("/health")
def health_check(service: PaymentService = Depends(get_payment_service)):
    return service.health_check()
