"""
Stripe Payment Service
PaymentIntent lifecycle for appointment payments; results are mirrored into pagamentos
"""

import logging
from dataclasses import dataclass
from typing import Optional

import stripe
from sqlalchemy.orm import Session

from ..config import STRIPE_CURRENCY, STRIPE_PUBLISHABLE_KEY, STRIPE_SECRET_KEY
from ..exceptions import IntegrationNotConfiguredError
from ..models import Agendamento, Pagamento

logger = logging.getLogger(__name__)

# Stripe intent status -> pagamentos.status
PAYMENT_STATUS_MAP = {
    "succeeded": "pago",
    "processing": "processando",
    "requires_payment_method": "pendente",
    "requires_confirmation": "pendente",
    "requires_action": "pendente",
    "canceled": "cancelado",
}


@dataclass
class StripeSettings:
    secret_key: Optional[str] = None
    publishable_key: Optional[str] = None
    currency: str = "brl"

    @classmethod
    def from_env(cls) -> "StripeSettings":
        return cls(secret_key=STRIPE_SECRET_KEY, publishable_key=STRIPE_PUBLISHABLE_KEY, currency=STRIPE_CURRENCY)

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)


def _intent_summary(intent) -> dict:
    return {
        "id": intent.id,
        "status": intent.status,
        "amount": intent.amount,
        "currency": intent.currency,
    }


class PaymentService:
    def __init__(self, db: Optional[Session] = None, settings: Optional[StripeSettings] = None):
        self.db = db
        self.settings = settings or StripeSettings.from_env()

    @property
    def api_key(self) -> str:
        if not self.settings.configured:
            raise IntegrationNotConfiguredError("stripe", "Stripe not configured")
        return self.settings.secret_key

    def _record_status(self, payment_intent_id: str, status: str) -> None:
        """Mirror a Stripe status onto the pagamentos row (and its appointment) if one exists"""
        if self.db is None:
            return
        payment = self.db.query(Pagamento).filter(Pagamento.stripe_payment_id == payment_intent_id).first()
        if not payment:
            return
        payment.status = status
        if payment.agendamento_id:
            appointment = self.db.query(Agendamento).filter(Agendamento.id == payment.agendamento_id).first()
            if appointment:
                appointment.pagamento_status = status
        self.db.commit()

    def create_payment_intent(
        self,
        amount: int,
        currency: Optional[str] = None,
        description: Optional[str] = None,
        customer_email: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> dict:
        """amount is in the smallest currency unit (centavos)"""
        intent = stripe.PaymentIntent.create(
            api_key=self.api_key,
            amount=amount,
            currency=currency or self.settings.currency,
            description=description,
            metadata=metadata or {},
            receipt_email=customer_email,
            automatic_payment_methods={"enabled": True},
        )
        logger.info(f"💳 Created payment intent {intent.id} for {amount}")
        return {
            **_intent_summary(intent),
            "client_secret": intent.client_secret,
            "metadata": dict(intent.metadata or {}),
        }

    def create_appointment_payment_intent(self, appointment: Agendamento) -> dict:
        """Intent for the sum of the appointment's service prices; a pending pagamentos row is stored"""
        total = sum(item.preco or 0 for item in appointment.servicos) or appointment.valor_total or 0
        services = ", ".join(appointment.nomes_servicos) or "Serviço"
        result = self.create_payment_intent(
            amount=round(total * 100),
            currency="brl",
            description=f"Agendamento {services}",
            customer_email=appointment.cliente.email if appointment.cliente else None,
            metadata={
                "agendamento_id": appointment.id,
                "barbearia_id": appointment.barbearia_id,
                "cliente_id": appointment.cliente_id,
            },
        )
        if self.db is not None:
            self.db.add(
                Pagamento(
                    barbearia_id=appointment.barbearia_id,
                    agendamento_id=appointment.id,
                    valor=total,
                    metodo="cartao",
                    status="pendente",
                    stripe_payment_id=result["id"],
                )
            )
            self.db.commit()
        return result

    def confirm_payment(self, payment_intent_id: str, payment_method_id: Optional[str] = None) -> dict:
        params = {"payment_method": payment_method_id} if payment_method_id else {}
        intent = stripe.PaymentIntent.confirm(payment_intent_id, api_key=self.api_key, **params)
        status = PAYMENT_STATUS_MAP.get(intent.status)
        if status:
            self._record_status(intent.id, status)
        if intent.status == "succeeded":
            logger.info(f"✅ Payment {intent.id} succeeded")
        else:
            logger.info(f"🔄 Payment {intent.id} is {intent.status}")
        return _intent_summary(intent)

    def cancel_payment(self, payment_intent_id: str) -> dict:
        intent = stripe.PaymentIntent.cancel(payment_intent_id, api_key=self.api_key)
        self._record_status(intent.id, "cancelado")
        return {"id": intent.id, "status": intent.status}

    def create_refund(
        self, payment_intent_id: str, amount: Optional[int] = None, reason: Optional[str] = None
    ) -> dict:
        params = {}
        if amount:
            params["amount"] = amount
        if reason:
            params["reason"] = reason
        refund = stripe.Refund.create(api_key=self.api_key, payment_intent=payment_intent_id, **params)
        self._record_status(payment_intent_id, "reembolsado")
        logger.info(f"↩️ Refund {refund.id} created for {payment_intent_id}")
        return {"id": refund.id, "status": refund.status, "amount": refund.amount, "reason": refund.reason}

    def get_payment_status(self, payment_intent_id: str) -> dict:
        return _intent_summary(stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key))

    def get_customer_payments(self, email: str) -> list[dict]:
        customers = stripe.Customer.list(api_key=self.api_key, email=email, limit=1)
        if not customers.data:
            return []
        intents = stripe.PaymentIntent.list(api_key=self.api_key, customer=customers.data[0].id, limit=100)
        return [
            {
                **_intent_summary(intent),
                "created": intent.created,
                "description": intent.description,
                "metadata": dict(intent.metadata or {}),
            }
            for intent in intents.data
        ]

    def health_check(self) -> dict:
        if not self.settings.configured:
            return {"status": "error", "service": "stripe", "configured": False, "error": "Stripe not configured"}
        try:
            stripe.PaymentIntent.list(api_key=self.api_key, limit=1)
            return {"status": "ok", "service": "stripe", "configured": True}
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe health check failed: {e}")
            return {"status": "error", "service": "stripe", "configured": True, "error": str(e)}
