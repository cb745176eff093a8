"""
WhatsApp Cloud API Service
Sends template/text/interactive messages with retry on transient failures,
handles webhook deliveries and keeps the whatsapp_mensagens history
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import httpx
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import (
    FRONTEND_URL,
    WHATSAPP_ACCESS_TOKEN,
    WHATSAPP_APP_SECRET,
    WHATSAPP_BUSINESS_ACCOUNT_ID,
    WHATSAPP_PHONE_NUMBER_ID,
    WHATSAPP_VERIFY_TOKEN,
)
from ..exceptions import IntegrationNotConfiguredError, WhatsAppAPIError
from ..models import Barbearia, Servico
from ..models_integrations import Integracao
from ..models_whatsapp import WhatsAppMensagem, WhatsAppTemplate
from ..shared.dates import format_br_datetime, from_ms_epoch
from ..shared.validators import normalize_br_phone
from ..webhook_security import constant_time_compare
from .integration_config import IntegrationLogger, load_integration_config

logger = logging.getLogger(__name__)

WHATSAPP_API_URL = "https://graph.facebook.com/v18.0"

MAX_RETRY_ATTEMPTS = 3
RETRY_DELAY = 1.0  # seconds, doubled on every attempt
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
# Graph API error codes for temporary/throttling failures
RETRYABLE_ERROR_CODES = {1, 2, 4, 10}

DEFAULT_HOURS_TEXT = (
    "📅 Segunda a Sexta: 9h às 18h\n📅 Sábado: 8h às 17h\n📅 Domingo: Fechado"
)


@dataclass
class WhatsAppSettings:
    access_token: Optional[str] = None
    phone_number_id: Optional[str] = None
    business_account_id: Optional[str] = None
    webhook_verify_token: Optional[str] = None
    app_secret: Optional[str] = None

    @classmethod
    def from_config(cls, config: dict) -> "WhatsAppSettings":
        return cls(
            access_token=config.get("accessToken"),
            phone_number_id=config.get("phoneNumberId"),
            business_account_id=config.get("businessAccountId"),
            webhook_verify_token=config.get("webhookVerifyToken"),
            app_secret=config.get("appSecret"),
        )

    @classmethod
    def from_env(cls) -> "WhatsAppSettings":
        return cls(
            access_token=WHATSAPP_ACCESS_TOKEN,
            phone_number_id=WHATSAPP_PHONE_NUMBER_ID,
            business_account_id=WHATSAPP_BUSINESS_ACCOUNT_ID,
            webhook_verify_token=WHATSAPP_VERIFY_TOKEN,
            app_secret=WHATSAPP_APP_SECRET,
        )

    @property
    def configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)


def describe_message(message: dict) -> str:
    """Short text stored in the message history"""
    message_type = message.get("type", "text")
    if message_type == "text":
        return (message.get("text") or {}).get("body", "")
    if message_type == "template":
        return f"template:{(message.get('template') or {}).get('name', '')}"
    if message_type == "interactive":
        interactive = message.get("interactive") or {}
        if interactive.get("body"):
            return interactive["body"].get("text", "")
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return reply.get("title", "")
    if message_type == "button":
        return (message.get("button") or {}).get("text", "")
    return f"[{message_type}]"


class WhatsAppService:
    def __init__(
        self,
        db: Session,
        barbearia_id: Optional[str] = None,
        settings: Optional[WhatsAppSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = RETRY_DELAY,
    ):
        self.db = db
        self.barbearia_id = barbearia_id
        self.settings = settings
        self.transport = transport
        self.retry_delay = retry_delay
        self.audit = IntegrationLogger(db, "whatsapp", barbearia_id)

    def initialize(self) -> WhatsAppSettings:
        """Shop integration row first, environment as fallback"""
        if self.settings is None:
            config = None
            if self.barbearia_id:
                config = load_integration_config(self.db, "whatsapp", self.barbearia_id)
            self.settings = WhatsAppSettings.from_config(config) if config else WhatsAppSettings.from_env()
        return self.settings

    def _require_settings(self) -> WhatsAppSettings:
        settings = self.initialize()
        if not settings.configured:
            raise IntegrationNotConfiguredError("whatsapp")
        return settings

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=30.0)

    @staticmethod
    def _is_retryable(error: WhatsAppAPIError) -> bool:
        return error.status_code in RETRYABLE_STATUS_CODES or error.error_code in RETRYABLE_ERROR_CODES

    async def _post_message(self, client: httpx.AsyncClient, settings: WhatsAppSettings, payload: dict) -> dict:
        response = await client.post(
            f"{WHATSAPP_API_URL}/{settings.phone_number_id}/messages",
            headers={"Authorization": f"Bearer {settings.access_token}"},
            json=payload,
        )
        if response.is_success:
            return response.json()

        error_code = None
        message = response.text
        try:
            error = response.json().get("error") or {}
            error_code = error.get("code")
            message = error.get("message") or message
        except ValueError:
            pass
        raise WhatsAppAPIError(message, status_code=response.status_code, error_code=error_code)

    async def send_message(self, message: dict) -> bool:
        """
        Send one message. Transient failures (429/5xx, Graph error codes 1/2/4/10,
        network errors) are retried up to MAX_RETRY_ATTEMPTS times with delay
        retry_delay * 2**attempt. Anything else fails immediately.
        """
        settings = self._require_settings()
        payload = {"messaging_product": "whatsapp", "recipient_type": "individual", **message}
        dados = {"to": message.get("to"), "type": message.get("type")}

        attempt = 0
        async with self._client() as client:
            while True:
                try:
                    data = await self._post_message(client, settings, payload)
                    break
                except WhatsAppAPIError as e:
                    if attempt < MAX_RETRY_ATTEMPTS and self._is_retryable(e):
                        logger.warning(
                            f"⚠️ WhatsApp send failed (HTTP {e.status_code}, code {e.error_code}), "
                            f"retry {attempt + 1}/{MAX_RETRY_ATTEMPTS}"
                        )
                    else:
                        logger.error(f"❌ WhatsApp send failed: {e}")
                        self.audit.log("envio_mensagem", dados, erro=str(e))
                        return False
                except httpx.TransportError as e:
                    if attempt < MAX_RETRY_ATTEMPTS:
                        logger.warning(f"⚠️ WhatsApp network error, retry {attempt + 1}/{MAX_RETRY_ATTEMPTS}: {e}")
                    else:
                        logger.error(f"❌ WhatsApp send failed after retries: {e}")
                        self.audit.log("envio_mensagem", dados, erro=str(e))
                        return False
                await asyncio.sleep(self.retry_delay * 2**attempt)
                attempt += 1

        message_id = ((data.get("messages") or [{}])[0]).get("id")
        logger.info(f"✅ WhatsApp message sent: {message_id}")
        self.audit.log("envio_mensagem", dados, {"messageId": message_id})

        self.db.add(
            WhatsAppMensagem(
                barbearia_id=self.barbearia_id,
                whatsapp_message_id=message_id,
                from_number=settings.phone_number_id,
                to_number=message.get("to"),
                message_type=message.get("type", "text"),
                message_content=describe_message(message),
                direction="sent",
                status="sent",
            )
        )
        self.db.commit()
        return True

    async def send_text_message(self, to: str, text: str) -> bool:
        return await self.send_message(
            {"to": normalize_br_phone(to), "type": "text", "text": {"preview_url": False, "body": text}}
        )

    async def send_template_message(
        self,
        to: str,
        template_name: str,
        parameters: Optional[list[str]] = None,
        language_code: str = "pt_BR",
    ) -> bool:
        template = {"name": template_name, "language": {"code": language_code}}
        if parameters:
            template["components"] = [
                {"type": "body", "parameters": [{"type": "text", "text": p} for p in parameters]}
            ]
        return await self.send_message({"to": normalize_br_phone(to), "type": "template", "template": template})

    async def send_interactive_message(
        self,
        to: str,
        body: str,
        buttons: list[dict],
        header: Optional[str] = None,
        footer: Optional[str] = None,
    ) -> bool:
        """Reply-button message; WhatsApp accepts at most 3 buttons of 20 chars"""
        interactive = {
            "type": "button",
            "body": {"text": body},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": b["id"], "title": b["title"][:20]}}
                    for b in buttons[:3]
                ]
            },
        }
        if header:
            interactive["header"] = {"type": "text", "text": header}
        if footer:
            interactive["footer"] = {"text": footer}
        return await self.send_message(
            {"to": normalize_br_phone(to), "type": "interactive", "interactive": interactive}
        )

    async def send_appointment_confirmation(
        self,
        to: str,
        customer_name: str,
        barber_name: str,
        starts_at: datetime,
        services: list[str],
    ) -> bool:
        return await self.send_template_message(
            to,
            "confirmacao_agendamento",
            [customer_name, barber_name, format_br_datetime(starts_at), ", ".join(services)],
        )

    async def send_appointment_reminder(
        self, to: str, customer_name: str, barber_name: str, starts_at: datetime
    ) -> bool:
        return await self.send_template_message(
            to, "lembrete_agendamento", [customer_name, barber_name, format_br_datetime(starts_at)]
        )

    async def send_promotional_message(self, to: str, customer_name: str, promotion: str) -> bool:
        return await self.send_template_message(to, "promocao", [customer_name, promotion])

    async def mark_message_as_read(self, message_id: str) -> bool:
        settings = self._require_settings()
        try:
            async with self._client() as client:
                await self._post_message(
                    client,
                    settings,
                    {"messaging_product": "whatsapp", "status": "read", "message_id": message_id},
                )
            return True
        except (WhatsAppAPIError, httpx.HTTPError) as e:
            logger.warning(f"⚠️ Failed to mark WhatsApp message {message_id} as read: {e}")
            return False

    async def health_check(self) -> dict:
        settings = self.initialize()
        if not settings.configured:
            return {"configured": False, "healthy": False}
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{WHATSAPP_API_URL}/{settings.phone_number_id}",
                    headers={"Authorization": f"Bearer {settings.access_token}"},
                )
            return {"configured": True, "healthy": response.status_code == 200}
        except httpx.HTTPError as e:
            logger.error(f"❌ WhatsApp health check failed: {e}")
            return {"configured": True, "healthy": False}

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def verify_webhook(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Echo the challenge only for a subscribe request carrying our verify token"""
        settings = self.initialize()
        expected = settings.webhook_verify_token or WHATSAPP_VERIFY_TOKEN
        if mode == "subscribe" and expected and constant_time_compare(token or "", expected):
            logger.info("✅ WhatsApp webhook verified")
            return challenge
        logger.warning("⚠️ WhatsApp webhook verification failed")
        return None

    def _resolve_barbearia(self, phone_number_id: Optional[str]) -> Optional[str]:
        """Find the shop that owns the receiving phone number"""
        if self.barbearia_id or not phone_number_id:
            return self.barbearia_id
        integrations = (
            self.db.query(Integracao)
            .filter(Integracao.tipo == "whatsapp", Integracao.ativo.is_(True))
            .all()
        )
        for integration in integrations:
            if (integration.configuracao or {}).get("phoneNumberId") == phone_number_id:
                return integration.barbearia_id
        return None

    def _for_barbearia(self, barbearia_id: Optional[str]) -> "WhatsAppService":
        if barbearia_id == self.barbearia_id:
            return self
        return WhatsAppService(
            self.db, barbearia_id, transport=self.transport, retry_delay=self.retry_delay
        )

    async def handle_webhook(self, payload: dict) -> dict:
        """Process a webhook delivery: store inbound messages, apply status updates"""
        processed = {"messages": 0, "statuses": 0}

        for entry in payload.get("entry", []):
            for change in entry.get("changes", []):
                if change.get("field") != "messages":
                    continue
                value = change.get("value") or {}
                phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
                barbearia_id = self._resolve_barbearia(phone_number_id)
                contacts = {
                    c.get("wa_id"): (c.get("profile") or {}).get("name")
                    for c in value.get("contacts", [])
                }

                for message in value.get("messages", []):
                    await self._process_incoming_message(message, contacts, phone_number_id, barbearia_id)
                    processed["messages"] += 1

                for status in value.get("statuses", []):
                    self._process_status_update(status)
                    processed["statuses"] += 1

        return processed

    async def _process_incoming_message(
        self,
        message: dict,
        contacts: dict,
        phone_number_id: Optional[str],
        barbearia_id: Optional[str],
    ) -> None:
        sender = message.get("from")
        text = describe_message(message)
        timestamp = message.get("timestamp")

        self.db.add(
            WhatsAppMensagem(
                barbearia_id=barbearia_id,
                whatsapp_message_id=message.get("id"),
                from_number=sender,
                to_number=phone_number_id,
                contact_name=contacts.get(sender),
                message_type=message.get("type", "text"),
                message_content=text,
                direction="received",
                status="received",
                timestamp=from_ms_epoch(int(timestamp) * 1000) if timestamp else datetime.utcnow(),
            )
        )
        self.db.commit()
        logger.info(f"📥 WhatsApp message received from {sender}")

        responder = self._for_barbearia(barbearia_id)
        if not responder.initialize().configured:
            return

        if message.get("id"):
            await responder.mark_message_as_read(message["id"])

        reply = self.build_auto_response(text, barbearia_id)
        if reply and sender:
            await responder.send_text_message(sender, reply)

    def _process_status_update(self, status: dict) -> None:
        message_id = status.get("id")
        new_status = status.get("status")
        if not message_id or not new_status:
            return

        stored = (
            self.db.query(WhatsAppMensagem)
            .filter(WhatsAppMensagem.whatsapp_message_id == message_id)
            .first()
        )
        if stored:
            stored.status = new_status
            self.db.commit()

        if new_status == "failed" and status.get("errors"):
            logger.error(f"❌ WhatsApp message {message_id} failed: {status['errors']}")
            IntegrationLogger(self.db, "whatsapp", stored.barbearia_id if stored else self.barbearia_id).log(
                "status_mensagem", {"messageId": message_id}, erro=str(status["errors"])
            )

    def build_auto_response(self, text: str, barbearia_id: Optional[str]) -> Optional[str]:
        """Keyword replies: opening hours, prices, booking link"""
        lowered = (text or "").lower()
        barbearia = self.db.get(Barbearia, barbearia_id) if barbearia_id else None

        if "horário" in lowered or "horario" in lowered:
            hours = DEFAULT_HOURS_TEXT
            if barbearia and barbearia.horario_funcionamento:
                hours = "\n".join(f"📅 {day}: {value}" for day, value in barbearia.horario_funcionamento.items())
            return f"Nossos horários de funcionamento são:\n\n{hours}\n\nPara agendar, acesse nosso app!"

        if "preço" in lowered or "preco" in lowered or "valor" in lowered:
            services = []
            if barbearia_id:
                services = (
                    self.db.query(Servico)
                    .filter(Servico.barbearia_id == barbearia_id, Servico.ativo.is_(True))
                    .order_by(Servico.preco)
                    .all()
                )
            if not services:
                return "Confira nossos preços no app e agende pelo nosso app para garantir seu horário!"
            lines = "\n".join(f"✂️ {s.nome}: R$ {s.preco:.2f}".replace(".", ",") for s in services)
            return f"Confira nossos preços:\n\n{lines}\n\nAgende pelo nosso app para garantir seu horário!"

        if "agendar" in lowered or "agendamento" in lowered:
            link = f"{FRONTEND_URL}/{barbearia.slug}" if barbearia else FRONTEND_URL
            return (
                f"Para agendar seu horário, acesse nosso app:\n\n📱 {link}\n\n"
                "Ou entre em contato conosco durante o horário comercial!"
            )

        return None

    # ------------------------------------------------------------------
    # Templates and history
    # ------------------------------------------------------------------

    def get_templates(self) -> list[WhatsAppTemplate]:
        return (
            self.db.query(WhatsAppTemplate)
            .filter(WhatsAppTemplate.barbearia_id == self.barbearia_id, WhatsAppTemplate.ativo.is_(True))
            .order_by(WhatsAppTemplate.nome)
            .all()
        )

    def create_template(
        self, nome: str, template_id: str, categoria: Optional[str] = None, conteudo: Optional[dict] = None
    ) -> WhatsAppTemplate:
        template = WhatsAppTemplate(
            barbearia_id=self.barbearia_id,
            nome=nome,
            template_id=template_id,
            categoria=categoria,
            conteudo=conteudo,
        )
        self.db.add(template)
        self.db.commit()
        self.db.refresh(template)
        return template

    def get_message_history(self, phone: Optional[str] = None, limit: int = 50) -> list[WhatsAppMensagem]:
        query = self.db.query(WhatsAppMensagem).filter(WhatsAppMensagem.barbearia_id == self.barbearia_id)
        if phone:
            digits = normalize_br_phone(phone)
            query = query.filter(
                (WhatsAppMensagem.from_number == digits) | (WhatsAppMensagem.to_number == digits)
            )
        return query.order_by(WhatsAppMensagem.timestamp.desc()).limit(limit).all()

    def get_message_stats(self, days: int = 30) -> dict:
        since = datetime.utcnow() - timedelta(days=days)
        base = self.db.query(WhatsAppMensagem).filter(
            WhatsAppMensagem.barbearia_id == self.barbearia_id, WhatsAppMensagem.timestamp >= since
        )
        by_status = dict(
            base.with_entities(WhatsAppMensagem.status, func.count(WhatsAppMensagem.id))
            .group_by(WhatsAppMensagem.status)
            .all()
        )
        by_direction = dict(
            base.with_entities(WhatsAppMensagem.direction, func.count(WhatsAppMensagem.id))
            .group_by(WhatsAppMensagem.direction)
            .all()
        )
        return {
            "total": sum(by_direction.values()),
            "sent": by_direction.get("sent", 0),
            "received": by_direction.get("received", 0),
            "delivered": by_status.get("delivered", 0),
            "read": by_status.get("read", 0),
            "failed": by_status.get("failed", 0),
        }

