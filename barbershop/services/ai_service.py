"""
AI Assistant Service
Customer chat over OpenAI or Anthropic plus structured helpers
(sentiment, schedule optimization, recommendations, insights, marketing copy)
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from ..exceptions import (
    AIProviderError,
    AIResponseFormatError,
    ConversationNotFoundError,
    IntegrationNotConfiguredError,
)
from ..models import Agendamento, Barbearia, Barbeiro, Notificacao, Pagamento, Servico, Usuario
from ..models_integrations import ConversaAI
from .ai_schemas import (
    BusinessInsights,
    MarketingContent,
    PersonalizedRecommendations,
    ScheduleOptimization,
    SentimentAnalysis,
)
from .integration_config import IntegrationLogger, load_integration_config

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

INSIGHT_PERIOD_DAYS = {"week": 7, "month": 30, "quarter": 90}

DEFAULT_SYSTEM_PROMPT = """
Você é um assistente virtual especializado em atendimento para barbearias.
Você deve ser prestativo, profissional e amigável.

Suas principais funções:
1. Responder dúvidas sobre serviços e preços
2. Ajudar com agendamentos
3. Fornecer informações sobre horários de funcionamento
4. Resolver problemas simples
5. Escalar para atendimento humano quando necessário

Diretrizes:
- Seja sempre educado e profissional
- Use linguagem clara e objetiva
- Se não souber algo, seja honesto e ofereça alternativas
- Para questões complexas, sugira contato direto com a barbearia
- Mantenha o foco no contexto da barbearia
"""

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass
class AISettings:
    provider: str = "openai"
    api_key: Optional[str] = None
    model: str = "gpt-3.5-turbo"
    max_tokens: int = 1000
    temperature: float = 0.7
    system_prompt: Optional[str] = None

    @classmethod
    def from_config(cls, config: dict) -> "AISettings":
        return cls(
            provider=config.get("provider", "openai"),
            api_key=config.get("apiKey"),
            model=config.get("model", "gpt-3.5-turbo"),
            max_tokens=int(config.get("maxTokens", 1000)),
            temperature=float(config.get("temperature", 0.7)),
            system_prompt=config.get("systemPrompt") or None,
        )


def _to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _strip_code_fence(reply: str) -> str:
    """Models often wrap JSON in ```json fences"""
    text = reply.strip()
    match = re.match(r"^```(?:json)?\s*(.*?)\s*```$", text, re.DOTALL)
    return match.group(1) if match else text


def parse_structured_reply(reply: str, schema: type[SchemaT]) -> SchemaT:
    """
    Validate a model reply against a schema.

    Raises:
        AIResponseFormatError: reply is not JSON or does not match the schema
    """
    try:
        return schema.model_validate_json(_strip_code_fence(reply))
    except ValidationError as e:
        raise AIResponseFormatError(f"{schema.__name__}: {e.error_count()} validation error(s)") from e


def _appointment_summary(appointment: Agendamento) -> dict:
    return {
        "id": appointment.id,
        "dataHora": appointment.data_hora.isoformat(),
        "status": appointment.status,
        "servicos": appointment.nomes_servicos,
        "barbeiro": appointment.barbeiro.nome if appointment.barbeiro else None,
        "barbeiroId": appointment.barbeiro_id,
        "valorTotal": appointment.valor_total,
    }


class AIService:
    def __init__(
        self,
        db: Session,
        settings: Optional[AISettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.settings = settings
        self.transport = transport
        self.audit = IntegrationLogger(db, "ai")

    def initialize(self) -> AISettings:
        if self.settings is None:
            config = load_integration_config(self.db, "ai")
            if not config:
                raise IntegrationNotConfiguredError("ai")
            self.settings = AISettings.from_config(config)
        return self.settings

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    async def make_ai_request(self, messages: list[dict]) -> str:
        """
        Send a chat transcript to the configured provider and return the reply text.

        Raises:
            AIProviderError: unsupported provider, transport failure or non-2xx reply
        """
        settings = self.initialize()
        if not settings.api_key:
            raise IntegrationNotConfiguredError("ai", "AI API key is not configured")

        if settings.provider == "openai":
            url = OPENAI_CHAT_URL
            headers = {"Authorization": f"Bearer {settings.api_key}"}
            body = {
                "model": settings.model,
                "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
                "max_tokens": settings.max_tokens,
                "temperature": settings.temperature,
            }
        elif settings.provider == "anthropic":
            url = ANTHROPIC_MESSAGES_URL
            headers = {"x-api-key": settings.api_key, "anthropic-version": ANTHROPIC_VERSION}
            system = next((m["content"] for m in messages if m["role"] == "system"), "")
            body = {
                "model": settings.model,
                "max_tokens": settings.max_tokens,
                "temperature": settings.temperature,
                "system": system,
                "messages": [
                    {"role": "assistant" if m["role"] == "assistant" else "user", "content": m["content"]}
                    for m in messages
                    if m["role"] != "system"
                ],
            }
        else:
            raise AIProviderError(f"Unsupported AI provider: {settings.provider}")

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=60.0) as client:
                response = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise AIProviderError(f"{settings.provider} request failed: {e}") from e

        if not response.is_success:
            raise AIProviderError(f"{settings.provider} API error: {response.status_code} {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise AIProviderError(f"{settings.provider} returned a non-JSON response") from e

        try:
            if settings.provider == "openai":
                return data["choices"][0]["message"]["content"]
            return data["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise AIProviderError(f"Unexpected {settings.provider} response shape") from e

    async def _ask(self, prompt: str) -> str:
        return await self.make_ai_request([{"role": "user", "content": prompt}])

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def get_user_context(self, user_id: str) -> dict:
        user = self.db.query(Usuario).filter(Usuario.id == user_id).first()
        if not user:
            return {}

        appointments = (
            self.db.query(Agendamento)
            .filter(Agendamento.cliente_id == user_id)
            .order_by(Agendamento.data_hora.desc())
            .limit(5)
            .all()
        )
        shop_query = self.db.query(Barbearia)
        if user.barbearia_id:
            shop_query = shop_query.filter(Barbearia.id == user.barbearia_id)
        shop = shop_query.first()

        return {
            "user": {"nome": user.nome, "email": user.email, "telefone": user.telefone, "tipo": user.tipo},
            "recentAppointments": [_appointment_summary(a) for a in appointments],
            "barbearia": {
                "nome": shop.nome,
                "endereco": shop.endereco,
                "telefone": shop.telefone,
                "horario_funcionamento": shop.horario_funcionamento,
            }
            if shop
            else None,
            "currentTime": datetime.utcnow().isoformat(),
        }

    def build_system_prompt(self, context: dict) -> str:
        settings = self.initialize()
        prompt = settings.system_prompt or DEFAULT_SYSTEM_PROMPT

        user = context.get("user")
        if user:
            prompt += f"\n\nInformações do cliente:\n- Nome: {user.get('nome')}\n- Tipo: {user.get('tipo')}"

        shop = context.get("barbearia")
        if shop:
            prompt += (
                "\n\nInformações da barbearia:"
                f"\n- Nome: {shop.get('nome')}"
                f"\n- Endereço: {shop.get('endereco')}"
                f"\n- Telefone: {shop.get('telefone')}"
                f"\n- Horário: {_to_json(shop.get('horario_funcionamento'))}"
            )

        appointments = context.get("recentAppointments") or []
        if appointments:
            prompt += "\n\nÚltimos agendamentos do cliente:"
            for index, appointment in enumerate(appointments, start=1):
                service = (appointment.get("servicos") or ["-"])[0]
                prompt += f"\n{index}. {appointment['dataHora']} - {service} - Status: {appointment['status']}"

        return prompt

    def _get_conversation(self, conversation_id: str) -> ConversaAI:
        conversation = self.db.query(ConversaAI).filter(ConversaAI.id == conversation_id).first()
        if not conversation:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def process_message(self, user_id: str, message: str, conversation_id: Optional[str] = None) -> dict:
        """Append a user message and the assistant reply to a conversation (created if needed)"""
        try:
            if conversation_id:
                conversation = self._get_conversation(conversation_id)
            else:
                conversation = ConversaAI(
                    user_id=user_id, messages=[], context=self.get_user_context(user_id), status="active"
                )
                self.db.add(conversation)
                self.db.commit()
                self.db.refresh(conversation)

            history = list(conversation.messages or [])
            user_message = {"role": "user", "content": message, "timestamp": datetime.utcnow().isoformat()}
            transcript = [
                {"role": "system", "content": self.build_system_prompt(conversation.context or {})},
                *history,
                user_message,
            ]

            reply = await self.make_ai_request(transcript)

            assistant_message = {"role": "assistant", "content": reply, "timestamp": datetime.utcnow().isoformat()}
            conversation.messages = [*history, user_message, assistant_message]
            self.db.commit()

            self.audit.log(
                "process_message",
                {"conversationId": conversation.id, "userId": user_id, "messageLength": len(message)},
                {"responseLength": len(reply)},
            )
            return {"response": reply, "conversationId": conversation.id}
        except Exception as e:
            logger.error(f"❌ AI message processing failed for user {user_id}: {e}")
            self.audit.log("process_message", {"userId": user_id, "messageLength": len(message)}, erro=str(e))
            raise

    def get_conversation_history(self, conversation_id: str) -> Optional[ConversaAI]:
        return self.db.query(ConversaAI).filter(ConversaAI.id == conversation_id).first()

    def get_user_conversations(self, user_id: str) -> list[ConversaAI]:
        return (
            self.db.query(ConversaAI)
            .filter(ConversaAI.user_id == user_id)
            .order_by(ConversaAI.updated_at.desc())
            .all()
        )

    def escalate_to_human(self, conversation_id: str, reason: str) -> None:
        """Flag the conversation and leave a notification for the shop admins"""
        try:
            conversation = self._get_conversation(conversation_id)
            conversation.status = "escalated"
            self.db.add(
                Notificacao(
                    usuario_id=None,
                    tipo="escalation",
                    titulo="Conversa escalada para atendimento humano",
                    mensagem=f"Conversa {conversation_id} foi escalada. Motivo: {reason}",
                    dados={"conversationId": conversation_id, "reason": reason},
                )
            )
            self.db.commit()
            logger.info(f"🙋 Conversation {conversation_id} escalated: {reason}")
            self.audit.log("escalate_conversation", {"conversationId": conversation_id, "reason": reason})
        except Exception as e:
            self.db.rollback()
            self.audit.log(
                "escalate_conversation", {"conversationId": conversation_id, "reason": reason}, erro=str(e)
            )
            raise

    # ------------------------------------------------------------------
    # Structured helpers - each falls back to a fixed answer on failure
    # ------------------------------------------------------------------

    async def analyze_customer_sentiment(self, message: str) -> dict:
        prompt = f"""
Analise o sentimento da seguinte mensagem de cliente de barbearia e retorne um JSON com:
- sentiment: "positive", "neutral" ou "negative"
- confidence: número entre 0 e 1
- keywords: array com palavras-chave relevantes

Mensagem: "{message}"

Responda apenas com o JSON, sem explicações adicionais.
"""
        try:
            analysis = parse_structured_reply(await self._ask(prompt), SentimentAnalysis)
            self.audit.log(
                "sentiment_analysis",
                {"message": message[:100]},
                {"sentiment": analysis.sentiment, "confidence": analysis.confidence},
            )
            return analysis.model_dump()
        except (AIProviderError, AIResponseFormatError) as e:
            logger.warning(f"⚠️ Sentiment analysis fell back to neutral: {e}")
            self.audit.log("sentiment_analysis", {"message": message[:100]}, erro=str(e))
            return {"sentiment": "neutral", "confidence": 0.5, "keywords": []}

    async def generate_appointment_suggestions(self, user_id: str, preferences: dict) -> list[str]:
        prompt = f"""
Com base no histórico e preferências do cliente, sugira 3 horários para agendamento.
Considere:
- Histórico de agendamentos anteriores
- Preferências informadas: {_to_json(preferences)}
- Horário atual: {datetime.utcnow().isoformat()}

Contexto do cliente: {_to_json(self.get_user_context(user_id))}

Retorne apenas uma lista de sugestões em formato de texto, uma por linha.
"""
        try:
            reply = await self._ask(prompt)
        except AIProviderError as e:
            self.audit.log("appointment_suggestions", {"userId": user_id}, erro=str(e))
            return []

        suggestions = [line.strip() for line in reply.splitlines() if line.strip()]
        self.audit.log("appointment_suggestions", {"userId": user_id}, {"suggestionsCount": len(suggestions)})
        return suggestions

    async def optimize_schedule(self, barbearia_id: str, day: date) -> dict:
        start = datetime.combine(day, datetime.min.time())
        appointments = (
            self.db.query(Agendamento)
            .filter(
                Agendamento.barbearia_id == barbearia_id,
                Agendamento.data_hora >= start,
                Agendamento.data_hora < start + timedelta(days=1),
            )
            .all()
        )
        barbers = (
            self.db.query(Barbeiro)
            .filter(Barbeiro.barbearia_id == barbearia_id, Barbeiro.ativo.is_(True))
            .all()
        )
        recent = (
            self.db.query(Agendamento)
            .filter(
                Agendamento.barbearia_id == barbearia_id,
                Agendamento.data_hora >= start - timedelta(days=30),
            )
            .all()
        )

        prompt = f"""
Analise a agenda da barbearia e otimize os horários disponíveis.

Data: {day.isoformat()}
Agendamentos atuais: {_to_json([_appointment_summary(a) for a in appointments])}
Barbeiros disponíveis: {_to_json([{"id": b.id, "nome": b.nome, "especialidades": b.especialidades} for b in barbers])}
Estatísticas de serviços (últimos 30 dias): {_to_json([{"dataHora": a.data_hora.isoformat(), "servicos": a.nomes_servicos} for a in recent])}

Retorne um JSON com:
{{
  "optimizedSlots": [
    {{"time": "HH:MM", "barberId": "id", "serviceId": "id", "confidence": 0.95, "reason": "Horário de pico com alta demanda"}}
  ],
  "recommendations": ["Sugestão 1", "Sugestão 2"],
  "efficiency": 0.85
}}

Considere:
- Horários de pico
- Tempo de deslocamento entre serviços
- Preferências históricas dos clientes
- Otimização de receita
- Balanceamento de carga entre barbeiros
"""
        audit_input = {"barbeariaId": barbearia_id, "date": day.isoformat()}
        try:
            optimization = parse_structured_reply(await self._ask(prompt), ScheduleOptimization)
            self.audit.log("schedule_optimization", audit_input, {"efficiency": optimization.efficiency})
            return optimization.model_dump()
        except (AIProviderError, AIResponseFormatError) as e:
            self.audit.log("schedule_optimization", audit_input, erro=str(e))
            return {
                "optimizedSlots": [],
                "recommendations": ["Erro ao otimizar agenda. Tente novamente."],
                "efficiency": 0,
            }

    async def generate_personalized_recommendations(self, user_id: str) -> dict:
        context = self.get_user_context(user_id)
        user = self.db.query(Usuario).filter(Usuario.id == user_id).first()
        services_query = self.db.query(Servico).filter(Servico.ativo.is_(True))
        if user and user.barbearia_id:
            services_query = services_query.filter(Servico.barbearia_id == user.barbearia_id)
        services = [
            {"id": s.id, "nome": s.nome, "preco": s.preco, "categoria": s.categoria} for s in services_query.all()
        ]

        prompt = f"""
Gere recomendações personalizadas para o cliente baseado em seu histórico e perfil.

Contexto do cliente: {_to_json(context)}
Serviços disponíveis: {_to_json(services)}

Retorne um JSON com:
{{
  "services": [
    {{"id": "service_id", "name": "Nome do Serviço", "reason": "Motivo da recomendação", "confidence": 0.85}}
  ],
  "products": [],
  "nextAppointment": {{"suggestedDate": "2024-01-15T14:00:00", "reason": "Baseado no padrão de agendamentos anteriores"}}
}}

Considere:
- Histórico de serviços utilizados
- Frequência de visitas
- Sazonalidade
- Preferências demonstradas
"""
        try:
            recommendations = parse_structured_reply(await self._ask(prompt), PersonalizedRecommendations)
            self.audit.log(
                "personalized_recommendations",
                {"userId": user_id},
                {"servicesCount": len(recommendations.services), "productsCount": len(recommendations.products)},
            )
            return recommendations.model_dump()
        except (AIProviderError, AIResponseFormatError) as e:
            self.audit.log("personalized_recommendations", {"userId": user_id}, erro=str(e))
            return {
                "services": [],
                "products": [],
                "nextAppointment": {
                    "suggestedDate": (datetime.utcnow() + timedelta(days=7)).isoformat(),
                    "reason": "Sugestão padrão para próxima semana",
                },
            }

    async def analyze_business_insights(self, barbearia_id: str, period: str = "month") -> dict:
        period_days = INSIGHT_PERIOD_DAYS.get(period, 30)
        since = datetime.utcnow() - timedelta(days=period_days)

        appointments = (
            self.db.query(Agendamento)
            .filter(Agendamento.barbearia_id == barbearia_id, Agendamento.created_at >= since)
            .all()
        )
        payments = (
            self.db.query(Pagamento)
            .filter(Pagamento.barbearia_id == barbearia_id, Pagamento.created_at >= since)
            .all()
        )

        prompt = f"""
Analise os dados de negócio da barbearia e gere insights estratégicos.

Período: {period} ({period_days} dias)
Agendamentos: {_to_json([_appointment_summary(a) for a in appointments])}
Receita: {_to_json([{"valor": p.valor, "metodo": p.metodo, "status": p.status} for p in payments])}

Retorne um JSON com:
{{
  "insights": ["Insight 1 sobre o negócio", "Insight 2 sobre tendências"],
  "trends": [
    {{"metric": "Receita", "trend": "up", "change": 15.5, "description": "Crescimento de 15.5% em relação ao período anterior"}}
  ],
  "recommendations": ["Recomendação estratégica 1", "Recomendação operacional 2"],
  "forecast": {{"revenue": 15000, "appointments": 120, "confidence": 0.85}}
}}

Analise:
- Padrões de agendamento
- Performance financeira
- Eficiência operacional
- Oportunidades de crescimento
"""
        audit_input = {"barbeariaId": barbearia_id, "period": period}
        try:
            analysis = parse_structured_reply(await self._ask(prompt), BusinessInsights)
            self.audit.log("business_insights", audit_input, {"insightsCount": len(analysis.insights)})
            return analysis.model_dump()
        except (AIProviderError, AIResponseFormatError) as e:
            self.audit.log("business_insights", audit_input, erro=str(e))
            return {
                "insights": ["Erro ao analisar dados. Tente novamente."],
                "trends": [],
                "recommendations": [],
                "forecast": {"revenue": 0, "appointments": 0, "confidence": 0},
            }

    async def generate_marketing_content(self, barbearia_id: str, content_type: str, context: dict) -> dict:
        """content_type is one of social, email, sms"""
        shop = self.db.query(Barbearia).filter(Barbearia.id == barbearia_id).first()
        shop_info = (
            {"nome": shop.nome, "endereco": shop.endereco, "telefone": shop.telefone} if shop else {}
        )

        prompt = f"""
Gere conteúdo de marketing personalizado para a barbearia.

Barbearia: {_to_json(shop_info)}
Tipo de conteúdo: {content_type}
Contexto: {_to_json(context)}

Retorne um JSON com:
{{
  "content": "Conteúdo principal da mensagem",
  "subject": "Assunto (para email)",
  "hashtags": ["#hashtag1", "#hashtag2"],
  "callToAction": "Chamada para ação"
}}

Diretrizes:
- Tom profissional mas amigável
- Foque nos benefícios para o cliente
- Inclua elementos de urgência quando apropriado
- Personalize com base no contexto fornecido
- Mantenha a identidade da marca
"""
        audit_input = {"barbeariaId": barbearia_id, "type": content_type}
        try:
            content = parse_structured_reply(await self._ask(prompt), MarketingContent)
            self.audit.log("marketing_content", audit_input, {"contentLength": len(content.content)})
            return content.model_dump(exclude_none=True)
        except (AIProviderError, AIResponseFormatError) as e:
            self.audit.log("marketing_content", audit_input, erro=str(e))
            return {
                "content": "Erro ao gerar conteúdo. Tente novamente.",
                "callToAction": "Entre em contato conosco!",
            }
