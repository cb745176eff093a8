"""
Tests for the AI assistant: provider request shapes, conversations and
structured replies with their fallbacks
"""

import json

import httpx
import pytest

from barbershop.exceptions import (
    AIProviderError,
    AIResponseFormatError,
    ConversationNotFoundError,
    IntegrationNotConfiguredError,
)
from barbershop.models import Notificacao, Usuario
from barbershop.models_integrations import ConversaAI
from barbershop.services.ai_schemas import SentimentAnalysis
from barbershop.services.ai_service import ANTHROPIC_VERSION, AIService, AISettings, parse_structured_reply
from barbershop.services.integration_config import save_integration_config


class FakeProvider:
    """Replies with `reply` in the shape of the provider being called"""

    def __init__(self, reply="Olá! Como posso ajudar?", status_code=200):
        self.reply = reply
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="rate limited")
        if request.url.host == "api.anthropic.com":
            return httpx.Response(200, json={"content": [{"type": "text", "text": self.reply}]})
        return httpx.Response(200, json={"choices": [{"message": {"content": self.reply}}]})

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def ai(db):
    def _make(handler: FakeProvider, /, **settings):
        values = {"provider": "openai", "api_key": "sk-test"}
        values.update(settings)
        return AIService(db, settings=AISettings(**values), transport=httpx.MockTransport(handler))

    return _make


class TestProviderRequests:
    async def test_openai_request(self, ai):
        provider = FakeProvider()
        messages = [{"role": "system", "content": "Seja breve"}, {"role": "user", "content": "Oi"}]

        reply = await ai(provider).make_ai_request(messages)

        assert reply == "Olá! Como posso ajudar?"
        request = provider.requests[0]
        assert request.url.host == "api.openai.com"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert provider.last_body["messages"] == messages
        assert provider.last_body["model"] == "gpt-3.5-turbo"

    async def test_anthropic_splits_system_prompt(self, ai):
        provider = FakeProvider()
        messages = [
            {"role": "system", "content": "Seja breve", "timestamp": "x"},
            {"role": "user", "content": "Oi"},
            {"role": "assistant", "content": "Olá"},
            {"role": "user", "content": "Tem horário?"},
        ]

        await ai(provider, provider="anthropic", model="claude-3-haiku-20240307").make_ai_request(messages)

        request = provider.requests[0]
        assert request.headers["x-api-key"] == "sk-test"
        assert request.headers["anthropic-version"] == ANTHROPIC_VERSION
        body = provider.last_body
        assert body["system"] == "Seja breve"
        assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
        assert "timestamp" not in body["messages"][0]

    async def test_provider_error(self, ai):
        with pytest.raises(AIProviderError):
            await ai(FakeProvider(status_code=429)).make_ai_request([{"role": "user", "content": "Oi"}])

    async def test_non_json_reply_is_a_provider_error(self, ai):
        def html_page(request):
            return httpx.Response(200, text="<html>Bad gateway</html>")

        with pytest.raises(AIProviderError):
            await ai(html_page).make_ai_request([{"role": "user", "content": "Oi"}])

        assert await ai(html_page).analyze_customer_sentiment("Adorei") == {
            "sentiment": "neutral",
            "confidence": 0.5,
            "keywords": [],
        }

    async def test_unsupported_provider(self, ai):
        with pytest.raises(AIProviderError):
            await ai(FakeProvider(), provider="llama").make_ai_request([{"role": "user", "content": "Oi"}])

    def test_initialize_requires_global_config(self, db):
        with pytest.raises(IntegrationNotConfiguredError):
            AIService(db).initialize()

    def test_initialize_reads_global_config(self, db):
        save_integration_config(db, "ai", {"provider": "anthropic", "apiKey": "sk-ant", "maxTokens": "500"})
        settings = AIService(db).initialize()
        assert settings.provider == "anthropic"
        assert settings.api_key == "sk-ant"
        assert settings.max_tokens == 500


class TestConversations:
    async def test_first_message_creates_conversation(self, db, ai, client_user):
        provider = FakeProvider()

        result = await ai(provider).process_message(client_user.id, "Quero cortar o cabelo")

        conversation = db.query(ConversaAI).one()
        assert result == {"response": "Olá! Como posso ajudar?", "conversationId": conversation.id}
        assert [m["role"] for m in conversation.messages] == ["user", "assistant"]
        assert conversation.context["user"]["nome"] == client_user.nome

        sent = provider.last_body["messages"]
        assert sent[0]["role"] == "system"
        assert "João Cliente" in sent[0]["content"]

    async def test_follow_up_includes_history(self, db, ai, client_user):
        provider = FakeProvider()
        service = ai(provider)
        first = await service.process_message(client_user.id, "Oi")

        await service.process_message(client_user.id, "Tem horário amanhã?", first["conversationId"])

        contents = [m["content"] for m in provider.last_body["messages"][1:]]
        assert contents == ["Oi", "Olá! Como posso ajudar?", "Tem horário amanhã?"]
        assert len(db.query(ConversaAI).one().messages) == 4

    async def test_unknown_conversation(self, ai, client_user):
        with pytest.raises(ConversationNotFoundError):
            await ai(FakeProvider()).process_message(client_user.id, "Oi", "missing")

    async def test_escalation_notifies_staff(self, db, ai, client_user):
        service = ai(FakeProvider())
        result = await service.process_message(client_user.id, "Quero falar com alguém")

        service.escalate_to_human(result["conversationId"], "Cliente pediu atendente")

        assert db.query(ConversaAI).one().status == "escalated"
        notification = db.query(Notificacao).one()
        assert notification.tipo == "escalation"
        assert notification.dados["reason"] == "Cliente pediu atendente"


class TestStructuredReplies:
    def test_parses_fenced_json(self):
        reply = '```json\n{"sentiment": "positive", "confidence": 0.9, "keywords": ["ótimo"]}\n```'
        assert parse_structured_reply(reply, SentimentAnalysis).sentiment == "positive"

    def test_rejects_out_of_range_values(self):
        with pytest.raises(AIResponseFormatError):
            parse_structured_reply('{"sentiment": "positive", "confidence": 3}', SentimentAnalysis)

    async def test_invalid_json_falls_back_to_neutral(self, ai):
        result = await ai(FakeProvider(reply="Não sei dizer")).analyze_customer_sentiment("Adorei o corte")
        assert result == {"sentiment": "neutral", "confidence": 0.5, "keywords": []}

    async def test_sentiment(self, ai):
        provider = FakeProvider(reply='{"sentiment": "negative", "confidence": 0.8, "keywords": ["atraso"]}')
        result = await ai(provider).analyze_customer_sentiment("Esperei uma hora")
        assert result["sentiment"] == "negative"
        assert result["keywords"] == ["atraso"]

    async def test_suggestions_split_lines(self, ai, client_user):
        provider = FakeProvider(reply="Terça 10h\n\nQuinta 15h\n")
        assert await ai(provider).generate_appointment_suggestions(client_user.id, {}) == ["Terça 10h", "Quinta 15h"]

    async def test_insights_fallback_on_provider_error(self, ai, tenant):
        result = await ai(FakeProvider(status_code=500)).analyze_business_insights(tenant.id, "week")
        assert result["forecast"] == {"revenue": 0, "appointments": 0, "confidence": 0}

    async def test_marketing_content(self, ai, tenant):
        reply = json.dumps({"content": "Corte + barba com 20% off", "callToAction": "Agende já"})
        result = await ai(FakeProvider(reply=reply)).generate_marketing_content(tenant.id, "sms", {})
        assert result == {"content": "Corte + barba com 20% off", "callToAction": "Agende já"}


class TestAIRoutes:
    def test_chat_unavailable_without_config(self, api, client_user, headers_for):
        response = api.post("/api/ai/chat", json={"message": "Oi"}, headers=headers_for(client_user))
        assert response.status_code == 503

    def test_conversations_listing_works_without_config(self, api, client_user, headers_for):
        response = api.get("/api/ai/conversations", headers=headers_for(client_user))
        assert response.status_code == 200
        assert response.json() == []

    def test_other_users_conversation_is_hidden(self, api, db, client_user, headers_for):
        stranger = Usuario(auth_id="auth-stranger", email="x@example.com", nome="X", tipo="cliente")
        db.add(stranger)
        db.commit()
        conversation = ConversaAI(user_id=stranger.id, messages=[], context={}, status="active")
        db.add(conversation)
        db.commit()

        response = api.get(f"/api/ai/conversations/{conversation.id}", headers=headers_for(client_user))
        assert response.status_code == 404
