"""
Tests for the WhatsApp Cloud API integration: retries, webhook verification
and signed webhook deliveries
"""

import hashlib
import hmac
import json

import httpx
import pytest

from barbershop.exceptions import IntegrationNotConfiguredError
from barbershop.models_integrations import LogIntegracao
from barbershop.models_whatsapp import WhatsAppMensagem
from barbershop.services.integration_config import save_integration_config
from barbershop.services.whatsapp_service import MAX_RETRY_ATTEMPTS, WhatsAppService, WhatsAppSettings
from barbershop.shared.validators import normalize_br_phone
from barbershop.webhook_security import compute_hmac_sha256, validate_meta_signature

SETTINGS = WhatsAppSettings(access_token="wa-token", phone_number_id="1234567890")


def _sign(body: bytes, secret: str = "test-app-secret") -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class GraphAPI:
    """Answers with the queued responses in order, then success"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return httpx.Response(200, json={"messages": [{"id": "wamid.OK"}]})


@pytest.fixture
def whatsapp(db, tenant):
    def _make(graph: GraphAPI, settings=SETTINGS):
        return WhatsAppService(
            db, tenant.id, settings=settings, transport=httpx.MockTransport(graph), retry_delay=0
        )

    return _make


class TestPhoneNormalization:
    def test_adds_country_code(self):
        assert normalize_br_phone("(11) 98888-7777") == "5511988887777"

    def test_keeps_international_number(self):
        assert normalize_br_phone("+55 11 98888-7777") == "5511988887777"

    def test_rejects_short_number(self):
        with pytest.raises(ValueError):
            normalize_br_phone("12345")


class TestSendMessage:
    async def test_success_is_stored_and_audited(self, db, whatsapp):
        graph = GraphAPI()

        assert await whatsapp(graph).send_text_message("11988887777", "Olá!") is True

        body = json.loads(graph.requests[0].content)
        assert body["messaging_product"] == "whatsapp"
        assert body["to"] == "5511988887777"
        assert body["text"]["body"] == "Olá!"
        assert graph.requests[0].headers["Authorization"] == "Bearer wa-token"

        stored = db.query(WhatsAppMensagem).one()
        assert stored.whatsapp_message_id == "wamid.OK"
        assert stored.direction == "sent"
        assert db.query(LogIntegracao).filter_by(acao="envio_mensagem", status="sucesso").count() == 1

    async def test_server_errors_are_retried(self, whatsapp):
        graph = GraphAPI(
            httpx.Response(503, json={"error": {"message": "Unavailable"}}),
            httpx.Response(503, json={"error": {"message": "Unavailable"}}),
        )

        assert await whatsapp(graph).send_text_message("11988887777", "Olá!") is True
        assert len(graph.requests) == 3

    async def test_gives_up_after_max_retries(self, db, whatsapp):
        graph = GraphAPI(*[httpx.Response(503, text="down") for _ in range(10)])

        assert await whatsapp(graph).send_text_message("11988887777", "Olá!") is False
        assert len(graph.requests) == MAX_RETRY_ATTEMPTS + 1
        assert db.query(LogIntegracao).filter_by(acao="envio_mensagem", status="erro").count() == 1

    async def test_client_error_is_not_retried(self, whatsapp):
        graph = GraphAPI(httpx.Response(400, json={"error": {"message": "Invalid parameter", "code": 100}}))

        assert await whatsapp(graph).send_text_message("11988887777", "Olá!") is False
        assert len(graph.requests) == 1

    async def test_rate_limit_error_code_is_retried(self, whatsapp):
        graph = GraphAPI(httpx.Response(400, json={"error": {"message": "Too many calls", "code": 4}}))

        assert await whatsapp(graph).send_text_message("11988887777", "Olá!") is True
        assert len(graph.requests) == 2

    async def test_network_errors_are_retried(self, whatsapp):
        graph = GraphAPI(httpx.ConnectError("connection refused"))

        assert await whatsapp(graph).send_text_message("11988887777", "Olá!") is True
        assert len(graph.requests) == 2

    async def test_not_configured(self, db):
        service = WhatsAppService(db, settings=WhatsAppSettings())
        with pytest.raises(IntegrationNotConfiguredError):
            await service.send_text_message("11988887777", "Olá!")

    async def test_shop_config_takes_precedence(self, db, tenant):
        save_integration_config(
            db, "whatsapp", {"accessToken": "shop-token", "phoneNumberId": "999"}, tenant.id
        )
        settings = WhatsAppService(db, tenant.id).initialize()
        assert settings.access_token == "shop-token"
        assert settings.phone_number_id == "999"

    async def test_promotional_message_uses_template(self, whatsapp):
        graph = GraphAPI()

        assert await whatsapp(graph).send_promotional_message("11988887777", "João", "20% no corte") is True

        template = json.loads(graph.requests[0].content)["template"]
        assert template["name"] == "promocao"
        assert template["language"] == {"code": "pt_BR"}
        texts = [p["text"] for p in template["components"][0]["parameters"]]
        assert texts == ["João", "20% no corte"]

    async def test_interactive_buttons_are_trimmed(self, whatsapp):
        graph = GraphAPI()
        buttons = [{"id": str(i), "title": f"Opção número {i} muito longa"} for i in range(5)]

        await whatsapp(graph).send_interactive_message("11988887777", "Escolha", buttons)

        action = json.loads(graph.requests[0].content)["interactive"]["action"]
        assert len(action["buttons"]) == 3
        assert all(len(b["reply"]["title"]) <= 20 for b in action["buttons"])


class TestWebhookVerification:
    def test_matching_token_returns_challenge(self, db):
        service = WhatsAppService(db)
        assert service.verify_webhook("subscribe", "test-verify-token", "abc123") == "abc123"

    def test_wrong_token(self, db):
        assert WhatsAppService(db).verify_webhook("subscribe", "wrong", "abc123") is None

    def test_wrong_mode(self, db):
        assert WhatsAppService(db).verify_webhook("unsubscribe", "test-verify-token", "abc123") is None

    def test_route_echoes_challenge(self, api):
        response = api.get(
            "/api/whatsapp/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "test-verify-token", "hub.challenge": "42"},
        )
        assert response.status_code == 200
        assert response.text == "42"

    def test_route_rejects_bad_token(self, api):
        response = api.get(
            "/api/whatsapp/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "42"},
        )
        assert response.status_code == 403

    @pytest.mark.parametrize(
        "params",
        [
            {"hub.mode": "subscribe"},
            {"hub.mode": "subscribe", "hub.challenge": "abc"},
            {"hub.mode": "subscribe", "hub.verify_token": "wrong"},
            {"hub.verify_token": "test-verify-token", "hub.challenge": "abc"},
        ],
    )
    def test_route_rejects_incomplete_handshake(self, api, params):
        assert api.get("/api/whatsapp/webhook", params=params).status_code == 403


class TestSignature:
    def test_valid_signature(self):
        body = b'{"object":"whatsapp_business_account"}'
        assert validate_meta_signature(body, _sign(body), "test-app-secret") is True

    def test_header_without_prefix(self):
        body = b"{}"
        assert validate_meta_signature(body, compute_hmac_sha256("test-app-secret", body), "test-app-secret") is False

    def test_tampered_body(self):
        assert validate_meta_signature(b'{"a":2}', _sign(b'{"a":1}'), "test-app-secret") is False


class TestWebhookDelivery:
    def _incoming(self, text="Oi", message_id="wamid.IN1"):
        return {
            "object": "whatsapp_business_account",
            "entry": [
                {
                    "changes": [
                        {
                            "field": "messages",
                            "value": {
                                "metadata": {"phone_number_id": "1234567890"},
                                "contacts": [{"wa_id": "5511988887777", "profile": {"name": "João"}}],
                                "messages": [
                                    {
                                        "from": "5511988887777",
                                        "id": message_id,
                                        "timestamp": "1700000000",
                                        "type": "text",
                                        "text": {"body": text},
                                    }
                                ],
                            },
                        }
                    ]
                }
            ],
        }

    def _post(self, api, payload, signature=None):
        body = json.dumps(payload).encode()
        headers = {"Content-Type": "application/json", "X-Hub-Signature-256": signature or _sign(body)}
        return api.post("/api/whatsapp/webhook", content=body, headers=headers)

    def test_signed_delivery_is_stored(self, api, db):
        response = self._post(api, self._incoming())

        assert response.status_code == 200
        assert response.text == "EVENT_RECEIVED"
        stored = db.query(WhatsAppMensagem).one()
        assert stored.direction == "received"
        assert stored.contact_name == "João"
        assert stored.message_content == "Oi"

    def test_invalid_signature_rejected(self, api, db):
        response = self._post(api, self._incoming(), signature="sha256=deadbeef")
        assert response.status_code == 401
        assert db.query(WhatsAppMensagem).count() == 0

    def test_payload_without_object(self, api):
        assert self._post(api, {"entry": []}).status_code == 404

    def test_status_update_applies_to_sent_message(self, api, db):
        db.add(WhatsAppMensagem(whatsapp_message_id="wamid.OUT", direction="sent", status="sent"))
        db.commit()
        payload = {
            "object": "whatsapp_business_account",
            "entry": [
                {"changes": [{"field": "messages", "value": {"statuses": [{"id": "wamid.OUT", "status": "read"}]}}]}
            ],
        }

        assert self._post(api, payload).status_code == 200
        db.expire_all()
        assert db.query(WhatsAppMensagem).filter_by(whatsapp_message_id="wamid.OUT").one().status == "read"

    async def test_configured_shop_auto_replies(self, db, tenant, services):
        save_integration_config(
            db, "whatsapp", {"accessToken": "shop-token", "phoneNumberId": "1234567890"}, tenant.id
        )
        graph = GraphAPI()
        service = WhatsAppService(db, transport=httpx.MockTransport(graph), retry_delay=0)

        processed = await service.handle_webhook(self._incoming(text="Qual o preço do corte?"))

        assert processed == {"messages": 1, "statuses": 0}
        bodies = [json.loads(r.content) for r in graph.requests]
        assert bodies[0]["status"] == "read"
        assert "Corte: R$ 40,00" in bodies[1]["text"]["body"]


class TestAutoResponses:
    def test_unknown_text_has_no_reply(self, db, tenant):
        assert WhatsAppService(db).build_auto_response("bom dia", tenant.id) is None

    def test_booking_link_uses_slug(self, db, tenant):
        reply = WhatsAppService(db).build_auto_response("Quero agendar", tenant.id)
        assert "barbearia-do-ze" in reply
