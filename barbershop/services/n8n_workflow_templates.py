"""
Default n8n workflows created for a new installation.
Each template is the JSON body accepted by POST /api/v1/workflows.
"""

from ..config import BUSINESS_TIMEZONE

WHATSAPP_MESSAGES_URL = "={{$env.WHATSAPP_API_URL}}/messages"
WHATSAPP_HEADERS = {
    "Authorization": "Bearer {{$env.WHATSAPP_ACCESS_TOKEN}}",
    "Content-Type": "application/json",
}
API_HEADERS = {"Content-Type": "application/json", "Authorization": "Bearer {{$env.API_TOKEN}}"}

VALIDATE_APPOINTMENT_CODE = """
const appointment = items[0].json.data;

if (!appointment.cliente_id || !appointment.data_hora) {
  throw new Error('Dados obrigatórios ausentes');
}

appointment.formatted_date = new Date(appointment.data_hora).toLocaleDateString('pt-BR');
appointment.formatted_time = new Date(appointment.data_hora).toLocaleTimeString('pt-BR', {
  hour: '2-digit',
  minute: '2-digit'
});

return [{ json: { appointment } }];
"""

CHECK_STOCK_CODE = """
const inventory = items[0].json.data;
const stockLevel = inventory.quantidade_atual;
const minLevel = inventory.estoque_minimo;
const criticalLevel = minLevel * 0.5;

let alertType = 'normal';
if (stockLevel <= 0) {
  alertType = 'out_of_stock';
} else if (stockLevel <= criticalLevel) {
  alertType = 'critical';
} else if (stockLevel <= minLevel) {
  alertType = 'low';
}

return [{ json: { ...inventory, alertType, stockLevel, minLevel, criticalLevel } }];
"""


def _node(node_id: str, name: str, node_type: str, position: tuple[int, int], parameters: dict) -> dict:
    return {
        "id": node_id,
        "name": name,
        "type": f"n8n-nodes-base.{node_type}",
        "typeVersion": 1,
        "position": list(position),
        "parameters": parameters,
    }


def _webhook(name: str, path: str) -> dict:
    return _node("webhook", name, "webhook", (250, 300), {"path": path, "httpMethod": "POST"})


def _whatsapp_template(node_id: str, name: str, position: tuple[int, int], to: str, template: str, texts: list[str]) -> dict:
    return _node(
        node_id,
        name,
        "httpRequest",
        position,
        {
            "url": WHATSAPP_MESSAGES_URL,
            "method": "POST",
            "headers": WHATSAPP_HEADERS,
            "body": {
                "messaging_product": "whatsapp",
                "to": to,
                "type": "template",
                "template": {
                    "name": template,
                    "language": {"code": "pt_BR"},
                    "components": [
                        {"type": "body", "parameters": [{"type": "text", "text": text} for text in texts]}
                    ],
                },
            },
        },
    )


def _email(node_id: str, name: str, position: tuple[int, int], to: str, subject: str, text: str) -> dict:
    return _node(
        node_id,
        name,
        "emailSend",
        position,
        {"fromEmail": "={{$env.SMTP_FROM_EMAIL}}", "toEmail": to, "subject": subject, "text": text.strip()},
    )


def _switch(node_id: str, name: str, position: tuple[int, int], field: str, values: list[str]) -> dict:
    return _node(
        node_id,
        name,
        "switch",
        position,
        {"values": [{"conditions": {"string": [{"value1": field, "value2": value}]}} for value in values]},
    )


def _links(*groups: list[str]) -> dict:
    """One output branch per group; each group fans out to its nodes"""
    return {"main": [[{"node": node, "type": "main", "index": 0} for node in group] for group in groups]}


def _settings(**extra) -> dict:
    return {"timezone": BUSINESS_TIMEZONE, "saveExecutionProgress": True, **extra}


def new_appointment_workflow() -> dict:
    return {
        "name": "Novo Agendamento - Automação Completa",
        "active": True,
        "nodes": [
            _webhook("Webhook Trigger", "appointment/new"),
            _node("validate_data", "Validar Dados", "function", (450, 300), {"functionCode": VALIDATE_APPOINTMENT_CODE}),
            _whatsapp_template(
                "whatsapp_confirmation",
                "WhatsApp - Confirmação",
                (650, 200),
                "={{$json.appointment.cliente.telefone}}",
                "confirmacao_agendamento",
                [
                    "={{$json.appointment.cliente.nome}}",
                    "={{$json.appointment.formatted_date}}",
                    "={{$json.appointment.formatted_time}}",
                    "={{$json.appointment.servico.nome}}",
                ],
            ),
            _node(
                "schedule_reminder",
                "Agendar Lembrete",
                "schedule",
                (650, 400),
                {"rule": {"interval": [{"field": "cronExpression", "value": "0 10 * * *"}]}},
            ),
            _email(
                "email_notification",
                "Email para Barbeiro",
                (650, 500),
                "={{$json.appointment.barbeiro.email}}",
                "Novo Agendamento - {{$json.appointment.cliente.nome}}",
                """
Novo agendamento confirmado:

Cliente: {{$json.appointment.cliente.nome}}
Telefone: {{$json.appointment.cliente.telefone}}
Data: {{$json.appointment.formatted_date}}
Horário: {{$json.appointment.formatted_time}}
Serviço: {{$json.appointment.servico.nome}}
Valor: R$ {{$json.appointment.valor_total}}

Acesse o sistema para mais detalhes.
""",
            ),
            _node(
                "update_analytics",
                "Atualizar Analytics",
                "httpRequest",
                (850, 300),
                {
                    "url": "={{$env.API_BASE_URL}}/analytics/appointment-created",
                    "method": "POST",
                    "headers": API_HEADERS,
                    "body": {
                        "appointmentId": "={{$json.appointment.id}}",
                        "barbeariaId": "={{$json.appointment.barbearia_id}}",
                        "timestamp": "={{$json.timestamp}}",
                    },
                },
            ),
        ],
        "connections": {
            "webhook": _links(["validate_data"]),
            "validate_data": _links(["whatsapp_confirmation", "schedule_reminder", "email_notification"]),
            "whatsapp_confirmation": _links(["update_analytics"]),
        },
        "settings": _settings(saveManualExecutions=True),
    }


def customer_lifecycle_workflow() -> dict:
    return {
        "name": "Ciclo de Vida do Cliente",
        "active": True,
        "nodes": [
            _webhook("Customer Lifecycle Trigger", "customer/lifecycle"),
            _switch(
                "switch_action",
                "Switch por Ação",
                (450, 300),
                "={{$json.action}}",
                ["registered", "birthday", "loyalty_milestone", "inactive"],
            ),
            _whatsapp_template(
                "welcome_message",
                "Mensagem de Boas-vindas",
                (650, 100),
                "={{$json.data.telefone}}",
                "welcome_customer",
                ["={{$json.data.nome}}"],
            ),
            _whatsapp_template(
                "birthday_promotion",
                "Promoção de Aniversário",
                (650, 200),
                "={{$json.data.telefone}}",
                "birthday_promotion",
                ["={{$json.data.nome}}", "20%"],
            ),
            _node(
                "loyalty_reward",
                "Recompensa de Fidelidade",
                "httpRequest",
                (650, 300),
                {
                    "url": "={{$env.API_BASE_URL}}/loyalty/reward",
                    "method": "POST",
                    "headers": API_HEADERS,
                    "body": {"customerId": "={{$json.data.id}}", "rewardType": "milestone", "points": 100},
                },
            ),
            _whatsapp_template(
                "reactivation_campaign",
                "Campanha de Reativação",
                (650, 400),
                "={{$json.data.telefone}}",
                "reactivation_offer",
                ["={{$json.data.nome}}", "15%"],
            ),
        ],
        "connections": {
            "webhook": _links(["switch_action"]),
            "switch_action": _links(
                ["welcome_message"], ["birthday_promotion"], ["loyalty_reward"], ["reactivation_campaign"]
            ),
        },
        "settings": _settings(),
    }


def inventory_management_workflow() -> dict:
    return {
        "name": "Gestão de Estoque Automatizada",
        "active": True,
        "nodes": [
            _webhook("Inventory Trigger", "inventory/alert"),
            _node("check_stock_level", "Verificar Nível de Estoque", "function", (450, 300), {"functionCode": CHECK_STOCK_CODE}),
            _switch(
                "switch_alert_type",
                "Switch por Tipo de Alerta",
                (650, 300),
                "={{$json.alertType}}",
                ["out_of_stock", "critical", "low"],
            ),
            _email(
                "urgent_notification",
                "Notificação Urgente",
                (850, 100),
                "={{$env.MANAGER_EMAIL}}",
                "🚨 ESTOQUE ESGOTADO - {{$json.produto.nome}}",
                """
ATENÇÃO: Produto sem estoque!

Produto: {{$json.produto.nome}}
Categoria: {{$json.produto.categoria}}
Estoque atual: {{$json.stockLevel}}

Ação necessária: Reposição imediata
""",
            ),
            _email(
                "critical_notification",
                "Notificação Crítica",
                (850, 200),
                "={{$env.MANAGER_EMAIL}}",
                "⚠️ ESTOQUE CRÍTICO - {{$json.produto.nome}}",
                """
Estoque em nível crítico!

Produto: {{$json.produto.nome}}
Estoque atual: {{$json.stockLevel}}
Estoque mínimo: {{$json.minLevel}}

Recomendação: Fazer pedido urgente
""",
            ),
            _email(
                "low_stock_notification",
                "Notificação Estoque Baixo",
                (850, 300),
                "={{$env.MANAGER_EMAIL}}",
                "📦 Estoque Baixo - {{$json.produto.nome}}",
                """
Estoque abaixo do mínimo:

Produto: {{$json.produto.nome}}
Estoque atual: {{$json.stockLevel}}
Estoque mínimo: {{$json.minLevel}}

Sugestão: Programar reposição
""",
            ),
            _node(
                "auto_order",
                "Pedido Automático",
                "httpRequest",
                (1050, 200),
                {
                    "url": "={{$env.SUPPLIER_API_URL}}/orders",
                    "method": "POST",
                    "headers": {
                        "Content-Type": "application/json",
                        "Authorization": "Bearer {{$env.SUPPLIER_API_TOKEN}}",
                    },
                    "body": {
                        "productId": "={{$json.produto.codigo_fornecedor}}",
                        "quantity": "={{$json.quantidade_reposicao}}",
                        "urgency": "high",
                        "notes": "Pedido automático - estoque crítico",
                    },
                },
            ),
        ],
        "connections": {
            "webhook": _links(["check_stock_level"]),
            "check_stock_level": _links(["switch_alert_type"]),
            "switch_alert_type": _links(
                ["urgent_notification"], ["critical_notification", "auto_order"], ["low_stock_notification"]
            ),
        },
        "settings": _settings(),
    }


DEFAULT_WORKFLOWS = (new_appointment_workflow, customer_lifecycle_workflow, inventory_management_workflow)
