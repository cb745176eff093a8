"""
Push notification templates
Title/body strings use {placeholder} substitution
"""

import time
from typing import Optional

DEFAULT_ICON = "/icons/icon-192x192.svg"
DEFAULT_BADGE = "/icons/icon-72x72.svg"
DEFAULT_VIBRATE = [100, 50, 100]


def _action(action: str, title: str) -> dict:
    return {"action": action, "title": title, "icon": DEFAULT_ICON}


NOTIFICATION_TEMPLATES = {
    "appointment-confirmation": {
        "name": "Confirmação de Agendamento",
        "title": "✅ Agendamento Confirmado",
        "body": "Seu agendamento foi confirmado para {date} às {time} com {barber}",
        "category": "appointment",
        "actions": [_action("view", "Ver Detalhes"), _action("cancel", "Cancelar")],
    },
    "appointment-reminder": {
        "name": "Lembrete de Agendamento",
        "title": "⏰ Lembrete: Seu agendamento é hoje!",
        "body": "Não esqueça! Você tem um agendamento às {time} com {barber}",
        "category": "reminder",
        "actions": [_action("directions", "Como Chegar"), _action("reschedule", "Reagendar")],
    },
    "appointment-tomorrow": {
        "name": "Agendamento Amanhã",
        "title": "📅 Agendamento Amanhã",
        "body": "Lembrete: Você tem um agendamento amanhã às {time} com {barber}",
        "category": "reminder",
    },
    "appointment-cancelled": {
        "name": "Agendamento Cancelado",
        "title": "❌ Agendamento Cancelado",
        "body": "Seu agendamento de {date} às {time} foi cancelado",
        "category": "appointment",
        "actions": [_action("reschedule", "Reagendar")],
    },
    "appointment-rescheduled": {
        "name": "Agendamento Reagendado",
        "title": "🔄 Agendamento Reagendado",
        "body": "Seu agendamento foi reagendado para {date} às {time}",
        "category": "appointment",
    },
    "promotion-discount": {
        "name": "Promoção Desconto",
        "title": "🎉 Oferta Especial!",
        "body": "{discount}% de desconto em {service}. Válido até {expiry}",
        "category": "promotion",
        "actions": [_action("book", "Agendar Agora")],
    },
    "loyalty-reward": {
        "name": "Recompensa Fidelidade",
        "title": "🏆 Parabéns! Você ganhou uma recompensa",
        "body": "Complete mais {remaining} visitas e ganhe um corte grátis!",
        "category": "promotion",
    },
    "birthday-special": {
        "name": "Oferta Aniversário",
        "title": "🎂 Feliz Aniversário!",
        "body": "Ganhe 20% de desconto no seu próximo corte. Oferta válida por 7 dias!",
        "category": "promotion",
        "actions": [_action("claim", "Resgatar")],
    },
    "new-service": {
        "name": "Novo Serviço",
        "title": "✨ Novo Serviço Disponível!",
        "body": "Conheça nosso novo serviço: {service}. Agende já!",
        "category": "promotion",
    },
    "feedback-request": {
        "name": "Solicitação de Feedback",
        "title": "⭐ Como foi sua experiência?",
        "body": "Nos ajude a melhorar! Avalie seu último atendimento",
        "category": "system",
        "actions": [_action("rate", "Avaliar")],
    },
}


def get_templates(category: Optional[str] = None) -> list[dict]:
    return [
        {"id": template_id, **template}
        for template_id, template in NOTIFICATION_TEMPLATES.items()
        if category is None or template["category"] == category
    ]


def render(text: str, variables: dict) -> str:
    """Replace every {key} for keys present in variables. Unknown placeholders stay."""
    for key, value in variables.items():
        text = text.replace(f"{{{key}}}", str(value))
    return text


def create_notification_from_template(template_id: str, variables: Optional[dict] = None) -> Optional[dict]:
    """Build a Web Push payload from a template; None for an unknown template"""
    template = NOTIFICATION_TEMPLATES.get(template_id)
    if template is None:
        return None

    variables = variables or {}
    return {
        "title": render(template["title"], variables),
        "body": render(template["body"], variables),
        "icon": template.get("icon", DEFAULT_ICON),
        "badge": DEFAULT_BADGE,
        "actions": template.get("actions", []),
        "tag": template_id,
        "requireInteraction": template["category"] == "appointment",
        "vibrate": DEFAULT_VIBRATE,
        "timestamp": int(time.time() * 1000),
        "data": {"templateId": template_id, "category": template["category"], "variables": variables},
    }
