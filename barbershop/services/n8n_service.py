"""
n8n Automation Service
Workflow/execution management over the n8n REST API, webhook triggers
for business events and the automation_rules table
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from ..config import ENVIRONMENT, N8N_API_KEY, N8N_BASE_URL, N8N_WEBHOOK_URL
from ..exceptions import IntegrationNotConfiguredError, N8NError
from ..models_integrations import AutomationRule
from .integration_config import IntegrationLogger, load_integration_config
from .n8n_workflow_templates import DEFAULT_WORKFLOWS

logger = logging.getLogger(__name__)

TRIGGER_PATHS = {
    "appointment": {
        "created": "appointment/new",
        "updated": "appointment/updated",
        "cancelled": "appointment/cancelled",
        "completed": "appointment/completed",
        "reminder": "appointment/reminder",
        "no_show": "appointment/no-show",
    },
    "customer": {
        "registered": "customer/new",
        "updated": "customer/updated",
        "birthday": "customer/birthday",
        "loyalty_milestone": "customer/loyalty",
        "inactive": "customer/inactive",
        "feedback_request": "customer/feedback-request",
    },
    "payment": {
        "completed": "payment/completed",
        "failed": "payment/failed",
        "refunded": "payment/refunded",
        "overdue": "payment/overdue",
    },
    "feedback": {
        "received": "feedback/received",
        "negative": "feedback/negative",
        "positive": "feedback/positive",
    },
    "marketing": {
        "campaign_start": "marketing/campaign-start",
        "promotion": "marketing/promotion",
        "newsletter": "marketing/newsletter",
    },
    "inventory": {
        "low_stock": "inventory/low-stock",
        "out_of_stock": "inventory/out-of-stock",
        "restock": "inventory/restock",
    },
}


def webhook_path_for(trigger_type: str, action: str) -> str:
    return TRIGGER_PATHS.get(trigger_type, {}).get(action) or f"{trigger_type}/{action}"


@dataclass
class N8NSettings:
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    webhook_url: Optional[str] = None

    @classmethod
    def from_config(cls, config: dict) -> "N8NSettings":
        return cls(
            base_url=config.get("baseUrl"),
            api_key=config.get("apiKey"),
            webhook_url=config.get("webhookUrl"),
        )

    @classmethod
    def from_env(cls) -> "N8NSettings":
        return cls(base_url=N8N_BASE_URL, api_key=N8N_API_KEY, webhook_url=N8N_WEBHOOK_URL)

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)


class N8NService:
    def __init__(
        self,
        db: Session,
        settings: Optional[N8NSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.settings = settings
        self.transport = transport
        self.audit = IntegrationLogger(db, "n8n")

    def initialize(self) -> N8NSettings:
        if self.settings is None:
            config = load_integration_config(self.db, "n8n")
            self.settings = N8NSettings.from_config(config) if config else N8NSettings.from_env()
        return self.settings

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=30.0)

    async def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        settings = self.initialize()
        if not settings.configured:
            raise IntegrationNotConfiguredError("n8n")

        url = f"{settings.base_url.rstrip('/')}/api/v1{endpoint}"
        try:
            async with self._client() as client:
                response = await client.request(
                    method, url, headers={"X-N8N-API-KEY": settings.api_key}, **kwargs
                )
        except httpx.HTTPError as e:
            raise N8NError(f"n8n request failed: {e}") from e

        if not response.is_success:
            raise N8NError(f"n8n API error: {response.status_code} {response.reason_phrase}", response.status_code)
        return response.json() if response.content else None

    # Workflows

    async def get_workflows(self) -> Any:
        return await self._request("GET", "/workflows")

    async def get_workflow(self, workflow_id: str) -> dict:
        return await self._request("GET", f"/workflows/{workflow_id}")

    async def create_workflow(self, workflow: dict) -> dict:
        return await self._request("POST", "/workflows", json=workflow)

    async def update_workflow(self, workflow_id: str, workflow: dict) -> dict:
        return await self._request("PUT", f"/workflows/{workflow_id}", json=workflow)

    async def activate_workflow(self, workflow_id: str) -> None:
        await self._request("POST", f"/workflows/{workflow_id}/activate")

    async def deactivate_workflow(self, workflow_id: str) -> None:
        await self._request("POST", f"/workflows/{workflow_id}/deactivate")

    # Executions

    async def get_executions(self, workflow_id: Optional[str] = None) -> Any:
        params = {"workflowId": workflow_id} if workflow_id else None
        return await self._request("GET", "/executions", params=params)

    async def get_execution(self, execution_id: str) -> dict:
        return await self._request("GET", f"/executions/{execution_id}")

    async def execute_workflow(self, workflow_id: str, data: Optional[dict] = None) -> dict:
        return await self._request("POST", f"/workflows/{workflow_id}/execute", json={"data": data})

    # Webhook triggers

    async def trigger_webhook(self, path: str, data: dict) -> Any:
        settings = self.initialize()
        if not settings.webhook_url:
            raise IntegrationNotConfiguredError("n8n", "n8n webhook URL is not configured")

        try:
            async with self._client() as client:
                response = await client.post(f"{settings.webhook_url.rstrip('/')}/{path}", json=data)
        except httpx.HTTPError as e:
            raise N8NError(f"Webhook request failed: {e}") from e

        if not response.is_success:
            raise N8NError(f"Webhook error: {response.status_code} {response.reason_phrase}", response.status_code)
        try:
            return response.json()
        except ValueError:
            return {"response": response.text}

    async def trigger_business_process(
        self, trigger_type: str, action: str, data: dict, barbearia_id: Optional[str] = None
    ) -> Any:
        """Fire the webhook mapped to (type, action). Errors are audited and re-raised."""
        path = webhook_path_for(trigger_type, action)
        acao = f"{trigger_type}_{action}"
        audit_input = {"triggerType": trigger_type, "action": action, "barbeariaId": barbearia_id}
        body = {
            "type": trigger_type,
            "action": action,
            "data": data,
            "barbeariaId": barbearia_id,
            "timestamp": datetime.utcnow().isoformat(),
            "metadata": {"source": "barbershop-system", "version": "1.0", "environment": ENVIRONMENT},
        }

        try:
            result = await self.trigger_webhook(path, body)
        except (N8NError, IntegrationNotConfiguredError) as e:
            logger.error(f"❌ n8n trigger {acao} failed: {e}")
            IntegrationLogger(self.db, "n8n", barbearia_id).log(acao, audit_input, erro=str(e))
            raise

        logger.info(f"✅ n8n trigger {acao} -> {path}")
        IntegrationLogger(self.db, "n8n", barbearia_id).log(acao, audit_input, {"path": path})
        return result

    async def trigger_new_appointment_workflow(self, appointment: dict) -> Any:
        return await self.trigger_business_process("appointment", "created", appointment, appointment.get("barbearia_id"))

    async def trigger_appointment_reminder_workflow(self, appointment: dict) -> Any:
        return await self.trigger_business_process("appointment", "reminder", appointment, appointment.get("barbearia_id"))

    async def trigger_customer_feedback_workflow(self, feedback: dict) -> Any:
        return await self.trigger_business_process("feedback", "received", feedback, feedback.get("barbearia_id"))

    async def trigger_marketing_campaign_workflow(self, campaign: dict) -> Any:
        return await self.trigger_business_process("marketing", "campaign_start", campaign, campaign.get("barbearia_id"))

    async def trigger_customer_lifecycle_workflow(self, customer: dict, action: str) -> Any:
        return await self.trigger_business_process("customer", action, customer, customer.get("barbearia_id"))

    async def trigger_payment_workflow(self, payment: dict, action: str) -> Any:
        return await self.trigger_business_process("payment", action, payment, payment.get("barbearia_id"))

    async def trigger_inventory_workflow(self, inventory: dict, action: str) -> Any:
        return await self.trigger_business_process("inventory", action, inventory, inventory.get("barbearia_id"))

    # Automation rules

    def create_automation_rule(
        self, barbearia_id: str, name: str, trigger: dict, actions: list, active: bool = True
    ) -> AutomationRule:
        rule = AutomationRule(barbearia_id=barbearia_id, name=name, trigger=trigger, actions=actions, active=active)
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def get_automation_rules(self, barbearia_id: str) -> list[AutomationRule]:
        return (
            self.db.query(AutomationRule)
            .filter(AutomationRule.barbearia_id == barbearia_id)
            .order_by(AutomationRule.created_at)
            .all()
        )

    def update_automation_rule(self, rule_id: str, barbearia_id: str, updates: dict) -> Optional[AutomationRule]:
        rule = (
            self.db.query(AutomationRule)
            .filter(AutomationRule.id == rule_id, AutomationRule.barbearia_id == barbearia_id)
            .first()
        )
        if not rule:
            return None
        for field in ("name", "trigger", "actions", "active"):
            if field in updates and updates[field] is not None:
                setattr(rule, field, updates[field])
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def delete_automation_rule(self, rule_id: str, barbearia_id: str) -> bool:
        removed = (
            self.db.query(AutomationRule)
            .filter(AutomationRule.id == rule_id, AutomationRule.barbearia_id == barbearia_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return removed > 0

    # Defaults

    async def create_all_default_workflows(self) -> list[dict]:
        """Create the bundled workflows; a failed one is logged and skipped"""
        created = []
        for build in DEFAULT_WORKFLOWS:
            workflow = build()
            try:
                created.append(await self.create_workflow(workflow))
                logger.info(f"✅ Created n8n workflow '{workflow['name']}'")
            except (N8NError, IntegrationNotConfiguredError) as e:
                logger.error(f"❌ Failed to create n8n workflow '{workflow['name']}': {e}")
        return created

    async def health_check(self) -> dict:
        settings = self.initialize()
        if not settings.configured:
            return {"configured": False, "healthy": False}
        try:
            await self.get_workflows()
            return {"configured": True, "healthy": True}
        except N8NError as e:
            logger.warning(f"⚠️ n8n health check failed: {e}")
            return {"configured": True, "healthy": False}
