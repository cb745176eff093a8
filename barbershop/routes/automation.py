"""
Automation Routes
n8n workflow management, business event triggers and per-shop automation rules
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import require_tenant_admin
from ..database import get_db
from ..exceptions import IntegrationNotConfiguredError, N8NError
from ..models import Usuario
from ..models_integrations import AutomationRule
from ..services.n8n_service import N8NService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/automation", tags=["Automation"])


class TriggerRequest(BaseModel):
    type: str
    action: str
    data: dict = Field(default_factory=dict)


class ExecuteRequest(BaseModel):
    data: Optional[dict] = None


class RuleCreate(BaseModel):
    name: str
    trigger: dict
    actions: list = Field(default_factory=list)
    active: bool = True


class RuleUpdate(BaseModel):
    name: Optional[str] = None
    trigger: Optional[dict] = None
    actions: Optional[list] = None
    active: Optional[bool] = None


def get_n8n_service(db: Session = Depends(get_db)) -> N8NService:
    return N8NService(db)


def _rule_response(rule: AutomationRule) -> dict:
    return {
        "id": rule.id,
        "name": rule.name,
        "trigger": rule.trigger,
        "actions": rule.actions,
        "active": rule.active,
        "createdAt": rule.created_at.isoformat() if rule.created_at else None,
    }


async def _n8n_call(awaitable) -> Any:
    """Await an n8n call, mapping its failures to HTTP errors"""
    try:
        return await awaitable
    except IntegrationNotConfiguredError as e:
        raise HTTPException(status_code=503, detail="n8n not configured") from e
    except N8NError as e:
        status_code = 404 if e.status_code == 404 else 502
        raise HTTPException(status_code=status_code, detail=str(e)) from e


# ============================================================================
# WORKFLOWS
# ============================================================================


@router.get("/workflows")
async def list_workflows(
    _: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    return await _n8n_call(service.get_workflows())


@router.post("/workflows/defaults")
async def create_default_workflows(
    _: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    """Install the bundled workflows; individual failures are skipped"""
    created = await service.create_all_default_workflows()
    return {"created": len(created), "workflows": created}


@router.get("/workflows/{workflow_id}")
async def get_workflow(
    workflow_id: str,
    _: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    return await _n8n_call(service.get_workflow(workflow_id))


@router.post("/workflows", status_code=201)
async def create_workflow(
    workflow: dict,
    _: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    return await _n8n_call(service.create_workflow(workflow))


@router.put("/workflows/{workflow_id}")
async def update_workflow(
    workflow_id: str,
    workflow: dict,
    _: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    return await _n8n_call(service.update_workflow(workflow_id, workflow))


@router.post("/workflows/{workflow_id}/activate")
async def activate_workflow(
    workflow_id: str,
    _: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    await _n8n_call(service.activate_workflow(workflow_id))
    return {"success": True}


@router.post("/workflows/{workflow_id}/deactivate")
async def deactivate_workflow(
    workflow_id: str,
    _: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    await _n8n_call(service.deactivate_workflow(workflow_id))
    return {"success": True}


@router.post("/workflows/{workflow_id}/execute")
async def execute_workflow(
    workflow_id: str,
    data: ExecuteRequest,
    _: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    return await _n8n_call(service.execute_workflow(workflow_id, data.data))


@router.get("/executions")
async def list_executions(
    workflowId: Optional[str] = None,
    _: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    return await _n8n_call(service.get_executions(workflowId))


@router.get("/executions/{execution_id}")
async def get_execution(
    execution_id: str,
    _: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    return await _n8n_call(service.get_execution(execution_id))


# ============================================================================
# TRIGGERS
# ============================================================================


@router.post("/trigger")
async def trigger_business_process(
    data: TriggerRequest,
    current_user: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    result = await _n8n_call(
        service.trigger_business_process(data.type, data.action, data.data, current_user.barbearia_id)
    )
    return {"success": True, "result": result}


@router.get("/health")
async def health_check(
    _: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    return await service.health_check()


# ============================================================================
# RULES
# ============================================================================


@router.get("/rules")
async def list_rules(
    current_user: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    return [_rule_response(r) for r in service.get_automation_rules(current_user.barbearia_id)]


@router.post("/rules", status_code=201)
async def create_rule(
    data: RuleCreate,
    current_user: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    rule = service.create_automation_rule(
        current_user.barbearia_id, data.name, data.trigger, data.actions, data.active
    )
    return _rule_response(rule)


@router.put("/rules/{rule_id}")
async def update_rule(
    rule_id: str,
    data: RuleUpdate,
    current_user: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    rule = service.update_automation_rule(rule_id, current_user.barbearia_id, data.model_dump(exclude_none=True))
    if not rule:
        raise HTTPException(status_code=404, detail="Automation rule not found")
    return _rule_response(rule)


@router.delete("/rules/{rule_id}")
async def delete_rule(
    rule_id: str,
    current_user: Usuario = Depends(require_tenant_admin),
    service: N8NService = Depends(get_n8n_service),
):
    if not service.delete_automation_rule(rule_id, current_user.barbearia_id):
        raise HTTPException(status_code=404, detail="Automation rule not found")
    return {"success": True}
