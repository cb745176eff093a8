"""Admin router - FastAPI endpoints for shop administration"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_tenant_admin
from ...database import get_db
from ...models import Usuario
from ..booking.schemas import AppointmentResponse
from .schemas import (
    AppointmentStatusUpdate,
    BarberAdminResponse,
    BarberCreate,
    BarberUpdate,
    IntegrationConfigResponse,
    IntegrationConfigUpdate,
    PromotionRequest,
    ServiceAdminResponse,
    ServiceCreate,
    ServiceUpdate,
    TenantAdminResponse,
    TenantCreate,
    TenantUpdate,
)
from .service import AdminService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


def get_admin_service(db: Session = Depends(get_db)) -> AdminService:
    """Dependency injection for AdminService"""
    return AdminService(db)


# ============================================================================
# TENANT
# ============================================================================


@router.post("/tenants", response_model=TenantAdminResponse, status_code=201)
async def create_tenant(
    data: TenantCreate,
    current_user: Usuario = Depends(get_current_user),
    service: AdminService = Depends(get_admin_service),
):
    """Create a barbershop owned by the current user"""
    return service.create_tenant(data, current_user)


@router.get("/tenant", response_model=TenantAdminResponse)
async def get_my_tenant(
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    return service.get_tenant(current_user.barbearia_id)


@router.put("/tenant", response_model=TenantAdminResponse)
async def update_my_tenant(
    data: TenantUpdate,
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    return service.update_tenant(current_user.barbearia_id, data)


# ============================================================================
# SERVICES
# ============================================================================


@router.get("/services", response_model=list[ServiceAdminResponse])
async def list_services(
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    """All services of the shop, inactive included"""
    return service.list_services(current_user.barbearia_id)


@router.post("/services", response_model=ServiceAdminResponse, status_code=201)
async def create_service(
    data: ServiceCreate,
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    return service.create_service(current_user.barbearia_id, data)


@router.put("/services/{service_id}", response_model=ServiceAdminResponse)
async def update_service(
    service_id: str,
    data: ServiceUpdate,
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    return service.update_service(current_user.barbearia_id, service_id, data)


@router.delete("/services/{service_id}")
async def delete_service(
    service_id: str,
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    service.delete_service(current_user.barbearia_id, service_id)
    return {"message": "Serviço desativado"}


# ============================================================================
# BARBERS
# ============================================================================


@router.get("/barbers", response_model=list[BarberAdminResponse])
async def list_barbers(
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    return service.list_barbers(current_user.barbearia_id)


@router.post("/barbers", response_model=BarberAdminResponse, status_code=201)
async def create_barber(
    data: BarberCreate,
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    return service.create_barber(current_user.barbearia_id, data)


@router.put("/barbers/{barber_id}", response_model=BarberAdminResponse)
async def update_barber(
    barber_id: str,
    data: BarberUpdate,
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    return service.update_barber(current_user.barbearia_id, barber_id, data)


@router.delete("/barbers/{barber_id}")
async def delete_barber(
    barber_id: str,
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    service.delete_barber(current_user.barbearia_id, barber_id)
    return {"message": "Barbeiro desativado"}


# ============================================================================
# INTEGRATIONS
# ============================================================================


@router.get("/integrations", response_model=list[IntegrationConfigResponse])
async def list_integrations(
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    """Every integration type with its masked configuration"""
    return service.list_integrations(current_user)


@router.get("/integrations/{tipo}", response_model=IntegrationConfigResponse)
async def get_integration(
    tipo: str,
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    return service.get_integration_config(tipo, current_user)


@router.put("/integrations/{tipo}", response_model=IntegrationConfigResponse)
async def save_integration(
    tipo: str,
    data: IntegrationConfigUpdate,
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    return service.save_integration_config(tipo, data.configuracao, current_user, data.ativo)


# ============================================================================
# APPOINTMENTS & MARKETING
# ============================================================================


@router.get("/appointments", response_model=list[AppointmentResponse])
async def list_appointments(
    day: Optional[date] = Query(None, alias="date"),
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    return [
        AppointmentResponse.from_model(a) for a in service.list_appointments(current_user.barbearia_id, day)
    ]


@router.patch("/appointments/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: str,
    data: AppointmentStatusUpdate,
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    appointment = service.update_appointment_status(current_user.barbearia_id, appointment_id, data.status)
    return AppointmentResponse.from_model(appointment)


@router.post("/promotions")
async def send_promotion(
    data: PromotionRequest,
    current_user: Usuario = Depends(require_tenant_admin),
    service: AdminService = Depends(get_admin_service),
):
    """Push a discount offer to every client of the shop"""
    result = service.send_promotion(current_user.barbearia_id, data.discount, data.service, data.expiry)
    return result.to_dict()
