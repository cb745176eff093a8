"""Admin service - Business logic for shop administration"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import Agendamento, Barbearia, Barbeiro, Servico, Usuario
from ...services.integration_config import (
    INTEGRATION_TYPES,
    MASKED_VALUE,
    SECRET_FIELDS,
    decrypt_config,
    get_integration,
    mask_config,
    save_integration_config,
)
from ...services.push_notification_service import PushNotificationService, PushResult
from ...shared.validators import slugify
from .repository import AdminRepository
from .schemas import (
    BarberCreate,
    BarberUpdate,
    IntegrationConfigResponse,
    ServiceCreate,
    ServiceUpdate,
    TenantCreate,
    TenantUpdate,
)

logger = logging.getLogger(__name__)

# Integrations shared by every shop (no barbearia_id on the row)
GLOBAL_INTEGRATIONS = ("ai", "n8n")


class AdminService:
    """Service layer for admin business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AdminRepository()

    # Tenants

    def unique_slug(self, nome: str) -> str:
        """Slug of the name; '-2', '-3', ... appended until unused"""
        base = slugify(nome)
        slug = base
        suffix = 2
        while self.repo.slug_exists(self.db, slug):
            slug = f"{base}-{suffix}"
            suffix += 1
        return slug

    def create_tenant(self, data: TenantCreate, owner: Optional[Usuario] = None) -> Barbearia:
        """Create a barbershop; the owner becomes its admin"""
        if owner and owner.barbearia_id:
            raise HTTPException(status_code=400, detail="Usuário já está vinculado a uma barbearia")

        tenant = Barbearia(
            nome=data.nome,
            slug=self.unique_slug(data.nome),
            endereco=data.endereco,
            telefone=data.telefone,
            email=data.email,
            whatsapp_business=data.whatsappBusiness,
            horario_funcionamento=data.horarioFuncionamento,
        )
        self.db.add(tenant)
        self.db.flush()
        if owner:
            owner.barbearia_id = tenant.id
            owner.tipo = "admin"
        self.db.commit()
        self.db.refresh(tenant)
        logger.info(f"✅ Barbershop created: {tenant.nome} ({tenant.slug})")
        return tenant

    def get_tenant(self, tenant_id: str) -> Barbearia:
        tenant = self.repo.get_tenant(self.db, tenant_id)
        if not tenant:
            raise HTTPException(status_code=404, detail="Barbearia não encontrada")
        return tenant

    def update_tenant(self, tenant_id: str, data: TenantUpdate) -> Barbearia:
        return self.repo.update(
            self.db,
            self.get_tenant(tenant_id),
            nome=data.nome,
            endereco=data.endereco,
            telefone=data.telefone,
            email=data.email,
            whatsapp_business=data.whatsappBusiness,
            horario_funcionamento=data.horarioFuncionamento,
            ativo=data.ativo,
        )

    # Services

    def list_services(self, tenant_id: str) -> list[Servico]:
        return self.repo.list_services(self.db, tenant_id)

    def _get_service(self, tenant_id: str, service_id: str) -> Servico:
        service = self.repo.get_service(self.db, tenant_id, service_id)
        if not service:
            raise HTTPException(status_code=404, detail="Serviço não encontrado")
        return service

    def create_service(self, tenant_id: str, data: ServiceCreate) -> Servico:
        return self.repo.save(
            self.db,
            Servico(
                barbearia_id=tenant_id,
                nome=data.nome,
                descricao=data.descricao,
                preco=data.preco,
                duracao_minutos=data.duracaoMinutos,
                categoria=data.categoria,
            ),
        )

    def update_service(self, tenant_id: str, service_id: str, data: ServiceUpdate) -> Servico:
        return self.repo.update(
            self.db,
            self._get_service(tenant_id, service_id),
            nome=data.nome,
            descricao=data.descricao,
            preco=data.preco,
            duracao_minutos=data.duracaoMinutos,
            categoria=data.categoria,
            ativo=data.ativo,
        )

    def delete_service(self, tenant_id: str, service_id: str) -> None:
        """Soft delete; past appointments keep referencing the row"""
        self.repo.update(self.db, self._get_service(tenant_id, service_id), ativo=False)

    # Barbers

    def list_barbers(self, tenant_id: str) -> list[Barbeiro]:
        return self.repo.list_barbers(self.db, tenant_id)

    def _get_barber(self, tenant_id: str, barber_id: str) -> Barbeiro:
        barber = self.repo.get_barber(self.db, tenant_id, barber_id)
        if not barber:
            raise HTTPException(status_code=404, detail="Barbeiro não encontrado")
        return barber

    def create_barber(self, tenant_id: str, data: BarberCreate) -> Barbeiro:
        return self.repo.save(
            self.db,
            Barbeiro(
                barbearia_id=tenant_id,
                usuario_id=data.usuarioId,
                nome=data.nome,
                email=data.email,
                telefone=data.telefone,
                especialidades=data.especialidades,
            ),
        )

    def update_barber(self, tenant_id: str, barber_id: str, data: BarberUpdate) -> Barbeiro:
        return self.repo.update(
            self.db,
            self._get_barber(tenant_id, barber_id),
            nome=data.nome,
            email=data.email,
            telefone=data.telefone,
            especialidades=data.especialidades,
            ativo=data.ativo,
        )

    def delete_barber(self, tenant_id: str, barber_id: str) -> None:
        self.repo.update(self.db, self._get_barber(tenant_id, barber_id), ativo=False)

    # Integrations

    @staticmethod
    def _scope(tipo: str, user: Usuario) -> Optional[str]:
        if tipo not in INTEGRATION_TYPES:
            raise HTTPException(status_code=404, detail=f"Integração desconhecida: {tipo}")
        if tipo in GLOBAL_INTEGRATIONS:
            return None
        return user.barbearia_id

    def get_integration_config(self, tipo: str, user: Usuario) -> IntegrationConfigResponse:
        barbearia_id = self._scope(tipo, user)
        integration = get_integration(self.db, tipo, barbearia_id)
        if not integration:
            return IntegrationConfigResponse(tipo=tipo, configuracao={}, ativo=False)
        config = decrypt_config(integration.configuracao or {}, tipo)
        return IntegrationConfigResponse(
            tipo=tipo,
            configuracao=mask_config(config),
            ativo=integration.ativo,
            updated_at=integration.updated_at,
        )

    def list_integrations(self, user: Usuario) -> list[IntegrationConfigResponse]:
        return [self.get_integration_config(tipo, user) for tipo in INTEGRATION_TYPES]

    def save_integration_config(
        self, tipo: str, config: dict, user: Usuario, ativo: Optional[bool] = None
    ) -> IntegrationConfigResponse:
        """Upsert; masked secrets sent back unchanged keep their stored value"""
        barbearia_id = self._scope(tipo, user)
        if barbearia_id is None and user.tipo != "admin":
            raise HTTPException(status_code=403, detail="Apenas administradores podem alterar esta integração")

        integration = get_integration(self.db, tipo, barbearia_id)
        merged = decrypt_config(integration.configuracao or {}, tipo) if integration else {}
        for key, value in config.items():
            if key in SECRET_FIELDS and value == MASKED_VALUE:
                continue
            merged[key] = value

        save_integration_config(self.db, tipo, merged, barbearia_id, ativo)
        logger.info(f"✅ Integration {tipo} saved by user {user.id}")
        return self.get_integration_config(tipo, user)

    # Appointments

    def list_appointments(self, tenant_id: str, day: Optional[date] = None) -> list[Agendamento]:
        if day:
            start = datetime.combine(day, time.min)
            return self.repo.list_appointments(self.db, tenant_id, start, start + timedelta(days=1))
        return self.repo.list_appointments(self.db, tenant_id)

    def update_appointment_status(self, tenant_id: str, appointment_id: str, status: str) -> Agendamento:
        appointment = self.repo.get_appointment(self.db, tenant_id, appointment_id)
        if not appointment:
            raise HTTPException(status_code=404, detail="Agendamento não encontrado")

        previous = appointment.status
        appointment = self.repo.update(self.db, appointment, status=status)
        logger.info(f"🔄 Appointment {appointment.id}: {previous} -> {status}")

        if status != previous:
            push = PushNotificationService(self.db)
            if status == "concluido":
                push.request_feedback(appointment.cliente_id)
            elif status == "cancelado":
                push.send_appointment_cancellation(appointment)
        return appointment

    def send_promotion(self, tenant_id: str, discount: int, service: str, expiry: str) -> PushResult:
        client_ids = self.repo.get_client_ids(self.db, tenant_id)
        if not client_ids:
            return PushResult(False, error="No clients to notify")
        return PushNotificationService(self.db).send_promotional_offer(client_ids, discount, service, expiry)
