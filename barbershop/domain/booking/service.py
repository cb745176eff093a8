"""Booking service - Business logic for the public booking flow"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...exceptions import IntegrationNotConfiguredError, SlotUnavailableError
from ...models import Agendamento, Barbearia, Barbeiro, Servico, Usuario
from ...services.push_notification_service import PushNotificationService
from ...services.whatsapp_service import WhatsAppService
from ...shared.dates import business_now, to_business_time
from .repository import BookingRepository
from .schemas import AppointmentCreate

logger = logging.getLogger(__name__)

OPENING_TIME = time(8, 0)
CLOSING_TIME = time(18, 0)
SLOT_STEP_MINUTES = 30


def overlaps(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    return start1 < end2 and start2 < end1


class BookingService:
    """Service layer for booking business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = BookingRepository()

    # Catalogue

    def list_tenants(self) -> list[Barbearia]:
        return self.repo.list_tenants(self.db)

    def get_tenant_by_slug(self, slug: str) -> Barbearia:
        tenant = self.repo.get_tenant_by_slug(self.db, slug)
        if not tenant:
            raise HTTPException(status_code=404, detail="Barbearia não encontrada")
        return tenant

    def _get_tenant(self, tenant_id: str) -> Barbearia:
        tenant = self.repo.get_tenant(self.db, tenant_id)
        if not tenant:
            raise HTTPException(status_code=404, detail="Barbearia não encontrada")
        return tenant

    def list_services(self, tenant_id: str) -> list[Servico]:
        self._get_tenant(tenant_id)
        return self.repo.list_services(self.db, tenant_id)

    def list_barbers(self, tenant_id: str) -> list[Barbeiro]:
        self._get_tenant(tenant_id)
        return self.repo.list_barbers(self.db, tenant_id)

    def _get_barber(self, barber_id: str) -> Barbeiro:
        barber = self.repo.get_barber(self.db, barber_id)
        if not barber:
            raise HTTPException(status_code=404, detail="Barbeiro não encontrado")
        return barber

    # Availability

    def _busy_periods(self, barber_id: str, day: date) -> list[tuple[datetime, datetime]]:
        day_start = datetime.combine(day, time.min)
        appointments = self.repo.get_barber_appointments(
            self.db, barber_id, day_start, day_start + timedelta(days=1)
        )
        return [(a.data_hora, a.fim) for a in appointments]

    def get_available_slots(self, barber_id: str, day: date, duration_minutes: int = 60) -> list[str]:
        """
        Start times ("HH:MM") on a 30-minute grid between 08:00 and 18:00 where
        [start, start + duration) fits before closing and overlaps no slot-holding
        appointment of the barber. Times already past are skipped.
        """
        self._get_barber(barber_id)
        if duration_minutes <= 0:
            raise HTTPException(status_code=400, detail="Duração inválida")

        busy = self._busy_periods(barber_id, day)
        closing = datetime.combine(day, CLOSING_TIME)
        now = business_now()

        slots = []
        start = datetime.combine(day, OPENING_TIME)
        while start + timedelta(minutes=duration_minutes) <= closing:
            end = start + timedelta(minutes=duration_minutes)
            if start > now and not any(overlaps(start, end, b_start, b_end) for b_start, b_end in busy):
                slots.append(start.strftime("%H:%M"))
            start += timedelta(minutes=SLOT_STEP_MINUTES)
        return slots

    # Appointments

    def create_appointment(self, data: AppointmentCreate, client: Usuario) -> Agendamento:
        """
        Book an appointment for the client.

        Raises:
            HTTPException: 404 unknown tenant/barber, 400 invalid services or time
            SlotUnavailableError: the slot overlaps another appointment of the barber
        """
        logger.info(f"📥 Creating appointment for client {client.id} with barber {data.barbeiroId}")
        self._get_tenant(data.barbeariaId)
        barber = self._get_barber(data.barbeiroId)
        if barber.barbearia_id != data.barbeariaId:
            raise HTTPException(status_code=400, detail="Barbeiro não pertence a esta barbearia")

        services = self.repo.get_services(self.db, data.barbeariaId, data.servicoIds)
        if len(services) != len(data.servicoIds):
            raise HTTPException(status_code=400, detail="Serviço inválido para esta barbearia")

        start = to_business_time(data.dataHora).replace(second=0, microsecond=0)
        if start <= business_now():
            raise HTTPException(status_code=400, detail="Horário já passou")

        duration = sum(s.duracao_minutos or 0 for s in services)
        end = start + timedelta(minutes=duration)

        # Concurrent bookings for the same barber wait here until this one commits
        self.repo.lock_barber(self.db, barber.id)
        for busy_start, busy_end in self._busy_periods(barber.id, start.date()):
            if overlaps(start, end, busy_start, busy_end):
                logger.warning(f"⚠️ Slot {start} unavailable for barber {barber.id}")
                self.db.rollback()
                raise SlotUnavailableError(f"Horário {start:%d/%m/%Y %H:%M} indisponível")

        appointment = Agendamento(
            barbearia_id=data.barbeariaId,
            cliente_id=client.id,
            barbeiro_id=barber.id,
            data_hora=start,
            data_fim=end,
            valor_total=sum(s.preco or 0 for s in services),
            status="agendado",
            observacoes=data.observacoes,
        )
        appointment = self.repo.create_appointment(self.db, appointment, services)
        logger.info(f"✅ Appointment {appointment.id} booked for {start}")
        return appointment

    def _get_owned_appointment(self, appointment_id: str, user: Usuario) -> Agendamento:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise HTTPException(status_code=404, detail="Agendamento não encontrado")
        is_staff = user.tipo in ("admin", "barbeiro") and user.barbearia_id == appointment.barbearia_id
        if appointment.cliente_id != user.id and not is_staff:
            raise HTTPException(status_code=404, detail="Agendamento não encontrado")
        return appointment

    def cancel_appointment(self, appointment_id: str, user: Usuario, motivo: Optional[str] = None) -> Agendamento:
        appointment = self._get_owned_appointment(appointment_id, user)
        if appointment.status in ("cancelado", "concluido"):
            raise HTTPException(status_code=400, detail=f"Agendamento já está {appointment.status}")

        appointment.status = "cancelado"
        if motivo:
            note = f"Cancelado: {motivo}"
            appointment.observacoes = f"{appointment.observacoes}\n{note}" if appointment.observacoes else note
        self.db.commit()
        self.db.refresh(appointment)
        logger.info(f"🗑️ Appointment {appointment.id} cancelled by {user.id}")
        return appointment

    def get_client_appointments(self, client_id: str) -> list[Agendamento]:
        return self.repo.get_client_appointments(self.db, client_id)

    def get_upcoming_appointments(self, client_id: str, limit: int = 5) -> list[Agendamento]:
        return self.repo.get_upcoming_appointments(self.db, client_id, business_now(), limit)

    # Notifications

    async def notify_appointment_created(self, appointment: Agendamento) -> None:
        """Push confirmation + reminder and WhatsApp confirmation. Failures never undo the booking."""
        push = PushNotificationService(self.db)
        result = push.send_appointment_confirmation(appointment)
        if not result.success:
            logger.info(f"ℹ️ Push confirmation not delivered for {appointment.id}: {result.error}")
        push.schedule_appointment_reminder(appointment)

        client = appointment.cliente
        phone = (client.whatsapp or client.telefone) if client else None
        if not phone:
            return
        try:
            await WhatsAppService(self.db, appointment.barbearia_id).send_appointment_confirmation(
                phone,
                client.nome,
                appointment.barbeiro.nome if appointment.barbeiro else "",
                appointment.data_hora,
                appointment.nomes_servicos,
            )
        except IntegrationNotConfiguredError:
            logger.info(f"ℹ️ WhatsApp not configured for shop {appointment.barbearia_id}, skipping confirmation")
        except ValueError as e:
            logger.warning(f"⚠️ Invalid WhatsApp number for client {client.id}: {e}")

    def notify_appointment_cancelled(self, appointment: Agendamento) -> None:
        result = PushNotificationService(self.db).send_appointment_cancellation(appointment)
        if not result.success:
            logger.info(f"ℹ️ Push cancellation not delivered for {appointment.id}: {result.error}")
