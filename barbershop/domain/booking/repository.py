"""Booking repository - Database operations for the public booking flow"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session, selectinload

from ...models import (
    ACTIVE_APPOINTMENT_STATUSES,
    Agendamento,
    AgendamentoServico,
    Barbearia,
    Barbeiro,
    Servico,
)

# Longest appointment that can still be running when a day starts
APPOINTMENT_LOOKBACK = timedelta(hours=24)


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def list_tenants(db: Session) -> list[Barbearia]:
        return db.query(Barbearia).filter(Barbearia.ativo.is_(True)).order_by(Barbearia.nome).all()

    @staticmethod
    def get_tenant(db: Session, tenant_id: str) -> Optional[Barbearia]:
        return db.query(Barbearia).filter(Barbearia.id == tenant_id, Barbearia.ativo.is_(True)).first()

    @staticmethod
    def get_tenant_by_slug(db: Session, slug: str) -> Optional[Barbearia]:
        return db.query(Barbearia).filter(Barbearia.slug == slug, Barbearia.ativo.is_(True)).first()

    @staticmethod
    def list_services(db: Session, tenant_id: str) -> list[Servico]:
        return (
            db.query(Servico)
            .filter(Servico.barbearia_id == tenant_id, Servico.ativo.is_(True))
            .order_by(Servico.nome)
            .all()
        )

    @staticmethod
    def get_services(db: Session, tenant_id: str, service_ids: list[str]) -> list[Servico]:
        return (
            db.query(Servico)
            .filter(
                Servico.barbearia_id == tenant_id,
                Servico.ativo.is_(True),
                Servico.id.in_(service_ids),
            )
            .all()
        )

    @staticmethod
    def list_barbers(db: Session, tenant_id: str) -> list[Barbeiro]:
        return (
            db.query(Barbeiro)
            .filter(Barbeiro.barbearia_id == tenant_id, Barbeiro.ativo.is_(True))
            .order_by(Barbeiro.nome)
            .all()
        )

    @staticmethod
    def get_barber(db: Session, barber_id: str) -> Optional[Barbeiro]:
        return db.query(Barbeiro).filter(Barbeiro.id == barber_id, Barbeiro.ativo.is_(True)).first()

    @staticmethod
    def get_barber_appointments(
        db: Session, barber_id: str, start: datetime, end: datetime
    ) -> list[Agendamento]:
        """Slot-holding appointments of a barber starting before `end`.
        Appointments starting up to APPOINTMENT_LOOKBACK before `start` are
        included so ones crossing into the window still block."""
        return (
            db.query(Agendamento)
            .options(selectinload(Agendamento.servicos).selectinload(AgendamentoServico.servico))
            .filter(
                Agendamento.barbeiro_id == barber_id,
                Agendamento.status.in_(ACTIVE_APPOINTMENT_STATUSES),
                Agendamento.data_hora < end,
                Agendamento.data_hora >= start - APPOINTMENT_LOOKBACK,
            )
            .all()
        )

    @staticmethod
    def lock_barber(db: Session, barber_id: str) -> Optional[Barbeiro]:
        """Row lock on the barber, held until commit, serializing bookings for them"""
        return db.query(Barbeiro).filter(Barbeiro.id == barber_id).with_for_update().first()

    @staticmethod
    def create_appointment(db: Session, appointment: Agendamento, services: list[Servico]) -> Agendamento:
        """Appointment and its service rows in one transaction"""
        for service in services:
            appointment.servicos.append(AgendamentoServico(servico_id=service.id, preco=service.preco))
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    @staticmethod
    def get_appointment(db: Session, appointment_id: str) -> Optional[Agendamento]:
        return db.query(Agendamento).filter(Agendamento.id == appointment_id).first()

    @staticmethod
    def get_client_appointments(db: Session, client_id: str) -> list[Agendamento]:
        return (
            db.query(Agendamento)
            .filter(Agendamento.cliente_id == client_id)
            .order_by(Agendamento.data_hora.desc())
            .all()
        )

    @staticmethod
    def get_upcoming_appointments(db: Session, client_id: str, now: datetime, limit: int) -> list[Agendamento]:
        return (
            db.query(Agendamento)
            .filter(
                Agendamento.cliente_id == client_id,
                Agendamento.status.in_(ACTIVE_APPOINTMENT_STATUSES),
                Agendamento.data_hora >= now,
            )
            .order_by(Agendamento.data_hora)
            .limit(limit)
            .all()
        )
