"""Admin repository - Database operations for shop administration"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Agendamento, Barbearia, Barbeiro, Servico


class AdminRepository:
    """Repository for admin database operations"""

    @staticmethod
    def slug_exists(db: Session, slug: str) -> bool:
        return db.query(Barbearia.id).filter(Barbearia.slug == slug).first() is not None

    @staticmethod
    def get_tenant(db: Session, tenant_id: str) -> Optional[Barbearia]:
        return db.query(Barbearia).filter(Barbearia.id == tenant_id).first()

    @staticmethod
    def list_services(db: Session, tenant_id: str) -> list[Servico]:
        return db.query(Servico).filter(Servico.barbearia_id == tenant_id).order_by(Servico.nome).all()

    @staticmethod
    def get_service(db: Session, tenant_id: str, service_id: str) -> Optional[Servico]:
        return db.query(Servico).filter(Servico.id == service_id, Servico.barbearia_id == tenant_id).first()

    @staticmethod
    def list_barbers(db: Session, tenant_id: str) -> list[Barbeiro]:
        return db.query(Barbeiro).filter(Barbeiro.barbearia_id == tenant_id).order_by(Barbeiro.nome).all()

    @staticmethod
    def get_barber(db: Session, tenant_id: str, barber_id: str) -> Optional[Barbeiro]:
        return db.query(Barbeiro).filter(Barbeiro.id == barber_id, Barbeiro.barbearia_id == tenant_id).first()

    @staticmethod
    def save(db: Session, instance):
        db.add(instance)
        db.commit()
        db.refresh(instance)
        return instance

    @staticmethod
    def update(db: Session, instance, **updates):
        """Update with provided (non-None) fields"""
        for key, value in updates.items():
            if value is not None and hasattr(instance, key):
                setattr(instance, key, value)
        db.commit()
        db.refresh(instance)
        return instance

    @staticmethod
    def list_appointments(
        db: Session, tenant_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> list[Agendamento]:
        query = db.query(Agendamento).filter(Agendamento.barbearia_id == tenant_id)
        if start:
            query = query.filter(Agendamento.data_hora >= start)
        if end:
            query = query.filter(Agendamento.data_hora < end)
        return query.order_by(Agendamento.data_hora).all()

    @staticmethod
    def get_appointment(db: Session, tenant_id: str, appointment_id: str) -> Optional[Agendamento]:
        return (
            db.query(Agendamento)
            .filter(Agendamento.id == appointment_id, Agendamento.barbearia_id == tenant_id)
            .first()
        )

    @staticmethod
    def get_client_ids(db: Session, tenant_id: str) -> list[str]:
        """Every client that ever booked with the shop"""
        rows = db.query(Agendamento.cliente_id).filter(Agendamento.barbearia_id == tenant_id).distinct().all()
        return [client_id for (client_id,) in rows]
