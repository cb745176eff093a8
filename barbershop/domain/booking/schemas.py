"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator


class TenantResponse(BaseModel):
    id: str
    nome: str
    slug: str
    endereco: Optional[str] = None
    telefone: Optional[str] = None
    horario_funcionamento: Optional[dict] = None

    class Config:
        from_attributes = True


class ServiceResponse(BaseModel):
    id: str
    nome: str
    descricao: Optional[str] = None
    preco: float
    duracao_minutos: int
    categoria: Optional[str] = None

    class Config:
        from_attributes = True


class BarberResponse(BaseModel):
    id: str
    nome: str
    especialidades: Optional[list] = None

    class Config:
        from_attributes = True


class SlotsResponse(BaseModel):
    barbeiroId: str
    data: str
    duracaoMinutos: int
    horarios: list[str]


class AppointmentCreate(BaseModel):
    """Schema for booking an appointment"""

    barbeariaId: str
    barbeiroId: str
    servicoIds: list[str]
    dataHora: datetime
    observacoes: Optional[str] = None

    @field_validator("servicoIds")
    @classmethod
    def validate_services(cls, v):
        if not v:
            raise ValueError("Selecione pelo menos um serviço")
        return list(dict.fromkeys(v))


class AppointmentResponse(BaseModel):
    id: str
    barbeariaId: str
    barbeiroId: str
    barbeiro: Optional[str] = None
    servicos: list[str]
    dataHora: datetime
    dataFim: datetime
    valorTotal: float
    status: str
    pagamentoStatus: str
    observacoes: Optional[str] = None

    @classmethod
    def from_model(cls, appointment) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            barbeariaId=appointment.barbearia_id,
            barbeiroId=appointment.barbeiro_id,
            barbeiro=appointment.barbeiro.nome if appointment.barbeiro else None,
            servicos=appointment.nomes_servicos,
            dataHora=appointment.data_hora,
            dataFim=appointment.fim,
            valorTotal=appointment.valor_total,
            status=appointment.status,
            pagamentoStatus=appointment.pagamento_status,
            observacoes=appointment.observacoes,
        )


class CancelRequest(BaseModel):
    motivo: Optional[str] = None
