"""Admin domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import normalize_br_phone


def _phone(v):
    if v:
        return normalize_br_phone(v)
    return v


class TenantCreate(BaseModel):
    """Schema for creating a barbershop"""

    nome: str = Field(min_length=2, max_length=255)
    endereco: Optional[str] = None
    telefone: Optional[str] = None
    email: Optional[str] = None
    whatsappBusiness: Optional[str] = None
    horarioFuncionamento: Optional[dict] = None

    @field_validator("telefone", "whatsappBusiness")
    @classmethod
    def validate_phone(cls, v):
        return _phone(v)


class TenantUpdate(BaseModel):
    nome: Optional[str] = None
    endereco: Optional[str] = None
    telefone: Optional[str] = None
    email: Optional[str] = None
    whatsappBusiness: Optional[str] = None
    horarioFuncionamento: Optional[dict] = None
    ativo: Optional[bool] = None

    @field_validator("telefone", "whatsappBusiness")
    @classmethod
    def validate_phone(cls, v):
        return _phone(v)


class TenantAdminResponse(BaseModel):
    id: str
    nome: str
    slug: str
    endereco: Optional[str] = None
    telefone: Optional[str] = None
    email: Optional[str] = None
    whatsapp_business: Optional[str] = None
    horario_funcionamento: Optional[dict] = None
    ativo: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ServiceCreate(BaseModel):
    nome: str
    descricao: Optional[str] = None
    preco: float = Field(ge=0)
    duracaoMinutos: int = Field(30, gt=0, le=480)
    categoria: Optional[str] = None


class ServiceUpdate(BaseModel):
    nome: Optional[str] = None
    descricao: Optional[str] = None
    preco: Optional[float] = Field(None, ge=0)
    duracaoMinutos: Optional[int] = Field(None, gt=0, le=480)
    categoria: Optional[str] = None
    ativo: Optional[bool] = None


class ServiceAdminResponse(BaseModel):
    id: str
    nome: str
    descricao: Optional[str] = None
    preco: float
    duracao_minutos: int
    categoria: Optional[str] = None
    ativo: bool

    class Config:
        from_attributes = True


class BarberCreate(BaseModel):
    nome: str
    email: Optional[str] = None
    telefone: Optional[str] = None
    especialidades: Optional[list[str]] = None
    usuarioId: Optional[str] = None

    @field_validator("telefone")
    @classmethod
    def validate_phone(cls, v):
        return _phone(v)


class BarberUpdate(BaseModel):
    nome: Optional[str] = None
    email: Optional[str] = None
    telefone: Optional[str] = None
    especialidades: Optional[list[str]] = None
    ativo: Optional[bool] = None

    @field_validator("telefone")
    @classmethod
    def validate_phone(cls, v):
        return _phone(v)


class BarberAdminResponse(BaseModel):
    id: str
    nome: str
    email: Optional[str] = None
    telefone: Optional[str] = None
    especialidades: Optional[list] = None
    usuario_id: Optional[str] = None
    ativo: bool

    class Config:
        from_attributes = True


class IntegrationConfigUpdate(BaseModel):
    configuracao: dict
    ativo: Optional[bool] = None


class IntegrationConfigResponse(BaseModel):
    tipo: str
    configuracao: dict
    ativo: bool
    updated_at: Optional[datetime] = None


class AppointmentStatusUpdate(BaseModel):
    status: Literal["agendado", "confirmado", "em_andamento", "concluido", "cancelado"]


class PromotionRequest(BaseModel):
    discount: int = Field(gt=0, le=100)
    service: str
    expiry: str
